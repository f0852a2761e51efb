from __future__ import annotations

import pytest

from intelli_tracker.config import (
    FetchSettings,
    ReportSettings,
    ScheduleConfig,
    ScheduleType,
    SourceEndpoints,
    StoreSettings,
    TrackerConfig,
)


def test_schedule_config_interval_requires_numeric() -> None:
    with pytest.raises(ValueError):
        ScheduleConfig(type=ScheduleType.INTERVAL)
    with pytest.raises(ValueError):
        ScheduleConfig(type=ScheduleType.INTERVAL, value="every minute")
    cfg = ScheduleConfig(type=ScheduleType.INTERVAL, value={"minutes": 2})
    assert cfg.value == {"minutes": 2}


def test_schedule_config_cron_requires_string() -> None:
    with pytest.raises(ValueError):
        ScheduleConfig(type=ScheduleType.CRON, value=5)


def test_detail_template_requires_placeholder() -> None:
    with pytest.raises(ValueError):
        SourceEndpoints(detail_url_template="https://wo.example/wo")
    endpoints = SourceEndpoints(detail_url_template="https://wo.example/wo/{id}")
    assert endpoints.detail_url_template.format(id="42") == "https://wo.example/wo/42"


def test_fetch_settings_validation() -> None:
    settings = FetchSettings(delay_range=[1, 3])
    assert settings.delay_range == (1.0, 3.0)
    with pytest.raises(ValueError):
        FetchSettings(delay_range=(3, 1))
    with pytest.raises(ValueError):
        FetchSettings(concurrency=0)
    with pytest.raises(ValueError):
        FetchSettings(run_deadline=0)


def test_store_settings_budget_validation() -> None:
    assert StoreSettings().max_bytes == 4 * 1024 * 1024
    with pytest.raises(ValueError):
        StoreSettings(trim_ratio=1.5)


def test_report_defaults_match_export_layout() -> None:
    report = ReportSettings()
    assert report.columns[0] == "WO nr"
    assert report.columns[-1] == "Comment / last update (new)"
    assert report.delimiter == ";"
    with pytest.raises(ValueError):
        ReportSettings(delimiter=";;")


def test_tracker_config_rejects_negative_drop_recent() -> None:
    with pytest.raises(ValueError):
        TrackerConfig(drop_recent=-1)
