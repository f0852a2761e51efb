"""Pydantic models used across intelli-tracker configuration flow."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class ScheduleType(str, Enum):
    """Scheduler modes for automatic runs."""

    CRON = "cron"
    INTERVAL = "interval"
    ONCE = "once"


class RunModeSetting(str, Enum):
    """Artifact a run produces once reconciliation is done."""

    REPORT = "report"
    STORE = "store"


class ScheduleConfig(BaseModel):
    """Configuration describing when automatic runs should fire."""

    type: ScheduleType = Field(default=ScheduleType.ONCE)
    value: Any = Field(
        default=None,
        description="Cron expression, interval seconds or ISO datetime, depending on type.",
    )

    @model_validator(mode="after")
    def _validate_value(self) -> "ScheduleConfig":
        if self.type is ScheduleType.CRON and not isinstance(self.value, str):
            raise ValueError("Cron schedule requires string expression")
        if self.type is ScheduleType.INTERVAL and not isinstance(self.value, (int, float, dict)):
            raise ValueError("Interval schedule requires seconds (int/float) or kwargs dict")
        if (
            self.type is ScheduleType.ONCE
            and self.value is not None
            and not isinstance(self.value, str)
        ):
            raise ValueError("Once schedule expects ISO datetime string or null")
        return self


class SourceEndpoints(BaseModel):
    """Where the list and detail pages live and how to read them."""

    list_url: str = ""
    detail_url_template: str = "{id}"
    # list page: one row per item, each column read from td[data-column=<name>]
    row_selector: str = "tr.k-master-row"
    list_columns: dict[str, str] = Field(
        default_factory=lambda: {
            "ID": "ID",
            "WO nr": "Number",
            "Due date": "DueDate",
            "Description": "Task_Refinement",
            "Status": "WOStatus",
        }
    )
    id_column: str = "ID"
    # detail page
    status_label: str = "Status"
    activity_grid_selector: str = '[data-role="woactivityloggrid"]'
    procedures_grid_selector: str = '[data-role="woproceduregrid"]'
    activity_columns: dict[str, str] = Field(
        default_factory=lambda: {
            "timestamp": "ActionDateTime",
            "author": "ActionBy",
            "kind": "ActionTitle",
            "text": "Comment",
        }
    )

    @field_validator("detail_url_template")
    @classmethod
    def _require_placeholder(cls, value: str) -> str:
        if "{id}" not in value:
            raise ValueError("detail_url_template must contain an {id} placeholder")
        return value


class FetchSettings(BaseModel):
    """Concurrency, readiness and retry controls for the fetch phases."""

    concurrency: int = 20
    fetch_timeout: float = 60.0
    readiness_interval: float = 0.25
    readiness_attempts: int = 20
    request_timeout: float = 20.0
    retry_on_fail: int = 1
    delay_range: tuple[float, float] = (0.0, 0.0)
    run_deadline: float | None = None

    @field_validator("delay_range", mode="before")
    @classmethod
    def _coerce_delay(cls, value: Any) -> tuple[float, float]:
        if value in (None, ""):
            return (0.0, 0.0)
        if isinstance(value, (list, tuple)) and len(value) == 2:
            low, high = float(value[0]), float(value[1])
            if low < 0 or high < 0:
                raise ValueError("Delay range values must be non-negative")
            if high < low:
                raise ValueError("Delay range upper bound must be >= lower bound")
            return (low, high)
        raise ValueError("Delay range expects a two-item list or tuple")

    @model_validator(mode="after")
    def _validate_positive(self) -> "FetchSettings":
        if self.concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if self.fetch_timeout <= 0:
            raise ValueError("fetch_timeout must be > 0")
        if self.readiness_attempts < 1:
            raise ValueError("readiness_attempts must be >= 1")
        if self.readiness_interval < 0:
            raise ValueError("readiness_interval must be >= 0")
        if self.run_deadline is not None and self.run_deadline <= 0:
            raise ValueError("run_deadline must be > 0 when set")
        return self


class StoreSettings(BaseModel):
    """Record store persistence and size budget."""

    database: Path = Field(default=Path("data/tracker.db"))
    max_bytes: int = 4 * 1024 * 1024
    trim_ratio: float = 0.8

    @field_validator("database", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        return Path(value)

    @model_validator(mode="after")
    def _validate_budget(self) -> "StoreSettings":
        if self.max_bytes <= 0:
            raise ValueError("max_bytes must be > 0")
        if not 0 < self.trim_ratio <= 1:
            raise ValueError("trim_ratio must be within (0, 1]")
        return self


class ReportSettings(BaseModel):
    """Change report layout."""

    columns: list[str] = Field(
        default_factory=lambda: [
            "WO nr",
            "Description",
            "Activity log",
            "Updated",
            "Comment / last update (previous)",
            "Comment / last update (new)",
        ]
    )
    days_window: int = 2
    delimiter: str = ";"
    include_bom: bool = True

    @field_validator("delimiter")
    @classmethod
    def _single_char(cls, value: str) -> str:
        if len(value) != 1:
            raise ValueError("delimiter must be a single character")
        return value


class TrackerConfig(BaseModel):
    """Top-level configuration shared by every run."""

    endpoints: SourceEndpoints = Field(default_factory=SourceEndpoints)
    fetch: FetchSettings = Field(default_factory=FetchSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    report: ReportSettings = Field(default_factory=ReportSettings)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    default_mode: RunModeSetting = RunModeSetting.REPORT
    drop_recent: int = 0
    enable_progress_bar: bool = True
    outputs_dir: Path = Field(default=Path("data/outputs"))

    @field_validator("outputs_dir", mode="before")
    @classmethod
    def _coerce_dirs(cls, value: Any) -> Path:
        return Path(value)

    @field_validator("drop_recent")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("drop_recent must be >= 0")
        return value

    def resolved_path(self, path: Path, base_dir: Path) -> Path:
        """Return ``path`` anchored at ``base_dir`` when it is relative."""

        if not path.is_absolute():
            return (base_dir / path).resolve()
        return path


__all__ = [
    "FetchSettings",
    "ReportSettings",
    "RunModeSetting",
    "ScheduleConfig",
    "ScheduleType",
    "SourceEndpoints",
    "StoreSettings",
    "TrackerConfig",
]
