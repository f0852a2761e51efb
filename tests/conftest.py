"""Pytest configuration providing a run report and shared fixtures."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Callable, Iterable

import pytest

from intelli_tracker.config import (
    ConfigLocator,
    ConfigRepository,
    FetchSettings,
    SourceEndpoints,
    TrackerConfig,
)
from intelli_tracker.engine import KeyedRecordStore, SnapshotRepository
from intelli_tracker.infra import NamespacedStore, SQLiteManager
from intelli_tracker.models import LogEntry


class QAPlugin:
    """Collect failed test ids into ``reports/test_report.json``."""

    def __init__(self, config: pytest.Config) -> None:
        self.config = config
        self.failed_cases: list[str] = []

    def pytest_runtest_logreport(self, report: pytest.TestReport) -> None:  # pragma: no cover
        if report.when == "call" and report.failed:
            self.failed_cases.append(report.nodeid)

    def pytest_sessionfinish(self, session: pytest.Session, exitstatus: int) -> None:  # pragma: no cover
        reports_dir = Path(self.config.rootpath) / "reports"
        reports_dir.mkdir(parents=True, exist_ok=True)
        (reports_dir / "test_report.json").write_text(
            json.dumps({"failed_cases": self.failed_cases}, ensure_ascii=False, indent=2),
            encoding="utf-8",
        )


def pytest_configure(config: pytest.Config) -> None:  # pragma: no cover
    plugin = QAPlugin(config)
    config.pluginmanager.register(plugin, "qa-plugin")
    config._qa_plugin = plugin  # type: ignore[attr-defined]


def pytest_unconfigure(config: pytest.Config) -> None:  # pragma: no cover
    plugin = getattr(config, "_qa_plugin", None)
    if plugin is not None:
        config.pluginmanager.unregister(plugin)
        delattr(config, "_qa_plugin")


@pytest.fixture(autouse=True, scope="session")
def tracker_home(tmp_path_factory: pytest.TempPathFactory) -> Iterable[Path]:
    home = tmp_path_factory.mktemp("tracker-home")
    previous = os.environ.get("INTELLI_TRACKER_HOME")
    os.environ["INTELLI_TRACKER_HOME"] = str(home)
    yield home
    if previous is None:
        os.environ.pop("INTELLI_TRACKER_HOME", None)
    else:
        os.environ["INTELLI_TRACKER_HOME"] = previous


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sample_config(tmp_path: Path) -> Callable[..., TrackerConfig]:
    def _builder(**overrides: Any) -> TrackerConfig:
        base: dict[str, Any] = {
            "endpoints": SourceEndpoints(
                list_url="https://wo.example/list",
                detail_url_template="https://wo.example/wo/{id}",
            ),
            "fetch": FetchSettings(
                concurrency=20,
                fetch_timeout=2.0,
                readiness_interval=0.0,
                readiness_attempts=3,
                request_timeout=1.0,
            ),
            "enable_progress_bar": False,
            "outputs_dir": tmp_path / "outputs",
        }
        base.update(overrides)
        return TrackerConfig(**base)

    return _builder


@pytest.fixture
def kv_store(tmp_path: Path) -> Iterable[NamespacedStore]:
    manager = SQLiteManager()
    yield NamespacedStore(manager, tmp_path / "tracker.db")
    manager.close_all()


@pytest.fixture
def record_store(kv_store: NamespacedStore, clock: FakeClock) -> KeyedRecordStore:
    return KeyedRecordStore(kv_store, clock=clock)


@pytest.fixture
def snapshot_repository(kv_store: NamespacedStore, clock: FakeClock) -> SnapshotRepository:
    return SnapshotRepository(kv_store, clock=clock)


@pytest.fixture
def log_entry() -> Callable[..., LogEntry]:
    def _builder(text: str, when: str = "2024-05-01 10:00", author: str = "alice", kind: str = "Comment") -> LogEntry:
        return LogEntry(timestamp=when, author=author, kind=kind, text=text)

    return _builder


@pytest.fixture
def temp_config_repository(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterable[ConfigRepository]:
    monkeypatch.setenv("INTELLI_TRACKER_HOME", str(tmp_path))
    locator = ConfigLocator(project_root=tmp_path)
    repository = ConfigRepository(locator)
    yield repository


def _list_row(item_id: str, number: str, due: str, description: str, status: str) -> str:
    return (
        '<tr class="k-master-row">'
        f'<td data-column="ID"><a href="/wo/{item_id}">{item_id}</a></td>'
        f'<td data-column="Number">{number}</td>'
        f'<td data-column="DueDate"><span>{due}</span></td>'
        f'<td data-column="Task_Refinement">{description}</td>'
        f'<td data-column="WOStatus">{status}</td>'
        "</tr>"
    )


@pytest.fixture
def list_page() -> Callable[..., str]:
    """Build a list page from ``(id, number, due, description, status)`` tuples."""

    def _builder(rows: Iterable[tuple[str, str, str, str, str]]) -> str:
        body = "".join(_list_row(*row) for row in rows)
        return f"<html><body><table><tbody>{body}</tbody></table></body></html>"

    return _builder


@pytest.fixture
def detail_page() -> Callable[..., str]:
    """Build a detail page with a status pair, an activity grid and a procedures grid."""

    def _builder(
        status: str = "Open",
        entries: Iterable[tuple[str, str, str, str]] = (),
        pager: str | None = None,
        steps: str | None = "2 of 5",
    ) -> str:
        rows = list(entries)
        if rows:
            body = "".join(
                "<tr>" + "".join(f"<td>{cell}</td>" for cell in row) + "</tr>" for row in rows
            )
        else:
            body = '<tr><td colspan="4">No Records Found</td></tr>'
        if pager is None:
            pager = f"1 - {len(rows)} of {len(rows)} items" if rows else ""
        status_html = (
            '<div class="lv-pair"><span class="lv-label">Status</span>'
            f'<span class="lv-value"><span>{status}</span></span></div>'
            if status
            else ""
        )
        procedures = ""
        if steps is not None:
            procedures = (
                '<div data-role="woproceduregrid"><table>'
                '<thead><tr><th data-field="Name">Name</th><th data-field="Steps">Steps</th></tr></thead>'
                f"<tbody><tr><td>Inspection</td><td>{steps}</td></tr></tbody></table></div>"
            )
        return (
            "<html><body>"
            '<div class="lv-pair"><span class="lv-label">Priority</span>'
            '<span class="lv-value"><span>High</span></span></div>'
            f"{status_html}"
            '<div data-role="woactivityloggrid"><table><thead><tr>'
            '<th data-field="ActionDateTime">When</th><th data-field="ActionBy">By</th>'
            '<th data-field="ActionTitle">Type</th><th data-field="Comment">Comment</th>'
            f"</tr></thead><tbody>{body}</tbody></table>"
            f'<span class="k-pager-info">{pager}</span></div>'
            f"{procedures}"
            "</body></html>"
        )

    return _builder
