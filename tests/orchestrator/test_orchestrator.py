from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterable

import pytest

from intelli_tracker.engine import ThreadPoolManager
from intelli_tracker.engine.record_store import STORE_KEY
from intelli_tracker.engine.snapshots import SNAPSHOT_PREFIX
from intelli_tracker.models import DetailResult, ListRow, LogEntry
from intelli_tracker.orchestrator import (
    COMMENTS_LATEST_KEY,
    DIFF_LATEST_KEY,
    RUN_COMPLETED,
    RUN_FAILED,
    STORE_UPDATED,
    CollectionOrchestrator,
    ImportAnnotations,
    ListingDelivered,
    RunMode,
    RunState,
    StartRun,
)

E1 = LogEntry(timestamp="2024-05-01 10:00", author="alice", kind="Comment", text="scheduled")
E2 = LogEntry(timestamp="2024-05-02 10:00", author="alice", kind="Comment", text="on site")


class FakeLister:
    def __init__(self, rows: Iterable[ListRow], ready_after: int = 0, error: Exception | None = None) -> None:
        self.rows = list(rows)
        self.ready_after = ready_after
        self.error = error
        self.checks = 0
        self.listings = 0

    def is_ready(self) -> bool:
        self.checks += 1
        return self.checks > self.ready_after

    def fetch_summaries(self) -> list[ListRow]:
        self.listings += 1
        if self.error is not None:
            raise self.error
        return list(self.rows)


class FakeExtractor:
    def __init__(self, details: dict[str, DetailResult], failing: Iterable[str] = ()) -> None:
        self.details = details
        self.failing = set(failing)
        self.requested: list[str] = []
        self.hook: Callable[[str], None] | None = None

    def fetch_detail(self, item_id: str) -> DetailResult:
        self.requested.append(item_id)
        if self.hook is not None:
            self.hook(item_id)
        if item_id in self.failing:
            raise RuntimeError("page unavailable")
        return self.details[item_id]


def rows(*ids: str) -> list[ListRow]:
    return [
        ListRow(id=i, fields={"WO nr": f"WO-{i}", "Description": f"Task {i}", "Due date": "2024-06-01"}, status="Open")
        for i in ids
    ]


@pytest.fixture
def pools() -> Iterable[ThreadPoolManager]:
    manager = ThreadPoolManager()
    yield manager
    manager.shutdown()


@pytest.fixture
def build(sample_config, kv_store, clock, tmp_path: Path, pools):
    def _build(lister, extractor, **overrides) -> CollectionOrchestrator:
        return CollectionOrchestrator(
            config=sample_config(**overrides),
            kv=kv_store,
            lister=lister,
            extractor=extractor,
            outputs_dir=tmp_path / "outputs",
            thread_pool=pools,
            clock=clock,
        )

    return _build


def labels(kv_store) -> dict[str, str]:
    return {row["ID"]: row["Updated"] for row in kv_store.get(DIFF_LATEST_KEY)}


def test_first_run_reports_everything_new(build, kv_store) -> None:
    extractor = FakeExtractor({
        "A": DetailResult(id="A", status="Open", activity_log=[E1]),
        "B": DetailResult(id="B", status="In progress", activity_log=[]),
    })
    orchestrator = build(FakeLister(rows("A", "B"), ready_after=1), extractor)
    events: list[str] = []
    orchestrator.subscribe(lambda event, summary: events.append(event))

    summary = orchestrator.trigger(RunMode.REPORT)

    assert summary.ok
    assert summary.rows == 2
    assert summary.changed == 2
    assert summary.failures == []
    assert summary.report_path is not None and summary.report_path.exists()
    assert summary.report_path.name == f"updates_{summary.snapshot_timestamp}.csv"
    assert labels(kv_store) == {"A": "New", "B": "New"}
    assert kv_store.get(f"diff_{summary.snapshot_timestamp}") == kv_store.get(DIFF_LATEST_KEY)
    assert sorted(extractor.requested) == ["A", "B"]
    assert set(kv_store.get(STORE_KEY)["records"]) == {"A", "B"}
    assert events == [RUN_COMPLETED]
    assert orchestrator.state is RunState.IDLE


def test_vanished_item_is_fetched_and_classified(build, kv_store, clock) -> None:
    extractor = FakeExtractor({
        "A": DetailResult(id="A", status="Open", activity_log=[E1]),
        "B": DetailResult(id="B", status="Open", activity_log=[]),
    })
    lister = FakeLister(rows("A", "B"))
    orchestrator = build(lister, extractor)
    orchestrator.trigger(RunMode.STORE)

    clock.advance(3600)
    lister.rows = rows("A")
    extractor.details["A"] = DetailResult(id="A", status="Open", activity_log=[E2, E1])
    extractor.details["B"] = DetailResult(id="B", status="Cancelled: duplicate")
    extractor.requested.clear()
    summary = orchestrator.trigger(RunMode.STORE)

    assert sorted(extractor.requested) == ["A", "B"]
    assert labels(kv_store) == {"A": "Activity log", "B": "Cancelled"}
    records = kv_store.get(STORE_KEY)["records"]
    assert records["B"]["inactive"] is True
    assert records["B"]["status"] == "Cancelled: duplicate"
    assert records["A"]["inactive"] is False
    assert summary.changed == 2


def test_source_not_ready_leaves_store_untouched(build, kv_store) -> None:
    lister = FakeLister(rows("A"), ready_after=99)
    orchestrator = build(lister, FakeExtractor({}))
    events: list[str] = []
    orchestrator.subscribe(lambda event, summary: events.append(event))

    summary = orchestrator.trigger()

    assert summary.ok is False
    assert "not ready" in summary.error
    assert lister.checks == 3
    assert lister.listings == 0
    assert kv_store.get(STORE_KEY) is None
    assert kv_store.keys(SNAPSHOT_PREFIX) == []
    assert events == [RUN_FAILED]
    assert orchestrator.state is RunState.IDLE


def test_listing_failure_aborts_without_mutation(build, kv_store) -> None:
    orchestrator = build(FakeLister([], error=RuntimeError("list page 500")), FakeExtractor({}))
    summary = orchestrator.trigger()
    assert summary.ok is False
    assert summary.error == "list page 500"
    assert kv_store.get(STORE_KEY) is None
    assert kv_store.get(DIFF_LATEST_KEY) is None


def test_per_item_failure_does_not_abort(build, kv_store) -> None:
    extractor = FakeExtractor({"B": DetailResult(id="B", status="Open")}, failing=["A"])
    orchestrator = build(FakeLister(rows("A", "B")), extractor)

    summary = orchestrator.trigger(RunMode.STORE)

    assert summary.ok
    assert summary.failures == ["A"]
    assert labels(kv_store) == {"A": "New", "B": "New"}
    assert kv_store.get(STORE_KEY)["records"]["A"]["status"] == "Open"


def test_trigger_while_running_is_ignored(build) -> None:
    extractor = FakeExtractor({"A": DetailResult(id="A", status="Open")})
    orchestrator = build(FakeLister(rows("A")), extractor)
    nested: list[object] = []
    extractor.hook = lambda item_id: nested.append(orchestrator.handle(StartRun()))

    summary = orchestrator.trigger()

    assert summary.ok
    assert nested == [None]


def test_duplicate_listing_is_ignored(build, kv_store) -> None:
    extractor = FakeExtractor({"A": DetailResult(id="A", status="Open")})
    orchestrator = build(FakeLister(rows("A")), extractor)
    accepted: list[bool] = []

    def push_again(item_id: str) -> None:
        run_id = orchestrator.current_run_id
        accepted.append(orchestrator.handle(ListingDelivered(run_id, rows("Z"))))

    extractor.hook = push_again
    orchestrator.trigger()

    assert accepted == [False]
    assert orchestrator.current_run_id is None
    assert labels(kv_store) == {"A": "New"}
    assert orchestrator.deliver_listing("unknown-run", rows("Z")) is False


def test_store_mode_notifies_without_report(build, tmp_path: Path) -> None:
    extractor = FakeExtractor({"A": DetailResult(id="A", status="Open")})
    orchestrator = build(FakeLister(rows("A")), extractor)
    events: list[tuple[str, str]] = []
    orchestrator.subscribe(lambda event, summary: events.append((event, summary.mode.value)))

    summary = orchestrator.trigger("store")

    assert summary.report_path is None
    assert events == [(RUN_COMPLETED, "store"), (STORE_UPDATED, "store")]
    assert not (tmp_path / "outputs").exists() or not list((tmp_path / "outputs").glob("*.csv"))


def test_drop_recent_resurfaces_newest_entries(build, kv_store, clock) -> None:
    extractor = FakeExtractor({"A": DetailResult(id="A", status="Open", activity_log=[E2, E1])})
    orchestrator = build(FakeLister(rows("A")), extractor)

    first = orchestrator.trigger(RunMode.STORE, drop_recent=1)
    saved = kv_store.get(f"{SNAPSHOT_PREFIX}{first.snapshot_timestamp:016d}")
    assert len(saved["rows"]["A"]["activity_log"]) == 1
    assert len(kv_store.get(DIFF_LATEST_KEY)[0]["Activity log"]) == 1

    clock.advance(60)
    orchestrator.trigger(RunMode.STORE)
    assert labels(kv_store) == {"A": "Activity log"}


def test_imported_comments_seed_previous_annotation(build, kv_store, clock) -> None:
    extractor = FakeExtractor({"A": DetailResult(id="A", status="Open", activity_log=[E1])})
    orchestrator = build(FakeLister(rows("A")), extractor)
    orchestrator.trigger(RunMode.STORE)

    imported = orchestrator.handle(
        ImportAnnotations('"ID";"Comment / last update (new)"\r\n"A";"waiting on vendor"\r\n')
    )
    assert imported.comments_latest == {"A": "waiting on vendor"}
    assert kv_store.get(COMMENTS_LATEST_KEY) == {"A": "waiting on vendor"}

    clock.advance(60)
    orchestrator.trigger(RunMode.STORE)
    latest = kv_store.get(DIFF_LATEST_KEY)
    assert latest[0]["Comment / last update (previous)"] == "waiting on vendor"
    assert latest[0]["Updated"] == ""


def test_unknown_command_rejected(build) -> None:
    orchestrator = build(FakeLister([]), FakeExtractor({}))
    with pytest.raises(TypeError):
        orchestrator.handle("start")
