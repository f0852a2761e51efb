"""Run orchestrator wiring listing, detail fetching, diffing, store reconciliation and export."""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from threading import Lock
from typing import Callable, Iterable

import structlog

from .config import TrackerConfig
from .engine import (
    BatchFetchScheduler,
    DiffContext,
    KeyedRecordStore,
    Lister,
    PageExtractor,
    SnapshotRepository,
    ThreadPoolManager,
    diff_snapshots,
    import_annotations,
)
from .engine.exporter import CsvReportExporter
from .engine.importer import AnnotationImport
from .engine.snapshots import trim_recent_entries
from .errors import DuplicateListing, PerItemFetchFailure, SourceNotReady
from .infra import NamespacedStore
from .logging_conf import run_log
from .models import DetailResult, DiffRow, ListRow, Snapshot, SnapshotRow, normalize_id
from .ui import ProgressActivity, ProgressReporter

DIFF_PREFIX = "diff_"
DIFF_LATEST_KEY = "diff_latest"
COMMENTS_LATEST_KEY = "comments_latest"
NEW_COMMENTS_KEY = "overview_new_comments"

RUN_COMPLETED = "run_completed"
RUN_FAILED = "run_failed"
STORE_UPDATED = "store_updated"


class RunState(str, Enum):
    IDLE = "idle"
    LISTING = "listing"
    FETCHING = "fetching"
    FINALIZING = "finalizing"


class RunMode(str, Enum):
    """What a finished run emits; reconciliation is identical for both."""

    REPORT = "report"
    STORE = "store"


@dataclass(frozen=True, slots=True)
class StartRun:
    mode: RunMode = RunMode.REPORT
    days_window: int | None = None
    drop_recent: int | None = None


@dataclass(frozen=True, slots=True)
class ListingDelivered:
    run_id: str
    rows: list[ListRow]


@dataclass(frozen=True, slots=True)
class ImportAnnotations:
    csv_text: str


Command = StartRun | ListingDelivered | ImportAnnotations


@dataclass(slots=True)
class RunContext:
    """Mutable state of the single active run."""

    run_id: str
    mode: RunMode
    days_window: int
    drop_recent: int
    started_at: float
    list_map: dict[str, ListRow] = field(default_factory=dict)
    target_ids: list[str] = field(default_factory=list)
    vanished_ids: list[str] = field(default_factory=list)
    details: dict[str, DetailResult] = field(default_factory=dict)
    vanished_details: dict[str, DetailResult] = field(default_factory=dict)
    inactive_status: dict[str, str] = field(default_factory=dict)
    failures: dict[str, PerItemFetchFailure] = field(default_factory=dict)
    listing_received: bool = False


@dataclass(slots=True)
class RunSummary:
    run_id: str
    mode: RunMode
    ok: bool
    snapshot_timestamp: int | None = None
    rows: int = 0
    changed: int = 0
    failures: list[str] = field(default_factory=list)
    report_path: Path | None = None
    error: str | None = None


Listener = Callable[[str, RunSummary], None]


class CollectionOrchestrator:
    """Drive one run at a time through listing, fetching and finalizing."""

    def __init__(
        self,
        config: TrackerConfig,
        kv: NamespacedStore,
        lister: Lister,
        extractor: PageExtractor,
        outputs_dir: Path,
        thread_pool: ThreadPoolManager | None = None,
        record_store: KeyedRecordStore | None = None,
        snapshots: SnapshotRepository | None = None,
        progress_factory: Callable[[], ProgressReporter] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.kv = kv
        self.lister = lister
        self.extractor = extractor
        self.outputs_dir = outputs_dir
        self.thread_pool = thread_pool or ThreadPoolManager()
        self.record_store = record_store or KeyedRecordStore(
            kv,
            max_bytes=config.store.max_bytes,
            trim_ratio=config.store.trim_ratio,
            clock=clock,
        )
        self.snapshots = snapshots or SnapshotRepository(kv, clock=clock)
        self.progress_factory = progress_factory or (
            lambda: ProgressReporter(enabled=config.enable_progress_bar)
        )
        self.clock = clock
        self.logger = structlog.get_logger("intelli_tracker.orchestrator")
        self.state = RunState.IDLE
        self._state_lock = Lock()
        self._context: RunContext | None = None
        self._listeners: list[Listener] = []

    @property
    def current_run_id(self) -> str | None:
        """ID of the active run, needed to push its listing with :class:`ListingDelivered`."""

        with self._state_lock:
            return self._context.run_id if self._context is not None else None

    # ------------------------------------------------------------------
    def subscribe(self, callback: Listener) -> None:
        self._listeners.append(callback)

    def handle(self, command: Command):
        match command:
            case StartRun(mode=mode, days_window=days_window, drop_recent=drop_recent):
                return self.trigger(mode, days_window=days_window, drop_recent=drop_recent)
            case ListingDelivered(run_id=run_id, rows=rows):
                return self.deliver_listing(run_id, rows)
            case ImportAnnotations(csv_text=csv_text):
                return self.import_annotations(csv_text)
            case _:
                raise TypeError(f"Unsupported command: {command!r}")

    def trigger(
        self,
        mode: RunMode | str = RunMode.REPORT,
        *,
        days_window: int | None = None,
        drop_recent: int | None = None,
    ) -> RunSummary | None:
        return asyncio.run(self.run(mode, days_window=days_window, drop_recent=drop_recent))

    def import_annotations(self, csv_text: str) -> AnnotationImport:
        imported = import_annotations(csv_text)
        self.kv.set_many(
            {
                NEW_COMMENTS_KEY: imported.new_comments,
                COMMENTS_LATEST_KEY: imported.comments_latest,
            }
        )
        self.logger.info("annotations_imported", items=len(imported.comments_latest))
        return imported

    def deliver_listing(self, run_id: str, rows: Iterable[ListRow]) -> bool:
        """Accept the run's listing once; later deliveries are dropped."""

        with self._state_lock:
            context = self._context
            if context is None or context.run_id != run_id:
                self.logger.warning("listing_for_unknown_run", run_id=run_id)
                return False
            if context.listing_received:
                self.logger.info("duplicate_listing_ignored", error=str(DuplicateListing(run_id)))
                return False
            for row in rows:
                item_id = normalize_id(row.id)
                if item_id:
                    context.list_map[item_id] = row
            context.listing_received = True
            return True

    # ------------------------------------------------------------------
    async def run(
        self,
        mode: RunMode | str = RunMode.REPORT,
        *,
        days_window: int | None = None,
        drop_recent: int | None = None,
    ) -> RunSummary | None:
        mode = RunMode(mode)
        with self._state_lock:
            if self.state is not RunState.IDLE:
                self.logger.info("run_trigger_ignored", state=self.state.value)
                return None
            context = RunContext(
                run_id=uuid.uuid4().hex,
                mode=mode,
                days_window=self.config.report.days_window if days_window is None else days_window,
                drop_recent=self.config.drop_recent if drop_recent is None else drop_recent,
                started_at=self.clock(),
            )
            self._context = context
            self.state = RunState.LISTING

        with run_log(mode.value, context.run_id, started=context.started_at) as log:
            log.info("run_started", days_window=context.days_window, drop_recent=context.drop_recent)
            try:
                try:
                    await self._listing(context, log)
                except Exception as exc:  # noqa: BLE001
                    log.error("run_aborted", phase=RunState.LISTING.value, error=str(exc))
                    summary = RunSummary(run_id=context.run_id, mode=mode, ok=False, error=str(exc))
                    self._notify(RUN_FAILED, summary)
                    return summary

                self._set_state(RunState.FETCHING)
                await self._fetching(context, log)

                self._set_state(RunState.FINALIZING)
                summary = self._finalize(context, log)
            finally:
                with self._state_lock:
                    self.state = RunState.IDLE
                    self._context = None

            log.info(
                "run_completed",
                rows=summary.rows,
                changed=summary.changed,
                failures=len(summary.failures),
                snapshot=summary.snapshot_timestamp,
            )
        self._notify(RUN_COMPLETED, summary)
        if mode is RunMode.STORE:
            self._notify(STORE_UPDATED, summary)
        return summary


    def _set_state(self, state: RunState) -> None:
        with self._state_lock:
            self.state = state

    # ------------------------------------------------------------------
    async def _listing(self, context: RunContext, log: structlog.BoundLogger) -> None:
        activity = ProgressActivity(enabled=self.config.enable_progress_bar)
        activity.start("Waiting for the list source…")
        try:
            await self._await_ready(log)
            if not context.listing_received:
                loop = asyncio.get_running_loop()
                rows = await loop.run_in_executor(
                    self.thread_pool.get("listing", max_workers=1), self.lister.fetch_summaries
                )
                self.deliver_listing(context.run_id, rows)
        finally:
            activity.close()

        previous = self.snapshots.latest()
        current_ids = list(context.list_map)
        previous_ids = list(previous.rows) if previous is not None else []
        context.vanished_ids = [item_id for item_id in previous_ids if item_id not in context.list_map]
        context.target_ids = current_ids + context.vanished_ids
        log.info(
            "listing_received",
            current=len(current_ids),
            vanished=len(context.vanished_ids),
        )

    async def _await_ready(self, log: structlog.BoundLogger) -> None:
        settings = self.config.fetch
        loop = asyncio.get_running_loop()
        executor = self.thread_pool.get("listing", max_workers=1)
        for attempt in range(1, settings.readiness_attempts + 1):
            try:
                ready = await asyncio.wait_for(
                    loop.run_in_executor(executor, self.lister.is_ready),
                    timeout=settings.request_timeout,
                )
            except Exception as exc:  # noqa: BLE001
                log.debug("readiness_check_failed", attempt=attempt, error=str(exc) or type(exc).__name__)
                ready = False
            if ready:
                log.debug("source_ready", attempt=attempt)
                return
            if attempt < settings.readiness_attempts:
                await asyncio.sleep(settings.readiness_interval)
        raise SourceNotReady(settings.readiness_attempts)

    async def _fetching(self, context: RunContext, log: structlog.BoundLogger) -> None:
        settings = self.config.fetch
        scheduler = BatchFetchScheduler(
            self.extractor.fetch_detail,
            width=settings.concurrency,
            timeout=settings.fetch_timeout,
            executor=self.thread_pool.get("details", max_workers=settings.concurrency),
            executor_factory=lambda: self.thread_pool.recycle("details", max_workers=settings.concurrency),
            logger=log,
        )
        deadline = None
        if settings.run_deadline is not None:
            elapsed = self.clock() - context.started_at
            deadline = asyncio.get_running_loop().time() + max(settings.run_deadline - elapsed, 0.0)

        progress = self.progress_factory()
        progress.start(len(context.target_ids))
        try:
            outcome = await scheduler.run(context.target_ids, on_result=progress.advance, deadline=deadline)
        finally:
            progress.close()

        vanished = set(context.vanished_ids)
        for item_id, detail in outcome.results.items():
            if item_id in vanished:
                context.vanished_details[item_id] = detail
                if detail.status:
                    context.inactive_status[item_id] = detail.status
            else:
                context.details[item_id] = detail
        context.failures = outcome.failures

    # ------------------------------------------------------------------
    def _finalize(self, context: RunContext, log: structlog.BoundLogger) -> RunSummary:
        previous = self.snapshots.latest()
        rows = trim_recent_entries(self._snapshot_rows(context, previous), context.drop_recent)
        saved = self.snapshots.save(rows)
        older = [ts for ts in self.snapshots.timestamps() if ts != saved.timestamp]

        diff_context = DiffContext(
            inactive_status=dict(context.inactive_status),
            previous_annotations=self.kv.get(COMMENTS_LATEST_KEY, {}) or {},
            known_log_keys=self.snapshots.known_log_keys_by_id(exclude=[saved.timestamp]),
        )
        diff_rows = diff_snapshots(previous, rows, diff_context)
        payload = [row.as_dict() for row in diff_rows]
        self.kv.set_many({f"{DIFF_PREFIX}{saved.timestamp}": payload, DIFF_LATEST_KEY: payload})
        log.info("diff_computed", rows=len(diff_rows), older_snapshots=len(older))

        self.record_store.reconcile_run(
            context.list_map.values(), {**context.vanished_details, **context.details}
        )

        summary = RunSummary(
            run_id=context.run_id,
            mode=context.mode,
            ok=True,
            snapshot_timestamp=saved.timestamp,
            rows=len(diff_rows),
            changed=sum(1 for row in diff_rows if row.change_label),
            failures=sorted(context.failures),
        )
        if context.mode is RunMode.REPORT:
            summary.report_path = self._write_report(diff_rows, saved.timestamp, context.days_window)
            log.info("report_written", path=str(summary.report_path))
        return summary

    def _snapshot_rows(self, context: RunContext, previous: Snapshot | None) -> dict[str, SnapshotRow]:
        """Current rows; items whose detail fetch failed keep their last known log."""

        before = previous.rows if previous is not None else {}
        rows: dict[str, SnapshotRow] = {}
        for item_id, listed in context.list_map.items():
            detail = context.details.get(item_id)
            fields = dict(listed.fields)
            if detail is not None:
                fields.update({k: v for k, v in detail.fields.items() if v})
                status = detail.status or listed.status or ""
                log = list(detail.activity_log)
            else:
                stale = before.get(item_id)
                status = listed.status or (stale.status if stale else "")
                log = list(stale.activity_log) if stale else []
            rows[item_id] = SnapshotRow(id=item_id, fields=fields, status=status, activity_log=log)
        return rows

    def _write_report(self, rows: list[DiffRow], timestamp: int, days_window: int) -> Path:
        exporter = CsvReportExporter(
            self.outputs_dir,
            self.config.report,
            timestamp,
            days_window=days_window,
            clock=self.clock,
        )
        with exporter:
            exporter.export_many(rows)
        return exporter.path

    def _notify(self, event: str, summary: RunSummary) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, summary)
            except Exception as exc:  # noqa: BLE001
                self.logger.warning("listener_failed", notification=event, error=str(exc))


__all__ = [
    "COMMENTS_LATEST_KEY",
    "CollectionOrchestrator",
    "Command",
    "DIFF_LATEST_KEY",
    "ImportAnnotations",
    "ListingDelivered",
    "NEW_COMMENTS_KEY",
    "RUN_COMPLETED",
    "RUN_FAILED",
    "RunContext",
    "RunMode",
    "RunState",
    "RunSummary",
    "STORE_UPDATED",
    "StartRun",
]
