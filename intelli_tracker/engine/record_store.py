"""Size-bounded persistent record store with user annotations."""

from __future__ import annotations

import time
from typing import Callable, Iterable

import structlog

from ..errors import AnnotationValidationError, RecordNotFound
from ..infra.storage import NamespacedStore, encode
from ..models import (
    Annotation,
    DetailResult,
    ListRow,
    Record,
    StoredLogEntry,
    StoreState,
    normalize_id,
)
from .dates import most_recent_date_string, parse_loose

STORE_KEY = "record_store"
DEFAULT_MAX_BYTES = 4 * 1024 * 1024


def estimate_size(state: StoreState) -> int:
    return len(encode(state.model_dump(mode="json")).encode("utf-8"))


class KeyedRecordStore:
    """Mapping of item ID to current record state, persisted as one blob.

    Every read-modify-write runs inside one store transaction, so annotation
    edits from another thread or CLI process cannot interleave with a run's
    finalize step.
    The store is a cache of recently seen items: when the serialized blob grows
    past ``max_bytes`` the least recently seen records are evicted.
    """

    def __init__(
        self,
        kv: NamespacedStore,
        max_bytes: int = DEFAULT_MAX_BYTES,
        trim_ratio: float = 0.8,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.kv = kv
        self.max_bytes = max_bytes
        self.trim_ratio = trim_ratio
        self.clock = clock
        self.logger = structlog.get_logger("intelli_tracker.store")

    # ------------------------------------------------------------------
    def get(self) -> StoreState:
        payload = self.kv.get(STORE_KEY)
        if not payload:
            return StoreState()
        return StoreState.model_validate(payload)

    def put(self, state: StoreState) -> None:
        with self.kv.transaction():
            size = estimate_size(state)
            if size > self.max_bytes:
                self._trim(state, size)
            self.kv.set(STORE_KEY, state.model_dump(mode="json"))

    def _trim(self, state: StoreState, size: int) -> None:
        target = self.max_bytes * self.trim_ratio
        victims = sorted(state.records.values(), key=lambda rec: rec.last_seen_at or 0.0)
        evicted: list[str] = []
        for victim in victims:
            if size <= target:
                break
            del state.records[victim.id]
            evicted.append(victim.id)
            size = estimate_size(state)
        self.logger.info(
            "store_trimmed",
            evicted=len(evicted),
            size=size,
            budget=self.max_bytes,
        )

    # ------------------------------------------------------------------
    def upsert_from_summaries(self, rows: Iterable[ListRow]) -> set[str]:
        with self.kv.transaction():
            state = self.get()
            seen = self._upsert(state, rows)
            self.put(state)
            return seen

    def mark_inactive_except(self, active_ids: Iterable[str]) -> None:
        with self.kv.transaction():
            state = self.get()
            self._mark_inactive(state, active_ids)
            self.put(state)

    def merge_detail(self, item_id: str, detail: DetailResult) -> None:
        item_id = normalize_id(item_id)
        if not item_id:
            return
        with self.kv.transaction():
            state = self.get()
            self._merge(state, item_id, detail)
            self.put(state)

    def mark_scraped(self, at: float | None = None) -> None:
        with self.kv.transaction():
            state = self.get()
            state.last_scrape_at = self.clock() if at is None else at
            self.put(state)

    def reconcile_run(
        self,
        rows: Iterable[ListRow],
        details: dict[str, DetailResult],
    ) -> set[str]:
        """Apply a finished run's listing and details in a single write.

        Details of items missing from ``rows`` update their stored record but
        leave it inactive and keep its ``last_seen_at``.
        """

        with self.kv.transaction():
            state = self.get()
            seen = self._upsert(state, rows)
            self._mark_inactive(state, seen)
            for item_id, detail in sorted(details.items()):
                item_id = normalize_id(item_id)
                if item_id in seen:
                    self._merge(state, item_id, detail)
                elif item_id in state.records:
                    self._merge(state, item_id, detail, touch=False)
            state.last_scrape_at = self.clock()
            self.put(state)
            return seen

    def _upsert(self, state: StoreState, rows: Iterable[ListRow]) -> set[str]:
        seen: set[str] = set()
        now = self.clock()
        for row in rows:
            item_id = normalize_id(row.id)
            if not item_id:
                continue
            seen.add(item_id)
            record = state.records.get(item_id) or Record(id=item_id)
            for name, value in row.fields.items():
                if value:
                    record.fields[name] = value
                else:
                    record.fields.setdefault(name, "")
            if row.status:
                record.status = row.status
            record.inactive = False
            record.last_seen_at = now
            state.records[item_id] = record
        return seen

    def _mark_inactive(self, state: StoreState, active_ids: Iterable[str]) -> None:
        active = {normalize_id(item_id) for item_id in active_ids}
        now = self.clock()
        for item_id, record in state.records.items():
            if item_id in active:
                continue
            record.inactive = True
            if not record.last_seen_at:
                record.last_seen_at = now

    def _merge(self, state: StoreState, item_id: str, detail: DetailResult, touch: bool = True) -> None:
        record = state.records.get(item_id) or Record(id=item_id)
        record.status = detail.status or record.status
        record.activity_log = [StoredLogEntry.from_entry(entry) for entry in detail.activity_log]
        record.fields.update({k: v for k, v in detail.fields.items() if v})
        if touch:
            record.last_seen_at = self.clock()
        state.records[item_id] = record

    # ------------------------------------------------------------------
    def apply_annotation_from_log_selection(
        self, item_id: str, selected_keys: Iterable[str]
    ) -> Annotation:
        """Install a new current annotation built from selected log entries.

        All selected entries must share one author; otherwise the store is left
        untouched and :class:`AnnotationValidationError` is raised.
        """

        item_id = normalize_id(item_id)
        keys = list(selected_keys)
        with self.kv.transaction():
            state = self.get()
            record = state.records.get(item_id)
            if record is None:
                raise RecordNotFound(item_id)
            wanted = set(keys)
            items = [entry for entry in record.activity_log if entry.key in wanted]
            if not items:
                raise AnnotationValidationError("No log entries selected")
            authors = {entry.author for entry in items}
            if len(authors) > 1:
                raise AnnotationValidationError(
                    f"Selected entries have different authors: {', '.join(sorted(authors))}"
                )
            annotation = Annotation(
                text="\n\n".join(entry.text for entry in items).strip(),
                author=items[0].author,
                reference_date=most_recent_date_string(entry.timestamp for entry in items),
                source_log_keys=keys,
                changed_at=self.clock(),
            )
            record.last_update.replace(annotation)
            self.put(state)
            return annotation

    def edit_annotation(
        self,
        item_id: str,
        *,
        text: str | None = None,
        author: str | None = None,
        reference_date: str | None = None,
        create_new: bool = False,
    ) -> Annotation:
        item_id = normalize_id(item_id)
        with self.kv.transaction():
            state = self.get()
            record = state.records.get(item_id)
            if record is None:
                raise RecordNotFound(item_id)
            base = record.last_update.current or Annotation()
            date_value = (reference_date or "").strip()
            updated = Annotation(
                text=(base.text if text is None else text).strip(),
                author=(base.author if author is None else author).strip(),
                reference_date=date_value or base.reference_date,
                source_log_keys=list(base.source_log_keys),
                changed_at=self.clock(),
            )
            if create_new:
                record.last_update.replace(updated, keep_placeholder=True)
            else:
                record.last_update.current = updated
            self.put(state)
            return updated


def records_needing_update(state: StoreState) -> list[str]:
    """IDs whose newest log entry is newer than the current annotation date."""

    stale: list[str] = []
    for item_id, record in state.records.items():
        current = record.last_update.current
        if current is None or not current.reference_date:
            continue
        annotated = parse_loose(current.reference_date)
        latest = max(
            (d for d in (parse_loose(e.timestamp) for e in record.activity_log) if d is not None),
            default=None,
        )
        if annotated and latest and latest > annotated:
            stale.append(item_id)
    return stale


__all__ = ["KeyedRecordStore", "STORE_KEY", "estimate_size", "records_needing_update"]
