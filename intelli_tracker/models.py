"""Domain models for tracked work items, snapshots and diff rows."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

STATUS_FIELD = "Status"
ACTIVITY_LOG_FIELD = "Activity log"
UPDATED_FIELD = "Updated"
PREVIOUS_COMMENT_FIELD = "Comment / last update (previous)"
NEW_COMMENT_FIELD = "Comment / last update (new)"
DUE_DATE_FIELD = "Due date"
PROCEDURES_FIELD = "Procedures progress"
ID_FIELD = "ID"

# Columns that are derived per run and never count as item changes.
META_FIELDS = frozenset({UPDATED_FIELD, PREVIOUS_COMMENT_FIELD, NEW_COMMENT_FIELD})
# Columns filled from the detail page; they follow the activity log in a row.
DETAIL_FIELDS = frozenset({PROCEDURES_FIELD})


def normalize_id(value: Any) -> str:
    return "" if value is None else str(value).strip()


class LogEntry(BaseModel):
    """Immutable activity-log line; identical iff all four fields match."""

    model_config = ConfigDict(frozen=True)

    timestamp: str = ""
    author: str = ""
    kind: str = ""
    text: str = ""

    @property
    def identity_key(self) -> str:
        return "||".join((self.timestamp, self.author, self.kind, self.text))

    def formatted(self) -> str:
        parts = [self.timestamp, self.author, self.kind, self.text]
        return " — ".join(part for part in parts if part)


class StoredLogEntry(LogEntry):
    """Log entry as kept in the record store, with its identity key attached."""

    key: str = ""

    @classmethod
    def from_entry(cls, entry: LogEntry) -> "StoredLogEntry":
        return cls(
            timestamp=entry.timestamp,
            author=entry.author,
            kind=entry.kind,
            text=entry.text,
            key=entry.identity_key,
        )


class Annotation(BaseModel):
    """User-authored note attached to a record."""

    text: str = ""
    author: str = ""
    reference_date: str = ""
    source_log_keys: list[str] = Field(default_factory=list)
    changed_at: float = 0.0


class AnnotationHistory(BaseModel):
    """Current annotation plus superseded versions, newest first."""

    current: Annotation | None = None
    history: list[Annotation] = Field(default_factory=list)

    def replace(self, annotation: Annotation, *, keep_placeholder: bool = False) -> None:
        if self.current is not None:
            self.history.insert(0, self.current)
        elif keep_placeholder:
            self.history.insert(0, Annotation())
        self.current = annotation


class Record(BaseModel):
    """Current reconciled state of one external item."""

    id: str
    fields: dict[str, str] = Field(default_factory=dict)
    status: str = ""
    inactive: bool = False
    last_seen_at: float | None = None
    activity_log: list[StoredLogEntry] = Field(default_factory=list)
    last_update: AnnotationHistory = Field(default_factory=AnnotationHistory)


class StoreState(BaseModel):
    """Full persisted record store blob."""

    records: dict[str, Record] = Field(default_factory=dict)
    last_scrape_at: float | None = None


class SnapshotRow(BaseModel):
    """Flat per-item view captured in a snapshot."""

    id: str
    fields: dict[str, str] = Field(default_factory=dict)
    status: str = ""
    activity_log: list[LogEntry] = Field(default_factory=list)
    extra: dict[str, str] = Field(default_factory=dict)

    def compare_view(self) -> dict[str, Any]:
        """Plain (non-log) fields keyed by display name."""

        view: dict[str, Any] = dict(self.fields)
        view[STATUS_FIELD] = self.status
        return view

    def field_order(self) -> list[str]:
        """Compared field names in row order: listing columns, status, log, detail columns."""

        listed = [name for name in self.fields if name not in DETAIL_FIELDS]
        detail = [name for name in self.fields if name in DETAIL_FIELDS]
        return [*listed, STATUS_FIELD, ACTIVITY_LOG_FIELD, *detail]


class Snapshot(BaseModel):
    """Immutable point-in-time capture of all items."""

    model_config = ConfigDict(frozen=True)

    timestamp: int
    rows: dict[str, SnapshotRow] = Field(default_factory=dict)


@dataclass(slots=True)
class ListRow:
    """Summary row delivered by the list phase."""

    id: str
    fields: dict[str, str] = field(default_factory=dict)
    status: str | None = None


@dataclass(slots=True)
class DetailResult:
    """Per-item detail delivered by a page extractor."""

    id: str
    status: str = ""
    activity_log: list[LogEntry] = field(default_factory=list)
    fields: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class DiffRow:
    """One run's classification of how an item changed."""

    id: str
    fields: dict[str, str]
    status: str
    activity_log: list[LogEntry]
    change_label: str
    previous_annotation: str = ""
    new_annotation: str = ""

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {ID_FIELD: self.id}
        payload.update(self.fields)
        payload[STATUS_FIELD] = self.status
        payload[ACTIVITY_LOG_FIELD] = [entry.model_dump() for entry in self.activity_log]
        payload[UPDATED_FIELD] = self.change_label
        payload[PREVIOUS_COMMENT_FIELD] = self.previous_annotation
        payload[NEW_COMMENT_FIELD] = self.new_annotation
        return payload


__all__ = [
    "ACTIVITY_LOG_FIELD",
    "Annotation",
    "AnnotationHistory",
    "DETAIL_FIELDS",
    "DUE_DATE_FIELD",
    "DetailResult",
    "DiffRow",
    "ID_FIELD",
    "ListRow",
    "LogEntry",
    "META_FIELDS",
    "NEW_COMMENT_FIELD",
    "PREVIOUS_COMMENT_FIELD",
    "PROCEDURES_FIELD",
    "Record",
    "STATUS_FIELD",
    "Snapshot",
    "SnapshotRow",
    "StoreState",
    "StoredLogEntry",
    "UPDATED_FIELD",
    "normalize_id",
]
