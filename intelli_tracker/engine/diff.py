"""Snapshot comparison producing per-item change classifications."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Mapping

from ..models import (
    ACTIVITY_LOG_FIELD,
    META_FIELDS,
    DiffRow,
    Snapshot,
    SnapshotRow,
)

NEW_LABEL = "New"
COMPLETED_LABEL = "Completed"
CANCELLED_LABEL = "Cancelled"

_CANCEL_PATTERN = re.compile(r"cancel", re.IGNORECASE)


def is_cancelled(status: object) -> bool:
    """True for "Cancelled", "Canceled", "Cancelled: duplicate" and similar."""

    return isinstance(status, str) and bool(_CANCEL_PATTERN.search(status))


@dataclass(frozen=True, slots=True)
class DiffContext:
    """Cross-run inputs for :func:`diff_snapshots`.

    ``inactive_status`` holds statuses fetched this run for items that left
    the live list, ``previous_annotations`` seeds the carried-forward comment
    text, and ``known_log_keys`` is the union of log identity keys per item over
    every older retained snapshot.
    """

    inactive_status: Mapping[str, str] = field(default_factory=dict)
    previous_annotations: Mapping[str, str] = field(default_factory=dict)
    known_log_keys: Mapping[str, frozenset[str] | set[str]] = field(default_factory=dict)


def latest_log_text(row: SnapshotRow | None) -> str:
    if row is None or not row.activity_log:
        return ""
    return row.activity_log[0].formatted()


def activity_log_has_new(
    item_id: str, previous: SnapshotRow | None, current: SnapshotRow, context: DiffContext
) -> bool:
    if not current.activity_log:
        return False
    seen = set(context.known_log_keys.get(item_id, ()))
    if previous is not None:
        seen.update(entry.identity_key for entry in previous.activity_log)
    return any(entry.identity_key not in seen for entry in current.activity_log)


def changed_fields(
    item_id: str, previous: SnapshotRow, current: SnapshotRow, context: DiffContext
) -> list[str]:
    before = previous.compare_view()
    after = current.compare_view()
    changed: list[str] = []
    for name in current.field_order():
        if name == ACTIVITY_LOG_FIELD:
            if activity_log_has_new(item_id, previous, current, context):
                changed.append(name)
        elif name not in META_FIELDS and before.get(name) != after.get(name):
            changed.append(name)
    return changed


def _row(row: SnapshotRow, label: str, previous_annotation: str) -> DiffRow:
    return DiffRow(
        id=row.id,
        fields=dict(row.fields),
        status=row.status,
        activity_log=list(row.activity_log),
        change_label=label,
        previous_annotation=previous_annotation,
        new_annotation="",
    )


def diff_snapshots(
    previous: Snapshot | Mapping[str, SnapshotRow] | None,
    current: Snapshot | Mapping[str, SnapshotRow],
    context: DiffContext | None = None,
) -> list[DiffRow]:
    """Classify every item of ``current`` and every item that left since ``previous``.

    Pure and deterministic: output order follows ``current`` then ``previous``
    iteration order and no input is mutated.
    """

    context = context or DiffContext()
    prev_rows = _rows(previous)
    curr_rows = _rows(current)
    rows: list[DiffRow] = []

    for item_id, row in curr_rows.items():
        key = item_id.strip()
        seed = context.previous_annotations.get(key, "")
        before = prev_rows.get(item_id)
        if before is None:
            rows.append(_row(row, NEW_LABEL, seed))
            continue
        changed = changed_fields(key, before, row, context)
        rows.append(_row(row, ",".join(changed), seed or latest_log_text(before)))

    for item_id, row in prev_rows.items():
        if item_id in curr_rows:
            continue
        key = item_id.strip()
        fresh_status = context.inactive_status.get(key)
        if is_cancelled(fresh_status) or is_cancelled(row.status):
            label = CANCELLED_LABEL
        else:
            label = COMPLETED_LABEL
        seed = context.previous_annotations.get(key, "")
        rows.append(_row(row, label, seed or latest_log_text(row)))

    return rows


def _rows(value: Snapshot | Mapping[str, SnapshotRow] | None) -> Mapping[str, SnapshotRow]:
    if value is None:
        return {}
    if isinstance(value, Snapshot):
        return value.rows
    return value


__all__ = [
    "CANCELLED_LABEL",
    "COMPLETED_LABEL",
    "DiffContext",
    "NEW_LABEL",
    "activity_log_has_new",
    "changed_fields",
    "diff_snapshots",
    "is_cancelled",
    "latest_log_text",
]
