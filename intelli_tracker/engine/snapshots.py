"""Append-only snapshot history kept in the namespaced store."""

from __future__ import annotations

import time
from typing import Callable, Iterable, Mapping

from ..infra.storage import NamespacedStore
from ..models import Snapshot, SnapshotRow

SNAPSHOT_PREFIX = "snapshot_"


def snapshot_key(timestamp: int) -> str:
    # zero padded so lexical key order matches numeric order
    return f"{SNAPSHOT_PREFIX}{timestamp:016d}"


def _timestamp_from_key(key: str) -> int:
    return int(key[len(SNAPSHOT_PREFIX):])


def trim_recent_entries(rows: Mapping[str, SnapshotRow], count: int) -> dict[str, SnapshotRow]:
    """Drop the newest ``count`` log entries per row (logs are newest-first)."""

    if count <= 0:
        return dict(rows)
    trimmed: dict[str, SnapshotRow] = {}
    for item_id, row in rows.items():
        if len(row.activity_log) > count:
            row = row.model_copy(update={"activity_log": row.activity_log[count:]})
        trimmed[item_id] = row
    return trimmed


class SnapshotRepository:
    """Persist and query point-in-time snapshots; never overwrites."""

    def __init__(self, kv: NamespacedStore, clock: Callable[[], float] = time.time) -> None:
        self.kv = kv
        self.clock = clock

    def timestamps(self) -> list[int]:
        return sorted(_timestamp_from_key(key) for key in self.kv.keys(SNAPSHOT_PREFIX))

    def save(self, rows: Mapping[str, SnapshotRow], timestamp: int | None = None) -> Snapshot:
        existing = self.timestamps()
        ts = int(self.clock() * 1000) if timestamp is None else timestamp
        if existing and ts <= existing[-1]:
            ts = existing[-1] + 1
        snapshot = Snapshot(timestamp=ts, rows=dict(rows))
        self.kv.set(snapshot_key(ts), snapshot.model_dump(mode="json"))
        return snapshot

    def load(self, timestamp: int) -> Snapshot | None:
        payload = self.kv.get(snapshot_key(timestamp))
        if payload is None:
            return None
        return Snapshot.model_validate(payload)

    def latest(self, before: int | None = None) -> Snapshot | None:
        candidates = [ts for ts in self.timestamps() if before is None or ts < before]
        if not candidates:
            return None
        return self.load(candidates[-1])

    def iter_snapshots(self, exclude: Iterable[int] = ()) -> Iterable[Snapshot]:
        skipped = set(exclude)
        for key, payload in self.kv.items(SNAPSHOT_PREFIX):
            if _timestamp_from_key(key) in skipped:
                continue
            yield Snapshot.model_validate(payload)

    def known_log_keys_by_id(self, exclude: Iterable[int] = ()) -> dict[str, set[str]]:
        """Union of log identity keys per item across every retained snapshot."""

        known: dict[str, set[str]] = {}
        for snapshot in self.iter_snapshots(exclude):
            for item_id, row in snapshot.rows.items():
                keys = known.setdefault(item_id.strip(), set())
                keys.update(entry.identity_key for entry in row.activity_log)
        return known


__all__ = [
    "SNAPSHOT_PREFIX",
    "SnapshotRepository",
    "snapshot_key",
    "trim_recent_entries",
]
