"""SQLite-backed namespaced key/value storage for snapshots, diffs and the record store."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from threading import Lock, RLock
from typing import Any, Dict, Iterable, Iterator, Mapping


class SQLiteManager:
    """Manage SQLite connections with basic schema guarantees."""

    def __init__(self, timeout: float = 30.0) -> None:
        self.timeout = timeout
        self._connections: Dict[Path, sqlite3.Connection] = {}
        self._lock = Lock()

    def connect(self, path: Path) -> sqlite3.Connection:
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            if path not in self._connections:
                conn = sqlite3.connect(path, timeout=self.timeout, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                self._connections[path] = conn
                self._ensure_schema(conn)
            return self._connections[path]

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT
            )
            """
        )
        conn.commit()

    def reset(self, path: Path) -> None:
        with self._lock:
            if path in self._connections:
                self._connections[path].close()
                del self._connections[path]
        if path.exists():
            path.unlink()

    def close_all(self) -> None:
        with self._lock:
            for conn in self._connections.values():
                conn.close()
            self._connections.clear()


def encode(value: Any) -> str:
    """Serialise a value exactly as it is written to the ``value`` column."""

    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


class NamespacedStore:
    """JSON values addressed by string keys in a single SQLite database.

    Writes made inside :meth:`transaction` share one ``BEGIN IMMEDIATE``
    transaction, which also excludes writers in other processes using the
    same database file.
    """

    def __init__(self, manager: SQLiteManager, db_path: Path) -> None:
        self.manager = manager
        self.db_path = db_path
        self._lock = RLock()
        self._in_transaction = False
        self._conn = self.manager.connect(db_path)

    @contextmanager
    def transaction(self) -> Iterator["NamespacedStore"]:
        with self._lock:
            if self._in_transaction:
                yield self
                return
            self._conn.execute("BEGIN IMMEDIATE")
            self._in_transaction = True
            try:
                yield self
            except BaseException:
                self._conn.rollback()
                raise
            else:
                self._conn.commit()
            finally:
                self._in_transaction = False

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            row = self._conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        if row is None:
            return default
        return json.loads(row["value"])

    def raw_size(self, key: str) -> int | None:
        """Stored byte length of ``key``'s value."""

        with self._lock:
            row = self._conn.execute(
                "SELECT length(CAST(value AS BLOB)) AS size FROM kv_store WHERE key = ?", (key,)
            ).fetchone()
        return None if row is None else row["size"]

    def set(self, key: str, value: Any) -> None:
        self.set_many({key: value})

    def set_many(self, values: Mapping[str, Any]) -> None:
        payload = [(key, encode(value)) for key, value in values.items()]
        with self._lock:
            self._conn.executemany(
                "INSERT OR REPLACE INTO kv_store(key, value, updated_at) VALUES (?, ?, datetime('now'))",
                payload,
            )
            self._commit()

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT key FROM kv_store WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            ).fetchall()
        return [row["key"] for row in rows]

    def items(self, prefix: str = "") -> Iterable[tuple[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT key, value FROM kv_store WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            ).fetchall()
        return [(row["key"], json.loads(row["value"])) for row in rows]

    def delete(self, key: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            self._commit()

    def reset(self) -> None:
        with self._lock:
            self.manager.reset(self.db_path)
            self._conn = self.manager.connect(self.db_path)

    def _commit(self) -> None:
        if not self._in_transaction:
            self._conn.commit()



__all__ = ["NamespacedStore", "SQLiteManager", "encode"]
