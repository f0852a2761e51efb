from __future__ import annotations

import sqlite3

import pytest

from intelli_tracker.infra import NamespacedStore, SQLiteManager


def test_sqlite_manager_initialises_schema(tmp_path) -> None:
    manager = SQLiteManager()
    conn = manager.connect(tmp_path / "tracker.db")
    columns = conn.execute("PRAGMA table_info(kv_store)").fetchall()
    assert {row["name"] for row in columns} == {"key", "value", "updated_at"}
    manager.close_all()


def test_sqlite_manager_reset(tmp_path) -> None:
    manager = SQLiteManager()
    path = tmp_path / "tracker.db"
    store = NamespacedStore(manager, path)
    store.set("a", 1)
    manager.reset(path)
    assert not path.exists()
    assert NamespacedStore(manager, path).get("a") is None
    manager.close_all()


def test_namespaced_store_json_values(kv_store: NamespacedStore) -> None:
    kv_store.set("record_store", {"records": {"1": {"id": "1"}}})
    assert kv_store.get("record_store") == {"records": {"1": {"id": "1"}}}
    assert kv_store.get("missing", {}) == {}
    kv_store.set("record_store", {"records": {}})
    assert kv_store.get("record_store") == {"records": {}}


def test_namespaced_store_prefix_queries(kv_store: NamespacedStore) -> None:
    kv_store.set_many({"snapshot_2": [2], "snapshot_1": [1], "snap": 0, "diff_1": []})
    assert kv_store.keys("snapshot_") == ["snapshot_1", "snapshot_2"]
    assert dict(kv_store.items("snapshot_")) == {"snapshot_1": [1], "snapshot_2": [2]}
    kv_store.delete("snapshot_1")
    assert kv_store.keys("snapshot_") == ["snapshot_2"]


def test_namespaced_store_prefix_is_literal(kv_store: NamespacedStore) -> None:
    kv_store.set_many({"a_b": 1, "axb": 2})
    assert kv_store.keys("a_") == ["a_b"]


def test_values_are_stored_compactly(kv_store: NamespacedStore) -> None:
    kv_store.set("k", {"a": [1, 2], "b": "é"})
    assert kv_store.raw_size("k") == len('{"a":[1,2],"b":"é"}'.encode("utf-8"))
    assert kv_store.raw_size("missing") is None


def test_transaction_commits_once_and_rolls_back_on_error(kv_store: NamespacedStore) -> None:
    with kv_store.transaction():
        kv_store.set("a", 1)
        with kv_store.transaction():
            kv_store.set("b", 2)
    assert (kv_store.get("a"), kv_store.get("b")) == (1, 2)

    with pytest.raises(RuntimeError):
        with kv_store.transaction():
            kv_store.set("a", 10)
            raise RuntimeError("abort")
    assert kv_store.get("a") == 1


def test_transaction_excludes_writers_on_other_connections(tmp_path) -> None:
    path = tmp_path / "tracker.db"
    first_manager = SQLiteManager()
    second_manager = SQLiteManager(timeout=0.05)
    first = NamespacedStore(first_manager, path)
    second = NamespacedStore(second_manager, path)

    with first.transaction():
        first.set("record_store", {"records": {}})
        with pytest.raises(sqlite3.OperationalError):
            with second.transaction():
                second.set("record_store", {"records": {"lost": {}}})

    assert second.get("record_store") == {"records": {}}
    first_manager.close_all()
    second_manager.close_all()
