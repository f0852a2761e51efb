"""Infra layer utilities (SQLite-backed key/value storage)."""

from .storage import NamespacedStore, SQLiteManager

__all__ = ["NamespacedStore", "SQLiteManager"]
