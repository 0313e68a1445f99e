"""
Store Module
============

Relational store interface and the SQLite-backed implementation.
"""

from query_guard.store.base import RelationalStore, StoreQueryError
from query_guard.store.sqlite import SQLiteStore

__all__ = [
    "RelationalStore",
    "StoreQueryError",
    "SQLiteStore",
]
