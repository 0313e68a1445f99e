"""
SQLite Store
============

In-process store built from the schema context. Used for dry-run planning,
local development and tests.
"""

import asyncio
import sqlite3
import threading
from typing import Any, Iterable, Optional

from query_guard.schema_context import SchemaContext
from query_guard.store.base import RelationalStore, StoreQueryError


class SQLiteStore(RelationalStore):
    """SQLite-backed store with one table per schema table."""

    def __init__(self, schema: SchemaContext | None = None, path: str = ":memory:") -> None:
        self.schema = schema or SchemaContext()
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._create_schema_tables()

    def _create_schema_tables(self) -> None:
        """Create empty tables matching the schema."""
        cursor = self._conn.cursor()
        for table_name, table_info in self.schema.tables.items():
            columns = []
            for col_name in table_info["columns"]:
                col_type = table_info.get("types", {}).get(col_name, "TEXT")
                columns.append(f'"{col_name}" {col_type}')
            cursor.execute(
                f'CREATE TABLE IF NOT EXISTS "{table_name}" ({", ".join(columns)})'
            )
        self._conn.commit()

    def seed(self, table: str, rows: Iterable[dict[str, Any]]) -> None:
        """Insert fixture rows into a table."""
        with self._lock:
            cursor = self._conn.cursor()
            for row in rows:
                cols = ", ".join(f'"{c}"' for c in row)
                marks = ", ".join("?" for _ in row)
                cursor.execute(
                    f'INSERT INTO "{table}" ({cols}) VALUES ({marks})', list(row.values())
                )
            self._conn.commit()

    def _run(self, sql: str, params: Optional[dict[str, Any]]) -> list[dict[str, Any]]:
        with self._lock:
            try:
                cursor = self._conn.execute(sql, params or {})
                return [dict(row) for row in cursor.fetchall()]
            except (sqlite3.OperationalError, sqlite3.ProgrammingError) as e:
                raise StoreQueryError(str(e)) from e

    async def execute(
        self, sql: str, params: Optional[dict[str, Any]] = None
    ) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self._run, sql, params)

    async def explain(self, sql: str) -> None:
        await asyncio.to_thread(self._run, f"EXPLAIN {sql}", None)

    def close(self) -> None:
        self._conn.close()
