"""Storage - repositories over the FloWorx SQLite database"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from floworx.infrastructure.database import db_transaction, get_db_connection


def loads_json(value: str | None, default: Any) -> Any:
    """Decode a JSON TEXT column, falling back to default for NULL/empty."""
    if not value:
        return default
    return json.loads(value)


class BaseRepository:
    """Base class for database repositories with common CRUD operations."""

    def __init__(self, table_name: str) -> None:
        if not isinstance(table_name, str) or not table_name.replace("_", "").isalnum():
            raise ValueError(f"Invalid table name: {table_name}")
        self.table_name = table_name

    @contextmanager
    def _get_conn(self) -> Generator[sqlite3.Connection, None, None]:
        with get_db_connection() as conn:
            yield conn

    def query_one(self, query: str, params: tuple[Any, ...] | None = None) -> sqlite3.Row | None:
        with self._get_conn() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params or ())
            return cursor.fetchone()

    def query_all(self, query: str, params: tuple[Any, ...] | None = None) -> list[sqlite3.Row]:
        with self._get_conn() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params or ())
            return cursor.fetchall()

    def execute(self, query: str, params: tuple[Any, ...] | None = None) -> int | None:
        """
        Execute a write query (INSERT, UPDATE, DELETE)

        Returns:
            Last inserted row ID

        Side Effects:
            - Writes to the table named in the query
            - Commits on success, rolls back on error (via db_transaction)
        """
        with db_transaction() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params or ())
            return cursor.lastrowid


__all__ = ["BaseRepository", "loads_json"]
