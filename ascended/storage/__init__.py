"""Storage - database handle and repositories"""

from __future__ import annotations

import sqlite3
from typing import Any

from ascended.storage.database import Database, retry_on_db_lock


class BaseRepository:
    """Base class for database repositories with common query helpers."""

    def __init__(self, database: Database, table_name: str) -> None:
        if not isinstance(table_name, str) or not table_name.replace("_", "").isalnum():
            raise ValueError(f"Invalid table name: {table_name}")
        self.database = database
        self.table_name = table_name

    def query_one(self, query: str, params: tuple[Any, ...] | None = None) -> sqlite3.Row | None:
        with self.database.connection() as conn:
            return conn.execute(query, params or ()).fetchone()

    def query_all(self, query: str, params: tuple[Any, ...] | None = None) -> list[sqlite3.Row]:
        with self.database.connection() as conn:
            return conn.execute(query, params or ()).fetchall()

    @retry_on_db_lock()
    def execute(self, query: str, params: tuple[Any, ...] | None = None) -> int | None:
        """
        Execute a write query (INSERT, UPDATE, DELETE)

        Returns:
            Last inserted row ID

        Side Effects:
            - Writes to the database and commits (rolls back on error)
        """
        with self.database.transaction() as conn:
            cursor = conn.execute(query, params or ())
            return cursor.lastrowid


__all__ = ["BaseRepository", "Database", "retry_on_db_lock"]
