"""Async SQLite connection layer with the sqlite-vec extension."""

from __future__ import annotations

from pathlib import Path

import aiosqlite
import sqlite_vec


class Database:
    """Corpus SQLite database with sqlite-vec vector search support."""

    def __init__(self, db_path: Path | str) -> None:
        """Store the database path. Call connect() to open the connection.

        Args:
            db_path: Path to the SQLite database file (created if missing).
        """
        self.db_path = Path(db_path)
        self._conn: aiosqlite.Connection | None = None

    async def connect(self) -> aiosqlite.Connection:
        """Open a connection, load sqlite-vec, and return the connection."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = await aiosqlite.connect(str(self.db_path))
        conn.row_factory = aiosqlite.Row
        await conn.enable_load_extension(True)
        await conn.load_extension(sqlite_vec.loadable_path())
        await conn.enable_load_extension(False)
        await conn.execute("PRAGMA foreign_keys = ON")
        await conn.execute("PRAGMA journal_mode = WAL")
        return conn

    async def __aenter__(self) -> aiosqlite.Connection:
        """Open the database and return the connection (async context manager support)."""
        self._conn = await self.connect()
        return self._conn

    async def __aexit__(self, *args: object) -> None:
        """Close the connection when leaving the context manager."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
