"""Database schema initialization."""

from __future__ import annotations

import aiosqlite

from storyindex.db.migrations import MIGRATIONS, run_migrations

CURRENT_VERSION = MIGRATIONS[-1][0]


async def initialize(conn: aiosqlite.Connection) -> None:
    """Initialize the database schema via the migration runner (idempotent)."""
    await run_migrations(conn)


async def schema_version(conn: aiosqlite.Connection) -> int:
    """Return the highest applied migration version, 0 for a fresh database."""
    async with conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
    ) as cur:
        if await cur.fetchone() is None:
            return 0
    async with conn.execute("SELECT MAX(version) FROM schema_version") as cur:
        row = await cur.fetchone()
    return row[0] or 0
