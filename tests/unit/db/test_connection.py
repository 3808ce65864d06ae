"""Tests for the async Database connection layer."""

from __future__ import annotations

from storyindex.db.connection import Database


async def test_connect_creates_file_and_parents(tmp_path):
    db_path = tmp_path / "nested" / ".storyindex.db"
    conn = await Database(db_path).connect()
    await conn.close()
    assert db_path.exists()


async def test_sqlite_vec_loads(tmp_path):
    conn = await Database(tmp_path / "c.db").connect()
    try:
        async with conn.execute("SELECT vec_version()") as cur:
            version = (await cur.fetchone())[0]
    finally:
        await conn.close()
    assert version.startswith("v")


async def test_foreign_keys_enabled(tmp_path):
    conn = await Database(tmp_path / "c.db").connect()
    try:
        async with conn.execute("PRAGMA foreign_keys") as cur:
            assert (await cur.fetchone())[0] == 1
    finally:
        await conn.close()


async def test_rows_are_addressable_by_name(tmp_path):
    conn = await Database(tmp_path / "c.db").connect()
    try:
        async with conn.execute("SELECT 1 AS one") as cur:
            assert (await cur.fetchone())["one"] == 1
    finally:
        await conn.close()


async def test_context_manager_closes(tmp_path):
    db = Database(tmp_path / "c.db")
    async with db as conn:
        async with conn.execute("SELECT 1") as cur:
            assert (await cur.fetchone())[0] == 1
    assert db._conn is None
