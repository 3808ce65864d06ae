"""Forward-only migration runner for the corpus database.

Vec tables (vec_chunks_*) are NOT migration-managed; use ensure_vec_table().
"""

from __future__ import annotations

import aiosqlite

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS settings (
    key     TEXT PRIMARY KEY,
    value   TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS stories (
    story_id            TEXT PRIMARY KEY,
    canon_hash          TEXT NOT NULL UNIQUE,
    raw_hash            TEXT NOT NULL,
    source_path         TEXT NOT NULL,
    status              TEXT NOT NULL,
    status_notes        TEXT,
    source_count        INTEGER NOT NULL DEFAULT 1,
    canon_text_source   TEXT NOT NULL DEFAULT '',
    extract_method      TEXT NOT NULL DEFAULT '',
    title               TEXT NOT NULL DEFAULT 'Untitled Story',
    author              TEXT,
    summary_short       TEXT NOT NULL DEFAULT '',
    summary_long        TEXT NOT NULL DEFAULT '',
    genre               TEXT NOT NULL DEFAULT '',
    tone                TEXT NOT NULL DEFAULT '',
    setting             TEXT NOT NULL DEFAULT '',
    tags_json           TEXT NOT NULL DEFAULT '[]',
    themes_json         TEXT NOT NULL DEFAULT '[]',
    content_notes_json  TEXT NOT NULL DEFAULT '[]',
    word_count          INTEGER NOT NULL DEFAULT 0,
    chunk_count         INTEGER NOT NULL DEFAULT 0,
    text_key            TEXT,
    chunks_key          TEXT,
    created_at          DATETIME NOT NULL DEFAULT (datetime('now')),
    updated_at          DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS story_sources (
    source_path         TEXT PRIMARY KEY,
    story_id            TEXT NOT NULL REFERENCES stories(story_id) ON DELETE CASCADE,
    source_type         TEXT NOT NULL,
    extract_method      TEXT NOT NULL,
    raw_hash            TEXT NOT NULL,
    ingested_at         DATETIME NOT NULL DEFAULT (datetime('now')),
    title_from_source   TEXT
);

CREATE TABLE IF NOT EXISTS tags (
    tag     TEXT PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS story_tags (
    story_id    TEXT NOT NULL REFERENCES stories(story_id) ON DELETE CASCADE,
    tag         TEXT NOT NULL REFERENCES tags(tag),
    PRIMARY KEY (story_id, tag)
);

CREATE INDEX IF NOT EXISTS idx_story_sources_story ON story_sources(story_id);
CREATE INDEX IF NOT EXISTS idx_stories_status ON stories(status);
"""

# Vector id registry: maps string ids onto the integer rowids vec0 requires.
_V2_SQL = """
CREATE TABLE IF NOT EXISTS vectors (
    vec_rowid   INTEGER PRIMARY KEY AUTOINCREMENT,
    id          TEXT NOT NULL UNIQUE,
    story_id    TEXT NOT NULL,
    chunk_index INTEGER NOT NULL,
    model_slug  TEXT NOT NULL,
    metadata    TEXT NOT NULL DEFAULT '{}'
);

CREATE INDEX IF NOT EXISTS idx_vectors_story ON vectors(story_id);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
    (2, _V2_SQL),
]


async def run_migrations(conn: aiosqlite.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    Vec tables are NOT managed here; use ensure_vec_table() instead.
    """
    await conn.execute(_CREATE_SCHEMA_VERSION)
    await conn.commit()

    async with conn.execute("SELECT MAX(version) FROM schema_version") as cur:
        row = await cur.fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            await conn.executescript(sql)
            await conn.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))
            await conn.commit()
