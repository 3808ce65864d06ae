"""Relational store for the story corpus on SQLite (aiosqlite).

Single interface for: settings, stories, source mappings, tags, reports.
Vectors live in the same database file but are owned by SqliteVecIndex.
"""

from __future__ import annotations

import asyncio
import json

import aiosqlite

from storyindex.db.connection import Database
from storyindex.db.models import (
    CorpusStatus,
    DuplicateGroup,
    QualityStatus,
    SourceRecord,
    Story,
    normalize_tags,
)
from storyindex.db.schema import initialize
from storyindex.services.interfaces import RelationalStore
from storyindex.utils.errors import StorageError
from storyindex.utils.logging import get_logger

logger = get_logger(__name__)

_STORY_COLUMNS = """
    story_id, canon_hash, raw_hash, source_path, status, status_notes, source_count,
    canon_text_source, extract_method, title, author, summary_short, summary_long,
    genre, tone, setting, tags_json, themes_json, content_notes_json,
    word_count, chunk_count, text_key, chunks_key, created_at, updated_at
"""

_UPSERT_STORY = """
INSERT INTO stories (
    story_id, canon_hash, raw_hash, source_path, status, status_notes, source_count,
    canon_text_source, extract_method, title, author, summary_short, summary_long,
    genre, tone, setting, tags_json, themes_json, content_notes_json,
    word_count, chunk_count, text_key, chunks_key, updated_at
)
VALUES (
    ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?,
    COALESCE(?, datetime('now'))
)
ON CONFLICT(story_id) DO UPDATE SET
    canon_hash = excluded.canon_hash,
    raw_hash = excluded.raw_hash,
    source_path = excluded.source_path,
    status = excluded.status,
    status_notes = excluded.status_notes,
    source_count = excluded.source_count,
    canon_text_source = excluded.canon_text_source,
    extract_method = excluded.extract_method,
    title = excluded.title,
    author = excluded.author,
    summary_short = excluded.summary_short,
    summary_long = excluded.summary_long,
    genre = excluded.genre,
    tone = excluded.tone,
    setting = excluded.setting,
    tags_json = excluded.tags_json,
    themes_json = excluded.themes_json,
    content_notes_json = excluded.content_notes_json,
    word_count = excluded.word_count,
    chunk_count = excluded.chunk_count,
    text_key = excluded.text_key,
    chunks_key = excluded.chunks_key,
    updated_at = excluded.updated_at
"""

_UPSERT_SOURCE = """
INSERT OR REPLACE INTO story_sources (
    source_path, story_id, source_type, extract_method, raw_hash, ingested_at, title_from_source
)
VALUES (?, ?, ?, ?, ?, COALESCE(?, datetime('now')), ?)
"""

_SOURCE_COLUMNS = (
    "source_path, story_id, source_type, extract_method, raw_hash, ingested_at, title_from_source"
)

_DUPLICATE_GROUPS = """
SELECT
    s.story_id,
    s.canon_hash,
    s.source_count,
    s.title,
    COALESCE(GROUP_CONCAT(ss.source_path, char(10)), '') AS sample_source_paths
FROM stories s
LEFT JOIN story_sources ss ON ss.story_id = s.story_id
WHERE s.source_count > 1
GROUP BY s.story_id, s.canon_hash, s.source_count, s.title
ORDER BY s.source_count DESC, s.title ASC
LIMIT ?
"""

_SAMPLE_PATHS = 5


class SqliteRepository(RelationalStore):
    """Data access layer for stories, sources, tags and settings.

    Owns one long-lived aiosqlite connection. Multi-statement writes hold
    ``_write_lock`` so concurrent pipeline tasks never commit each other's
    half-finished work.
    """

    def __init__(self, db_path: str, *, conn: aiosqlite.Connection | None = None) -> None:
        """Initialise with a database path, or an already-open connection.

        Args:
            db_path: SQLite file holding the corpus.
            conn: Optional open connection (shared with SqliteVecIndex).
        """
        self._db = Database(db_path)
        self._conn = conn
        self._owns_conn = conn is None
        self._write_lock = asyncio.Lock()

    @property
    def write_lock(self) -> asyncio.Lock:
        return self._write_lock

    @property
    def connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StorageError("Repository used before initialize()", provider_name="sqlite")
        return self._conn

    async def initialize(self) -> None:
        if self._conn is None:
            self._conn = await self._db.connect()
        await initialize(self._conn)
        logger.debug("corpus_db_initialized", path=str(self._db.db_path))

    async def close(self) -> None:
        if self._conn is not None and self._owns_conn:
            await self._conn.close()
        self._conn = None

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    async def get_settings(self) -> dict[str, str]:
        async with self.connection.execute("SELECT key, value FROM settings") as cur:
            rows = await cur.fetchall()
        return {row["key"]: row["value"] for row in rows}

    async def put_settings(self, values: dict[str, str]) -> None:
        async with self._write_lock:
            await self.connection.executemany(
                """
                INSERT INTO settings (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                [(k, str(v)) for k, v in values.items()],
            )
            await self.connection.commit()

    # ------------------------------------------------------------------
    # Stories
    # ------------------------------------------------------------------

    async def get_story(self, story_id: str) -> Story | None:
        async with self.connection.execute(
            f"SELECT {_STORY_COLUMNS} FROM stories WHERE story_id = ?", (story_id,)
        ) as cur:
            row = await cur.fetchone()
        return _row_to_story(row) if row else None

    async def get_story_by_canon_hash(self, canon_hash: str) -> Story | None:
        async with self.connection.execute(
            f"SELECT {_STORY_COLUMNS} FROM stories WHERE canon_hash = ? LIMIT 1", (canon_hash,)
        ) as cur:
            row = await cur.fetchone()
        return _row_to_story(row) if row else None

    async def upsert_story(self, story: Story) -> None:
        """Insert or update *story*; ``created_at`` survives updates.

        Args:
            story: Story to persist; its tags are normalized before storage.
        """
        async with self._write_lock:
            await self.connection.execute(
                _UPSERT_STORY,
                (
                    story.story_id,
                    story.canon_hash,
                    story.raw_hash,
                    story.source_path,
                    QualityStatus(story.status).value,
                    story.status_notes,
                    story.source_count,
                    story.canon_text_source,
                    story.extract_method,
                    story.title,
                    story.author,
                    story.summary_short,
                    story.summary_long,
                    story.genre,
                    story.tone,
                    story.setting,
                    json.dumps(normalize_tags(story.tags)),
                    json.dumps(story.themes),
                    json.dumps(story.content_notes),
                    story.word_count,
                    story.chunk_count,
                    story.text_key,
                    story.chunks_key,
                    story.updated_at,
                ),
            )
            await self.connection.commit()

    async def delete_story_if_orphan(self, story_id: str) -> Story | None:
        """Delete *story_id* when it has no sources left.

        Returns:
            The deleted Story (so callers can clean its blobs and vectors),
            or None if the story still has sources or did not exist.
        """
        count = await self.refresh_source_count(story_id)
        if count > 0:
            return None
        story = await self.get_story(story_id)
        if story is None:
            return None
        async with self._write_lock:
            await self.connection.execute("DELETE FROM stories WHERE story_id = ?", (story_id,))
            await self.connection.commit()
        logger.info("orphan_story_deleted", story_id=story_id, title=story.title)
        return story

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    async def get_source(self, source_path: str) -> SourceRecord | None:
        async with self.connection.execute(
            f"SELECT {_SOURCE_COLUMNS} FROM story_sources WHERE source_path = ?", (source_path,)
        ) as cur:
            row = await cur.fetchone()
        return _row_to_source(row) if row else None

    async def list_sources(self) -> list[SourceRecord]:
        async with self.connection.execute(
            f"SELECT {_SOURCE_COLUMNS} FROM story_sources ORDER BY source_path"
        ) as cur:
            rows = await cur.fetchall()
        return [_row_to_source(r) for r in rows]

    async def upsert_source(self, source: SourceRecord) -> None:
        """Map ``source.source_path`` to ``source.story_id``.

        One row per path: a path that previously pointed at another story is
        re-pointed, not duplicated.
        """
        async with self._write_lock:
            await self.connection.execute(
                _UPSERT_SOURCE,
                (
                    source.source_path,
                    source.story_id,
                    source.source_type,
                    source.extract_method,
                    source.raw_hash,
                    source.ingested_at,
                    source.title_from_source,
                ),
            )
            await self.connection.commit()

    async def refresh_source_count(self, story_id: str) -> int:
        async with self._write_lock:
            async with self.connection.execute(
                "SELECT COUNT(*) FROM story_sources WHERE story_id = ?", (story_id,)
            ) as cur:
                count = (await cur.fetchone())[0]
            await self.connection.execute(
                "UPDATE stories SET source_count = ? WHERE story_id = ?", (count, story_id)
            )
            await self.connection.commit()
        return count

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    async def replace_story_tags(self, story_id: str, tags: list[str]) -> None:
        """Replace every tag association of *story_id* with *tags* (normalized)."""
        clean = normalize_tags(tags)
        async with self._write_lock:
            await self.connection.execute("DELETE FROM story_tags WHERE story_id = ?", (story_id,))
            await self.connection.executemany(
                "INSERT OR IGNORE INTO tags (tag) VALUES (?)", [(t,) for t in clean]
            )
            await self.connection.executemany(
                "INSERT OR REPLACE INTO story_tags (story_id, tag) VALUES (?, ?)",
                [(story_id, t) for t in clean],
            )
            await self.connection.commit()

    async def get_story_tags(self, story_id: str) -> list[str]:
        async with self.connection.execute(
            "SELECT tag FROM story_tags WHERE story_id = ? ORDER BY tag", (story_id,)
        ) as cur:
            rows = await cur.fetchall()
        return [r["tag"] for r in rows]

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    async def get_duplicate_groups(self, limit: int = 500) -> list[DuplicateGroup]:
        """Stories reached from more than one source, most-duplicated first."""
        async with self.connection.execute(_DUPLICATE_GROUPS, (limit,)) as cur:
            rows = await cur.fetchall()
        return [
            DuplicateGroup(
                story_id=row["story_id"],
                canon_hash=row["canon_hash"] or "",
                source_count=row["source_count"],
                title=row["title"],
                sample_source_paths=sorted(
                    p for p in row["sample_source_paths"].split("\n") if p
                )[:_SAMPLE_PATHS],
            )
            for row in rows
        ]

    async def status(self) -> CorpusStatus:
        async with self.connection.execute(
            """
            SELECT COUNT(*) AS story_count,
                   COALESCE(SUM(word_count), 0) AS total_words,
                   MAX(updated_at) AS latest_update
            FROM stories
            """
        ) as cur:
            totals = await cur.fetchone()
        async with self.connection.execute(
            "SELECT status, COUNT(*) AS n FROM stories GROUP BY status ORDER BY status"
        ) as cur:
            by_status = {row["status"]: row["n"] for row in await cur.fetchall()}
        async with self.connection.execute(
            "SELECT COUNT(DISTINCT tag) FROM story_tags"
        ) as cur:
            tag_count = (await cur.fetchone())[0]

        return CorpusStatus(
            story_count=totals["story_count"],
            total_words=totals["total_words"],
            tag_count=tag_count,
            flagged_count=sum(n for s, n in by_status.items() if s != QualityStatus.OK.value),
            latest_update=totals["latest_update"],
            counts_by_status=by_status,
        )


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _row_to_story(row: aiosqlite.Row) -> Story:
    return Story(
        story_id=row["story_id"],
        canon_hash=row["canon_hash"],
        raw_hash=row["raw_hash"],
        source_path=row["source_path"],
        status=QualityStatus(row["status"]),
        status_notes=row["status_notes"],
        source_count=row["source_count"],
        canon_text_source=row["canon_text_source"],
        extract_method=row["extract_method"],
        title=row["title"],
        author=row["author"],
        summary_short=row["summary_short"],
        summary_long=row["summary_long"],
        genre=row["genre"],
        tone=row["tone"],
        setting=row["setting"],
        tags=json.loads(row["tags_json"]),
        themes=json.loads(row["themes_json"]),
        content_notes=json.loads(row["content_notes_json"]),
        word_count=row["word_count"],
        chunk_count=row["chunk_count"],
        text_key=row["text_key"],
        chunks_key=row["chunks_key"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_source(row: aiosqlite.Row) -> SourceRecord:
    return SourceRecord(
        source_path=row["source_path"],
        story_id=row["story_id"],
        source_type=row["source_type"],
        extract_method=row["extract_method"],
        raw_hash=row["raw_hash"],
        ingested_at=row["ingested_at"],
        title_from_source=row["title_from_source"],
    )
