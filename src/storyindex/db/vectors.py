"""Vector index on sqlite-vec: one vec0 virtual table per embedding model.

vec0 keys rows by integer rowid, so the ``vectors`` table maps each string
vector id (``{story_id}:{chunk_index:05d}``) onto a rowid and keeps the
metadata used for filtering.
"""

from __future__ import annotations

import json
import re
from collections import defaultdict
from typing import Any

import aiosqlite

from storyindex.db.models import VectorMatch, VectorRecord
from storyindex.db.repository import SqliteRepository
from storyindex.services.interfaces import VectorIndex
from storyindex.utils.errors import StorageError
from storyindex.utils.logging import get_logger

logger = get_logger(__name__)

_DIMENSION_RE = re.compile(r"float\[(\d+)\]")

# Candidates fetched per requested match when metadata filters are applied.
_FILTER_OVERSAMPLE = 10


def model_to_slug(model: str) -> str:
    """Convert a provider/model string to a valid table name suffix.

    Examples:
        "openai/text-embedding-3-small" -> "openai_text_embedding_3_small"
        "lm_studio/nomic-embed-text-v1.5" -> "lm_studio_nomic_embed_text_v1_5"
    """
    return re.sub(r"[^a-z0-9]", "_", model.lower())


def vec_table_name(model_slug: str) -> str:
    """Return the full vec table name for a model slug."""
    return f"vec_chunks_{model_slug}"


async def vec_table_dimension(conn: aiosqlite.Connection, table: str) -> int | None:
    """Return the declared dimension of *table*, or None if it does not exist."""
    async with conn.execute(
        "SELECT sql FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ) as cur:
        row = await cur.fetchone()
    if row is None:
        return None
    match = _DIMENSION_RE.search(row[0] or "")
    return int(match.group(1)) if match else None


async def ensure_vec_table(conn: aiosqlite.Connection, model_slug: str, dimensions: int) -> str:
    """Create vec_chunks_{model_slug} virtual table if it doesn't already exist.

    Args:
        conn: Active database connection (sqlite-vec must be loaded).
        model_slug: Sanitized model identifier (use model_to_slug() to generate).
        dimensions: Embedding vector dimensions (e.g. 1536 for text-embedding-3-small).

    Returns:
        The table name (vec_chunks_{model_slug}).
    """
    if not re.fullmatch(r"[a-z0-9_]+", model_slug):
        raise ValueError(f"Invalid model_slug '{model_slug}'; use model_to_slug() to sanitize.")
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    table = vec_table_name(model_slug)
    if await vec_table_dimension(conn, table) is None:
        await conn.execute(f"CREATE VIRTUAL TABLE {table} USING vec0(embedding float[{dimensions}])")
        await conn.commit()
    return table


class SqliteVecIndex(VectorIndex):
    """VectorIndex sharing the repository's connection and write lock."""

    def __init__(self, repository: SqliteRepository, model_name: str) -> None:
        self._repo = repository
        self._slug = model_to_slug(model_name)
        self._table: str | None = None
        self._dimension: int | None = None

    @property
    def _conn(self) -> aiosqlite.Connection:
        return self._repo.connection

    async def prepare(self, dimension: int) -> None:
        """Create the model's vec table; rebuild it if its dimension changed.

        A dimension change for the same model name only reaches this point
        under ``--force-reindex``; the old vectors cannot be queried against
        the new ones, so they are dropped.
        """
        table = vec_table_name(self._slug)
        existing = await vec_table_dimension(self._conn, table)
        if existing is not None and existing != dimension:
            async with self._repo.write_lock:
                await self._conn.execute(f"DROP TABLE {table}")
                await self._conn.execute("DELETE FROM vectors WHERE model_slug = ?", (self._slug,))
                await self._conn.commit()
            logger.warning(
                "vec_table_recreated", table=table, old_dimension=existing, new_dimension=dimension
            )
        self._table = await ensure_vec_table(self._conn, self._slug, dimension)
        self._dimension = dimension

    async def upsert(self, records: list[VectorRecord]) -> int:
        if not records:
            return 0
        if self._table is None or self._dimension is None:
            raise StorageError("Vector index used before prepare()", provider_name="sqlite-vec")

        # last record wins for a repeated id
        records = list({r.id: r for r in records}.values())
        for record in records:
            if len(record.values) != self._dimension:
                raise StorageError(
                    f"Vector {record.id} has {len(record.values)} dimensions, "
                    f"index expects {self._dimension}",
                    provider_name="sqlite-vec",
                )

        async with self._repo.write_lock:
            try:
                await self._delete_rows(await self._rows_for_ids([r.id for r in records]))
                for record in records:
                    async with self._conn.execute(
                        """
                        INSERT INTO vectors (id, story_id, chunk_index, model_slug, metadata)
                        VALUES (?, ?, ?, ?, ?)
                        """,
                        (
                            record.id,
                            record.story_id,
                            record.chunk_index,
                            self._slug,
                            json.dumps(record.metadata),
                        ),
                    ) as cur:
                        rowid = cur.lastrowid
                    await self._conn.execute(
                        f"INSERT INTO {self._table}(rowid, embedding) VALUES (?, ?)",
                        (rowid, json.dumps(record.values)),
                    )
                await self._conn.commit()
            except aiosqlite.Error as exc:
                await self._conn.rollback()
                raise StorageError(f"Vector upsert failed: {exc}", provider_name="sqlite-vec") from exc
        return len(records)

    async def delete_ids(self, ids: list[str]) -> int:
        if not ids:
            return 0
        async with self._repo.write_lock:
            deleted = await self._delete_rows(await self._rows_for_ids(ids))
            await self._conn.commit()
        return deleted

    async def delete_by_story(self, story_id: str, *, min_chunk_index: int = 0) -> int:
        async with self._conn.execute(
            "SELECT vec_rowid, model_slug FROM vectors WHERE story_id = ? AND chunk_index >= ?",
            (story_id, min_chunk_index),
        ) as cur:
            rows = [(r[0], r[1]) for r in await cur.fetchall()]
        if not rows:
            return 0
        async with self._repo.write_lock:
            deleted = await self._delete_rows(rows)
            await self._conn.commit()
        return deleted

    async def count(self, story_id: str | None = None) -> int:
        if story_id is None:
            sql, params = "SELECT COUNT(*) FROM vectors", ()
        else:
            sql, params = "SELECT COUNT(*) FROM vectors WHERE story_id = ?", (story_id,)
        async with self._conn.execute(sql, params) as cur:
            return (await cur.fetchone())[0]

    async def query(
        self,
        vector: list[float],
        top_k: int = 10,
        filters: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        """Nearest-neighbour search. Returns matches sorted by distance.

        Filters are exact matches on metadata keys (``genre``, ``storyStatus``,
        ...); candidates are oversampled then filtered.
        """
        if self._table is None:
            raise StorageError("Vector index used before prepare()", provider_name="sqlite-vec")
        k = top_k * _FILTER_OVERSAMPLE if filters else top_k
        async with self._conn.execute(
            f"""
            SELECT v.id, v.metadata, t.distance
            FROM {self._table} t
            JOIN vectors v ON v.vec_rowid = t.rowid
            WHERE t.embedding MATCH ? AND k = ?
            ORDER BY t.distance
            """,
            (json.dumps(vector), k),
        ) as cur:
            rows = await cur.fetchall()

        matches: list[VectorMatch] = []
        for row in rows:
            metadata = json.loads(row["metadata"])
            if filters and any(metadata.get(key) != value for key, value in filters.items()):
                continue
            matches.append(VectorMatch(id=row["id"], distance=row["distance"], metadata=metadata))
            if len(matches) >= top_k:
                break
        return matches

    # ------------------------------------------------------------------
    # Internals (caller holds the write lock)
    # ------------------------------------------------------------------

    async def _rows_for_ids(self, ids: list[str]) -> list[tuple[int, str]]:
        placeholders = ",".join("?" * len(ids))
        async with self._conn.execute(
            f"SELECT vec_rowid, model_slug FROM vectors WHERE id IN ({placeholders})", ids
        ) as cur:
            return [(r[0], r[1]) for r in await cur.fetchall()]

    async def _delete_rows(self, rows: list[tuple[int, str]]) -> int:
        by_slug: dict[str, list[int]] = defaultdict(list)
        for rowid, slug in rows:
            by_slug[slug].append(rowid)
        for slug, rowids in by_slug.items():
            placeholders = ",".join("?" * len(rowids))
            table = vec_table_name(slug)
            if await vec_table_dimension(self._conn, table) is not None:
                await self._conn.execute(
                    f"DELETE FROM [{table}] WHERE rowid IN ({placeholders})",  # noqa: S608
                    rowids,
                )
            await self._conn.execute(
                f"DELETE FROM vectors WHERE vec_rowid IN ({placeholders})", rowids
            )
        return len(rows)
