"""Persistence orchestrator: settings consistency, story writes, vector batching.

All writes for one file go through :class:`StoryWriter` once every
computation for that file (metadata, chunking, embedding) has succeeded,
so a file that fails mid-pipeline leaves nothing half-written.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from storyindex.config import StorageCfg
from storyindex.db.models import SourceRecord, Story, VectorRecord
from storyindex.services.interfaces import ObjectStore, RelationalStore, VectorIndex
from storyindex.utils.errors import SettingsMismatchError
from storyindex.utils.logging import get_logger

logger = get_logger(__name__)

SETTING_MODEL = "embedding_model_name"
SETTING_DIMENSION = "embedding_dimension"
SETTING_INDEXED_AT = "indexed_at"


def text_key(story_id: str) -> str:
    return f"stories/{story_id}.txt"


def chunks_key(story_id: str) -> str:
    return f"stories/{story_id}.chunks.json"


def original_prefix(story_id: str) -> str:
    return f"sources/original/{story_id}/"


def original_key(story_id: str, source_path: str, extension: str) -> str:
    """Key for an uploaded original; the path is hex-encoded to stay key-safe."""
    return f"{original_prefix(story_id)}{source_path.encode('utf-8').hex()}{extension}"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


async def check_settings(
    store: RelationalStore,
    model_name: str,
    dimension: int,
    *,
    force: bool = False,
) -> dict[str, str]:
    """Compare this run's embedding model and dimension with the corpus settings.

    An empty corpus (no stored values) always passes.

    Raises:
        SettingsMismatchError: A stored value differs and *force* is False.
    """
    settings = await store.get_settings()
    stored_model = settings.get(SETTING_MODEL)
    stored_dimension = settings.get(SETTING_DIMENSION)

    mismatches: list[tuple[str, str, str]] = []
    if stored_model and stored_model != model_name:
        mismatches.append(("model", stored_model, model_name))
    if stored_dimension and stored_dimension != str(dimension):
        mismatches.append(("dimension", stored_dimension, str(dimension)))

    if mismatches and not force:
        raise SettingsMismatchError(*mismatches[0])
    for name, stored, current in mismatches:
        logger.warning("settings_mismatch_overridden", field=name, stored=stored, current=current)
    return settings


async def write_settings(store: RelationalStore, model_name: str, dimension: int) -> None:
    await store.put_settings(
        {
            SETTING_MODEL: model_name,
            SETTING_DIMENSION: str(dimension),
            SETTING_INDEXED_AT: utc_now(),
        }
    )


# ---------------------------------------------------------------------------
# Vector batching
# ---------------------------------------------------------------------------


def record_bytes(record: VectorRecord) -> int:
    """Serialized size of one vector as a newline-delimited JSON line."""
    payload = {"id": record.id, "values": record.values, "metadata": record.metadata}
    return len(json.dumps(payload).encode("utf-8")) + 1


class VectorBatcher:
    """Accumulates vectors across files and upserts them in bounded batches.

    A batch is flushed before adding a record whenever it already holds
    ``max_count`` records or the record would push it past ``max_bytes``.
    Only the driving loop touches a batcher, so it carries no lock.
    """

    def __init__(self, index: VectorIndex, *, max_count: int, max_bytes: int) -> None:
        self._index = index
        self._max_count = max_count
        self._max_bytes = max_bytes
        self._pending: list[VectorRecord] = []
        self._pending_bytes = 0
        self.upserted = 0
        self.flushes = 0

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def add(self, records: list[VectorRecord]) -> None:
        for record in records:
            size = record_bytes(record)
            if self._pending and (
                len(self._pending) >= self._max_count or self._pending_bytes + size > self._max_bytes
            ):
                await self.flush()
            self._pending.append(record)
            self._pending_bytes += size

    def discard_story(self, story_id: str) -> int:
        """Drop pending vectors of *story_id*; return how many were dropped."""
        kept = [r for r in self._pending if r.story_id != story_id]
        dropped = len(self._pending) - len(kept)
        if dropped:
            self._pending = kept
            self._pending_bytes = sum(record_bytes(r) for r in kept)
        return dropped

    async def flush(self) -> int:
        if not self._pending:
            return 0
        batch, self._pending, self._pending_bytes = self._pending, [], 0
        written = await self._index.upsert(batch)
        self.upserted += written
        self.flushes += 1
        logger.debug("vector_batch_flushed", count=written)
        return written


# ---------------------------------------------------------------------------
# Story writes
# ---------------------------------------------------------------------------


@dataclass
class StoryPayload:
    """Everything computed for one full-pipeline file, ready to be written."""

    story: Story
    source: SourceRecord
    canonical_text: str
    chunk_map: list[dict]
    vectors: list[VectorRecord] | None
    original: bytes | None = None
    original_extension: str = ""
    original_content_type: str = "application/octet-stream"
    previous_story_id: str | None = None


@dataclass
class WriteResult:
    source_count: int
    vectors_deleted: int = 0
    orphans_deleted: list[str] = field(default_factory=list)


class StoryWriter:
    """Applies story, source, tag, blob and vector writes for one file at a time."""

    def __init__(
        self,
        store: RelationalStore,
        objects: ObjectStore,
        index: VectorIndex,
        batcher: VectorBatcher,
        cfg: StorageCfg,
    ) -> None:
        self._store = store
        self._objects = objects
        self._index = index
        self._batcher = batcher
        self._cfg = cfg

    async def write_story(self, payload: StoryPayload) -> WriteResult:
        """Persist a fully processed story and queue its vectors.

        ``payload.vectors`` is None when the status suppresses embeddings;
        the story's existing vectors are then removed. Otherwise vectors
        past the new chunk count (left over from a longer earlier version)
        are removed and the new ones queued on the batcher, replacing any
        vectors an earlier file in this run queued for the same story.
        """
        story = payload.story
        story_id = story.story_id

        await self._objects.put_text(text_key(story_id), payload.canonical_text)
        await self._objects.put_json(chunks_key(story_id), payload.chunk_map)
        story.text_key = text_key(story_id)
        story.chunks_key = chunks_key(story_id)

        if payload.original is not None:
            await self._objects.put_bytes(
                original_key(story_id, payload.source.source_path, payload.original_extension),
                payload.original,
                payload.original_content_type,
            )
        if self._cfg.output_text_dir:
            self._write_local_copy(story_id, payload.canonical_text)

        await self._store.upsert_story(story)
        try:
            await self._store.replace_story_tags(story_id, story.tags)
            await self._store.upsert_source(payload.source)
        except Exception:
            # a story row must never outlive a failed source mapping
            if await self._store.delete_story_if_orphan(story_id) is not None:
                await self._objects.delete(text_key(story_id))
                await self._objects.delete(chunks_key(story_id))
                await self._objects.delete_prefix(original_prefix(story_id))
            raise

        result = WriteResult(source_count=0)
        self._batcher.discard_story(story_id)
        if payload.vectors is None:
            result.vectors_deleted += await self._index.delete_by_story(story_id)
        else:
            result.vectors_deleted += await self._index.delete_by_story(
                story_id, min_chunk_index=len(payload.vectors)
            )
            await self._batcher.add(payload.vectors)

        await self._cleanup_previous(payload.previous_story_id, story_id, result)
        result.source_count = await self._store.refresh_source_count(story_id)
        return result

    async def attach_source(self, source: SourceRecord, previous_story_id: str | None) -> WriteResult:
        """Map a duplicate path onto an existing story."""
        await self._store.upsert_source(source)
        result = WriteResult(source_count=0)
        await self._cleanup_previous(previous_story_id, source.story_id, result)
        result.source_count = await self._store.refresh_source_count(source.story_id)
        return result

    async def _cleanup_previous(
        self, previous_story_id: str | None, story_id: str, result: WriteResult
    ) -> None:
        if previous_story_id is None or previous_story_id == story_id:
            return
        deleted = await self._store.delete_story_if_orphan(previous_story_id)
        if deleted is None:
            return

        self._batcher.discard_story(previous_story_id)
        result.vectors_deleted += await self._index.delete_by_story(previous_story_id)
        await self._objects.delete(deleted.text_key or text_key(previous_story_id))
        await self._objects.delete(deleted.chunks_key or chunks_key(previous_story_id))
        await self._objects.delete_prefix(original_prefix(previous_story_id))
        result.orphans_deleted.append(previous_story_id)
        logger.debug("orphan_blobs_removed", story_id=previous_story_id)

    def _write_local_copy(self, story_id: str, text: str) -> None:
        out_dir = Path(self._cfg.output_text_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        (out_dir / f"{story_id}.txt").write_text(text, encoding="utf-8")
