"""Run controller: discovery, change detection, per-file pipeline, reporting.

One run:

1. Probe the embedding dimension and check it (and the model name)
   against the corpus settings. A mismatch aborts before any file is read.
2. Discover files under the input folder; in incremental mode, hash the
   ones already mapped and skip those whose bytes are unchanged.
3. Process each remaining file (bounded concurrency):
   extract → canonicalize → hash → classify → resolve identity →
   enrich → chunk → embed. Workers only read the stores.
4. Apply each outcome from the driving loop: duplicates attach a
   source row, full results go through :class:`StoryWriter`.
5. Flush vectors, write reports (always), and record settings (on
   success only).
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from storyindex.config import IndexerConfig
from storyindex.db.models import QualityStatus, SourceRecord, Story, VectorRecord, vector_id
from storyindex.ingest.canonical import word_count
from storyindex.ingest.chunker import TextChunk, chunk_text
from storyindex.ingest.embedder import Embedder
from storyindex.ingest.identity import IdentityDecision, Resolution, resolve_identity
from storyindex.ingest.metadata import MetadataEnricher, StoryMetadata, fallback_metadata
from storyindex.ingest.persistence import (
    StoryPayload,
    StoryWriter,
    VectorBatcher,
    check_settings,
    utc_now,
    write_settings,
)
from storyindex.ingest.reports import (
    FailedFile,
    FlaggedFile,
    ReportPaths,
    RunSummary,
    StageTimer,
    write_reports,
)
from storyindex.ingest.source import IngestedSource, SourceFile, discover, ingest_source, raw_hash_of
from storyindex.services.interfaces import (
    EmbeddingService,
    ObjectStore,
    RelationalStore,
    TextCompletionService,
    VectorIndex,
)
from storyindex.utils.concurrency import iter_bounded, map_bounded
from storyindex.utils.errors import StoryIndexError
from storyindex.utils.logging import get_logger

logger = get_logger(__name__)

DUPLICATE_GROUP_LIMIT = 500
METADATA_FALLBACK_PREFIX = "Metadata extraction fallback used"


@dataclass
class RunOptions:
    changed_only: bool = False
    force_reindex: bool = False
    reprocess_existing: bool = False


@dataclass
class RunServices:
    """Collaborators for one run. ``completion=None`` disables AI metadata."""

    store: RelationalStore
    objects: ObjectStore
    vectors: VectorIndex
    embedding: EmbeddingService
    completion: TextCompletionService | None = None


@dataclass
class RunResult:
    summary: RunSummary
    reports: ReportPaths | None
    embedding_model: str
    embedding_dimension: int
    flagged: list[FlaggedFile] = field(default_factory=list)
    failures: list[FailedFile] = field(default_factory=list)


class OutcomeKind(str, enum.Enum):
    FAILED = "failed"
    DUPLICATE = "deduped"
    INDEXED = "indexed"
    SKIPPED = "skipped"


@dataclass
class FileOutcome:
    kind: OutcomeKind
    source: SourceFile
    ingested: IngestedSource | None = None
    decision: IdentityDecision | None = None
    payload: StoryPayload | None = None
    error: str | None = None


ProgressCallback = Callable[[FileOutcome], None]


# ---------------------------------------------------------------------------
# Per-file pipeline (read-only against the stores)
# ---------------------------------------------------------------------------


class FilePipeline:
    """Turns one SourceFile into a FileOutcome without writing anything."""

    def __init__(
        self,
        cfg: IndexerConfig,
        options: RunOptions,
        store: RelationalStore,
        embedder: Embedder,
        enricher: MetadataEnricher | None,
        timer: StageTimer,
    ) -> None:
        self._cfg = cfg
        self._options = options
        self._store = store
        self._embedder = embedder
        self._enricher = enricher
        self._timer = timer

    async def run(self, source: SourceFile) -> FileOutcome:
        with self._timer.stage("extract"):
            ingested = await ingest_source(source, self._cfg)

        if ingested.status is QualityStatus.EXTRACTION_FAILED or not ingested.canon_hash:
            return FileOutcome(
                OutcomeKind.FAILED,
                source,
                ingested=ingested,
                error=ingested.extraction.error or ingested.status_notes or "Extraction failed",
            )

        try:
            return await self._process(source, ingested)
        except Exception as exc:
            return FileOutcome(OutcomeKind.FAILED, source, ingested=ingested, error=str(exc))

    async def _process(self, source: SourceFile, ingested: IngestedSource) -> FileOutcome:
        with self._timer.stage("identity"):
            decision = await resolve_identity(
                self._store,
                ingested.canon_hash,
                source.source_path,
                reprocess_existing=self._options.reprocess_existing,
            )
        if decision.resolution is Resolution.DUPLICATE:
            return FileOutcome(OutcomeKind.DUPLICATE, source, ingested=ingested, decision=decision)

        ai_allowed = ingested.status.allows_enrichment
        metadata, metadata_note = await self._metadata(ingested, ai_allowed)

        with self._timer.stage("chunk"):
            chunks = chunk_text(
                ingested.canonical_text,
                self._cfg.chunking.chunk_size_chars,
                self._cfg.chunking.overlap_chars,
            )

        vectors: list[VectorRecord] | None = None
        if ingested.status.allows_embedding:
            with self._timer.stage("embed"):
                embeddings = await self._embedder.embed_texts([c.text for c in chunks])
            vectors = _vector_records(decision.story_id, chunks, embeddings, metadata, ingested.status)

        payload = self._payload(ingested, decision, metadata, metadata_note, chunks, vectors, ai_allowed)
        return FileOutcome(
            OutcomeKind.INDEXED, source, ingested=ingested, decision=decision, payload=payload
        )

    async def _metadata(
        self, ingested: IngestedSource, ai_allowed: bool
    ) -> tuple[StoryMetadata, str | None]:
        path = ingested.source.source_path
        if not ai_allowed or self._enricher is None:
            return fallback_metadata(path, ingested.status, ingested.status_notes), None
        try:
            with self._timer.stage("metadata"):
                return await self._enricher.enrich(ingested.canonical_text, path), None
        except StoryIndexError as exc:
            note = f"{METADATA_FALLBACK_PREFIX}: {exc}"
            logger.warning("metadata_fallback", source_path=path, error=str(exc))
            return fallback_metadata(path, ingested.status, note), note

    def _payload(
        self,
        ingested: IngestedSource,
        decision: IdentityDecision,
        metadata: StoryMetadata,
        metadata_note: str | None,
        chunks: list[TextChunk],
        vectors: list[VectorRecord] | None,
        ai_allowed: bool,
    ) -> StoryPayload:
        source = ingested.source
        now = utc_now()
        notes = " | ".join(n for n in (ingested.status_notes, metadata_note) if n) or None
        story = Story(
            story_id=decision.story_id,
            canon_hash=ingested.canon_hash or "",
            raw_hash=ingested.raw_hash,
            source_path=source.source_path,
            status=ingested.status,
            status_notes=notes,
            source_count=1,
            canon_text_source=source.source_type,
            extract_method=ingested.extraction.method,
            title=metadata.title,
            author=metadata.author,
            summary_short=metadata.summary_short,
            summary_long=metadata.summary_long,
            genre=metadata.genre,
            tone=metadata.tone,
            setting=metadata.setting,
            tags=list(metadata.tags) if ai_allowed else [],
            themes=list(metadata.themes),
            content_notes=list(metadata.content_notes),
            word_count=word_count(ingested.canonical_text),
            chunk_count=len(chunks),
            updated_at=now,
        )
        store_original = self._cfg.storage.store_original_binary
        return StoryPayload(
            story=story,
            source=_source_record(ingested, decision.story_id, now),
            canonical_text=ingested.canonical_text,
            chunk_map=[c.to_map_entry() for c in chunks],
            vectors=vectors,
            original=ingested.data if store_original else None,
            original_extension=source.extension,
            original_content_type=source.content_type,
            previous_story_id=decision.orphan_candidate,
        )


def _source_record(ingested: IngestedSource, story_id: str, ingested_at: str) -> SourceRecord:
    return SourceRecord(
        source_path=ingested.source.source_path,
        story_id=story_id,
        source_type=ingested.source.source_type,
        extract_method=ingested.extraction.method,
        raw_hash=ingested.raw_hash,
        title_from_source=ingested.extraction.title_from_source,
        ingested_at=ingested_at,
    )


def _vector_records(
    story_id: str,
    chunks: list[TextChunk],
    embeddings: list[list[float]],
    metadata: StoryMetadata,
    status: QualityStatus,
) -> list[VectorRecord]:
    return [
        VectorRecord(
            id=vector_id(story_id, chunk.chunk_index),
            values=values,
            metadata={
                "storyId": story_id,
                "chunkIndex": chunk.chunk_index,
                "genre": metadata.genre,
                "tone": metadata.tone,
                "title": metadata.title,
                "excerpt": chunk.excerpt,
                "storyStatus": status.value,
            },
        )
        for chunk, values in zip(chunks, embeddings)
    ]


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------


async def _unchanged_paths(
    store: RelationalStore, files: list[SourceFile], concurrency: int
) -> set[str]:
    """Paths whose current bytes hash to the raw hash already on record."""
    known = {s.source_path: s.raw_hash for s in await store.list_sources()}
    candidates = [f for f in files if f.source_path in known]
    hashes = await map_bounded(candidates, concurrency, raw_hash_of)
    unchanged: set[str] = set()
    for source, digest in zip(candidates, hashes):
        if isinstance(digest, Exception):
            # unreadable here means unreadable later; let the pipeline report it
            continue
        if digest == known[source.source_path]:
            unchanged.add(source.source_path)
    return unchanged


class _RunState:
    """Counters and report rows accumulated by the driving loop."""

    def __init__(self) -> None:
        self.summary = RunSummary()
        self.flagged: list[FlaggedFile] = []
        self.failures: list[FailedFile] = []
        self.word_counts: list[int] = []

    def record_ingested(self, ingested: IngestedSource) -> None:
        self.summary.count_status(ingested.status.value)
        if ingested.status is not QualityStatus.OK:
            self.flagged.append(
                FlaggedFile(
                    source_path=ingested.source.source_path,
                    source_type=ingested.source.source_type,
                    status=ingested.status.value,
                    status_notes=ingested.status_notes,
                    file_size_bytes=len(ingested.data),
                    extracted_chars=ingested.extracted_chars,
                    extract_method=ingested.extraction.method,
                )
            )

    def record_failure(self, source: SourceFile, message: str) -> None:
        self.summary.failed_files += 1
        self.failures.append(FailedFile(source.source_path, source.source_type, message))


async def run_indexing(
    cfg: IndexerConfig,
    folder: Path,
    services: RunServices,
    options: RunOptions | None = None,
    *,
    on_file: ProgressCallback | None = None,
) -> RunResult:
    """Index every accepted file under *folder* into the corpus.

    Raises:
        EmbeddingProbeError: The embedding service could not be probed.
        SettingsMismatchError: The corpus was built with another embedding
            model or dimension and ``options.force_reindex`` is False.
    """
    options = options or RunOptions()
    folder = Path(folder)
    timer = StageTimer(enabled=cfg.run.profile)

    embedder = Embedder(services.embedding, cfg.embedding)
    dimension = await embedder.probe()
    await check_settings(
        services.store, embedder.model_name, dimension, force=options.force_reindex
    )
    await services.vectors.prepare(dimension)

    files = discover(folder, cfg.extraction.accept_extensions)
    logger.info("run_started", folder=str(folder), files=len(files), changed_only=options.changed_only)

    state = _RunState()
    batcher = VectorBatcher(
        services.vectors,
        max_count=cfg.vectors.batch_size,
        max_bytes=cfg.vectors.batch_max_bytes,
    )
    writer = StoryWriter(services.store, services.objects, services.vectors, batcher, cfg.storage)
    enricher = (
        MetadataEnricher(services.completion, cfg.metadata) if services.completion is not None else None
    )
    pipeline = FilePipeline(cfg, options, services.store, embedder, enricher, timer)

    reports: ReportPaths | None = None
    try:
        unchanged: set[str] = set()
        if options.changed_only:
            with timer.stage("hash_prefetch"):
                unchanged = await _unchanged_paths(services.store, files, cfg.run.hash_concurrency)

        pending: list[SourceFile] = []
        for source in files:
            state.summary.scanned_files += 1
            state.summary.count_source_type(source.source_type)
            if source.source_path in unchanged:
                state.summary.skipped_unchanged += 1
                logger.debug("file_unchanged", source_path=source.source_path)
                if on_file:
                    on_file(FileOutcome(OutcomeKind.SKIPPED, source))
            else:
                pending.append(source)

        async for index, result in iter_bounded(pending, cfg.run.story_concurrency, pipeline.run):
            source = pending[index]
            if isinstance(result, Exception):
                state.record_failure(source, str(result))
                logger.error("file_failed", source_path=source.source_path, error=str(result))
                outcome = FileOutcome(OutcomeKind.FAILED, source, error=str(result))
            else:
                outcome = result
                try:
                    with timer.stage("persist"):
                        outcome = await _apply(outcome, writer, state, services.store, options)
                except Exception as exc:
                    state.record_failure(source, str(exc))
                    logger.error("file_failed", source_path=source.source_path, error=str(exc))
                    outcome = FileOutcome(
                        OutcomeKind.FAILED, source, ingested=outcome.ingested, error=str(exc)
                    )
            if on_file:
                on_file(outcome)

        with timer.stage("persist"):
            await batcher.flush()
        await write_settings(services.store, embedder.model_name, dimension)
        logger.info(
            "run_finished",
            scanned=state.summary.scanned_files,
            indexed=state.summary.indexed_stories,
            deduped=state.summary.deduped_sources,
            skipped=state.summary.skipped_unchanged,
            failed=state.summary.failed_files,
        )
    finally:
        state.summary.vectors_upserted = batcher.upserted
        state.summary.generated_at = utc_now()
        state.summary.set_word_stats(state.word_counts)
        duplicate_groups = await services.store.get_duplicate_groups(DUPLICATE_GROUP_LIMIT)
        reports = write_reports(
            Path(cfg.run.report_dir),
            state.summary,
            duplicate_groups,
            state.flagged,
            state.failures,
            profile=timer.profile() if timer.enabled else None,
        )

    return RunResult(
        summary=state.summary,
        reports=reports,
        embedding_model=embedder.model_name,
        embedding_dimension=dimension,
        flagged=state.flagged,
        failures=state.failures,
    )


async def _apply(
    outcome: FileOutcome,
    writer: StoryWriter,
    state: _RunState,
    store: RelationalStore,
    options: RunOptions,
) -> FileOutcome:
    """Write one file's outcome, update the run counters, return the final outcome."""
    ingested, decision = outcome.ingested, outcome.decision
    if ingested is not None:
        state.record_ingested(ingested)

    if outcome.kind is OutcomeKind.FAILED or ingested is None or decision is None:
        state.record_failure(outcome.source, outcome.error or "Extraction failed")
        logger.warning("file_failed", source_path=outcome.source.source_path, error=outcome.error)
        return outcome

    if decision.resolution is Resolution.NEW and not options.reprocess_existing:
        # an earlier file in this run may have written the same text since the worker looked
        existing = await store.get_story_by_canon_hash(ingested.canon_hash or "")
        if existing is not None:
            decision = IdentityDecision(
                existing.story_id, Resolution.DUPLICATE, existing, decision.previous_source
            )
            outcome = FileOutcome(
                OutcomeKind.DUPLICATE, outcome.source, ingested=ingested, decision=decision
            )

    state.word_counts.append(word_count(ingested.canonical_text))

    if outcome.payload is None:
        result = await writer.attach_source(
            _source_record(ingested, decision.story_id, utc_now()),
            decision.orphan_candidate,
        )
        state.summary.deduped_sources += 1
        logger.info(
            "file_deduped",
            source_path=outcome.source.source_path,
            story_id=decision.story_id,
            source_count=result.source_count,
        )
    else:
        result = await writer.write_story(outcome.payload)
        state.summary.indexed_stories += 1
        logger.info(
            "file_indexed",
            source_path=outcome.source.source_path,
            story_id=decision.story_id,
            chunks=outcome.payload.story.chunk_count,
            status=ingested.status.value,
        )

    state.summary.vectors_deleted += result.vectors_deleted
    state.summary.orphans_deleted += len(result.orphans_deleted)
    return outcome
