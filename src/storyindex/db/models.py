"""Domain models for the storyindex database layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class QualityStatus(str, Enum):
    """Extraction confidence for one source file, in classifier priority order."""

    EXTRACTION_FAILED = "EXTRACTION_FAILED"
    BINARY_GARBAGE = "BINARY_GARBAGE"
    PDF_SCANNED_IMAGE = "PDF_SCANNED_IMAGE"
    NEEDS_REVIEW = "NEEDS_REVIEW"
    TOO_SHORT = "TOO_SHORT"
    OK = "OK"

    @property
    def allows_enrichment(self) -> bool:
        """False for statuses whose text is not worth sending to the metadata/embedding services."""
        return self not in _NO_ENRICHMENT

    @property
    def allows_embedding(self) -> bool:
        """Enrichment statuses minus TOO_SHORT, whose text is below the chunking floor."""
        return self.allows_enrichment and self is not QualityStatus.TOO_SHORT


_NO_ENRICHMENT = frozenset(
    [QualityStatus.EXTRACTION_FAILED, QualityStatus.PDF_SCANNED_IMAGE, QualityStatus.BINARY_GARBAGE]
)


@dataclass
class Story:
    story_id: str
    canon_hash: str
    raw_hash: str
    source_path: str
    status: QualityStatus
    status_notes: str | None = None
    source_count: int = 1
    canon_text_source: str = ""
    extract_method: str = ""
    title: str = "Untitled Story"
    author: str | None = None
    summary_short: str = ""
    summary_long: str = ""
    genre: str = ""
    tone: str = ""
    setting: str = ""
    tags: list[str] = field(default_factory=list)
    themes: list[str] = field(default_factory=list)
    content_notes: list[str] = field(default_factory=list)
    word_count: int = 0
    chunk_count: int = 0
    text_key: str | None = None
    chunks_key: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class SourceRecord:
    source_path: str
    story_id: str
    source_type: str
    extract_method: str
    raw_hash: str
    title_from_source: str | None = None
    ingested_at: str | None = None


@dataclass
class DuplicateGroup:
    story_id: str
    canon_hash: str
    source_count: int
    title: str
    sample_source_paths: list[str] = field(default_factory=list)


@dataclass
class CorpusStatus:
    story_count: int = 0
    total_words: int = 0
    tag_count: int = 0
    flagged_count: int = 0
    latest_update: str | None = None
    counts_by_status: dict[str, int] = field(default_factory=dict)


@dataclass
class VectorRecord:
    """One chunk embedding; ``id`` is ``{story_id}:{chunk_index:05d}``."""

    id: str
    values: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def story_id(self) -> str:
        return str(self.metadata.get("storyId") or self.id.rsplit(":", 1)[0])

    @property
    def chunk_index(self) -> int:
        if "chunkIndex" in self.metadata:
            return int(self.metadata["chunkIndex"])
        return int(self.id.rsplit(":", 1)[1])


@dataclass
class VectorMatch:
    id: str
    distance: float
    metadata: dict[str, Any] = field(default_factory=dict)


def vector_id(story_id: str, chunk_index: int) -> str:
    """Return the vector id for chunk *chunk_index* of *story_id*."""
    return f"{story_id}:{chunk_index:05d}"


def normalize_tags(tags: list[str]) -> list[str]:
    """Lowercase, trim and de-duplicate *tags*, keeping first-seen order."""
    seen: list[str] = []
    for tag in tags:
        clean = " ".join(str(tag).split()).lower()
        if clean and clean not in seen:
            seen.append(clean)
    return seen
