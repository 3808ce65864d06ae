"""Source discovery and the per-file ingest stage.

:func:`ingest_source` runs the pure front of the pipeline for one file:
read → extract → canonicalize → hash → classify. Everything after that
(identity, enrichment, persistence) belongs to the run controller.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path

from storyindex.config import IndexerConfig
from storyindex.db.models import QualityStatus
from storyindex.extractors import ExtractionResult, ExtractorInput, extract, source_type_for
from storyindex.ingest.canonical import canonicalize
from storyindex.ingest.identity import sha256_bytes, sha256_text
from storyindex.ingest.quality import classify

_BINARY_CONTENT_TYPES: dict[str, str] = {
    ".txt": "text/plain",
    ".html": "text/html",
    ".htm": "text/html",
    ".rtf": "application/rtf",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".pdf": "application/pdf",
}


@dataclass
class SourceFile:
    """One input file; ``source_path`` (relative, ``/``-separated) is its identity."""

    path: Path
    source_path: str
    extension: str
    size_bytes: int

    @property
    def source_type(self) -> str:
        return source_type_for(self.extension)

    @property
    def content_type(self) -> str:
        return _BINARY_CONTENT_TYPES.get(self.extension, "application/octet-stream")


@dataclass
class IngestedSource:
    source: SourceFile
    data: bytes
    raw_hash: str
    extraction: ExtractionResult
    canonical_text: str
    canon_hash: str | None
    status: QualityStatus
    status_notes: str | None

    @property
    def extracted_chars(self) -> int:
        return len(self.canonical_text)


def normalize_source_path(root: Path, path: Path) -> str:
    return path.relative_to(root).as_posix()


def discover(root: Path, extensions: list[str]) -> list[SourceFile]:
    """Recursively list files under *root* whose extension is accepted, sorted by path."""
    accepted = {e.lower() for e in extensions}
    files: list[SourceFile] = []
    for path in sorted(root.rglob("*")):
        if not path.is_file():
            continue
        ext = path.suffix.lower()
        if ext not in accepted:
            continue
        files.append(
            SourceFile(
                path=path,
                source_path=normalize_source_path(root, path),
                extension=ext,
                size_bytes=path.stat().st_size,
            )
        )
    return files


async def read_bytes(path: Path) -> bytes:
    return await asyncio.to_thread(path.read_bytes)


async def raw_hash_of(source: SourceFile) -> str:
    return sha256_bytes(await read_bytes(source.path))


def _join_notes(*parts: list[str] | str | None) -> str | None:
    notes: list[str] = []
    for part in parts:
        if not part:
            continue
        for note in [part] if isinstance(part, str) else part:
            if note and note not in notes:
                notes.append(note)
    return " | ".join(notes) if notes else None


async def ingest_source(source: SourceFile, cfg: IndexerConfig) -> IngestedSource:
    """Read, extract, canonicalize, hash and classify one file."""
    data = await read_bytes(source.path)
    extraction = await extract(
        ExtractorInput(
            path=source.path,
            data=data,
            extension=source.extension,
            html_extract_mode=cfg.extraction.html_extract_mode,
            pdf_min_text_chars=cfg.quality.pdf_min_text_chars,
            subprocess_timeout_s=cfg.extraction.subprocess_timeout_s,
        )
    )
    canonical_text = canonicalize(extraction.text)
    classification = classify(
        source_type=extraction.source_type,
        extraction_failed=extraction.failed,
        extraction_error=extraction.error,
        extracted_text=extraction.text,
        canonical_text=canonical_text,
        file_size_bytes=len(data),
        cfg=cfg.quality,
    )
    failed = classification.status is QualityStatus.EXTRACTION_FAILED
    return IngestedSource(
        source=source,
        data=data,
        raw_hash=sha256_bytes(data),
        extraction=extraction,
        canonical_text=canonical_text,
        canon_hash=None if failed else sha256_text(canonical_text),
        status=classification.status,
        status_notes=_join_notes(classification.notes, extraction.notes),
    )
