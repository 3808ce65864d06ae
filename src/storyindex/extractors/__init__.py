"""Format decoders, one per file extension."""

from __future__ import annotations

from typing import Awaitable, Callable

from storyindex.extractors.base import (
    FAILED_METHOD,
    ExtractionResult,
    ExtractorInput,
)
from storyindex.extractors.doc import extract_doc
from storyindex.extractors.docx import extract_docx
from storyindex.extractors.html import extract_html
from storyindex.extractors.pdf import extract_pdf
from storyindex.extractors.rtf import extract_rtf
from storyindex.extractors.txt import extract_txt

Extractor = Callable[[ExtractorInput], Awaitable[ExtractionResult]]

_REGISTRY: dict[str, Extractor] = {
    ".txt": extract_txt,
    ".html": extract_html,
    ".htm": extract_html,
    ".rtf": extract_rtf,
    ".doc": extract_doc,
    ".docx": extract_docx,
    ".pdf": extract_pdf,
}


def source_type_for(extension: str) -> str:
    """Map an extension to its source type label (``.htm`` counts as html)."""
    ext = extension.lower().lstrip(".")
    return "html" if ext == "htm" else ext or "unknown"


def get_extractor(extension: str) -> Extractor | None:
    return _REGISTRY.get(extension.lower())


async def extract(inp: ExtractorInput) -> ExtractionResult:
    """Decode *inp* with the extractor registered for its extension."""
    extractor = get_extractor(inp.extension)
    if extractor is None:
        return ExtractionResult(
            source_type=source_type_for(inp.extension),
            method=FAILED_METHOD,
            text="",
            error=f"Unsupported extension '{inp.extension}'",
        )
    return await extractor(inp)


__all__ = [
    "ExtractionResult",
    "ExtractorInput",
    "extract",
    "get_extractor",
    "source_type_for",
]
