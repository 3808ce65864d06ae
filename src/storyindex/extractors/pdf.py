"""PDF decoder: pypdf, then PyMuPDF.

Both outputs are reflowed: hard-wrapped lines are joined back into
paragraphs. The pypdf result is accepted only when the reflowed text is at
least ``max(120, 0.3 * pdf_min_text_chars)`` characters; otherwise PyMuPDF
gets a turn and its result is returned whatever its length.
"""

from __future__ import annotations

import asyncio
import io
import re

import fitz  # PyMuPDF
import pypdf

from storyindex.extractors.base import Attempt, ExtractionResult, ExtractorInput, Step, run_chain

_WS_RE = re.compile(r"\s+")
_SENTENCE_END = ".!?;:"
_CONTINUATION_RE = re.compile(r"^[a-z0-9(\[\"']")


def _should_join(previous: str, line: str) -> bool:
    if not previous or not line:
        return False
    if previous[-1] in _SENTENCE_END:
        return False
    return bool(_CONTINUATION_RE.match(line))


def reflow(text: str) -> str:
    """Rebuild paragraphs from line-broken PDF text.

    Blank lines end a paragraph. A line is appended to the current paragraph
    when the paragraph does not end in sentence punctuation and the line
    starts lowercase, with a digit, or with an opening bracket or quote.
    """
    lines = [
        _WS_RE.sub(" ", line).strip()
        for line in text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    ]
    paragraphs: list[str] = []
    current = ""
    for line in lines:
        if not line:
            if current:
                paragraphs.append(current)
                current = ""
            continue
        if not current:
            current = line
        elif _should_join(current, line):
            current = f"{current} {line}"
        else:
            paragraphs.append(current)
            current = line
    if current:
        paragraphs.append(current)
    return "\n\n".join(paragraphs)


def min_accept_chars(pdf_min_text_chars: int) -> int:
    return max(120, int(pdf_min_text_chars * 0.3))


def _pypdf_pages(data: bytes) -> list[str]:
    reader = pypdf.PdfReader(io.BytesIO(data))
    return [(page.extract_text() or "").strip() for page in reader.pages]


def _pymupdf_pages(data: bytes) -> list[str]:
    with fitz.open(stream=data, filetype="pdf") as document:
        return [page.get_text("text").strip() for page in document]


async def _pypdf(inp: ExtractorInput) -> Attempt:
    pages = await asyncio.to_thread(_pypdf_pages, inp.data)
    return Attempt(text=reflow("\n\n".join(p for p in pages if p)))


async def _pymupdf(inp: ExtractorInput) -> Attempt:
    pages = await asyncio.to_thread(_pymupdf_pages, inp.data)
    return Attempt(text=reflow("\n\n".join(p for p in pages if p)))


STEPS = [
    Step(
        "pypdf",
        _pypdf,
        accept=lambda text, inp: len(text.strip()) >= min_accept_chars(inp.pdf_min_text_chars),
    ),
    Step("pymupdf_fallback", _pymupdf, accept=lambda text, inp: True),
]


async def extract_pdf(inp: ExtractorInput) -> ExtractionResult:
    return await run_chain("pdf", STEPS, inp)
