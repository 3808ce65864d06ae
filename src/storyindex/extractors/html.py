"""HTML decoder.

Chain: ``readability`` (trafilatura main-content extraction, skipped in
``dom_only`` mode) → ``dom_text`` (block-level walk with BeautifulSoup) →
``html2text`` → ``fallback`` (raw body text, always accepted).
"""

from __future__ import annotations

import asyncio
import re

import html2text
import trafilatura
from bs4 import BeautifulSoup

from storyindex.extractors.base import (
    CP1252_NOTE,
    Attempt,
    ExtractionResult,
    ExtractorInput,
    Step,
    decode_text,
    run_chain,
)

_BLOCK_TAGS = ["p", "div", "li", "blockquote", "h1", "h2", "h3", "h4", "h5", "h6"]
_STRIP_TAGS = ["script", "style", "noscript"]
_WS_RE = re.compile(r"\s+")


def _html2text_converter() -> html2text.HTML2Text:
    # converters keep parser state between calls
    h2t = html2text.HTML2Text()
    h2t.ignore_links = True
    h2t.ignore_images = True
    h2t.ignore_emphasis = True
    h2t.body_width = 0
    return h2t


def _collapse(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()


def _soup(markup: str) -> BeautifulSoup:
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup.find_all(_STRIP_TAGS):
        tag.decompose()
    return soup


def page_title(markup: str) -> str | None:
    """Return the stripped ``<title>`` text, or None."""
    soup = BeautifulSoup(markup, "html.parser")
    if soup.title is None:
        return None
    return soup.title.get_text().strip() or None


def readability_text(markup: str) -> str:
    return trafilatura.extract(markup, include_comments=False, include_tables=True) or ""


def dom_blocks(markup: str) -> str:
    """Join the text of leaf block elements with blank lines.

    ``<div>`` elements that contain other blocks are skipped so their text is
    not emitted twice. With no blocks at all, the whole body text is used.
    """
    soup = _soup(markup)
    for br in soup.find_all("br"):
        br.replace_with("\n")

    lines: list[str] = []
    for block in soup.find_all(_BLOCK_TAGS):
        if block.name == "div" and block.find(_BLOCK_TAGS) is not None:
            continue
        text = _collapse(block.get_text())
        if text:
            lines.append(text)

    if not lines:
        root = soup.body or soup
        return _collapse(root.get_text())
    return "\n\n".join(lines)


def markdown_text(markup: str) -> str:
    return _html2text_converter().handle(str(_soup(markup))).strip()


def body_text(markup: str) -> str:
    soup = _soup(markup)
    return (soup.body or soup).get_text()


async def extract_html(inp: ExtractorInput) -> ExtractionResult:
    markup, used_fallback = decode_text(inp.data)
    title = await asyncio.to_thread(page_title, markup)

    async def _readability(_: ExtractorInput) -> Attempt:
        text = await asyncio.to_thread(readability_text, markup)
        return Attempt(text=text, title=title)

    async def _dom_text(_: ExtractorInput) -> Attempt:
        return Attempt(text=await asyncio.to_thread(dom_blocks, markup), title=title)

    async def _html2text(_: ExtractorInput) -> Attempt:
        return Attempt(text=await asyncio.to_thread(markdown_text, markup), title=title)

    async def _fallback(_: ExtractorInput) -> Attempt:
        return Attempt(text=await asyncio.to_thread(body_text, markup), title=title)

    steps: list[Step] = []
    if inp.html_extract_mode == "readability_first":
        steps.append(Step("readability", _readability))
    steps += [
        Step("dom_text", _dom_text),
        Step("html2text", _html2text),
        Step("fallback", _fallback, accept=lambda text, inp: True),
    ]

    result = await run_chain("html", steps, inp)
    if used_fallback:
        result.notes.insert(0, CP1252_NOTE)
    if result.title_from_source is None:
        result.title_from_source = title
    return result
