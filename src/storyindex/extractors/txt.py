"""Plain-text decoder: strict UTF-8, then windows-1252."""

from __future__ import annotations

from storyindex.extractors.base import (
    CP1252_NOTE,
    Attempt,
    ExtractionResult,
    ExtractorInput,
    Step,
    run_chain,
)
from storyindex.utils.errors import ExtractionError


async def _utf8(inp: ExtractorInput) -> Attempt:
    try:
        text = inp.data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ExtractionError(f"invalid UTF-8 at byte {exc.start}") from exc
    return Attempt(text=text.replace("\x00", ""))


async def _cp1252(inp: ExtractorInput) -> Attempt:
    text = inp.data.decode("cp1252", errors="replace")
    return Attempt(text=text.replace("\x00", ""), notes=[CP1252_NOTE])


STEPS = [
    Step("txt_utf8", _utf8, accept=lambda text, inp: True),
    Step("txt_cp1252_fallback", _cp1252, accept=lambda text, inp: True),
]


async def extract_txt(inp: ExtractorInput) -> ExtractionResult:
    return await run_chain("txt", STEPS, inp)
