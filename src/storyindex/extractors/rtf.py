"""RTF decoder: striprtf, then the ``unrtf`` command-line tool."""

from __future__ import annotations

import asyncio
import re

from striprtf.striprtf import rtf_to_text

from storyindex.extractors.base import (
    CP1252_NOTE,
    Attempt,
    ExtractionResult,
    ExtractorInput,
    Step,
    decode_text,
    run_chain,
    run_command,
)

_WS_RE = re.compile(r"\s+")


async def _rtf_lib(inp: ExtractorInput) -> Attempt:
    raw, used_fallback = decode_text(inp.data)
    plain = await asyncio.to_thread(rtf_to_text, raw)
    paragraphs = [_WS_RE.sub(" ", line).strip() for line in plain.split("\n")]
    return Attempt(
        text="\n\n".join(p for p in paragraphs if p),
        notes=[CP1252_NOTE] if used_fallback else [],
    )


async def _unrtf(inp: ExtractorInput) -> Attempt:
    output = await run_command(
        "unrtf", "--text", "--nopict", str(inp.path), timeout_s=inp.subprocess_timeout_s
    )
    # unrtf prefixes its own banner lines with "###"
    lines = [line.strip() for line in output.split("\n")]
    return Attempt(text="\n".join(line for line in lines if not line.startswith("###")))


STEPS = [
    Step("rtf_lib", _rtf_lib),
    Step("unrtf_fallback", _unrtf),
]


async def extract_rtf(inp: ExtractorInput) -> ExtractionResult:
    return await run_chain("rtf", STEPS, inp)
