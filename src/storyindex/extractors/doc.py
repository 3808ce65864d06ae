"""Legacy Word (.doc) decoder: ``antiword``, then headless LibreOffice.

Both strategies shell out; a missing tool is an ExtractionError that the
chain records as a note.
"""

from __future__ import annotations

import shutil
import tempfile
from pathlib import Path

from storyindex.extractors.base import (
    Attempt,
    ExtractionResult,
    ExtractorInput,
    Step,
    decode_text,
    run_chain,
    run_command,
)
from storyindex.utils.errors import ExtractionError


async def _antiword(inp: ExtractorInput) -> Attempt:
    text = await run_command("antiword", str(inp.path), timeout_s=inp.subprocess_timeout_s)
    return Attempt(text=text)


async def _soffice(inp: ExtractorInput) -> Attempt:
    binary = shutil.which("soffice") or shutil.which("libreoffice")
    if binary is None:
        raise ExtractionError("LibreOffice not installed")

    with tempfile.TemporaryDirectory(prefix="storyindex-doc-") as outdir:
        await run_command(
            binary,
            "--headless",
            "--convert-to",
            "txt:Text",
            "--outdir",
            outdir,
            str(inp.path),
            timeout_s=inp.subprocess_timeout_s,
            require_output=False,
        )
        converted = Path(outdir) / f"{inp.path.stem}.txt"
        if not converted.exists():
            raise ExtractionError("LibreOffice conversion produced no output")
        text, _ = decode_text(converted.read_bytes())
    return Attempt(text=text)


STEPS = [
    Step("antiword", _antiword),
    Step("soffice_fallback", _soffice),
]


async def extract_doc(inp: ExtractorInput) -> ExtractionResult:
    return await run_chain("doc", STEPS, inp)
