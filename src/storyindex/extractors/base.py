"""Shared types and helpers for the format decoders.

Every format is an ordered list of :class:`Step` strategies. A step is a
plain async function ``(ExtractorInput) -> Attempt`` plus an acceptance
test. :func:`run_chain` tries the steps in order:

- a step that raises is recorded as a note and skipped;
- a step whose text fails its acceptance test falls through;
- the first accepted attempt wins;
- if none is accepted, the last completed attempt is returned as-is;
- if no step completed at all, the result has method ``failed`` and an
  error message.

Decoders never raise for recoverable conditions.
"""

from __future__ import annotations

import asyncio
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable

from storyindex.utils.errors import ExtractionError
from storyindex.utils.logging import get_logger

logger = get_logger(__name__)

FAILED_METHOD = "failed"


@dataclass
class ExtractorInput:
    path: Path
    data: bytes
    extension: str
    html_extract_mode: str = "readability_first"
    pdf_min_text_chars: int = 800
    subprocess_timeout_s: float = 120.0


@dataclass
class Attempt:
    """Output of one strategy."""

    text: str
    title: str | None = None
    notes: list[str] = field(default_factory=list)


@dataclass
class ExtractionResult:
    source_type: str
    method: str
    text: str
    notes: list[str] = field(default_factory=list)
    title_from_source: str | None = None
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.method == FAILED_METHOD or self.error is not None


def non_empty(text: str, inp: ExtractorInput) -> bool:
    return bool(text.strip())


@dataclass
class Step:
    method: str
    run: Callable[[ExtractorInput], Awaitable[Attempt]]
    accept: Callable[[str, ExtractorInput], bool] = non_empty


async def run_chain(source_type: str, steps: list[Step], inp: ExtractorInput) -> ExtractionResult:
    """Run *steps* in order and return the first accepted attempt."""
    notes: list[str] = []
    last: tuple[Step, Attempt] | None = None
    last_error: str | None = None

    for step in steps:
        try:
            attempt = await step.run(inp)
        except Exception as exc:
            last_error = f"{step.method} failed: {exc}"
            notes.append(last_error)
            logger.debug("extraction_step_failed", path=str(inp.path), method=step.method, error=str(exc))
            continue

        notes.extend(attempt.notes)
        last = (step, attempt)
        if step.accept(attempt.text, inp):
            break
        notes.append(f"{step.method} output rejected ({len(attempt.text.strip())} chars)")

    if last is None:
        return ExtractionResult(
            source_type=source_type,
            method=FAILED_METHOD,
            text="",
            notes=notes,
            error=last_error or "No extraction strategy available",
        )

    step, attempt = last
    return ExtractionResult(
        source_type=source_type,
        method=step.method,
        text=attempt.text,
        notes=notes,
        title_from_source=attempt.title,
    )


# ---------------------------------------------------------------------------
# Byte decoding
# ---------------------------------------------------------------------------

CP1252_NOTE = "UTF-8 decode failed; used windows-1252 fallback"


def decode_text(data: bytes) -> tuple[str, bool]:
    """Decode *data* as strict UTF-8 (BOM dropped), else windows-1252.

    Returns:
        ``(text, used_fallback)``.
    """
    try:
        return data.decode("utf-8-sig"), False
    except UnicodeDecodeError:
        return data.decode("cp1252", errors="replace"), True


# ---------------------------------------------------------------------------
# External tools
# ---------------------------------------------------------------------------


async def run_command(*args: str, timeout_s: float = 120.0, require_output: bool = True) -> str:
    """Run an external tool and return its stdout decoded as text.

    Raises:
        ExtractionError: tool missing, non-zero exit, timeout, or (with
            *require_output*) empty output.
    """
    tool = args[0]
    if shutil.which(tool) is None:
        raise ExtractionError(f"{tool} not installed")

    proc = await asyncio.create_subprocess_exec(
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout_s)
    except asyncio.TimeoutError as exc:
        proc.kill()
        await proc.wait()
        raise ExtractionError(f"{tool} timed out after {timeout_s:.0f}s") from exc

    if proc.returncode != 0:
        detail = stderr.decode("utf-8", errors="replace").strip()[:500]
        raise ExtractionError(f"{tool} exited with {proc.returncode}: {detail}")

    text, _ = decode_text(stdout)
    if require_output and not text.strip():
        raise ExtractionError(f"{tool} returned empty output")
    return text
