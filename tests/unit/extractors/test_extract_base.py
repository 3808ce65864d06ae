"""Tests for the fallback chain runner and shared decoding helpers."""

from __future__ import annotations

import shutil
from pathlib import Path
from unittest.mock import patch

import pytest

from storyindex.extractors import extract, source_type_for
from storyindex.extractors.base import (
    CP1252_NOTE,
    FAILED_METHOD,
    Attempt,
    ExtractionResult,
    ExtractorInput,
    Step,
    decode_text,
    run_chain,
    run_command,
)
from storyindex.utils.errors import ExtractionError


def _inp(data: bytes = b"", extension: str = ".txt") -> ExtractorInput:
    return ExtractorInput(path=Path(f"story{extension}"), data=data, extension=extension)


def _returning(text: str):
    async def _run(inp: ExtractorInput) -> Attempt:
        return Attempt(text=text)

    return _run


def _raising(message: str):
    async def _run(inp: ExtractorInput) -> Attempt:
        raise ExtractionError(message)

    return _run


# ---------------------------------------------------------------------------
# decode_text
# ---------------------------------------------------------------------------


def test_decode_utf8_drops_bom():
    assert decode_text("\ufeffhéllo".encode("utf-8")) == ("héllo", False)


def test_decode_falls_back_to_cp1252():
    text, used_fallback = decode_text("caf\xe9".encode("cp1252"))
    assert text == "café"
    assert used_fallback is True


# ---------------------------------------------------------------------------
# run_chain
# ---------------------------------------------------------------------------


async def test_first_accepted_step_wins():
    result = await run_chain(
        "txt", [Step("one", _returning("first")), Step("two", _returning("second"))], _inp()
    )
    assert result.method == "one"
    assert result.text == "first"
    assert result.notes == []
    assert not result.failed


async def test_raising_step_is_noted_and_skipped():
    result = await run_chain(
        "doc", [Step("antiword", _raising("antiword not installed")), Step("next", _returning("ok"))], _inp()
    )
    assert result.method == "next"
    assert result.notes == ["antiword failed: antiword not installed"]


async def test_rejected_output_falls_through():
    result = await run_chain(
        "html", [Step("readability", _returning("   ")), Step("dom_text", _returning("body"))], _inp()
    )
    assert result.method == "dom_text"
    assert result.notes == ["readability output rejected (0 chars)"]


async def test_last_attempt_returned_when_nothing_accepted():
    result = await run_chain(
        "html", [Step("a", _returning("")), Step("b", _returning(" "))], _inp()
    )
    assert result.method == "b"
    assert result.error is None


async def test_no_completed_step_is_failure():
    result = await run_chain("doc", [Step("a", _raising("x")), Step("b", _raising("y"))], _inp())
    assert result.method == FAILED_METHOD
    assert result.error == "b failed: y"
    assert result.failed


def test_failed_flag_from_error():
    assert ExtractionResult("txt", "txt_utf8", "", error="boom").failed


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "extension,expected",
    [(".txt", "txt"), (".HTM", "html"), (".html", "html"), (".PDF", "pdf"), ("", "unknown")],
)
def test_source_type_for(extension, expected):
    assert source_type_for(extension) == expected


async def test_unsupported_extension_fails():
    result = await extract(_inp(b"data", ".odt"))
    assert result.failed
    assert result.error == "Unsupported extension '.odt'"


async def test_extract_dispatches_by_extension():
    result = await extract(_inp(b"Hello", ".txt"))
    assert result.source_type == "txt"
    assert result.text == "Hello"


# ---------------------------------------------------------------------------
# run_command
# ---------------------------------------------------------------------------


async def test_run_command_missing_tool():
    with patch("storyindex.extractors.base.shutil.which", return_value=None):
        with pytest.raises(ExtractionError, match="antiword not installed"):
            await run_command("antiword", "x.doc")


@pytest.mark.skipif(shutil.which("sh") is None, reason="needs a POSIX shell")
async def test_run_command_returns_stdout():
    assert await run_command("sh", "-c", "printf 'Hello story'") == "Hello story"


@pytest.mark.skipif(shutil.which("sh") is None, reason="needs a POSIX shell")
async def test_run_command_nonzero_exit():
    with pytest.raises(ExtractionError, match="exited with 3"):
        await run_command("sh", "-c", "echo nope >&2; exit 3")


@pytest.mark.skipif(shutil.which("sh") is None, reason="needs a POSIX shell")
async def test_run_command_empty_output():
    with pytest.raises(ExtractionError, match="empty output"):
        await run_command("sh", "-c", "true")
    assert await run_command("sh", "-c", "true", require_output=False) == ""


@pytest.mark.skipif(shutil.which("sh") is None, reason="needs a POSIX shell")
async def test_run_command_timeout():
    with pytest.raises(ExtractionError, match="timed out"):
        await run_command("sh", "-c", "sleep 5", timeout_s=0.1)


def test_cp1252_note_text():
    assert "windows-1252" in CP1252_NOTE
