"""Tests for the legacy Word decoder chain."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

from storyindex.extractors.base import ExtractorInput
from storyindex.extractors.doc import extract_doc
from storyindex.utils.errors import ExtractionError


def _inp(tmp_path: Path) -> ExtractorInput:
    path = tmp_path / "old.doc"
    path.write_bytes(b"\xd0\xcf\x11\xe0fake")
    return ExtractorInput(path=path, data=path.read_bytes(), extension=".doc", subprocess_timeout_s=5)


async def test_antiword(tmp_path):
    antiword = AsyncMock(return_value="Once upon a time.\n")
    with patch("storyindex.extractors.doc.run_command", antiword):
        result = await extract_doc(_inp(tmp_path))
    assert result.method == "antiword"
    assert result.text == "Once upon a time.\n"
    assert antiword.await_args.args[0] == "antiword"
    assert antiword.await_args.kwargs["timeout_s"] == 5


async def test_soffice_fallback(tmp_path):
    inp = _inp(tmp_path)

    async def _fake_run(*args, **kwargs):
        if args[0] == "antiword":
            raise ExtractionError("antiword not installed")
        outdir = Path(args[args.index("--outdir") + 1])
        (outdir / "old.txt").write_text("Converted text.", encoding="utf-8")
        return ""

    with (
        patch("storyindex.extractors.doc.shutil.which", return_value="/usr/bin/soffice"),
        patch("storyindex.extractors.doc.run_command", side_effect=_fake_run),
    ):
        result = await extract_doc(inp)
    assert result.method == "soffice_fallback"
    assert result.text == "Converted text."
    assert result.notes == ["antiword failed: antiword not installed"]


async def test_no_tools_is_failure(tmp_path):
    with (
        patch("storyindex.extractors.doc.shutil.which", return_value=None),
        patch(
            "storyindex.extractors.doc.run_command",
            AsyncMock(side_effect=ExtractionError("antiword not installed")),
        ),
    ):
        result = await extract_doc(_inp(tmp_path))
    assert result.failed
    assert result.method == "failed"
    assert result.error == "soffice_fallback failed: LibreOffice not installed"
