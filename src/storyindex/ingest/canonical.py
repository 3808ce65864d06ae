"""Canonical text: the single normalized form that is hashed, chunked and embedded."""

from __future__ import annotations

import re
import unicodedata

_NEWLINES_RE = re.compile(r"\r\n?")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_TRAILING_WS_RE = re.compile(r"[ \t]+$", re.MULTILINE)
_BLANK_RUN_RE = re.compile(r"\n{3,}")


def canonicalize(text: str) -> str:
    """Return the canonical form of *text*.

    Steps, in order: uniform ``\\n`` newlines, control-character removal
    (tab and newline survive), NFKC compatibility normalization, trailing
    space/tab trim on every line, runs of 3+ newlines collapsed to one blank
    line, whole-document trim.

    ``canonicalize(canonicalize(x)) == canonicalize(x)`` for every string.
    """
    text = _NEWLINES_RE.sub("\n", text)
    text = _CONTROL_RE.sub("", text)
    text = unicodedata.normalize("NFKC", text)
    text = _TRAILING_WS_RE.sub("", text)
    text = _BLANK_RUN_RE.sub("\n\n", text)
    return text.strip()


def word_count(text: str) -> int:
    return len(text.split())
