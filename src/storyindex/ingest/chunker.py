"""Boundary-aware sliding-window chunker over canonical text."""

from __future__ import annotations

import re
from dataclasses import dataclass

EXCERPT_CHARS = 220

# A break is only taken if it leaves the chunk at least this full.
_PARAGRAPH_MIN_FILL = 0.60
_SENTENCE_MIN_FILL = 0.55

_WS_RE = re.compile(r"\s+")


@dataclass
class TextChunk:
    chunk_index: int
    start_char: int
    end_char: int
    text: str
    excerpt: str

    def to_map_entry(self) -> dict:
        """Entry of the ``stories/{id}.chunks.json`` chunk map."""
        return {
            "chunkIndex": self.chunk_index,
            "startChar": self.start_char,
            "endChar": self.end_char,
            "excerpt": self.excerpt,
        }


def chunk_text(text: str, chunk_size: int = 1800, overlap: int = 280) -> list[TextChunk]:
    """Split *text* into overlapping chunks.

    Each window tentatively ends at ``start + chunk_size``. Away from the end
    of the document the end moves back to the last paragraph break (``\\n\\n``)
    if that is at least 60% into the window, else to just after the last
    sentence break (``". "``) if at least 55% in, else the window is cut hard.
    The next window starts ``overlap`` characters before the previous end.

    Offsets index into ``text`` after CRLF normalization and trimming; chunk
    text is the trimmed slice. Empty input yields no chunks.

    Raises:
        ValueError: If ``chunk_size < 1`` or ``overlap`` is not in ``[0, chunk_size)``.
    """
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")
    if not 0 <= overlap < chunk_size:
        raise ValueError("overlap must be in [0, chunk_size)")

    cleaned = text.replace("\r\n", "\n").strip()
    if not cleaned:
        return []

    length = len(cleaned)
    chunks: list[TextChunk] = []
    start = 0

    while start < length:
        end = min(start + chunk_size, length)

        if end < length:
            paragraph = cleaned.rfind("\n\n", 0, end)
            if paragraph > start + int(chunk_size * _PARAGRAPH_MIN_FILL):
                end = paragraph
            else:
                sentence = cleaned.rfind(". ", 0, end)
                if sentence > start + int(chunk_size * _SENTENCE_MIN_FILL):
                    end = sentence + 1

        if end <= start:
            end = min(start + chunk_size, length)

        raw = cleaned[start:end].strip()
        chunks.append(
            TextChunk(
                chunk_index=len(chunks),
                start_char=start,
                end_char=end,
                text=raw,
                excerpt=_WS_RE.sub(" ", raw)[:EXCERPT_CHARS],
            )
        )

        if end >= length:
            break
        next_start = max(0, end - overlap)
        # an early break plus a large overlap must not move the window backwards
        start = next_start if next_start > start else end

    return chunks
