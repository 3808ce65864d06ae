"""Tests for the boundary-aware sliding-window chunker."""

from __future__ import annotations

import pytest

from storyindex.ingest.chunker import EXCERPT_CHARS, chunk_text


def _sentences(n: int) -> str:
    return " ".join(f"Sentence number {i} ends here." for i in range(n))


# ---------------------------------------------------------------------------
# Basic shape
# ---------------------------------------------------------------------------


def test_empty_input_yields_no_chunks():
    assert chunk_text("") == []
    assert chunk_text("   \n\n  ") == []


def test_short_text_is_one_chunk():
    chunks = chunk_text("Hello world.", chunk_size=1800, overlap=280)
    assert len(chunks) == 1
    assert chunks[0].chunk_index == 0
    assert chunks[0].start_char == 0
    assert chunks[0].end_char == len("Hello world.")
    assert chunks[0].text == "Hello world."


def test_two_thousand_chars_make_two_overlapping_chunks():
    text = "x" * 2000
    chunks = chunk_text(text, chunk_size=1800, overlap=280)
    assert len(chunks) == 2
    assert chunks[0].start_char == 0
    assert chunks[0].end_char == 1800
    assert chunks[1].start_char == 1520
    assert chunks[1].start_char <= chunks[0].end_char
    assert chunks[1].end_char == 2000


def test_indices_are_dense_and_zero_based():
    chunks = chunk_text(_sentences(300), chunk_size=500, overlap=80)
    assert [c.chunk_index for c in chunks] == list(range(len(chunks)))


# ---------------------------------------------------------------------------
# Coverage and determinism
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("size,overlap", [(1800, 280), (500, 80), (200, 0), (120, 100)])
def test_chunks_cover_whole_text_without_gaps(size, overlap):
    text = ("Para one. " * 30 + "\n\n") * 20
    text = text.strip()
    chunks = chunk_text(text, chunk_size=size, overlap=overlap)

    assert chunks[0].start_char == 0
    assert chunks[-1].end_char == len(text)
    for prev, nxt in zip(chunks, chunks[1:]):
        assert nxt.start_char <= prev.end_char
        assert nxt.start_char > prev.start_char


def test_chunking_is_deterministic():
    text = _sentences(400)
    first = chunk_text(text, chunk_size=700, overlap=100)
    second = chunk_text(text, chunk_size=700, overlap=100)
    assert [(c.start_char, c.end_char) for c in first] == [(c.start_char, c.end_char) for c in second]


def test_overlap_is_end_minus_overlap():
    text = "y" * 5000
    chunks = chunk_text(text, chunk_size=1000, overlap=200)
    for prev, nxt in zip(chunks, chunks[1:]):
        assert nxt.start_char == prev.end_char - 200


# ---------------------------------------------------------------------------
# Boundary preference
# ---------------------------------------------------------------------------


def test_prefers_paragraph_break_past_sixty_percent():
    text = "a" * 700 + "\n\n" + "b" * 600
    chunks = chunk_text(text, chunk_size=1000, overlap=100)
    assert chunks[0].end_char == 700
    assert chunks[0].text == "a" * 700


def test_ignores_paragraph_break_too_early():
    # break at 30% of the window; no sentence break either → hard cut
    text = "a" * 300 + "\n\n" + "b" * 1500
    chunks = chunk_text(text, chunk_size=1000, overlap=100)
    assert chunks[0].end_char == 1000


def test_falls_back_to_sentence_break_past_fifty_five_percent():
    text = "a" * 600 + ". " + "b" * 900
    chunks = chunk_text(text, chunk_size=1000, overlap=100)
    # the period stays with the first chunk
    assert chunks[0].end_char == 601
    assert chunks[0].text.endswith(".")


def test_last_window_is_not_shortened():
    text = "a" * 700 + "\n\n" + "b" * 100
    chunks = chunk_text(text, chunk_size=1000, overlap=100)
    assert len(chunks) == 1
    assert chunks[0].end_char == len(text)


# ---------------------------------------------------------------------------
# Excerpts, offsets, validation
# ---------------------------------------------------------------------------


def test_excerpt_collapses_whitespace_and_is_bounded():
    text = ("word \n\n  " * 200).strip()
    chunk = chunk_text(text, chunk_size=1800, overlap=280)[0]
    assert "\n" not in chunk.excerpt
    assert "  " not in chunk.excerpt
    assert len(chunk.excerpt) <= EXCERPT_CHARS


def test_map_entry_uses_camel_case_keys():
    entry = chunk_text("Hello world.")[0].to_map_entry()
    assert entry == {"chunkIndex": 0, "startChar": 0, "endChar": 12, "excerpt": "Hello world."}


def test_crlf_input_is_normalized():
    chunks = chunk_text("one\r\ntwo")
    assert chunks[0].text == "one\ntwo"


@pytest.mark.parametrize("size,overlap", [(0, 0), (100, 100), (100, -1), (100, 150)])
def test_invalid_sizes_raise(size, overlap):
    with pytest.raises(ValueError):
        chunk_text("text", chunk_size=size, overlap=overlap)
