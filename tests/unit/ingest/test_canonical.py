"""Tests for canonicalize() and word_count()."""

from __future__ import annotations

import pytest

from storyindex.ingest.canonical import canonicalize, word_count


# ---------------------------------------------------------------------------
# Normalization steps
# ---------------------------------------------------------------------------


def test_crlf_and_cr_become_lf():
    assert canonicalize("one\r\ntwo\rthree") == "one\ntwo\nthree"


def test_control_characters_removed_but_tabs_kept():
    assert canonicalize("a\x00b\x07c\td\x7f") == "abc\td"


def test_nfkc_folds_compatibility_forms():
    # full-width letters and the "fi" ligature
    assert canonicalize("Ｈｅｌｌｏ ﬁne") == "Hello fine"


def test_trailing_whitespace_trimmed_per_line():
    assert canonicalize("first   \nsecond\t\t\nthird") == "first\nsecond\nthird"


def test_three_or_more_newlines_collapse_to_one_blank_line():
    assert canonicalize("a\n\n\n\n\nb") == "a\n\nb"


def test_blank_lines_with_spaces_collapse_too():
    assert canonicalize("a\n   \n\t\n\nb") == "a\n\nb"


def test_whole_document_trimmed():
    assert canonicalize("\n\n   Hello world.   \n\n") == "Hello world."


def test_empty_input():
    assert canonicalize("") == ""
    assert canonicalize(" \n\t\r\n ") == ""


# ---------------------------------------------------------------------------
# Idempotency
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "text",
    [
        "plain text",
        "a\r\n\r\n\r\n\r\nb",
        "line  \nnext　\n",
        "\x01\n\x02\n\x03\nx",
        "a\n \n \n \nb",
        "ﬃ ① Ａ",
        "x  ",
        "  leading\n\n\n\ntrailing  \n\n",
        "café vs café",
        "mixed\r\x00\n\t tabs \t\n",
    ],
)
def test_canonicalize_is_idempotent(text):
    once = canonicalize(text)
    assert canonicalize(once) == once


def test_equivalent_inputs_share_canonical_form():
    a = "Hello world.\r\n"
    b = "\n\nHello world.   \n\n\n"
    assert canonicalize(a) == canonicalize(b) == "Hello world."


# ---------------------------------------------------------------------------
# word_count
# ---------------------------------------------------------------------------


def test_word_count_splits_on_any_whitespace():
    assert word_count("one two\nthree\tfour  five") == 5


def test_word_count_empty():
    assert word_count("") == 0
