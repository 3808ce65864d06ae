"""Tests for storyindex rich error messages."""

from __future__ import annotations

import pytest

from storyindex.cli.errors import (
    err_config,
    err_folder_not_found,
    err_no_api_key,
    err_no_db,
    err_probe_failed,
    err_settings_mismatch,
    err_storage,
    warn_failed_files,
    warn_flagged_files,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _has_action(msg: str) -> bool:
    """Every message must contain an actionable instruction."""
    lower = msg.lower()
    return any(kw in lower for kw in ["run:", "set:", "use:", "see:", "fix ", "check ", "export "])


# ---------------------------------------------------------------------------
# Every message is actionable
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "msg",
    [
        err_no_api_key("openai"),
        err_folder_not_found("stories"),
        err_no_db(),
        err_settings_mismatch("dimension", "1536", "768"),
        err_probe_failed("openai/text-embedding-3-small", "connection refused"),
        err_config("chunking.overlap_chars too large"),
        err_storage("disk full"),
        warn_flagged_files(2, "reports/flagged_files.csv"),
        warn_failed_files(1, "reports/extraction_failures.csv"),
    ],
)
def test_message_is_actionable(msg: str) -> None:
    assert _has_action(msg)


# ---------------------------------------------------------------------------
# Specific content
# ---------------------------------------------------------------------------


def test_no_api_key_known_provider() -> None:
    msg = err_no_api_key("anthropic")
    assert "'anthropic'" in msg
    assert "ANTHROPIC_API_KEY" in msg


def test_no_api_key_unknown_provider_derives_env_var() -> None:
    assert "GROQ_API_KEY" in err_no_api_key("groq")


def test_no_db_names_path() -> None:
    assert "data/corpus.db" in err_no_db("data/corpus.db")
    assert "storyindex index" in err_no_db()


def test_settings_mismatch_offers_force() -> None:
    msg = err_settings_mismatch("model name", "openai/a", "openai/b")
    assert "openai/a" in msg
    assert "openai/b" in msg
    assert "--force-reindex" in msg


def test_probe_failed_says_nothing_indexed() -> None:
    msg = err_probe_failed("ollama/nomic-embed-text", "timeout")
    assert "ollama/nomic-embed-text" in msg
    assert "Nothing was indexed" in msg


def test_failed_files_points_to_reindex() -> None:
    msg = warn_failed_files(3, "reports/extraction_failures.csv")
    assert "3 file(s)" in msg
    assert "storyindex reindex PATH" in msg
