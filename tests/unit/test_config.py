"""Tests for the storyindex config loader."""

from __future__ import annotations

import warnings
from pathlib import Path

import pytest
import yaml

from storyindex.config import (
    DEFAULT_EXTENSIONS,
    ConfigError,
    IndexerConfig,
    load_config,
)

_ENV_VARS = (
    "STORYINDEX_METADATA_MODEL",
    "STORYINDEX_METADATA_API_BASE",
    "STORYINDEX_EMBEDDING_MODEL",
    "STORYINDEX_EMBEDDING_API_BASE",
    "STORYINDEX_DB_PATH",
    "STORYINDEX_MIN_EXTRACT_CHARS",
    "STORYINDEX_STORY_CONCURRENCY",
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _write_yaml(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.dump(data), encoding="utf-8")


def _load(tmp_path: Path, project: dict | None = None, global_: dict | None = None) -> IndexerConfig:
    global_path = tmp_path / "home" / "config.yaml"
    if global_ is not None:
        _write_yaml(global_path, global_)
    if project is not None:
        _write_yaml(tmp_path / "storyindex.yaml", project)
    return load_config(project_dir=tmp_path, global_config_path=global_path)


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


def test_load_config_defaults_no_files(tmp_path: Path) -> None:
    """No config files → all hardcoded defaults."""
    cfg = _load(tmp_path)

    assert cfg.metadata.model == "openai/gpt-4o-mini"
    assert cfg.embedding.model == "openai/text-embedding-3-small"
    assert cfg.embedding.batch_size == 24
    assert cfg.chunking.chunk_size_chars == 1_800
    assert cfg.chunking.overlap_chars == 280
    assert cfg.quality.min_extract_chars == 500
    assert cfg.quality.binary_garbage_ratio == 0.01
    assert cfg.extraction.accept_extensions == list(DEFAULT_EXTENSIONS)
    assert cfg.extraction.html_extract_mode == "readability_first"
    assert cfg.storage.db_path == ".storyindex.db"
    assert cfg.storage.store_original_binary is False
    assert cfg.vectors.batch_size == 200
    assert cfg.run.story_concurrency == 1
    assert cfg.run.profile is False


# ---------------------------------------------------------------------------
# Layering
# ---------------------------------------------------------------------------


def test_global_config_applies(tmp_path: Path) -> None:
    cfg = _load(tmp_path, global_={"embedding": {"model": "ollama/nomic-embed-text"}})
    assert cfg.embedding.model == "ollama/nomic-embed-text"
    assert cfg.embedding.batch_size == 24


def test_project_overrides_global(tmp_path: Path) -> None:
    cfg = _load(
        tmp_path,
        global_={"embedding": {"model": "ollama/nomic-embed-text", "batch_size": 8}},
        project={"embedding": {"model": "openai/text-embedding-3-large"}},
    )
    assert cfg.embedding.model == "openai/text-embedding-3-large"
    # deep merge keeps the global sibling key
    assert cfg.embedding.batch_size == 8


def test_env_overrides_project(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("STORYINDEX_EMBEDDING_MODEL", "openai/env-embed")
    monkeypatch.setenv("STORYINDEX_METADATA_MODEL", "openai/env-chat")
    monkeypatch.setenv("STORYINDEX_DB_PATH", "/tmp/env.db")
    monkeypatch.setenv("STORYINDEX_MIN_EXTRACT_CHARS", "250")
    monkeypatch.setenv("STORYINDEX_STORY_CONCURRENCY", "4")
    monkeypatch.setenv("STORYINDEX_EMBEDDING_API_BASE", "http://localhost:1234/v1")

    cfg = _load(tmp_path, project={"embedding": {"model": "openai/project-embed"}})

    assert cfg.embedding.model == "openai/env-embed"
    assert cfg.embedding.api_base == "http://localhost:1234/v1"
    assert cfg.metadata.model == "openai/env-chat"
    assert cfg.storage.db_path == "/tmp/env.db"
    assert cfg.quality.min_extract_chars == 250
    assert cfg.run.story_concurrency == 4


def test_env_invalid_number_raises(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("STORYINDEX_STORY_CONCURRENCY", "many")
    with pytest.raises(ConfigError, match="STORYINDEX_STORY_CONCURRENCY"):
        _load(tmp_path)


def test_empty_section_uses_defaults(tmp_path: Path) -> None:
    cfg = _load(tmp_path, project={"quality": None, "run": {"profile": True}})
    assert cfg.quality.min_extract_chars == 500
    assert cfg.run.profile is True


def test_storage_and_quality_sections(tmp_path: Path) -> None:
    cfg = _load(
        tmp_path,
        project={
            "storage": {"store_original_binary": True, "output_text_dir": "out"},
            "quality": {"min_extract_chars": 300, "pdf_scanned_chars_per_kb": 1.5},
            "vectors": {"batch_size": 50},
        },
    )
    assert cfg.storage.store_original_binary is True
    assert cfg.storage.output_text_dir == "out"
    assert cfg.quality.min_extract_chars == 300
    assert cfg.quality.pdf_scanned_chars_per_kb == 1.5
    assert cfg.vectors.batch_size == 50


# ---------------------------------------------------------------------------
# API key guard
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("key", ["api_key", "API-KEY", "auth_token", "password", "credentials"])
def test_global_config_rejects_secrets(tmp_path: Path, key: str) -> None:
    with pytest.raises(ConfigError, match="forbidden key"):
        _load(tmp_path, global_={"embedding": {key: "sk-secret"}})


def test_project_config_secret_names_not_checked(tmp_path: Path) -> None:
    # only the shared global file is guarded
    cfg = _load(tmp_path, project={"metadata": {"api_key": "ignored"}})
    assert cfg.metadata.model == "openai/gpt-4o-mini"


def test_max_tokens_is_not_a_secret(tmp_path: Path) -> None:
    _load(tmp_path, global_={"metadata": {"max_tokens": 512}})


# ---------------------------------------------------------------------------
# Warnings and validation
# ---------------------------------------------------------------------------


def test_unknown_top_level_key_warns(tmp_path: Path) -> None:
    with pytest.warns(UserWarning, match="Unknown config key 'retrieval'"):
        _load(tmp_path, project={"retrieval": {"top_k": 5}})


def test_known_keys_do_not_warn(tmp_path: Path) -> None:
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        _load(tmp_path, project={"chunking": {"chunk_size_chars": 1000, "overlap_chars": 100}})


def test_overlap_must_be_smaller_than_chunk(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="overlap_chars"):
        _load(tmp_path, project={"chunking": {"chunk_size_chars": 500, "overlap_chars": 500}})


def test_html_mode_normalized_and_validated(tmp_path: Path) -> None:
    cfg = _load(tmp_path, project={"extraction": {"html_extract_mode": " DOM_ONLY "}})
    assert cfg.extraction.html_extract_mode == "dom_only"

    with pytest.raises(ConfigError, match="html_extract_mode"):
        _load(tmp_path, project={"extraction": {"html_extract_mode": "markdown"}})


def test_garbage_ratio_range(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="binary_garbage_ratio"):
        _load(tmp_path, project={"quality": {"binary_garbage_ratio": 1.5}})


@pytest.mark.parametrize("value", [0, -3, "lots"])
def test_non_positive_batch_size_rejected(tmp_path: Path, value) -> None:
    with pytest.raises(ConfigError, match="embedding.batch_size"):
        _load(tmp_path, project={"embedding": {"batch_size": value}})


# ---------------------------------------------------------------------------
# Extensions
# ---------------------------------------------------------------------------


def test_extensions_normalized_from_list(tmp_path: Path) -> None:
    cfg = _load(tmp_path, project={"extraction": {"accept_extensions": ["TXT", ".pdf", "txt", " "]}})
    assert cfg.extraction.accept_extensions == [".txt", ".pdf"]


def test_extensions_from_comma_string(tmp_path: Path) -> None:
    cfg = _load(tmp_path, project={"extraction": {"accept_extensions": "html, .RTF"}})
    assert cfg.extraction.accept_extensions == [".html", ".rtf"]


def test_empty_extensions_fall_back_to_defaults(tmp_path: Path) -> None:
    cfg = _load(tmp_path, project={"extraction": {"accept_extensions": []}})
    assert cfg.extraction.accept_extensions == list(DEFAULT_EXTENSIONS)


# ---------------------------------------------------------------------------
# yaml.safe_load enforcement
# ---------------------------------------------------------------------------


def test_config_does_not_execute_yaml_tags(tmp_path: Path) -> None:
    (tmp_path / "storyindex.yaml").write_text(
        "!!python/object/apply:os.system ['echo pwned']\n", encoding="utf-8"
    )
    with pytest.raises(yaml.constructor.ConstructorError):
        load_config(project_dir=tmp_path, global_config_path=tmp_path / "none.yaml")
