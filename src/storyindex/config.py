"""storyindex configuration loader.

Priority (high → low):
  1. CLI flags              (handled at call site, not in this module)
  2. Environment variables  (STORYINDEX_METADATA_MODEL, STORYINDEX_EMBEDDING_MODEL, ...)
  3. Per-project storyindex.yaml
  4. Global ~/.storyindex/config.yaml  (defaults only, no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; litellm reads them from the
environment (OPENAI_API_KEY, ...). All YAML reads use yaml.safe_load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".storyindex"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "storyindex.yaml"

# Matches api_key, api-key, api_secret, *_token, token, *_secret, secret,
# password, passwd, credential(s). Does NOT match max_tokens or batch_size.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["metadata", "embedding", "chunking", "quality", "extraction", "storage", "vectors", "run"]
)

_HTML_EXTRACT_MODES: frozenset[str] = frozenset(["readability_first", "dom_only"])

DEFAULT_EXTENSIONS: tuple[str, ...] = (".txt", ".html", ".htm", ".rtf", ".doc", ".docx", ".pdf")


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class MetadataCfg:
    """Structured-output metadata service (storyindex.yaml: metadata:).

    Attributes:
        model: LiteLLM model string, e.g. ``openai/gpt-4o-mini`` or
            ``lm_studio/qwen2.5-7b-instruct``.
        api_base: Optional base URL for OpenAI-compatible local servers.
        timeout_s: Per-request timeout.
        max_retries: Retries after the first attempt on transient failures.
        backoff_base_s: First backoff delay; doubles on each retry.
        max_section_chars: Size of each beginning/middle/end section sent for
            long documents.
        system_prompt_path: Optional file that replaces the built-in system prompt.
    """

    model: str = "openai/gpt-4o-mini"
    api_base: str | None = None
    timeout_s: float = 120.0
    max_retries: int = 2
    backoff_base_s: float = 1.0
    max_section_chars: int = 7_000
    system_prompt_path: str | None = None


@dataclass
class EmbeddingCfg:
    """Embedding service (storyindex.yaml: embedding:)."""

    model: str = "openai/text-embedding-3-small"
    api_base: str | None = None
    batch_size: int = 24
    max_retries: int = 2
    backoff_base_s: float = 1.0


@dataclass
class ChunkingCfg:
    """Sliding-window chunker sizes in characters (storyindex.yaml: chunking:)."""

    chunk_size_chars: int = 1_800
    overlap_chars: int = 280


@dataclass
class QualityCfg:
    """Quality classifier thresholds (storyindex.yaml: quality:).

    These are tuned heuristics; every one is overridable.
    """

    min_extract_chars: int = 500
    pdf_min_text_chars: int = 800
    binary_garbage_ratio: float = 0.01
    pdf_scanned_min_file_bytes: int = 120 * 1024
    pdf_scanned_chars_per_kb: float = 2.5
    needs_review_size_multiplier: int = 8


@dataclass
class ExtractionCfg:
    """Format decoder options (storyindex.yaml: extraction:)."""

    accept_extensions: list[str] = field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    html_extract_mode: str = "readability_first"  # readability_first | dom_only
    subprocess_timeout_s: float = 120.0


@dataclass
class StorageCfg:
    """Local stores (storyindex.yaml: storage:).

    Attributes:
        db_path: SQLite file holding stories, sources, tags, settings and vectors.
        object_dir: Root directory of the object store.
        store_original_binary: Also upload each original file under
            ``sources/original/{story_id}/``.
        output_text_dir: Optional local directory receiving ``{story_id}.txt``.
    """

    db_path: str = ".storyindex.db"
    object_dir: str = ".storyindex-objects"
    store_original_binary: bool = False
    output_text_dir: str | None = None


@dataclass
class VectorsCfg:
    """Vector upsert batching (storyindex.yaml: vectors:)."""

    batch_size: int = 200
    batch_max_bytes: int = 95 * 1024 * 1024


@dataclass
class RunCfg:
    """Run controller options (storyindex.yaml: run:)."""

    hash_concurrency: int = 8
    story_concurrency: int = 1
    report_dir: str = "reports"
    profile: bool = False


@dataclass
class IndexerConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    metadata: MetadataCfg = field(default_factory=MetadataCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    quality: QualityCfg = field(default_factory=QualityCfg)
    extraction: ExtractionCfg = field(default_factory=ExtractionCfg)
    storage: StorageCfg = field(default_factory=StorageCfg)
    vectors: VectorsCfg = field(default_factory=VectorsCfg)
    run: RunCfg = field(default_factory=RunCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}'; ignored.",
                UserWarning,
                stacklevel=4,
            )


def _positive(name: str, value: Any, cast: type = int) -> Any:
    try:
        parsed = cast(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be a positive number, got {value!r}") from exc
    if parsed <= 0:
        raise ConfigError(f"{name} must be a positive number, got {value!r}")
    return parsed


def _normalize_extensions(raw: Any) -> list[str]:
    if isinstance(raw, str):
        raw = raw.split(",")
    exts: list[str] = []
    for item in raw or []:
        ext = str(item).strip().lower()
        if not ext:
            continue
        if not ext.startswith("."):
            ext = f".{ext}"
        if ext not in exts:
            exts.append(ext)
    return exts or list(DEFAULT_EXTENSIONS)


def _validate(cfg: IndexerConfig) -> None:
    if cfg.chunking.overlap_chars >= cfg.chunking.chunk_size_chars:
        raise ConfigError(
            f"chunking.overlap_chars ({cfg.chunking.overlap_chars}) must be smaller than "
            f"chunking.chunk_size_chars ({cfg.chunking.chunk_size_chars})"
        )
    if cfg.extraction.html_extract_mode not in _HTML_EXTRACT_MODES:
        raise ConfigError(
            f"extraction.html_extract_mode must be one of "
            f"{', '.join(sorted(_HTML_EXTRACT_MODES))}, got '{cfg.extraction.html_extract_mode}'"
        )
    if not 0.0 < cfg.quality.binary_garbage_ratio < 1.0:
        raise ConfigError("quality.binary_garbage_ratio must be in (0, 1)")


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> IndexerConfig:
    """Build an *IndexerConfig* from a merged raw YAML dict."""
    cfg = IndexerConfig()

    if "metadata" in data:
        m = data["metadata"] or {}
        d = cfg.metadata
        cfg.metadata = MetadataCfg(
            model=str(m.get("model", d.model)),
            api_base=m.get("api_base") or d.api_base,
            timeout_s=_positive("metadata.timeout_s", m.get("timeout_s", d.timeout_s), float),
            max_retries=int(m.get("max_retries", d.max_retries)),
            backoff_base_s=float(m.get("backoff_base_s", d.backoff_base_s)),
            max_section_chars=_positive(
                "metadata.max_section_chars", m.get("max_section_chars", d.max_section_chars)
            ),
            system_prompt_path=m.get("system_prompt_path") or d.system_prompt_path,
        )

    if "embedding" in data:
        e = data["embedding"] or {}
        d = cfg.embedding
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", d.model)),
            api_base=e.get("api_base") or d.api_base,
            batch_size=_positive("embedding.batch_size", e.get("batch_size", d.batch_size)),
            max_retries=int(e.get("max_retries", d.max_retries)),
            backoff_base_s=float(e.get("backoff_base_s", d.backoff_base_s)),
        )

    if "chunking" in data:
        c = data["chunking"] or {}
        d = cfg.chunking
        cfg.chunking = ChunkingCfg(
            chunk_size_chars=_positive(
                "chunking.chunk_size_chars", c.get("chunk_size_chars", d.chunk_size_chars)
            ),
            overlap_chars=int(c.get("overlap_chars", d.overlap_chars)),
        )

    if "quality" in data:
        q = data["quality"] or {}
        d = cfg.quality
        cfg.quality = QualityCfg(
            min_extract_chars=_positive(
                "quality.min_extract_chars", q.get("min_extract_chars", d.min_extract_chars)
            ),
            pdf_min_text_chars=_positive(
                "quality.pdf_min_text_chars", q.get("pdf_min_text_chars", d.pdf_min_text_chars)
            ),
            binary_garbage_ratio=float(q.get("binary_garbage_ratio", d.binary_garbage_ratio)),
            pdf_scanned_min_file_bytes=_positive(
                "quality.pdf_scanned_min_file_bytes",
                q.get("pdf_scanned_min_file_bytes", d.pdf_scanned_min_file_bytes),
            ),
            pdf_scanned_chars_per_kb=_positive(
                "quality.pdf_scanned_chars_per_kb",
                q.get("pdf_scanned_chars_per_kb", d.pdf_scanned_chars_per_kb),
                float,
            ),
            needs_review_size_multiplier=_positive(
                "quality.needs_review_size_multiplier",
                q.get("needs_review_size_multiplier", d.needs_review_size_multiplier),
            ),
        )

    if "extraction" in data:
        x = data["extraction"] or {}
        d = cfg.extraction
        cfg.extraction = ExtractionCfg(
            accept_extensions=_normalize_extensions(
                x.get("accept_extensions", d.accept_extensions)
            ),
            html_extract_mode=str(x.get("html_extract_mode", d.html_extract_mode)).strip().lower(),
            subprocess_timeout_s=_positive(
                "extraction.subprocess_timeout_s",
                x.get("subprocess_timeout_s", d.subprocess_timeout_s),
                float,
            ),
        )

    if "storage" in data:
        s = data["storage"] or {}
        d = cfg.storage
        cfg.storage = StorageCfg(
            db_path=str(s.get("db_path", d.db_path)),
            object_dir=str(s.get("object_dir", d.object_dir)),
            store_original_binary=bool(s.get("store_original_binary", d.store_original_binary)),
            output_text_dir=s.get("output_text_dir") or d.output_text_dir,
        )

    if "vectors" in data:
        v = data["vectors"] or {}
        d = cfg.vectors
        cfg.vectors = VectorsCfg(
            batch_size=_positive("vectors.batch_size", v.get("batch_size", d.batch_size)),
            batch_max_bytes=_positive(
                "vectors.batch_max_bytes", v.get("batch_max_bytes", d.batch_max_bytes)
            ),
        )

    if "run" in data:
        r = data["run"] or {}
        d = cfg.run
        cfg.run = RunCfg(
            hash_concurrency=_positive(
                "run.hash_concurrency", r.get("hash_concurrency", d.hash_concurrency)
            ),
            story_concurrency=_positive(
                "run.story_concurrency", r.get("story_concurrency", d.story_concurrency)
            ),
            report_dir=str(r.get("report_dir", d.report_dir)),
            profile=bool(r.get("profile", d.profile)),
        )

    return cfg


def _apply_env_overrides(cfg: IndexerConfig) -> IndexerConfig:
    """Apply STORYINDEX_* environment variable overrides (layer 2)."""
    if model := os.environ.get("STORYINDEX_METADATA_MODEL"):
        cfg.metadata.model = model
    if base := os.environ.get("STORYINDEX_METADATA_API_BASE"):
        cfg.metadata.api_base = base
    if model := os.environ.get("STORYINDEX_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if base := os.environ.get("STORYINDEX_EMBEDDING_API_BASE"):
        cfg.embedding.api_base = base
    if db_path := os.environ.get("STORYINDEX_DB_PATH"):
        cfg.storage.db_path = db_path
    if value := os.environ.get("STORYINDEX_MIN_EXTRACT_CHARS"):
        cfg.quality.min_extract_chars = _positive("STORYINDEX_MIN_EXTRACT_CHARS", value)
    if value := os.environ.get("STORYINDEX_STORY_CONCURRENCY"):
        cfg.run.story_concurrency = _positive("STORYINDEX_STORY_CONCURRENCY", value)
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> IndexerConfig:
    """Load and return a merged *IndexerConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *storyindex.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged and validated *IndexerConfig*.

    Raises:
        ConfigError: If global config contains API-key-like fields or a
            value is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _apply_env_overrides(_cfg_from_dict(merged))
    _validate(cfg)
    return cfg
