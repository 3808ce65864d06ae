"""Metadata enrichment through a structured-output completion service.

Flow per story:

1. Build the user prompt; long texts are cut into ``[BEGINNING]``,
   ``[MIDDLE]`` and ``[END]`` sections of ``max_section_chars`` each.
2. Call the service (retried on transient failures).
3. Pull the JSON object out of the reply and validate it with
   :class:`StoryMetadata`.
4. On a parse/validation failure, ask the service once to repair its own
   reply; a second failure raises MetadataError.

The caller substitutes :func:`fallback_metadata` when enrichment is skipped
or fails, so every persisted story has a complete metadata record.
"""

from __future__ import annotations

import json
import re
from pathlib import Path, PurePosixPath
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from storyindex.config import MetadataCfg
from storyindex.db.models import QualityStatus
from storyindex.ingest.retry import with_retries
from storyindex.services.interfaces import TextCompletionService
from storyindex.utils.errors import MetadataError
from storyindex.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TITLE = "Untitled Story"

SYSTEM_PROMPT = """You are a story cataloging assistant. Return STRICT JSON only with this schema:
{
  "title": "string",
  "author": "string | null (null if unknown)",
  "summary_short": "<=280 chars",
  "summary_long": "3-6 sentences",
  "genre": "single best genre",
  "tone": "single best tone",
  "setting": "short setting",
  "themes": ["up to 5 strings"],
  "tags": ["up to 12 strings, consistent casing"],
  "content_notes": ["optional strings"]
}
Do not include markdown or extra keys."""

REPAIR_SYSTEM_PROMPT = "Return valid JSON only. No prose."
REPAIR_PREFIX = "Fix this so it is valid JSON for the required schema and return JSON only:"

_FENCED_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_STEM_SEPARATORS_RE = re.compile(r"[_-]+")


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


def _clip(value: Any, limit: int) -> str:
    return value.strip()[:limit] if isinstance(value, str) else ""


def _string_list(value: Any, limit: int) -> list[str]:
    if not isinstance(value, list):
        return []
    items = [item.strip() for item in value if isinstance(item, str)]
    return [item for item in items if item][:limit]


class StoryMetadata(BaseModel):
    """Descriptive fields for one story, clipped to catalog limits."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    title: str = DEFAULT_TITLE
    author: str | None = None
    summary_short: str = Field(default="", max_length=280)
    summary_long: str = ""
    genre: str = "Unknown"
    tone: str = "Unknown"
    setting: str = ""
    themes: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    content_notes: list[str] = Field(default_factory=list)

    @field_validator("title", mode="before")
    @classmethod
    def _title(cls, value: Any) -> str:
        return value.strip() if isinstance(value, str) and value.strip() else DEFAULT_TITLE

    @field_validator("author", mode="before")
    @classmethod
    def _author(cls, value: Any) -> str | None:
        return _clip(value, 160) or None

    @field_validator("summary_short", "summary_long", mode="before")
    @classmethod
    def _summary(cls, value: Any, info) -> str:
        return _clip(value, 280 if info.field_name == "summary_short" else 4_000)

    @field_validator("genre", "tone", mode="before")
    @classmethod
    def _label(cls, value: Any) -> str:
        return value.strip()[:64] if isinstance(value, str) else "Unknown"

    @field_validator("setting", mode="before")
    @classmethod
    def _setting(cls, value: Any) -> str:
        return _clip(value, 160)

    @field_validator("themes", mode="before")
    @classmethod
    def _themes(cls, value: Any) -> list[str]:
        return _string_list(value, 5)

    @field_validator("tags", mode="before")
    @classmethod
    def _tags(cls, value: Any) -> list[str]:
        return _string_list(value, 12)

    @field_validator("content_notes", mode="before")
    @classmethod
    def _content_notes(cls, value: Any) -> list[str]:
        return _string_list(value, 8)

    @model_validator(mode="before")
    @classmethod
    def _long_defaults_to_short(cls, data: Any) -> Any:
        if isinstance(data, dict) and not _clip(data.get("summary_long"), 4_000):
            data = {**data, "summary_long": data.get("summary_short")}
        return data


# ---------------------------------------------------------------------------
# Prompt + parsing helpers
# ---------------------------------------------------------------------------


def build_prompt_text(text: str, max_section: int = 7_000) -> str:
    """Return *text* whole, or beginning/middle/end sections when it is long."""
    if len(text) <= max_section * 2:
        return text
    middle_start = max(0, len(text) // 2 - max_section // 2)
    middle_end = min(len(text), middle_start + max_section)
    return "\n\n".join(
        [
            "[BEGINNING]",
            text[:max_section],
            "[MIDDLE]",
            text[middle_start:middle_end],
            "[END]",
            text[-max_section:],
        ]
    )


def extract_json(raw: str) -> str:
    """Pull the JSON object out of a model reply (fenced block or outermost braces)."""
    trimmed = raw.strip()
    fenced = _FENCED_RE.search(trimmed)
    if fenced:
        return fenced.group(1).strip()
    start = trimmed.find("{")
    end = trimmed.rfind("}")
    if start >= 0 and end > start:
        return trimmed[start : end + 1]
    return trimmed


def parse_metadata(raw: str) -> StoryMetadata:
    """Validate a model reply into StoryMetadata.

    Raises:
        MetadataError: The reply holds no JSON object or fails validation.
    """
    try:
        data = json.loads(extract_json(raw))
    except json.JSONDecodeError as exc:
        raise MetadataError(f"Metadata reply is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MetadataError(f"Metadata reply is a JSON {type(data).__name__}, expected an object")
    try:
        return StoryMetadata.model_validate(data)
    except ValidationError as exc:
        raise MetadataError(f"Metadata reply failed validation: {exc}") from exc


def fallback_metadata(
    source_path: str,
    status: QualityStatus,
    status_notes: str | None = None,
) -> StoryMetadata:
    """Deterministic metadata derived from the file name and quality status."""
    stem = _STEM_SEPARATORS_RE.sub(" ", PurePosixPath(source_path).stem).strip()
    status_value = QualityStatus(status).value
    return StoryMetadata(
        title=stem or DEFAULT_TITLE,
        author=None,
        summary_short=(status_notes or f"Ingestion status: {status_value}")[:280],
        summary_long=(
            f"This source was ingested with status {status_value}. "
            "Review before relying on generated metadata."
        ),
        genre="",
        tone="",
        setting="",
        themes=[],
        tags=[],
        content_notes=[status_notes] if status_notes else [],
    )


# ---------------------------------------------------------------------------
# Enricher
# ---------------------------------------------------------------------------


class MetadataEnricher:
    """Calls the completion service and validates its reply."""

    def __init__(self, service: TextCompletionService, cfg: MetadataCfg) -> None:
        self._service = service
        self._cfg = cfg
        self._system_prompt = (
            Path(cfg.system_prompt_path).read_text(encoding="utf-8")
            if cfg.system_prompt_path
            else SYSTEM_PROMPT
        )

    async def _complete(self, messages: list[dict[str, str]], operation: str) -> str:
        return await with_retries(
            lambda: self._service.complete(messages, json_mode=True, temperature=0.1),
            max_retries=self._cfg.max_retries,
            backoff_base_s=self._cfg.backoff_base_s,
            operation=operation,
        )

    async def enrich(self, text: str, source_path: str) -> StoryMetadata:
        """Return validated metadata for *text*.

        Raises:
            MetadataError: The reply and its one repair both failed validation.
            ServiceError: The service failed in a non-retryable way, or kept
                failing after the retry budget.
        """
        user_prompt = (
            f"Source path: {source_path}\n"
            "Analyze the story text below and return only JSON.\n\n"
            f"{build_prompt_text(text, self._cfg.max_section_chars)}"
        )
        raw = await self._complete(
            [
                {"role": "system", "content": self._system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            operation="metadata",
        )
        try:
            return parse_metadata(raw)
        except MetadataError as exc:
            logger.info("metadata_repair", source_path=source_path, error=str(exc))

        repaired = await self._complete(
            [
                {"role": "system", "content": REPAIR_SYSTEM_PROMPT},
                {"role": "user", "content": f"{REPAIR_PREFIX}\n\n{raw}"},
            ],
            operation="metadata_repair",
        )
        return parse_metadata(repaired)
