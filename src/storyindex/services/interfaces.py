"""Capability interfaces for every external collaborator of the indexer.

The run controller only talks to these ABCs, so tests substitute in-memory
fakes and the SQLite/litellm/filesystem adapters stay swappable.

    TextCompletionService   structured-output chat completions (metadata)
    EmbeddingService        batch text -> vectors
    ObjectStore             key-addressed blobs (canonical text, chunk maps)
    VectorIndex             upsert-by-id vectors with metadata filters
    RelationalStore         stories, sources, tags, settings
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from storyindex.db.models import (
    CorpusStatus,
    DuplicateGroup,
    SourceRecord,
    Story,
    VectorMatch,
    VectorRecord,
)


class TextCompletionService(ABC):
    """Chat-completion endpoint able to return a JSON object."""

    @abstractmethod
    async def complete(
        self,
        messages: list[dict[str, str]],
        *,
        json_mode: bool = True,
        temperature: float = 0.1,
    ) -> str:
        """Return the assistant message content for *messages*.

        Raises:
            ServiceUnavailableError: transient failure, safe to retry.
            ServiceError: any other failure.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this provider."""


class EmbeddingService(ABC):
    """Batch string-in / vector-out endpoint with a fixed dimensionality per model."""

    @property
    @abstractmethod
    def model_name(self) -> str:
        """The model identifier stored in corpus settings."""

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Return one vector per input text, in input order.

        Raises:
            ServiceUnavailableError: transient failure, safe to retry.
            ServiceError: any other failure.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this provider."""


class ObjectStore(ABC):
    """Key-addressed blob storage."""

    @abstractmethod
    async def put_text(self, key: str, content: str) -> None: ...

    @abstractmethod
    async def put_json(self, key: str, value: Any) -> None: ...

    @abstractmethod
    async def put_bytes(self, key: str, content: bytes, content_type: str) -> None: ...

    @abstractmethod
    async def get_text(self, key: str) -> str | None:
        """Return the stored text for *key*, or None if absent."""

    @abstractmethod
    async def exists(self, key: str) -> bool: ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete *key*; deleting a missing key is not an error."""

    @abstractmethod
    async def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with *prefix*; return how many were removed."""


class VectorIndex(ABC):
    """Upsert-by-id vector storage with metadata filters."""

    @abstractmethod
    async def prepare(self, dimension: int) -> None:
        """Make the index ready to accept vectors of *dimension* for this run's model."""

    @abstractmethod
    async def upsert(self, records: list[VectorRecord]) -> int:
        """Insert or replace *records*; return the number written."""

    @abstractmethod
    async def delete_ids(self, ids: list[str]) -> int:
        """Delete the given vector ids; return the number removed."""

    @abstractmethod
    async def delete_by_story(self, story_id: str, *, min_chunk_index: int = 0) -> int:
        """Delete vectors of *story_id* whose chunk index is ``>= min_chunk_index``."""

    @abstractmethod
    async def count(self, story_id: str | None = None) -> int: ...

    @abstractmethod
    async def query(
        self,
        vector: list[float],
        top_k: int = 10,
        filters: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        """Nearest neighbours of *vector*; *filters* match metadata fields exactly."""


class RelationalStore(ABC):
    """Stories, source mappings, tags, and corpus settings."""

    # ── Lifecycle ──────────────────────────────────────────────────────

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables if they don't exist. Called before a run."""

    @abstractmethod
    async def close(self) -> None: ...

    # ── Settings ───────────────────────────────────────────────────────

    @abstractmethod
    async def get_settings(self) -> dict[str, str]: ...

    @abstractmethod
    async def put_settings(self, values: dict[str, str]) -> None: ...

    # ── Stories ────────────────────────────────────────────────────────

    @abstractmethod
    async def get_story(self, story_id: str) -> Story | None: ...

    @abstractmethod
    async def get_story_by_canon_hash(self, canon_hash: str) -> Story | None: ...

    @abstractmethod
    async def upsert_story(self, story: Story) -> None: ...

    @abstractmethod
    async def delete_story_if_orphan(self, story_id: str) -> Story | None:
        """Delete *story_id* when no source maps to it; return the deleted story."""

    # ── Sources ────────────────────────────────────────────────────────

    @abstractmethod
    async def get_source(self, source_path: str) -> SourceRecord | None: ...

    @abstractmethod
    async def list_sources(self) -> list[SourceRecord]: ...

    @abstractmethod
    async def upsert_source(self, source: SourceRecord) -> None:
        """Map a path to a story, replacing any previous mapping of that path."""

    @abstractmethod
    async def refresh_source_count(self, story_id: str) -> int:
        """Recount sources of *story_id*, store and return the count."""

    # ── Tags ───────────────────────────────────────────────────────────

    @abstractmethod
    async def replace_story_tags(self, story_id: str, tags: list[str]) -> None: ...

    @abstractmethod
    async def get_story_tags(self, story_id: str) -> list[str]: ...

    # ── Reporting ──────────────────────────────────────────────────────

    @abstractmethod
    async def get_duplicate_groups(self, limit: int = 500) -> list[DuplicateGroup]: ...

    @abstractmethod
    async def status(self) -> CorpusStatus: ...
