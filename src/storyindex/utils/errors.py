"""Exception hierarchy for storyindex.

    StoryIndexError                 base, carries an optional provider name
    +-- ExtractionError             one extraction strategy failed (absorbed by chains)
    +-- ServiceError                external call failed, not worth retrying
    |   +-- ServiceUnavailableError network / timeout / rate limit / 5xx (retryable)
    +-- MetadataError               metadata response failed schema validation
    +-- EmbeddingError              embedding response malformed or wrong size
    |   +-- EmbeddingProbeError     dimension probe failed (corpus-fatal)
    +-- SettingsMismatchError       stored embedding settings differ (corpus-fatal)
    +-- StorageError                object store / vector index failure

Only ``EmbeddingProbeError`` and ``SettingsMismatchError`` abort a run; every
other error is scoped to a single file.
"""

from __future__ import annotations


class StoryIndexError(Exception):
    """Base exception for all storyindex errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


class ExtractionError(StoryIndexError):
    """Raised by a single extraction strategy; the fallback chain records it and moves on."""


class ServiceError(StoryIndexError):
    """Raised when an external service call fails in a way retrying will not fix."""


class ServiceUnavailableError(ServiceError):
    """Raised for transient failures: connection errors, timeouts, rate limits, 5xx."""


class MetadataError(StoryIndexError):
    """Raised when the metadata response cannot be parsed into the schema, even after repair."""


class EmbeddingError(StoryIndexError):
    """Raised when an embedding response has the wrong count or shape."""


class EmbeddingProbeError(EmbeddingError):
    """Raised when the dimension probe fails; the run cannot start."""


class StorageError(StoryIndexError):
    """Raised when the object store or vector index rejects an operation."""


class SettingsMismatchError(StoryIndexError):
    """Raised when stored embedding settings do not match the current run.

    Mixing vectors from different models or dimensionalities in one index
    makes similarity scores meaningless, so the run stops before touching
    any file unless the caller passes ``force_reindex``.
    """

    def __init__(self, field: str, stored: str, current: str) -> None:
        self.field = field
        self.stored = stored
        self.current = current
        super().__init__(
            f"Embedding {field} mismatch: corpus has '{stored}', current run uses "
            f"'{current}'. Re-run with --force-reindex to override."
        )
