"""Batched embedding with a per-run dimension probe."""

from __future__ import annotations

from storyindex.config import EmbeddingCfg
from storyindex.ingest.retry import with_retries
from storyindex.services.interfaces import EmbeddingService
from storyindex.utils.errors import EmbeddingError, EmbeddingProbeError, StoryIndexError
from storyindex.utils.logging import get_logger

logger = get_logger(__name__)

PROBE_TEXT = "embedding dimension probe"


class Embedder:
    """Wraps an EmbeddingService with batching, retries and shape checks.

    :meth:`probe` must run once before :meth:`embed_texts`; it fixes the
    dimension every later vector is checked against.
    """

    def __init__(self, service: EmbeddingService, cfg: EmbeddingCfg) -> None:
        self._service = service
        self._cfg = cfg
        self._dimension: int | None = None

    @property
    def model_name(self) -> str:
        return self._service.model_name

    @property
    def dimension(self) -> int | None:
        return self._dimension

    async def _call(self, texts: list[str], operation: str) -> list[list[float]]:
        return await with_retries(
            lambda: self._service.embed(texts),
            max_retries=self._cfg.max_retries,
            backoff_base_s=self._cfg.backoff_base_s,
            operation=operation,
        )

    async def probe(self) -> int:
        """Embed a fixed probe text and cache the output dimension.

        Raises:
            EmbeddingProbeError: The call failed or returned no usable vector.
        """
        try:
            vectors = await self._call([PROBE_TEXT], "embedding_probe")
        except StoryIndexError as exc:
            raise EmbeddingProbeError(
                f"Embedding dimension probe failed: {exc}", provider_name=self.model_name
            ) from exc
        dimension = len(vectors[0]) if vectors else 0
        if dimension <= 0:
            raise EmbeddingProbeError(
                "Embedding dimension probe returned an empty vector", provider_name=self.model_name
            )
        self._dimension = dimension
        logger.info("embedding_probe", model=self.model_name, dimension=dimension)
        return dimension

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts* in batches of ``batch_size``, preserving order.

        Raises:
            EmbeddingError: A batch returned the wrong number of vectors or a
                vector of the wrong dimension.
            ServiceError: The service failed after retries.
        """
        if self._dimension is None:
            raise EmbeddingError("Embedder used before probe()", provider_name=self.model_name)

        vectors: list[list[float]] = []
        for start in range(0, len(texts), self._cfg.batch_size):
            batch = texts[start : start + self._cfg.batch_size]
            result = await self._call(batch, "embedding")
            # a single input may come back as a bare vector
            if len(batch) == 1 and result and isinstance(result[0], (int, float)):
                result = [result]  # type: ignore[list-item]
            if len(result) != len(batch):
                raise EmbeddingError(
                    f"Embedding count mismatch: sent {len(batch)} texts, got {len(result)} vectors",
                    provider_name=self.model_name,
                )
            for vector in result:
                if len(vector) != self._dimension:
                    raise EmbeddingError(
                        f"Embedding dimension changed mid-run: expected {self._dimension}, "
                        f"got {len(vector)}",
                        provider_name=self.model_name,
                    )
            vectors.extend(result)
        return vectors
