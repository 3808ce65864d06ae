"""Tests for the batching embedder and its dimension probe."""

from __future__ import annotations

import pytest

from storyindex.config import EmbeddingCfg
from storyindex.ingest.embedder import PROBE_TEXT, Embedder
from storyindex.utils.errors import (
    EmbeddingError,
    EmbeddingProbeError,
    ServiceError,
    ServiceUnavailableError,
)
from tests.fakes import FakeEmbeddingService


def _cfg(batch_size: int = 24, max_retries: int = 0) -> EmbeddingCfg:
    return EmbeddingCfg(batch_size=batch_size, max_retries=max_retries, backoff_base_s=0.0)


async def test_probe_sets_dimension():
    service = FakeEmbeddingService(dimension=6)
    embedder = Embedder(service, _cfg())
    assert embedder.dimension is None
    assert await embedder.probe() == 6
    assert embedder.dimension == 6
    assert service.calls == [[PROBE_TEXT]]


async def test_probe_failure_is_probe_error():
    embedder = Embedder(FakeEmbeddingService(fail_with=ServiceError("unknown model")), _cfg())
    with pytest.raises(EmbeddingProbeError, match="unknown model"):
        await embedder.probe()


async def test_probe_retries_then_gives_up():
    service = FakeEmbeddingService(fail_with=ServiceUnavailableError("timeout"))
    with pytest.raises(EmbeddingProbeError):
        await Embedder(service, _cfg(max_retries=2)).probe()
    assert len(service.calls) == 3


async def test_probe_empty_vector():
    with pytest.raises(EmbeddingProbeError, match="empty vector"):
        await Embedder(FakeEmbeddingService(dimension=0), _cfg()).probe()


async def test_embed_before_probe_raises():
    with pytest.raises(EmbeddingError, match="before probe"):
        await Embedder(FakeEmbeddingService(), _cfg()).embed_texts(["x"])


async def test_embed_batches_and_preserves_order():
    service = FakeEmbeddingService(dimension=3)
    embedder = Embedder(service, _cfg(batch_size=2))
    await embedder.probe()
    texts = ["a", "bb", "ccc", "dddd", "eeeee"]
    vectors = await embedder.embed_texts(texts)
    assert [len(c) for c in service.calls[1:]] == [2, 2, 1]
    assert [v[0] for v in vectors] == [float(len(t) % 7) for t in texts]


async def test_count_mismatch_raises():
    service = FakeEmbeddingService(dimension=3)
    embedder = Embedder(service, _cfg())
    await embedder.probe()
    service.transform = lambda vectors: vectors[:-1]
    with pytest.raises(EmbeddingError, match="count mismatch"):
        await embedder.embed_texts(["a", "b"])


async def test_dimension_change_mid_run_raises():
    service = FakeEmbeddingService(dimension=3)
    embedder = Embedder(service, _cfg())
    await embedder.probe()
    service.transform = lambda vectors: [v + [0.0] for v in vectors]
    with pytest.raises(EmbeddingError, match="expected 3, got 4"):
        await embedder.embed_texts(["a"])


async def test_single_bare_vector_is_wrapped():
    service = FakeEmbeddingService(dimension=3)
    embedder = Embedder(service, _cfg())
    await embedder.probe()
    service.transform = lambda vectors: vectors[0]
    assert await embedder.embed_texts(["a"]) == [[1.0, 2.0, 3.0]]
