"""Shared pytest fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from storyindex.config import IndexerConfig
from storyindex.db.repository import SqliteRepository
from storyindex.ingest.indexer import RunServices
from tests.fakes import (
    FakeCompletionService,
    FakeEmbeddingService,
    InMemoryObjectStore,
    InMemoryRelationalStore,
    InMemoryVectorIndex,
)


@pytest.fixture
def cfg(tmp_path: Path) -> IndexerConfig:
    """Default config with every output path under tmp_path and no retry sleeps."""
    c = IndexerConfig()
    c.storage.db_path = str(tmp_path / ".storyindex.db")
    c.storage.object_dir = str(tmp_path / "objects")
    c.run.report_dir = str(tmp_path / "reports")
    c.metadata.backoff_base_s = 0.0
    c.embedding.backoff_base_s = 0.0
    return c


@pytest.fixture
def stories_dir(tmp_path: Path) -> Path:
    d = tmp_path / "stories"
    d.mkdir()
    return d


@pytest.fixture
async def repo(tmp_path: Path):
    """SqliteRepository on a tmp_path database, schema initialized, closed after test."""
    r = SqliteRepository(str(tmp_path / "corpus.db"))
    await r.initialize()
    yield r
    await r.close()


@pytest.fixture
def services() -> RunServices:
    """In-memory collaborators; metadata enrichment disabled."""
    return RunServices(
        store=InMemoryRelationalStore(),
        objects=InMemoryObjectStore(),
        vectors=InMemoryVectorIndex(),
        embedding=FakeEmbeddingService(dimension=4),
        completion=None,
    )


@pytest.fixture
def completion() -> FakeCompletionService:
    return FakeCompletionService()
