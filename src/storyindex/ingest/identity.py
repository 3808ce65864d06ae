"""Content hashes and story-identity resolution.

RAW_HASH is the SHA-256 of a file's bytes and drives incremental skipping.
CANON_HASH is the SHA-256 of the canonical text (UTF-8) and *is* the story
identity: two files whose text canonicalizes identically are one story,
whatever their path or format.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import Enum

from storyindex.db.models import SourceRecord, Story
from storyindex.services.interfaces import RelationalStore

STORY_ID_LENGTH = 40


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def story_id_for(canon_hash: str) -> str:
    """Deterministic story id for a canonical hash."""
    return canon_hash[:STORY_ID_LENGTH]


class Resolution(str, Enum):
    NEW = "new"  # first sighting of this canonical text
    DUPLICATE = "duplicate"  # known text, attach the path only
    REPROCESS = "reprocess"  # known text, run the full pipeline again


@dataclass
class IdentityDecision:
    story_id: str
    resolution: Resolution
    existing: Story | None
    previous_source: SourceRecord | None

    @property
    def orphan_candidate(self) -> str | None:
        """Story the path pointed at before, if it was a different one."""
        if self.previous_source is None or self.previous_source.story_id == self.story_id:
            return None
        return self.previous_source.story_id


async def resolve_identity(
    store: RelationalStore,
    canon_hash: str,
    source_path: str,
    *,
    reprocess_existing: bool = False,
    previous_source: SourceRecord | None = None,
) -> IdentityDecision:
    """Decide what to do with a file whose canonical text hashes to *canon_hash*.

    Args:
        store: Relational store to look the hash and path up in.
        canon_hash: CANON_HASH of the file's canonical text.
        source_path: Normalized path of the file.
        reprocess_existing: Run the full pipeline even for known text.
        previous_source: The path's current mapping, if already fetched.

    Returns:
        An IdentityDecision; an existing story keeps its id, a new one gets
        :func:`story_id_for` of the hash.
    """
    if previous_source is None:
        previous_source = await store.get_source(source_path)
    existing = await store.get_story_by_canon_hash(canon_hash)

    if existing is None:
        return IdentityDecision(story_id_for(canon_hash), Resolution.NEW, None, previous_source)
    resolution = Resolution.REPROCESS if reprocess_existing else Resolution.DUPLICATE
    return IdentityDecision(existing.story_id, resolution, existing, previous_source)
