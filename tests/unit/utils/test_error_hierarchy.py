"""Tests for the storyindex exception hierarchy."""

from __future__ import annotations

import pytest

from storyindex.utils.errors import (
    EmbeddingError,
    EmbeddingProbeError,
    ExtractionError,
    MetadataError,
    ServiceError,
    ServiceUnavailableError,
    SettingsMismatchError,
    StorageError,
    StoryIndexError,
)


@pytest.mark.parametrize(
    "cls",
    [ExtractionError, ServiceError, MetadataError, EmbeddingError, StorageError],
)
def test_all_errors_derive_from_base(cls):
    assert issubclass(cls, StoryIndexError)


def test_retryable_is_a_service_error():
    assert issubclass(ServiceUnavailableError, ServiceError)
    assert issubclass(EmbeddingProbeError, EmbeddingError)


def test_message_and_provider():
    err = ServiceError("boom", provider_name="litellm:openai/gpt-4o-mini")
    assert err.message == "boom"
    assert err.provider_name == "litellm:openai/gpt-4o-mini"
    assert str(err) == "[litellm:openai/gpt-4o-mini] boom"


def test_str_without_provider():
    assert str(StorageError("disk full")) == "disk full"
    assert StoryIndexError().message == "An unexpected error occurred"


def test_settings_mismatch_carries_fields():
    err = SettingsMismatchError("dimension", "1536", "768")
    assert (err.field, err.stored, err.current) == ("dimension", "1536", "768")
    assert "corpus has '1536'" in str(err)
    assert "--force-reindex" in str(err)
    assert isinstance(err, StoryIndexError)
