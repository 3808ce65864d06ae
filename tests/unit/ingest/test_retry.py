"""Tests for bounded retry with exponential backoff."""

from __future__ import annotations

import pytest

from storyindex.ingest.retry import with_retries
from storyindex.utils.errors import ServiceError, ServiceUnavailableError


class _Flaky:
    def __init__(self, failures: list[Exception], result: str = "ok") -> None:
        self.failures = list(failures)
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


@pytest.fixture
def delays() -> list[float]:
    return []


@pytest.fixture
def sleep(delays):
    async def _sleep(delay: float) -> None:
        delays.append(delay)

    return _sleep


async def test_success_needs_no_retry(sleep, delays):
    call = _Flaky([])
    assert await with_retries(call, max_retries=2, sleep=sleep) == "ok"
    assert call.calls == 1
    assert delays == []


async def test_backoff_doubles(sleep, delays):
    call = _Flaky([ServiceUnavailableError("a"), ServiceUnavailableError("b")])
    assert await with_retries(call, max_retries=2, backoff_base_s=1.0, sleep=sleep) == "ok"
    assert call.calls == 3
    assert delays == [1.0, 2.0]


async def test_backoff_is_capped(sleep, delays):
    call = _Flaky([ServiceUnavailableError("a"), ServiceUnavailableError("b")])
    await with_retries(call, max_retries=2, backoff_base_s=20.0, sleep=sleep)
    assert delays == [20.0, 30.0]


async def test_exhausted_budget_reraises(sleep, delays):
    call = _Flaky([ServiceUnavailableError("a"), ServiceUnavailableError("last")])
    with pytest.raises(ServiceUnavailableError, match="last"):
        await with_retries(call, max_retries=1, sleep=sleep)
    assert call.calls == 2
    assert delays == [1.0]


async def test_non_retryable_error_propagates_immediately(sleep, delays):
    call = _Flaky([ServiceError("invalid request")])
    with pytest.raises(ServiceError, match="invalid request"):
        await with_retries(call, max_retries=5, sleep=sleep)
    assert call.calls == 1
    assert delays == []


async def test_zero_retries(sleep):
    call = _Flaky([ServiceUnavailableError("down")])
    with pytest.raises(ServiceUnavailableError):
        await with_retries(call, max_retries=0, sleep=sleep)
    assert call.calls == 1
