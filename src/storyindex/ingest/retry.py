"""Bounded retry with exponential backoff for outbound service calls."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

from storyindex.utils.errors import ServiceUnavailableError
from storyindex.utils.logging import get_logger

logger = get_logger(__name__)

_T = TypeVar("_T")

MAX_BACKOFF_S = 30.0


async def with_retries(
    call: Callable[[], Awaitable[_T]],
    *,
    max_retries: int,
    backoff_base_s: float = 1.0,
    operation: str = "service_call",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> _T:
    """Await ``call()``, retrying ServiceUnavailableError up to *max_retries* times.

    The delay before retry ``n`` (1-based) is ``backoff_base_s * 2**(n-1)``,
    capped at 30 seconds. Any other exception propagates immediately, as
    does the last ServiceUnavailableError once the budget is spent.
    """
    attempt = 0
    while True:
        try:
            return await call()
        except ServiceUnavailableError as exc:
            if attempt >= max_retries:
                logger.warning("retries_exhausted", operation=operation, attempts=attempt + 1, error=str(exc))
                raise
            delay = min(backoff_base_s * (2**attempt), MAX_BACKOFF_S)
            attempt += 1
            logger.info("retrying", operation=operation, attempt=attempt, delay_s=delay, error=str(exc))
            await sleep(delay)
