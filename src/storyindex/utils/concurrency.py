"""Bounded worker pools for I/O-bound stages.

Workers pull the next position from a shared index cursor, so at most
``limit`` items are in flight and items start in input order. Exceptions
raised by *fn* are delivered as values rather than cancelling siblings;
callers decide what a failure means for them.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Awaitable, Callable, Sequence, TypeVar

_T = TypeVar("_T")
_R = TypeVar("_R")


async def iter_bounded(
    items: Sequence[_T],
    limit: int,
    fn: Callable[[_T], Awaitable[_R]],
) -> AsyncIterator[tuple[int, _R | Exception]]:
    """Run *fn* over *items* with at most *limit* concurrent calls.

    Yields ``(index, result_or_exception)`` in completion order. A worker
    takes its next item only after the consumer has finished handling the
    previous result, so with ``limit == 1`` items are processed strictly one
    after another, each seeing every write the consumer made for earlier ones.
    """
    if not items:
        return

    queue: asyncio.Queue[tuple[int, _R | Exception, asyncio.Event]] = asyncio.Queue()
    cursor = 0

    async def _worker() -> None:
        nonlocal cursor
        while cursor < len(items):
            index = cursor
            cursor += 1
            try:
                result: _R | Exception = await fn(items[index])
            except Exception as exc:
                result = exc
            handled = asyncio.Event()
            await queue.put((index, result, handled))
            await handled.wait()

    workers = [asyncio.create_task(_worker()) for _ in range(max(1, min(limit, len(items))))]
    try:
        for _ in range(len(items)):
            index, result, handled = await queue.get()
            try:
                yield index, result
            finally:
                handled.set()
    finally:
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)


async def map_bounded(
    items: Sequence[_T],
    limit: int,
    fn: Callable[[_T], Awaitable[_R]],
) -> list[_R | Exception]:
    """Like :func:`iter_bounded` but collect results in input order."""
    results: list[_R | Exception] = [None] * len(items)  # type: ignore[list-item]
    async for index, result in iter_bounded(items, limit, fn):
        results[index] = result
    return results
