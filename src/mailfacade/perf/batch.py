# mailfacade/perf/batch.py
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, List, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")

BATCH_SIZE = 10
MAX_CONCURRENT_OPERATIONS = 5


async def process_batch(
    items: Sequence[T],
    processor: Callable[[T], Awaitable[R]],
    batch_size: int = BATCH_SIZE,
) -> List[R]:
    """
    Run processor over items in chunks of batch_size. Each chunk is awaited
    in full before the next one starts, so at most batch_size calls are in
    flight. Results come back in input order; the first exception aborts.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")

    results: List[R] = []
    for start in range(0, len(items), batch_size):
        chunk = items[start : start + batch_size]
        results.extend(await asyncio.gather(*(processor(item) for item in chunk)))
    return results


async def process_with_limit(
    items: Sequence[T],
    processor: Callable[[T], Awaitable[R]],
    limit: int = MAX_CONCURRENT_OPERATIONS,
) -> List[R]:
    """Fan out with at most `limit` operations in flight."""
    return await process_batch(items, processor, batch_size=limit)
