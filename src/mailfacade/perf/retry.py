# mailfacade/perf/retry.py
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    base_delay: float = 1.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await operation(), retrying on retry_on up to max_retries more times.
    The delay doubles after each failure: base_delay, 2*base_delay, ...
    The last error is re-raised once attempts are exhausted; errors outside
    retry_on propagate immediately.
    """
    if max_retries < 0:
        raise ValueError("max_retries must be >= 0")

    attempt = 0
    while True:
        try:
            return await operation()
        except retry_on as e:
            if attempt >= max_retries:
                raise
            delay = base_delay * (2 ** attempt)
            attempt += 1
            logger.debug("Attempt %d/%d failed (%s), retrying in %.2fs", attempt, max_retries + 1, e, delay)
            if delay > 0:
                await sleep(delay)
