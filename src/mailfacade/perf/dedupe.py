# mailfacade/perf/dedupe.py
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict, Generic, TypeVar

T = TypeVar("T")


class RequestDeduplicator(Generic[T]):
    """
    Share one in-flight operation between concurrent callers asking for the
    same key. The key is forgotten as soon as the operation settles, whether
    it succeeded or failed.
    """

    def __init__(self) -> None:
        self._pending: Dict[str, "asyncio.Future[T]"] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._pending

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def dedupe(self, key: str, operation: Callable[[], Awaitable[T]]) -> T:
        fut = self._pending.get(key)
        if fut is None:
            fut = asyncio.ensure_future(operation())
            self._pending[key] = fut
            fut.add_done_callback(lambda f, k=key: self._forget(k, f))
        # shield: one caller being cancelled must not cancel the shared fetch
        return await asyncio.shield(fut)

    def _forget(self, key: str, fut: "asyncio.Future[T]") -> None:
        if self._pending.get(key) is fut:
            del self._pending[key]
        if not fut.cancelled():
            # mark the exception retrieved; every waiter re-raises it anyway
            fut.exception()

    def clear(self) -> None:
        self._pending.clear()
