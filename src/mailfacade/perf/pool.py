# mailfacade/perf/pool.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Dict, Generic, List, TypeVar

from mailfacade.errors import PoolExhaustedError

logger = logging.getLogger(__name__)

C = TypeVar("C")


class ConnectionPool(Generic[C]):
    """
    Small pool of mailbox sessions.

    acquire() hands out an idle connection, or creates one while the pool is
    under max_size, or raises PoolExhaustedError. There is no wait queue:
    callers decide whether to fail or open an unpooled connection.
    """

    def __init__(
        self,
        create: Callable[[], Awaitable[C]],
        destroy: Callable[[C], Awaitable[None]],
        *,
        max_size: int = 3,
    ):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._create = create
        self._destroy = destroy
        self.max_size = max_size
        self._idle: List[C] = []
        self._in_use: Dict[int, C] = {}
        self._creating = 0

    @property
    def total(self) -> int:
        return len(self._idle) + len(self._in_use) + self._creating

    async def acquire(self) -> C:
        if self._idle:
            conn = self._idle.pop()
            self._in_use[id(conn)] = conn
            return conn

        if self.total >= self.max_size:
            raise PoolExhaustedError(f"Connection pool exhausted ({self.max_size} in use)")

        # reserve the slot before suspending so concurrent acquires see it
        self._creating += 1
        try:
            conn = await self._create()
        finally:
            self._creating -= 1
        self._in_use[id(conn)] = conn
        return conn

    async def release(self, conn: C) -> None:
        if self._in_use.pop(id(conn), None) is None:
            raise ValueError("connection was not acquired from this pool")

        if len(self._idle) + len(self._in_use) < self.max_size:
            self._idle.append(conn)
        else:
            await self._destroy(conn)

    def detach(self, conn: C) -> None:
        """Forget a checked-out connection without closing it; the caller now owns it."""
        self._in_use.pop(id(conn), None)

    async def discard(self, conn: C) -> None:
        """Drop a checked-out connection that is known to be broken."""
        self.detach(conn)
        try:
            await self._destroy(conn)
        except Exception as e:
            logger.warning("Failed to close discarded connection: %s", e)

    async def destroy(self) -> None:
        conns = self._idle + list(self._in_use.values())
        self._idle = []
        self._in_use = {}
        for conn in conns:
            try:
                await self._destroy(conn)
            except Exception as e:
                logger.warning("Failed to close pooled connection: %s", e)

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[C]:
        conn = await self.acquire()
        try:
            yield conn
        except BaseException:
            await self.discard(conn)
            raise
        else:
            await self.release(conn)

    def stats(self) -> Dict[str, int]:
        return {
            "idle": len(self._idle),
            "in_use": len(self._in_use),
            "total": len(self._idle) + len(self._in_use),
            "max_size": self.max_size,
        }
