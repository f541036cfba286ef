# mailfacade/mailbox/pooled.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Set, TypeVar

from mailfacade.config import AccountConfig
from mailfacade.errors import MailboxConnectionError, PoolExhaustedError
from mailfacade.imap.client import ImapSession
from mailfacade.models import (
    EmailFolder,
    EmailMessage,
    EmailOperation,
    ListPage,
    OperationResult,
    OperationType,
    SearchQuery,
)
from mailfacade.perf.pool import ConnectionPool
from mailfacade.perf.retry import retry

logger = logging.getLogger(__name__)

T = TypeVar("T")

RunBlocking = Callable[..., Awaitable[Any]]


class PooledMailbox:
    """
    MailboxService backed by pooled ImapSession objects.

    Each call checks a session out of the pool, runs the blocking imaplib
    work through run_blocking, and returns the session. When the pool is
    exhausted the call uses a one-off unpooled session instead. Connection
    failures discard the session and are retried with exponential backoff.
    """

    def __init__(
        self,
        account: AccountConfig,
        *,
        run_blocking: RunBlocking,
        max_size: int = 3,
        max_retries: int = 3,
        base_delay: float = 1.0,
        connect: Callable[[AccountConfig], ImapSession] = ImapSession.connect,
    ):
        self.account = account
        self.account_id = account.cache_scope
        self._run_blocking = run_blocking
        self._connect = connect
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.pool: ConnectionPool[ImapSession] = ConnectionPool(
            self._open_session, self._close_session, max_size=max_size
        )
        self._closing: Set["asyncio.Task[None]"] = set()

    async def _open_session(self) -> ImapSession:
        return await self._run_blocking(self._connect, self.account)

    async def _close_session(self, session: ImapSession) -> None:
        await self._run_blocking(session.close)

    async def _call(self, op: Callable[[ImapSession], T], *, retryable: bool = True) -> T:
        async def attempt() -> T:
            try:
                session = await self.pool.acquire()
            except PoolExhaustedError:
                logger.info("IMAP pool exhausted for %s, using an unpooled session", self.account.id)
                return await self._call_unpooled(op)

            work = asyncio.ensure_future(self._run_blocking(op, session))
            try:
                result = await asyncio.shield(work)
            except asyncio.CancelledError:
                # the worker thread may still be using the session
                self.pool.detach(session)
                work.add_done_callback(lambda fut: self._close_later(fut, session))
                raise
            except MailboxConnectionError:
                await self.pool.discard(session)
                raise
            except Exception:
                await self.pool.release(session)
                raise
            await self.pool.release(session)
            return result

        return await retry(
            attempt,
            max_retries=self.max_retries if retryable else 0,
            base_delay=self.base_delay,
            retry_on=(MailboxConnectionError,),
        )

    def _close_later(self, work: "asyncio.Future[Any]", session: ImapSession) -> None:
        if not work.cancelled() and work.exception() is not None:
            logger.debug("Abandoned IMAP call for %s failed: %s", self.account.id, work.exception())
        task = asyncio.ensure_future(self._close_detached(session))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def _close_detached(self, session: ImapSession) -> None:
        try:
            await self._close_session(session)
        except Exception as e:
            logger.warning("Failed to close abandoned IMAP session for %s: %s", self.account.id, e)

    async def _call_unpooled(self, op: Callable[[ImapSession], T]) -> T:
        session = await self._open_session()
        try:
            return await self._run_blocking(op, session)
        finally:
            await self._close_session(session)

    # -----------------------
    # MailboxService
    # -----------------------

    async def list_emails(self, folder: str, limit: int, offset: int, sort_order: str) -> ListPage:
        return await self._call(lambda s: s.list_emails(folder, limit, offset, sort_order))

    async def get_email(self, uid: str, folder: str) -> EmailMessage:
        return await self._call(lambda s: s.get_email(uid, folder))

    async def search_emails(self, query: SearchQuery, folder: str, limit: int, offset: int) -> ListPage:
        return await self._call(lambda s: s.search_emails(query, folder, limit, offset))

    async def list_folders(self) -> List[EmailFolder]:
        return await self._call(lambda s: s.list_folders())

    async def perform_operation(self, operation: EmailOperation, folder: str) -> OperationResult:
        # a replayed COPY whose response was lost would duplicate messages
        retryable = operation.type is not OperationType.COPY
        return await self._call(lambda s: s.perform_operation(operation, folder), retryable=retryable)

    async def close(self) -> None:
        await self.pool.destroy()
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)
