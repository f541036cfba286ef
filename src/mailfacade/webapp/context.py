# mailfacade/webapp/context.py
from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from mailfacade.cache import CacheInvalidator, CacheStore, EmailCache, create_cache_store
from mailfacade.config import AccountConfig, Settings
from mailfacade.mailbox import MailboxService, PooledMailbox, Summarizer
from mailfacade.models import SearchCachePolicy
from mailfacade.perf import PerformanceMonitor, PrefetchManager, RequestDeduplicator
from mailfacade.service import CachedEmailService

logger = logging.getLogger(__name__)

RunBlocking = Callable[..., Awaitable[Any]]
MailboxFactory = Callable[[AccountConfig, RunBlocking], MailboxService]


def bind_run_blocking(executor: ThreadPoolExecutor) -> RunBlocking:
    async def run_blocking(fn, *args, **kwargs):
        """
        Run blocking IO in a bounded thread pool so the event loop remains responsive.
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(executor, lambda: fn(*args, **kwargs))

    return run_blocking


def pooled_mailbox_factory(settings: Settings) -> MailboxFactory:
    def factory(account: AccountConfig, run_blocking: RunBlocking) -> MailboxService:
        return PooledMailbox(
            account,
            run_blocking=run_blocking,
            max_size=settings.pool_max_size,
            max_retries=settings.retry_max_retries,
            base_delay=settings.retry_base_delay,
        )

    return factory


def build_account_service(
    mailbox: MailboxService,
    store: CacheStore,
    settings: Settings,
    *,
    summarizer: Optional[Summarizer] = None,
) -> CachedEmailService:
    cache = EmailCache(store, mailbox.account_id, ttl=settings.ttl)
    return CachedEmailService(
        mailbox,
        cache,
        invalidator=CacheInvalidator(cache, batch_size=settings.batch_size),
        deduplicator=RequestDeduplicator(),
        prefetcher=PrefetchManager(),
        monitor=PerformanceMonitor(),
        summarizer=summarizer,
        search_policy=SearchCachePolicy(),
        max_concurrent=settings.max_concurrent_operations,
    )


@dataclass
class AppContext:
    """Everything the HTTP layer needs, created once per app lifespan."""

    settings: Settings
    store: CacheStore
    executor: ThreadPoolExecutor
    services: Dict[str, CachedEmailService] = field(default_factory=dict)
    sweeper: Optional["asyncio.Task[None]"] = None

    def service(self, account: str) -> Optional[CachedEmailService]:
        return self.services.get(account)

    async def close(self) -> None:
        if self.sweeper is not None:
            self.sweeper.cancel()
            try:
                await self.sweeper
            except asyncio.CancelledError:
                pass
            self.sweeper = None

        for account, service in self.services.items():
            close = getattr(service.mailbox, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception as e:
                logger.warning("Failed to close mailbox for %s: %s", account, e)

        await self.store.close()
        self.executor.shutdown(wait=False)


async def sweep_expired(store: CacheStore, interval: float) -> None:
    """Periodically drop expired entries; only the memory backend has any to drop."""
    while True:
        await asyncio.sleep(interval)
        try:
            removed = await store.purge_expired()
        except Exception as e:
            logger.warning("Cache sweep failed: %s", e)
            continue
        if removed:
            logger.debug("Swept %d expired cache entries", removed)


async def build_context(
    settings: Settings,
    *,
    mailbox_factory: Optional[MailboxFactory] = None,
    summarizer: Optional[Summarizer] = None,
    redis_client: Any = None,
) -> AppContext:
    store = await create_cache_store(
        settings.cache_backend,
        redis_url=settings.redis_url,
        key_prefix=settings.redis_key_prefix,
        socket_timeout=settings.redis_socket_timeout,
        capacity=settings.cache_max_size,
        eviction_ratio=settings.cache_eviction_ratio,
        redis_client=redis_client,
    )
    executor = ThreadPoolExecutor(max_workers=settings.threadpool_workers, thread_name_prefix="imap")
    run_blocking = bind_run_blocking(executor)
    factory = mailbox_factory or pooled_mailbox_factory(settings)

    ctx = AppContext(settings=settings, store=store, executor=executor)
    for account_id, account in settings.accounts.items():
        mailbox = factory(account, run_blocking)
        ctx.services[account_id] = build_account_service(mailbox, store, settings, summarizer=summarizer)

    if settings.cache_sweep_interval > 0 and store.backend_type == "memory":
        ctx.sweeper = asyncio.create_task(sweep_expired(store, settings.cache_sweep_interval))

    logger.info(
        "Mail facade ready: %d account(s), %s cache", len(ctx.services), store.backend_type
    )
    return ctx
