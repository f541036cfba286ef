# mailfacade/service.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from mailfacade.cache import CacheInvalidator, EmailCache
from mailfacade.mailbox.base import MailboxService, Summarizer
from mailfacade.models import (
    EmailFolder,
    EmailMessage,
    EmailMetadata,
    EmailOperation,
    ListPage,
    OperationResult,
    SearchCachePolicy,
    SearchQuery,
)
from mailfacade.models.operation import FOLDER_COUNT_CHANGING, NEEDS_TARGET
from mailfacade.perf.batch import MAX_CONCURRENT_OPERATIONS, process_with_limit
from mailfacade.perf.dedupe import RequestDeduplicator
from mailfacade.perf.monitor import PerformanceMonitor
from mailfacade.perf.prefetch import PrefetchManager

logger = logging.getLogger(__name__)

SORT_ORDERS = ("asc", "desc")


@dataclass(frozen=True)
class ListResult:
    page: ListPage
    cached: bool = False

    def to_dict(self) -> Dict[str, Any]:
        d = self.page.to_dict()
        d["cached"] = self.cached
        return d


@dataclass(frozen=True)
class EmailResult:
    email: EmailMessage
    cached: bool = False
    summary: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        d = {"email": self.email.to_dict(), "cached": self.cached}
        if self.summary is not None:
            d["summary"] = self.summary
        return d


@dataclass(frozen=True)
class BatchResult:
    results: List[OperationResult] = field(default_factory=list)

    @property
    def total_processed(self) -> int:
        return sum(r.processed for r in self.results if r.success)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": all(r.success for r in self.results),
            "results": [r.to_dict() for r in self.results],
            "total_processed": self.total_processed,
        }


def _check_paging(limit: int, offset: int) -> None:
    if limit < 1:
        raise ValueError("limit must be >= 1")
    if offset < 0:
        raise ValueError("offset must be >= 0")


class CachedEmailService:
    """
    Cache-aware front for one account's MailboxService.

    Reads check the EmailCache first and fill it on a miss; concurrent
    misses for the same key share one mailbox call. Mutations go straight
    to the mailbox and invalidate afterwards. Mailbox errors propagate;
    cache errors never do.
    """

    def __init__(
        self,
        mailbox: MailboxService,
        cache: EmailCache,
        *,
        invalidator: Optional[CacheInvalidator] = None,
        deduplicator: Optional[RequestDeduplicator] = None,
        prefetcher: Optional[PrefetchManager] = None,
        monitor: Optional[PerformanceMonitor] = None,
        summarizer: Optional[Summarizer] = None,
        search_policy: Optional[SearchCachePolicy] = None,
        max_concurrent: int = MAX_CONCURRENT_OPERATIONS,
    ):
        self.mailbox = mailbox
        self.cache = cache
        self.invalidator = invalidator or CacheInvalidator(cache)
        self.deduplicator = deduplicator or RequestDeduplicator()
        self.prefetcher = prefetcher or PrefetchManager()
        self.monitor = monitor or PerformanceMonitor()
        self.summarizer = summarizer
        self.search_policy = search_policy or SearchCachePolicy()
        self.max_concurrent = max_concurrent
        # bumped by every successful mutation; None scopes the folder listing
        self._generations: Dict[Optional[str], int] = {}

    @property
    def account_id(self) -> str:
        return self.cache.account_id

    def _generation(self, scope: Optional[str]) -> int:
        return self._generations.get(scope, 0)

    def _bump(self, operation: EmailOperation, folder: str) -> None:
        scopes: List[Optional[str]] = [folder]
        if operation.type in NEEDS_TARGET and operation.target_folder:
            scopes.append(operation.target_folder)
        if operation.type in FOLDER_COUNT_CHANGING:
            scopes.append(None)
        for scope in scopes:
            self._generations[scope] = self._generation(scope) + 1

    async def _fetch(self, key: str, name: str, call, scope: Optional[str]) -> Tuple[Any, bool]:
        """
        Deduplicated, monitored mailbox read. Returns (value, fresh); fresh is
        False when a mutation on scope finished while the read was in flight,
        in which case the value must not be cached.
        """
        async def tracked():
            async with self.monitor.track(name):
                return await call()

        generation = self._generation(scope)
        value = await self.deduplicator.dedupe(f"{key}#{generation}", tracked)
        return value, self._generation(scope) == generation

    # -----------------------
    # Reads
    # -----------------------

    async def list_emails(
        self,
        folder: str = "INBOX",
        limit: int = 50,
        offset: int = 0,
        sort_order: str = "desc",
        use_cache: bool = True,
    ) -> ListResult:
        _check_paging(limit, offset)
        if sort_order not in SORT_ORDERS:
            raise ValueError(f"sort_order must be one of {SORT_ORDERS}")

        params = dict(folder=folder, limit=limit, offset=offset, sort_order=sort_order)
        if use_cache:
            cached = await self.cache.get_email_list(**params)
            if cached is not None:
                return ListResult(page=cached, cached=True)

        key = self.cache.list_key(**params)
        page, fresh = await self._fetch(
            key, "list_emails", lambda: self.mailbox.list_emails(folder, limit, offset, sort_order), folder
        )
        if use_cache and fresh and page.emails:
            await self.cache.cache_email_list(page, **params)
        return ListResult(page=page)

    async def search_emails(
        self,
        query: SearchQuery,
        folder: str = "INBOX",
        limit: int = 50,
        offset: int = 0,
        use_cache: bool = True,
    ) -> ListResult:
        _check_paging(limit, offset)
        cacheable = use_cache and self.search_policy.is_cacheable(query)

        params = dict(folder=folder, query=query, limit=limit, offset=offset)
        if cacheable:
            cached = await self.cache.get_search_results(**params)
            if cached is not None:
                return ListResult(page=cached, cached=True)

        key = self.cache.search_key(**params)
        page, fresh = await self._fetch(
            key, "search_emails", lambda: self.mailbox.search_emails(query, folder, limit, offset), folder
        )
        if cacheable and fresh and page.emails:
            await self.cache.cache_search_results(page, **params)
        return ListResult(page=page)

    async def get_email(
        self,
        uid: str,
        folder: str = "INBOX",
        use_cache: bool = True,
        include_summary: bool = False,
    ) -> EmailResult:
        uid = str(uid)
        self.prefetcher.record_access(uid)

        email: Optional[EmailMessage] = None
        cached = False
        if use_cache:
            email = await self.cache.get_email(uid, folder)
            cached = email is not None

        if email is None:
            email, fresh = await self._fetch(
                self.cache.email_key(uid, folder), "get_email", lambda: self.mailbox.get_email(uid, folder), folder
            )
            if use_cache and fresh:
                await self.cache.cache_email(email, folder)

        summary = await self._summarize(email) if include_summary else None
        return EmailResult(email=email, cached=cached, summary=summary)

    async def _summarize(self, email: EmailMessage) -> Optional[Dict[str, Any]]:
        if self.summarizer is None:
            return None
        try:
            async with self.monitor.track("summarize"):
                return await self.summarizer.summarize(email)
        except Exception as e:
            logger.warning("Summary failed for email %s: %s", email.uid, e)
            return None

    async def list_folders(self, use_cache: bool = True) -> List[EmailFolder]:
        if use_cache:
            cached = await self.cache.get_folders()
            if cached is not None:
                return cached

        folders, fresh = await self._fetch(self.cache.folders_key(), "list_folders", self.mailbox.list_folders, None)
        if use_cache and fresh:
            await self.cache.cache_folders(folders)
        return folders

    # -----------------------
    # Mutations
    # -----------------------

    async def perform_operation(self, operation: EmailOperation, folder: str = "INBOX") -> OperationResult:
        async with self.monitor.track(f"operation:{operation.type.value}"):
            result = await self.mailbox.perform_operation(operation, folder)
        if result.success:
            # bump first: reads still in flight must neither be joined nor cached
            self._bump(operation, folder)
            await self.invalidator.invalidate(operation, folder)
        return result

    async def batch_operations(self, operations: Sequence[EmailOperation], folder: str = "INBOX") -> BatchResult:
        """
        Run operations one after another on the same folder. The mailbox
        session is single-threaded, so there is no fan-out here. A failing
        operation is recorded and the rest still run.
        """
        results: List[OperationResult] = []
        for operation in operations:
            try:
                results.append(await self.perform_operation(operation, folder))
            except Exception as e:
                logger.warning("Batch operation %s failed: %s", operation.type.value, e)
                results.append(OperationResult(success=False, processed=0, error=str(e)))
        return BatchResult(results=results)

    # -----------------------
    # Prefetch + admin
    # -----------------------

    async def prefetch(
        self,
        current_uid: Optional[str],
        folder: str,
        emails: Sequence[EmailMetadata],
        *,
        top_k: Optional[int] = None,
    ) -> List[str]:
        """
        Warm the single-email cache for the most likely next reads. Returns
        the uids that were fetched or already cached; failures are skipped.
        """
        candidates = self.prefetcher.get_candidates(current_uid, emails, top_k=top_k)

        async def warm(uid: str) -> Optional[str]:
            if await self.cache.get_email(uid, folder) is not None:
                return uid
            try:
                email, fresh = await self._fetch(
                    self.cache.email_key(uid, folder), "prefetch", lambda: self.mailbox.get_email(uid, folder), folder
                )
            except Exception as e:
                logger.debug("Prefetch of %s/%s failed: %s", folder, uid, e)
                return None
            if not fresh:
                return None
            await self.cache.cache_email(email, folder)
            return uid

        warmed = await process_with_limit(candidates, warm, limit=self.max_concurrent)
        return [uid for uid in warmed if uid is not None]

    async def clear_account_cache(self, account_id: Optional[str] = None) -> int:
        removed = await self.cache.clear_account(account_id)
        logger.info("Cleared cache for account %s (%d pattern matches)", account_id or self.account_id, removed)
        return removed

    def get_stats(self) -> Dict[str, Any]:
        return {
            "account": self.account_id,
            "cache": self.cache.stats().to_dict(),
            "pending_requests": self.deduplicator.pending_count,
            "performance": self.monitor.metrics(),
            "health": self.monitor.health_score(),
        }
