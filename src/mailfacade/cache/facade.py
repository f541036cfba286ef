# mailfacade/cache/facade.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from mailfacade.cache import keys
from mailfacade.cache.store import CacheStats, CacheStore
from mailfacade.cache.ttl import TTLPolicy
from mailfacade.models import EmailFolder, EmailMessage, ListPage, SearchQuery

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EmailCache:
    """
    Typed cache for one mailbox account on top of a CacheStore.

    Models are stored in their to_dict() form so both backends hold the same
    JSON-compatible payload. Nothing here raises: a store failure is logged
    and surfaces as a miss (reads) or a no-op (writes).
    """

    def __init__(self, store: CacheStore, account_id: str, *, ttl: Optional[TTLPolicy] = None):
        self.store = store
        self.account_id = account_id
        self.ttl = ttl or TTLPolicy()

    # -----------------------
    # Guarded store access
    # -----------------------

    async def _guard(self, op: str, key: str, call: Callable[[], Awaitable[T]], default: T) -> T:
        try:
            return await call()
        except Exception as e:
            logger.warning("Cache %s failed for %s: %s", op, key, e)
            return default

    async def _get(self, key: str) -> Optional[Any]:
        value = await self._guard("get", key, lambda: self.store.get(key), None)
        logger.debug("Cache %s: %s", "hit" if value is not None else "miss", key)
        return value

    async def _set(self, key: str, value: Any, ttl: int) -> None:
        await self._guard("set", key, lambda: self.store.set(key, value, ttl), None)

    async def _delete(self, key: str) -> None:
        await self._guard("delete", key, lambda: self.store.delete(key), None)

    async def _clear(self, pattern: str) -> int:
        return await self._guard("clear_by_pattern", pattern, lambda: self.store.clear_by_pattern(pattern), 0)

    # -----------------------
    # Keys
    # -----------------------

    def list_key(self, *, folder: str, limit: int, offset: int, sort_order: str) -> str:
        return keys.derive_key(
            keys.EMAIL_LIST,
            {"limit": limit, "offset": offset, "sort_order": sort_order},
            scope=(self.account_id, folder),
        )

    def search_key(self, *, folder: str, query: SearchQuery, limit: int, offset: int) -> str:
        params = dict(query.cache_params())
        params.update({"limit": limit, "offset": offset})
        return keys.derive_key(keys.EMAIL_SEARCH, params, scope=(self.account_id, folder))

    def email_key(self, uid: str, folder: str) -> str:
        return keys.email_key(self.account_id, folder, uid)

    def folders_key(self) -> str:
        return keys.folders_key(self.account_id)

    # -----------------------
    # Email lists
    # -----------------------

    async def get_email_list(self, *, folder: str, limit: int, offset: int, sort_order: str) -> Optional[ListPage]:
        raw = await self._get(self.list_key(folder=folder, limit=limit, offset=offset, sort_order=sort_order))
        return self._load(raw, ListPage.from_dict)

    async def cache_email_list(self, page: ListPage, *, folder: str, limit: int, offset: int, sort_order: str) -> None:
        key = self.list_key(folder=folder, limit=limit, offset=offset, sort_order=sort_order)
        await self._set(key, page.to_dict(), self.ttl.list_ttl)

    async def get_search_results(self, *, folder: str, query: SearchQuery, limit: int, offset: int) -> Optional[ListPage]:
        raw = await self._get(self.search_key(folder=folder, query=query, limit=limit, offset=offset))
        return self._load(raw, ListPage.from_dict)

    async def cache_search_results(
        self, page: ListPage, *, folder: str, query: SearchQuery, limit: int, offset: int
    ) -> None:
        key = self.search_key(folder=folder, query=query, limit=limit, offset=offset)
        await self._set(key, page.to_dict(), self.ttl.list_ttl)

    # -----------------------
    # Single emails
    # -----------------------

    async def get_email(self, uid: str, folder: str) -> Optional[EmailMessage]:
        raw = await self._get(self.email_key(uid, folder))
        return self._load(raw, EmailMessage.from_dict)

    async def cache_email(self, email: EmailMessage, folder: str, *, now: Optional[datetime] = None) -> int:
        ttl = self.ttl.email_ttl_for(date=email.date, is_read=email.is_read, now=now)
        await self._set(self.email_key(email.uid, folder), email.to_dict(), ttl)
        return ttl

    async def delete_email(self, uid: str, folder: str) -> None:
        await self._delete(self.email_key(uid, folder))

    # -----------------------
    # Folders
    # -----------------------

    async def get_folders(self) -> Optional[List[EmailFolder]]:
        raw = await self._get(self.folders_key())
        return self._load(raw, lambda items: [EmailFolder.from_dict(f) for f in items])

    async def cache_folders(self, folders: List[EmailFolder]) -> None:
        await self._set(self.folders_key(), [f.to_dict() for f in folders], self.ttl.folder_ttl)

    # -----------------------
    # Bulk invalidation
    # -----------------------

    async def clear_folder_lists(self, folder: str) -> int:
        removed = 0
        for resource in (keys.EMAIL_LIST, keys.EMAIL_SEARCH):
            removed += await self._clear(keys.scope_pattern(resource, (self.account_id, folder)))
        return removed

    async def clear_folders(self) -> None:
        await self._delete(self.folders_key())

    async def clear_account(self, account_id: Optional[str] = None) -> int:
        account = account_id or self.account_id
        removed = 0
        for resource in (keys.EMAIL_LIST, keys.EMAIL_SEARCH, keys.EMAIL):
            removed += await self._clear(keys.scope_pattern(resource, (account,)))
        await self._delete(keys.folders_key(account))
        return removed

    def stats(self) -> CacheStats:
        try:
            return self.store.stats()
        except Exception as e:
            logger.warning("Cache stats failed: %s", e)
            return CacheStats(backend_type=getattr(self.store, "backend_type", "unknown"), size=-1)

    @staticmethod
    def _load(raw: Optional[Any], loader: Callable[[Any], T]) -> Optional[T]:
        if raw is None:
            return None
        try:
            return loader(raw)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Discarding malformed cache payload: %s", e)
            return None
