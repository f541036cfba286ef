# mailfacade/cache/store.py
from __future__ import annotations

import json
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from mailfacade.errors import CacheBackendError
from mailfacade.perf.timing import Throttle

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

# errors that mean "treat as a miss" on the redis backend
REDIS_FAILURES = (RedisError, OSError, ValueError, TypeError, KeyError)


@dataclass
class CacheEntry:
    key: str
    value: Any
    ttl_seconds: int
    created_at: float

    def is_valid(self, now: float) -> bool:
        return now - self.created_at < self.ttl_seconds

    def to_json(self) -> str:
        return json.dumps(
            {"key": self.key, "value": self.value, "ttl": self.ttl_seconds, "created_at": self.created_at},
            separators=(",", ":"),
        )

    @classmethod
    def from_json(cls, raw: str) -> "CacheEntry":
        d = json.loads(raw)
        return cls(key=d["key"], value=d["value"], ttl_seconds=int(d["ttl"]), created_at=float(d["created_at"]))


@dataclass(frozen=True)
class CacheStats:
    backend_type: str
    size: int
    memory_usage_estimate: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "backend_type": self.backend_type,
            "size": self.size,
            "memory_usage_estimate": self.memory_usage_estimate,
        }


class CacheStore(ABC):
    """
    Key/value store with per-entry TTL.

    Implementations must not raise from get/set/delete/clear_by_pattern
    for backend failures; they log and behave like a miss or a no-op.
    """

    backend_type: str = "abstract"

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]: ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: int) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> None: ...

    @abstractmethod
    async def clear_by_pattern(self, pattern: str) -> int:
        """Remove every key matching a glob pattern where * is the only wildcard."""

    @abstractmethod
    def stats(self) -> CacheStats: ...

    async def purge_expired(self) -> int:
        return 0

    async def close(self) -> None:
        return None


def glob_to_regex(pattern: str) -> "re.Pattern[str]":
    return re.compile("^" + ".*".join(re.escape(part) for part in pattern.split("*")) + "$")


def _validate_ttl(ttl_seconds: int) -> int:
    ttl = int(ttl_seconds)
    if ttl <= 0:
        raise ValueError(f"ttl_seconds must be > 0, got {ttl_seconds!r}")
    return ttl


# -----------------------
# In-process backend
# -----------------------

class MemoryCacheStore(CacheStore):
    """
    Bounded in-process map.

    When a new key arrives at capacity, the oldest eviction_ratio share of
    entries (by created_at) is dropped in one go rather than one entry per
    insert.
    """

    backend_type = "memory"

    def __init__(self, *, capacity: int = 1000, eviction_ratio: float = 0.1, clock: Clock = time.monotonic):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        if not 0 < eviction_ratio <= 1:
            raise ValueError("eviction_ratio must be in (0, 1]")
        self.capacity = capacity
        self.eviction_ratio = eviction_ratio
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.is_valid(self._clock())

    def keys(self) -> List[str]:
        return list(self._entries.keys())

    @property
    def eviction_batch(self) -> int:
        return max(1, int(self.capacity * self.eviction_ratio))

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.is_valid(self._clock()):
            self._entries.pop(key, None)
            return None
        return entry.value

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        ttl = _validate_ttl(ttl_seconds)
        if key not in self._entries and len(self._entries) >= self.capacity:
            self._evict_oldest()
        self._entries[key] = CacheEntry(key=key, value=value, ttl_seconds=ttl, created_at=self._clock())

    def _evict_oldest(self) -> None:
        # sorted() is stable, so equal timestamps evict in insertion order
        oldest = sorted(self._entries.values(), key=lambda e: e.created_at)[: self.eviction_batch]
        for entry in oldest:
            del self._entries[entry.key]
        logger.debug("Evicted %d cache entries (capacity %d)", len(oldest), self.capacity)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def clear_by_pattern(self, pattern: str) -> int:
        regex = glob_to_regex(pattern)
        doomed = [k for k in self._entries if regex.match(k)]
        for k in doomed:
            del self._entries[k]
        return len(doomed)

    async def clear(self) -> None:
        self._entries.clear()

    async def purge_expired(self) -> int:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if not e.is_valid(now)]
        for k in expired:
            del self._entries[k]
        return len(expired)

    async def close(self) -> None:
        self._entries.clear()

    def stats(self) -> CacheStats:
        try:
            usage = len(json.dumps([e.value for e in self._entries.values()], default=str))
        except (TypeError, ValueError):
            usage = None
        return CacheStats(backend_type=self.backend_type, size=len(self._entries), memory_usage_estimate=usage)


# -----------------------
# Redis backend
# -----------------------

_REDIS_GLOB_SPECIAL = re.compile(r"([?\[\]\\])")


def redis_glob(pattern: str) -> str:
    """Escape redis MATCH metacharacters except '*'."""
    return _REDIS_GLOB_SPECIAL.sub(r"\\\1", pattern)


class RedisCacheStore(CacheStore):
    """
    Shared store backed by redis.asyncio. Entries carry their own created_at
    and ttl so validity is checked the same way as the memory backend; redis
    EX expiry removes them server-side as well.
    """

    backend_type = "redis"

    def __init__(
        self,
        client: aioredis.Redis,
        *,
        key_prefix: str = "mailfacade",
        clock: Clock = time.time,
        scan_count: int = 500,
        warn_interval: float = 10.0,
    ):
        self._client = client
        self._prefix = key_prefix
        self._clock = clock
        self._scan_count = scan_count
        # at most one failure warning per warn_interval
        self._warn = Throttle(self._log_failure, window=warn_interval)

    @classmethod
    def from_url(cls, url: str, *, key_prefix: str = "mailfacade", socket_timeout: float = 3.0) -> "RedisCacheStore":
        client = aioredis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client, key_prefix=key_prefix)

    def _k(self, key: str) -> str:
        return f"{self._prefix}:{key}" if self._prefix else key

    @staticmethod
    def _log_failure(op: str, exc: BaseException) -> None:
        logger.warning("Redis cache %s failed, treating as miss: %s", op, exc)

    async def ping(self) -> None:
        try:
            await self._client.ping()
        except REDIS_FAILURES as e:
            raise CacheBackendError(f"Redis ping failed: {e}") from e

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self._client.get(self._k(key))
            if raw is None:
                return None
            entry = CacheEntry.from_json(raw)
            if entry.is_valid(self._clock()):
                return entry.value
            await self._client.delete(self._k(key))
        except REDIS_FAILURES as e:
            self._warn("get", e)
        return None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        ttl = _validate_ttl(ttl_seconds)
        try:
            entry = CacheEntry(key=key, value=value, ttl_seconds=ttl, created_at=self._clock())
            await self._client.set(self._k(key), entry.to_json(), ex=ttl)
        except REDIS_FAILURES as e:
            self._warn("set", e)

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(self._k(key))
        except REDIS_FAILURES as e:
            self._warn("delete", e)

    async def clear_by_pattern(self, pattern: str) -> int:
        match = redis_glob(self._k(pattern))
        removed = 0
        try:
            batch: List[str] = []
            async for k in self._client.scan_iter(match=match, count=self._scan_count):
                batch.append(k)
                if len(batch) >= self._scan_count:
                    removed += await self._client.delete(*batch)
                    batch = []
            if batch:
                removed += await self._client.delete(*batch)
        except REDIS_FAILURES as e:
            self._warn("clear_by_pattern", e)
        return removed

    async def close(self) -> None:
        try:
            await self._client.aclose()
        except REDIS_FAILURES as e:
            self._warn("close", e)

    def stats(self) -> CacheStats:
        return CacheStats(backend_type=self.backend_type, size=-1)


async def create_cache_store(
    backend: str = "memory",
    *,
    redis_url: Optional[str] = None,
    key_prefix: str = "mailfacade",
    socket_timeout: float = 3.0,
    capacity: int = 1000,
    eviction_ratio: float = 0.1,
    redis_client: Optional[aioredis.Redis] = None,
) -> CacheStore:
    """
    Pick the cache backend once, at startup.

    backend="redis" pings the server first; if it cannot be reached the
    memory backend is returned instead and startup continues.
    """
    def memory() -> MemoryCacheStore:
        return MemoryCacheStore(capacity=capacity, eviction_ratio=eviction_ratio)

    if backend == "memory":
        logger.info("Using memory cache (capacity %d)", capacity)
        return memory()
    if backend != "redis":
        raise ValueError(f"Unknown cache backend: {backend!r}")

    if redis_client is not None:
        store = RedisCacheStore(redis_client, key_prefix=key_prefix)
    elif redis_url:
        store = RedisCacheStore.from_url(redis_url, key_prefix=key_prefix, socket_timeout=socket_timeout)
    else:
        logger.warning("Redis backend requested without REDIS_URL, falling back to memory cache")
        return memory()

    try:
        await store.ping()
    except CacheBackendError as e:
        logger.warning("Redis unavailable, falling back to memory cache: %s", e)
        await store.close()
        return memory()

    logger.info("Redis cache connected")
    return store
