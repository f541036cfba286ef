from mailfacade.cache.facade import EmailCache
from mailfacade.cache.invalidation import CacheInvalidator
from mailfacade.cache.keys import derive_key
from mailfacade.cache.store import (
    CacheEntry,
    CacheStats,
    CacheStore,
    MemoryCacheStore,
    RedisCacheStore,
    create_cache_store,
)
from mailfacade.cache.ttl import TTLPolicy

__all__ = [
    "EmailCache",
    "CacheInvalidator",
    "derive_key",
    "CacheEntry",
    "CacheStats",
    "CacheStore",
    "MemoryCacheStore",
    "RedisCacheStore",
    "create_cache_store",
    "TTLPolicy",
]
