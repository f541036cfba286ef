"""Tests for the in-process cache backend."""

import pytest

from mailfacade.cache import MemoryCacheStore, create_cache_store


class TestMemoryCacheStore:
    async def test_set_then_get_returns_value(self, store):
        await store.set("k", {"a": [1, 2]}, 60)
        assert await store.get("k") == {"a": [1, 2]}

    async def test_missing_key_is_none(self, store):
        assert await store.get("nope") is None

    async def test_entry_expires_after_ttl(self, store, clock):
        await store.set("k", "v", 60)
        clock.advance(59)
        assert await store.get("k") == "v"
        clock.advance(1)
        assert await store.get("k") is None
        # expired entries are dropped on read
        assert len(store) == 0

    async def test_set_overwrites_and_restarts_ttl(self, store, clock):
        await store.set("k", "old", 10)
        clock.advance(9)
        await store.set("k", "new", 10)
        clock.advance(5)
        assert await store.get("k") == "new"

    async def test_rejects_non_positive_ttl(self, store):
        with pytest.raises(ValueError):
            await store.set("k", "v", 0)

    async def test_delete(self, store):
        await store.set("k", "v", 60)
        await store.delete("k")
        await store.delete("never-existed")
        assert await store.get("k") is None

    async def test_clear_by_pattern(self, store):
        await store.set("emails:list:a:INBOX:limit=1", 1, 60)
        await store.set("emails:list:a:INBOX:limit=2", 2, 60)
        await store.set("emails:list:a:Sent:limit=1", 3, 60)
        removed = await store.clear_by_pattern("emails:list:a:INBOX:*")
        assert removed == 2
        assert store.keys() == ["emails:list:a:Sent:limit=1"]

    async def test_purge_expired(self, store, clock):
        await store.set("short", 1, 5)
        await store.set("long", 2, 500)
        clock.advance(10)
        assert await store.purge_expired() == 1
        assert store.keys() == ["long"]

    async def test_stats(self, store):
        await store.set("k", "v", 60)
        stats = store.stats()
        assert stats.backend_type == "memory"
        assert stats.size == 1
        assert stats.memory_usage_estimate > 0


class TestEviction:
    async def test_size_never_exceeds_capacity(self, clock):
        store = MemoryCacheStore(capacity=10, eviction_ratio=0.3, clock=clock)
        for i in range(50):
            clock.advance(1)
            await store.set(f"k{i}", i, 1000)
            assert len(store) <= 10

    async def test_evicts_oldest_batch(self, clock):
        store = MemoryCacheStore(capacity=10, eviction_ratio=0.3, clock=clock)
        for i in range(10):
            clock.advance(1)
            await store.set(f"k{i}", i, 1000)
        clock.advance(1)
        await store.set("new", "x", 1000)

        assert store.eviction_batch == 3
        assert len(store) == 8
        for i in range(3):
            assert f"k{i}" not in store
        assert "k3" in store
        assert "new" in store

    async def test_small_capacity_still_evicts(self, clock):
        store = MemoryCacheStore(capacity=2, eviction_ratio=0.1, clock=clock)
        await store.set("a", 1, 60)
        clock.advance(1)
        await store.set("b", 2, 60)
        clock.advance(1)
        await store.set("c", 3, 60)
        assert len(store) == 2
        assert "a" not in store

    async def test_overwrite_at_capacity_does_not_evict(self, clock):
        store = MemoryCacheStore(capacity=2, eviction_ratio=0.5, clock=clock)
        await store.set("a", 1, 60)
        await store.set("b", 2, 60)
        await store.set("a", 3, 60)
        assert sorted(store.keys()) == ["a", "b"]

    def test_invalid_construction(self):
        with pytest.raises(ValueError):
            MemoryCacheStore(capacity=0)
        with pytest.raises(ValueError):
            MemoryCacheStore(eviction_ratio=0)


async def test_create_cache_store_memory():
    store = await create_cache_store("memory", capacity=5)
    assert isinstance(store, MemoryCacheStore)
    assert store.capacity == 5


async def test_create_cache_store_unknown_backend():
    with pytest.raises(ValueError):
        await create_cache_store("memcached")
