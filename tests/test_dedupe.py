"""Tests for RequestDeduplicator."""

import asyncio

import pytest

from mailfacade.perf import RequestDeduplicator


async def test_concurrent_callers_share_one_call():
    dedupe = RequestDeduplicator()
    gate = asyncio.Event()
    calls = 0

    async def fetch():
        nonlocal calls
        calls += 1
        await gate.wait()
        return "result"

    tasks = [asyncio.ensure_future(dedupe.dedupe("k", fetch)) for _ in range(5)]
    await asyncio.sleep(0)
    assert "k" in dedupe
    gate.set()

    assert await asyncio.gather(*tasks) == ["result"] * 5
    assert calls == 1
    assert dedupe.pending_count == 0


async def test_key_is_forgotten_after_completion():
    dedupe = RequestDeduplicator()
    calls = 0

    async def fetch():
        nonlocal calls
        calls += 1
        return calls

    assert await dedupe.dedupe("k", fetch) == 1
    assert await dedupe.dedupe("k", fetch) == 2


async def test_failure_reaches_every_waiter_and_clears_key():
    dedupe = RequestDeduplicator()
    gate = asyncio.Event()

    async def fetch():
        await gate.wait()
        raise RuntimeError("down")

    tasks = [asyncio.ensure_future(dedupe.dedupe("k", fetch)) for _ in range(3)]
    await asyncio.sleep(0)
    gate.set()
    results = await asyncio.gather(*tasks, return_exceptions=True)

    assert all(isinstance(r, RuntimeError) for r in results)
    assert "k" not in dedupe


async def test_different_keys_run_separately():
    dedupe = RequestDeduplicator()
    seen = []

    async def fetch(key):
        seen.append(key)
        return key

    a, b = await asyncio.gather(dedupe.dedupe("a", lambda: fetch("a")), dedupe.dedupe("b", lambda: fetch("b")))
    assert (a, b) == ("a", "b")
    assert sorted(seen) == ["a", "b"]


async def test_cancelled_waiter_does_not_cancel_shared_call():
    dedupe = RequestDeduplicator()
    gate = asyncio.Event()

    async def fetch():
        await gate.wait()
        return 42

    first = asyncio.ensure_future(dedupe.dedupe("k", fetch))
    second = asyncio.ensure_future(dedupe.dedupe("k", fetch))
    await asyncio.sleep(0)
    first.cancel()
    gate.set()

    assert await second == 42
    with pytest.raises(asyncio.CancelledError):
        await first
