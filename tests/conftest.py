# tests/conftest.py

from __future__ import annotations

import pytest

from mailfacade.cache import EmailCache, MemoryCacheStore
from mailfacade.service import CachedEmailService

from fake_mailbox import FakeMailbox


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> MemoryCacheStore:
    return MemoryCacheStore(capacity=100, eviction_ratio=0.1, clock=clock)


@pytest.fixture
def mailbox() -> FakeMailbox:
    mb = FakeMailbox()
    for i in range(5):
        mb.add_message(subject=f"Message {i}")
    return mb


@pytest.fixture
def cache(store: MemoryCacheStore, mailbox: FakeMailbox) -> EmailCache:
    return EmailCache(store, mailbox.account_id)


@pytest.fixture
def service(mailbox: FakeMailbox, cache: EmailCache) -> CachedEmailService:
    return CachedEmailService(mailbox, cache)
