"""Tests for the typed EmailCache facade."""

from datetime import datetime, timedelta, timezone

import pytest

from mailfacade.cache import CacheStats, CacheStore, EmailCache
from mailfacade.models import EmailFolder, EmailMessage, EmailMetadata, ListPage, SearchQuery
from mailfacade.models.message import SEEN


class BrokenStore(CacheStore):
    """A store whose every call blows up."""

    backend_type = "broken"

    async def get(self, key):
        raise RuntimeError("boom")

    async def set(self, key, value, ttl_seconds):
        raise RuntimeError("boom")

    async def delete(self, key):
        raise RuntimeError("boom")

    async def clear_by_pattern(self, pattern):
        raise RuntimeError("boom")

    def stats(self):
        raise RuntimeError("boom")


def make_page(*uids: str) -> ListPage:
    emails = [EmailMetadata(uid=u, subject=f"s{u}", from_addr="a@example.com") for u in uids]
    return ListPage(emails=emails, total=len(emails))


def make_email(uid: str = "1", **kwargs) -> EmailMessage:
    defaults = dict(subject="Hi", from_addr="bob@example.com", body="hello", flags=[SEEN])
    defaults.update(kwargs)
    return EmailMessage(uid=uid, **defaults)


LIST_ARGS = dict(folder="INBOX", limit=10, offset=0, sort_order="desc")


class TestRoundTrip:
    async def test_email_list(self, cache):
        page = make_page("3", "2", "1")
        await cache.cache_email_list(page, **LIST_ARGS)
        assert await cache.get_email_list(**LIST_ARGS) == page

    async def test_list_keys_are_per_page(self, cache):
        await cache.cache_email_list(make_page("1"), **LIST_ARGS)
        assert await cache.get_email_list(**{**LIST_ARGS, "offset": 10}) is None

    async def test_search_results(self, cache):
        query = SearchQuery(text="  invoice   march ")
        page = make_page("9")
        await cache.cache_search_results(page, folder="INBOX", query=query, limit=10, offset=0)
        same = SearchQuery(text="invoice march")
        assert await cache.get_search_results(folder="INBOX", query=same, limit=10, offset=0) == page

    async def test_email(self, cache):
        email = make_email(date=datetime(2024, 1, 2, tzinfo=timezone.utc), headers={"X-Test": "1"})
        await cache.cache_email(email, "INBOX")
        assert await cache.get_email("1", "INBOX") == email
        assert await cache.get_email("1", "Archive") is None

    async def test_folders(self, cache):
        folders = [EmailFolder(name="INBOX", path="INBOX", unread_count=2, total_count=5)]
        await cache.cache_folders(folders)
        assert await cache.get_folders() == folders


class TestTTL:
    async def test_recent_unread_email_expires_quickly(self, cache, clock):
        now = datetime(2024, 6, 1, tzinfo=timezone.utc)
        email = make_email(flags=[], date=now - timedelta(hours=1))
        ttl = await cache.cache_email(email, "INBOX", now=now)
        assert ttl == 300
        clock.advance(301)
        assert await cache.get_email("1", "INBOX") is None

    async def test_list_uses_list_ttl(self, cache, clock):
        await cache.cache_email_list(make_page("1"), **LIST_ARGS)
        clock.advance(299)
        assert await cache.get_email_list(**LIST_ARGS) is not None
        clock.advance(2)
        assert await cache.get_email_list(**LIST_ARGS) is None


class TestClearing:
    async def test_clear_folder_lists_leaves_other_folders(self, cache):
        await cache.cache_email_list(make_page("1"), **LIST_ARGS)
        await cache.cache_email_list(make_page("2"), **{**LIST_ARGS, "folder": "Sent"})
        await cache.cache_search_results(make_page("1"), folder="INBOX", query=SearchQuery(text="x"), limit=10, offset=0)

        assert await cache.clear_folder_lists("INBOX") == 2
        assert await cache.get_email_list(**LIST_ARGS) is None
        assert await cache.get_email_list(**{**LIST_ARGS, "folder": "Sent"}) is not None

    async def test_clear_account(self, cache, store):
        await cache.cache_email_list(make_page("1"), **LIST_ARGS)
        await cache.cache_email(make_email(), "INBOX")
        await cache.cache_folders([EmailFolder(name="INBOX", path="INBOX")])
        other = EmailCache(store, "someone-else")
        await other.cache_email(make_email(), "INBOX")

        await cache.clear_account()

        assert await cache.get_email_list(**LIST_ARGS) is None
        assert await cache.get_email("1", "INBOX") is None
        assert await cache.get_folders() is None
        assert await other.get_email("1", "INBOX") is not None


class TestFailureIsolation:
    @pytest.fixture
    def broken(self):
        return EmailCache(BrokenStore(), "acct")

    async def test_reads_are_misses(self, broken):
        assert await broken.get_email_list(**LIST_ARGS) is None
        assert await broken.get_email("1", "INBOX") is None
        assert await broken.get_folders() is None

    async def test_writes_are_noops(self, broken):
        await broken.cache_email_list(make_page("1"), **LIST_ARGS)
        await broken.cache_email(make_email(), "INBOX")
        await broken.delete_email("1", "INBOX")
        assert await broken.clear_folder_lists("INBOX") == 0
        assert await broken.clear_account() == 0

    def test_stats_fall_back(self, broken):
        stats = broken.stats()
        assert isinstance(stats, CacheStats)
        assert stats.backend_type == "broken"
        assert stats.size == -1

    async def test_malformed_payload_is_a_miss(self, cache, store):
        await store.set(cache.email_key("1", "INBOX"), {"no": "uid"}, 60)
        assert await cache.get_email("1", "INBOX") is None
