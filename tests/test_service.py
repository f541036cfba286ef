"""Tests for CachedEmailService against the in-memory FakeMailbox."""

import asyncio
from datetime import date

import pytest

from mailfacade.cache import EmailCache
from mailfacade.errors import EmailNotFoundError, MailboxError
from mailfacade.models import EmailOperation, SearchCachePolicy, SearchQuery
from mailfacade.models.message import SEEN
from mailfacade.service import CachedEmailService

from fake_mailbox import FakeMailbox


class FakeSummarizer:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = 0

    async def summarize(self, message):
        self.calls += 1
        if self.fail:
            raise RuntimeError("model unavailable")
        return {"summary": message.subject[:10]}


class TestListEmails:
    async def test_cold_then_hot(self, service, mailbox):
        cold = await service.list_emails("INBOX", limit=3)
        hot = await service.list_emails("INBOX", limit=3)

        assert not cold.cached
        assert hot.cached
        assert hot.page == cold.page
        assert [e.uid for e in cold.page.emails] == ["5", "4", "3"]
        assert cold.page.has_more and cold.page.next_offset == 3
        assert mailbox.calls["list_emails"] == 1

    async def test_use_cache_false_always_hits_mailbox(self, service, mailbox):
        await service.list_emails(use_cache=False)
        result = await service.list_emails(use_cache=False)
        assert not result.cached
        assert mailbox.calls["list_emails"] == 2
        # and nothing was stored
        await service.list_emails()
        assert mailbox.calls["list_emails"] == 3

    async def test_empty_folder_is_not_cached(self, service, mailbox):
        await service.list_emails("Empty")
        await service.list_emails("Empty")
        assert mailbox.calls["list_emails"] == 2

    async def test_concurrent_misses_share_one_call(self, service, mailbox):
        mailbox.gate = asyncio.Event()
        tasks = [asyncio.ensure_future(service.list_emails("INBOX")) for _ in range(4)]
        await asyncio.sleep(0)
        mailbox.gate.set()
        results = await asyncio.gather(*tasks)

        assert mailbox.calls["list_emails"] == 1
        assert len({tuple(e.uid for e in r.page.emails) for r in results}) == 1

    async def test_invalid_paging(self, service):
        with pytest.raises(ValueError):
            await service.list_emails(limit=0)
        with pytest.raises(ValueError):
            await service.list_emails(offset=-1)
        with pytest.raises(ValueError):
            await service.list_emails(sort_order="sideways")

    async def test_mailbox_error_propagates_and_is_recorded(self, service, mailbox):
        mailbox.fail_next = MailboxError("server said no")
        with pytest.raises(MailboxError):
            await service.list_emails()
        assert service.monitor.metrics()["list_emails"]["error_rate"] == 100

    async def test_cache_failure_falls_through_to_mailbox(self, mailbox):
        class DeadStore:
            backend_type = "dead"

            async def get(self, key):
                raise ConnectionError("down")

            async def set(self, key, value, ttl_seconds):
                raise ConnectionError("down")

        service = CachedEmailService(mailbox, EmailCache(DeadStore(), mailbox.account_id))
        result = await service.list_emails()
        assert len(result.page.emails) == 5


class TestMutations:
    async def test_operation_invalidates_list_and_email(self, service, mailbox):
        await service.list_emails()
        await service.get_email("5")

        result = await service.perform_operation(EmailOperation(type="mark_read", uids=["5"]), "INBOX")
        assert result.success and result.processed == 1

        listing = await service.list_emails()
        email = await service.get_email("5")
        assert not listing.cached
        assert not email.cached
        assert SEEN in email.email.flags
        assert mailbox.calls["list_emails"] == 2
        assert mailbox.calls["get_email"] == 2

    async def test_list_in_flight_during_delete_is_neither_joined_nor_cached(self, service, mailbox):
        read_done = asyncio.Event()
        release = asyncio.Event()
        real_list = mailbox.list_emails

        async def slow_list(*args):
            page = await real_list(*args)
            read_done.set()
            await release.wait()
            return page

        mailbox.list_emails = slow_list
        before = asyncio.ensure_future(service.list_emails())
        await read_done.wait()

        await service.perform_operation(EmailOperation(type="delete", uids=["5"]), "INBOX")
        del mailbox.list_emails

        after = await service.list_emails()
        assert not after.cached
        assert [e.uid for e in after.page.emails] == ["4", "3", "2", "1"]

        release.set()
        stale = await before
        assert [e.uid for e in stale.page.emails] == ["5", "4", "3", "2", "1"]

        later = await service.list_emails()
        assert later.cached
        assert [e.uid for e in later.page.emails] == ["4", "3", "2", "1"]
        assert mailbox.calls["list_emails"] == 2

    async def test_move_refreshes_target_folder_and_folder_counts(self, service, mailbox):
        await service.list_emails("Archive")  # empty, not cached
        mailbox.add_message("Archive")
        await service.list_emails("Archive")
        folders = await service.list_folders()
        archive_total = {f.name: f.total_count for f in folders}["Archive"]

        await service.perform_operation(
            EmailOperation(type="move", uids=["1"], target_folder="Archive"), "INBOX"
        )

        archive = await service.list_emails("Archive")
        folders = await service.list_folders()
        assert not archive.cached
        assert len(archive.page.emails) == 2
        assert {f.name: f.total_count for f in folders}["Archive"] == archive_total + 1

    async def test_failed_operation_does_not_invalidate(self, service, mailbox):
        await service.list_emails()
        mailbox.fail_next = MailboxError("read-only mailbox")
        with pytest.raises(MailboxError):
            await service.perform_operation(EmailOperation(type="delete", uids=["1"]), "INBOX")
        assert (await service.list_emails()).cached

    async def test_batch_operations(self, service, mailbox):
        ops = [
            EmailOperation(type="star", uids=["1", "2"]),
            EmailOperation(type="mark_read", uids=["3"]),
        ]
        result = await service.batch_operations(ops, "INBOX")
        assert result.total_processed == 3
        assert result.to_dict()["success"] is True
        assert mailbox.calls["perform_operation"] == 2

    async def test_batch_keeps_going_after_a_failure(self, service, mailbox):
        mailbox.fail_next = MailboxError("nope")
        ops = [EmailOperation(type="star", uids=["1"]), EmailOperation(type="star", uids=["2"])]
        result = await service.batch_operations(ops, "INBOX")
        d = result.to_dict()
        assert d["success"] is False
        assert [r["success"] for r in d["results"]] == [False, True]
        assert result.total_processed == 1


class TestGetEmail:
    async def test_cold_then_hot(self, service, mailbox):
        first = await service.get_email("2")
        second = await service.get_email("2")
        assert not first.cached and second.cached
        assert second.email == first.email
        assert mailbox.calls["get_email"] == 1

    async def test_not_found_propagates(self, service):
        with pytest.raises(EmailNotFoundError):
            await service.get_email("999")

    async def test_summary_is_attached_but_not_cached(self, mailbox, cache):
        summarizer = FakeSummarizer()
        service = CachedEmailService(mailbox, cache, summarizer=summarizer)

        with_summary = await service.get_email("1", include_summary=True)
        plain = await service.get_email("1")
        again = await service.get_email("1", include_summary=True)

        assert with_summary.summary == {"summary": "Message 0"}
        assert plain.summary is None
        assert again.cached and again.summary is not None
        assert summarizer.calls == 2

    async def test_summary_failure_returns_email_anyway(self, mailbox, cache):
        service = CachedEmailService(mailbox, cache, summarizer=FakeSummarizer(fail=True))
        result = await service.get_email("1", include_summary=True)
        assert result.summary is None
        assert result.email.uid == "1"

    async def test_access_is_recorded_for_prefetch(self, service):
        await service.get_email("3")
        await service.get_email("3")
        assert service.prefetcher.access_count("3") == 2


class TestSearch:
    async def test_plain_search_is_cached(self, service, mailbox):
        query = SearchQuery(subject="Message")
        await service.search_emails(query)
        hot = await service.search_emails(SearchQuery(subject="Message"))
        assert hot.cached
        assert mailbox.calls["search_emails"] == 1

    async def test_date_range_and_read_filters_skip_cache(self, service, mailbox):
        await service.search_emails(SearchQuery(date_from=date(2024, 1, 1)))
        await service.search_emails(SearchQuery(date_from=date(2024, 1, 1)))
        await service.search_emails(SearchQuery(is_read=False))
        await service.search_emails(SearchQuery(is_read=False))
        assert mailbox.calls["search_emails"] == 4

    async def test_policy_can_allow_read_filters(self, mailbox, cache):
        service = CachedEmailService(mailbox, cache, search_policy=SearchCachePolicy(cache_read_status=True))
        await service.search_emails(SearchQuery(is_read=False))
        assert (await service.search_emails(SearchQuery(is_read=False))).cached


class TestFolders:
    async def test_cold_then_hot(self, service, mailbox):
        first = await service.list_folders()
        second = await service.list_folders()
        assert first == second
        assert mailbox.calls["list_folders"] == 1


class TestPrefetch:
    async def test_warms_top_candidates(self, service, mailbox):
        listing = await service.list_emails()
        warmed = await service.prefetch(None, "INBOX", listing.page.emails, top_k=3)

        assert len(warmed) == 3
        assert mailbox.calls["get_email"] == 3
        for uid in warmed:
            assert (await service.get_email(uid)).cached

    async def test_skips_failures(self, service, mailbox):
        listing = await service.list_emails()
        mailbox.fail_next = MailboxError("flaky")
        warmed = await service.prefetch("5", "INBOX", listing.page.emails, top_k=2)
        assert len(warmed) == 1


class TestAdmin:
    async def test_clear_account_cache(self, service, mailbox):
        await service.list_emails()
        await service.get_email("1")
        await service.clear_account_cache()

        assert not (await service.list_emails()).cached
        assert not (await service.get_email("1")).cached

    async def test_stats(self, service):
        await service.list_emails()
        stats = service.get_stats()
        assert stats["account"] == "imap.example.com:alice"
        assert stats["cache"]["backend_type"] == "memory"
        assert stats["cache"]["size"] == 1
        assert stats["performance"]["list_emails"]["count"] == 1
        assert stats["health"]["status"] == "excellent"
