"""
Unit tests for the listing cache: staleness, whole-value swaps, detail merge.
"""

from mailadmin.cache import ListingCache
from mailadmin.models import EmailMessage, EmailOverview, PlainValue


def _entries(*uids):
    return [EmailOverview(uid=u, mailbox="INBOX", subject=f"s{u}", from_addr=PlainValue("a")) for u in uids]


class TestGetPut:
    def test_miss_returns_none(self, clock):
        cache = ListingCache(clock=clock)
        assert cache.get("u", "INBOX") is None

    def test_put_then_get_returns_same_partition(self, clock):
        cache = ListingCache(clock=clock)
        cache.put("u", "INBOX", _entries(3, 2, 1), 3)

        part = cache.get("u", "INBOX")
        assert [e.uid for e in part.entries] == [3, 2, 1]
        assert part.total_count == 3

    def test_put_replaces_without_merging(self, clock):
        cache = ListingCache(clock=clock)
        cache.put("u", "INBOX", _entries(1, 2), 2)
        cache.put("u", "INBOX", _entries(5), 1)

        part = cache.get("u", "INBOX")
        assert [e.uid for e in part.entries] == [5]
        assert part.total_count == 1

    def test_partitions_are_per_identity(self, clock):
        cache = ListingCache(clock=clock)
        cache.put("a@example.com", "INBOX", _entries(1), 1)
        assert cache.get("b@example.com", "INBOX") is None


class TestStaleness:
    def test_entry_expires_after_window(self, clock):
        cache = ListingCache(ttl_seconds=300, clock=clock)
        cache.put("u", "INBOX", _entries(1), 1)

        clock.advance(299)
        assert cache.get("u", "INBOX") is not None

        clock.advance(1)
        assert cache.get("u", "INBOX") is None
        assert len(cache) == 0

    def test_sweep_drops_only_expired(self, clock):
        cache = ListingCache(ttl_seconds=100, clock=clock)
        cache.put("u", "INBOX", _entries(1), 1)
        clock.advance(60)
        cache.put("u", "INBOX.Sent", _entries(2), 1)
        clock.advance(50)

        assert cache.sweep() == 1
        assert cache.get("u", "INBOX") is None
        assert cache.get("u", "INBOX.Sent") is not None


class TestInvalidation:
    def test_invalidate_single_folder(self, clock):
        cache = ListingCache(clock=clock)
        cache.put("u", "INBOX", _entries(1), 1)
        cache.put("u", "INBOX.Sent", _entries(2), 1)

        cache.invalidate("u", "INBOX")

        assert cache.get("u", "INBOX") is None
        assert cache.get("u", "INBOX.Sent") is not None

    def test_invalidate_all_is_scoped_to_identity(self, clock):
        cache = ListingCache(clock=clock)
        cache.put("u", "INBOX", _entries(1), 1)
        cache.put("u", "INBOX.Sent", _entries(2), 1)
        cache.put("other", "INBOX", _entries(3), 1)

        assert cache.invalidate_all("u") == 2
        assert cache.get("other", "INBOX") is not None

    def test_invalidate_missing_is_noop(self, clock):
        cache = ListingCache(clock=clock)
        cache.invalidate("u", "INBOX")
        assert cache.invalidate_all("u") == 0

    def test_put_with_outdated_token_is_not_stored(self, clock):
        cache = ListingCache(clock=clock)
        token = cache.token("u", "INBOX")
        cache.invalidate("u", "INBOX")

        part = cache.put("u", "INBOX", _entries(1), 1, token=token)

        assert [e.uid for e in part.entries] == [1]
        assert cache.get("u", "INBOX") is None

    def test_token_outdated_by_invalidate_all_and_clear(self, clock):
        cache = ListingCache(clock=clock)
        before_all = cache.token("u", "INBOX")
        cache.invalidate_all("u")
        before_clear = cache.token("u", "INBOX")
        cache.clear()

        cache.put("u", "INBOX", _entries(1), 1, token=before_all)
        cache.put("u", "INBOX", _entries(2), 1, token=before_clear)

        assert cache.get("u", "INBOX") is None

    def test_other_folders_keep_their_token(self, clock):
        cache = ListingCache(clock=clock)
        token = cache.token("u", "INBOX")
        cache.invalidate("u", "INBOX.Sent")
        cache.invalidate_all("other")

        cache.put("u", "INBOX", _entries(1), 1, token=token)

        assert cache.get("u", "INBOX") is not None


class TestAttachDetail:
    def test_attach_keeps_summary_and_timestamp(self, clock):
        cache = ListingCache(ttl_seconds=300, clock=clock)
        before = cache.put("u", "INBOX", _entries(2, 1), 2)

        clock.advance(200)
        detail = EmailMessage(uid=1, mailbox="INBOX", subject="s1", text="body")
        assert cache.attach_detail("u", "INBOX", 1, detail) is True

        part = cache.get("u", "INBOX")
        assert part.fetched_at == before.fetched_at
        assert part.find(1).detail is detail
        assert part.find(1) == before.find(1)
        assert part.find(2).detail is None

        # hydration does not extend the partition's life
        clock.advance(100)
        assert cache.get("u", "INBOX") is None

    def test_attach_without_partition_or_entry(self, clock):
        cache = ListingCache(clock=clock)
        detail = EmailMessage(uid=9, mailbox="INBOX", subject="x")
        assert cache.attach_detail("u", "INBOX", 9, detail) is False

        cache.put("u", "INBOX", _entries(1), 1)
        assert cache.attach_detail("u", "INBOX", 9, detail) is False

    def test_previous_partition_value_is_untouched(self, clock):
        cache = ListingCache(clock=clock)
        old = cache.put("u", "INBOX", _entries(1), 1)
        cache.attach_detail("u", "INBOX", 1, EmailMessage(uid=1, mailbox="INBOX", subject="s1"))
        assert old.find(1).detail is None
