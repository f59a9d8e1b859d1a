"""
Tests for the cache store.
"""

from __future__ import annotations

import asyncio

import pytest

from dashboard_query.cache import CacheStore
from dashboard_query.core import CacheConfig, CacheStoreError, QueryStatus, StaleDataWarning

from conftest import FakeClock


@pytest.fixture
def store(clock: FakeClock) -> CacheStore:
    return CacheStore(clock=clock, config=CacheConfig(gc_time_ms=1000))


class TestCacheEntry:
    """Tests for CacheEntry state."""

    def test_new_entry_is_idle(self, store):
        """Test that an entry with no data or fetch is idle."""
        entry = store.set(["x"], stale_time_ms=100)
        assert entry.status == QueryStatus.IDLE
        assert not entry.has_data
        assert entry.is_stale(0)

    def test_status_transitions(self, store):
        """Test fetching, success and error statuses."""
        assert store.set(["x"], is_fetching=True).status == QueryStatus.FETCHING
        assert store.set(["x"], data=1, is_fetching=False).status == QueryStatus.SUCCESS
        assert store.set(["x"], error=RuntimeError("boom")).status == QueryStatus.ERROR

    def test_staleness_window(self, store, clock):
        """Test that data is fresh until stale_time_ms has elapsed."""
        store.set(["x"], data="v", stale_time_ms=5000)
        entry = store.get(["x"])
        assert not entry.is_stale(clock() + 4999)
        assert entry.is_stale(clock() + 5000)

    def test_stale_time_override(self, store):
        """Test that the asking query's window wins over the entry's."""
        store.set(["x"], data="v", stale_time_ms=5000)
        entry = store.get(["x"])
        assert entry.is_stale(100, stale_time_ms=0)

    def test_warning_only_while_revalidating(self, store):
        """Test that StaleDataWarning is attached while refetching over data."""
        store.set(["x"], is_fetching=True)
        assert store.get(["x"]).warning is None
        store.set(["x"], data=1, is_fetching=False)
        store.set(["x"], is_fetching=True)
        warning = store.get(["x"]).warning
        assert isinstance(warning, StaleDataWarning)
        assert warning.key == ("x",)


class TestSetAndGet:
    """Tests for set, get and find."""

    def test_round_trip(self, store):
        """Test that set then get returns the data."""
        store.set(["mlModels", "list"], data=[1, 2])
        assert store.get(["mlModels", "list"]).data == [1, 2]

    def test_data_update_stamps_fetched_at(self, store, clock):
        """Test that a data update records the clock time."""
        clock.advance(1234)
        entry = store.set(["x"], data="v")
        assert entry.fetched_at == 1234
        assert entry.fetch_count == 1

    def test_data_update_clears_invalidation(self, store):
        """Test that new data resets the invalidated flag."""
        store.set(["x"], data=1)
        store.invalidate([["x"]])
        assert store.get(["x"]).is_invalidated
        assert not store.set(["x"], data=2).is_invalidated

    def test_partial_mapping_merges_with_fields(self, store):
        """Test that the partial mapping and keyword fields combine."""
        entry = store.set(["x"], {"data": 1}, is_fetching=True)
        assert entry.data == 1
        assert entry.is_fetching

    def test_unknown_field_rejected(self, store):
        """Test that unknown entry fields raise CacheStoreError."""
        with pytest.raises(CacheStoreError, match="unknown field"):
            store.set(["x"], dataa=1)

    def test_get_returns_snapshot(self, store):
        """Test that mutating a snapshot does not touch the store."""
        store.set(["x"], data=1)
        snapshot = store.get(["x"])
        snapshot.data = 99
        assert store.get(["x"]).data == 1

    def test_missing_entry(self, store):
        """Test that unknown keys return None and are not contained."""
        assert store.get(["nope"]) is None
        assert ["nope"] not in store
        assert "not-a-key" not in store

    def test_find_by_prefix(self, store):
        """Test finding all entries under a prefix."""
        store.set(["mlModels", "list"], data=1)
        store.set(["mlModels", "detail", "1"], data=2)
        store.set(["dataSources", "list"], data=3)
        assert len(store.find(["mlModels"])) == 2
        assert len(store.find(["mlModels"], exact=True)) == 0
        assert len(store.find()) == 3

    def test_normalized_keys_share_entry(self, store):
        """Test that differently ordered filters address one entry."""
        store.set(["list", {"a": 1, "b": 2}], data="v")
        assert store.get(["list", {"b": 2, "a": 1}]).data == "v"
        assert len(store) == 1


class TestInvalidate:
    """Tests for invalidation."""

    def test_prefix_invalidation_keeps_data(self, store):
        """Test that invalidation marks matches stale without dropping data."""
        store.set(["mlModels", "list"], data="list")
        store.set(["mlModels", "detail", "1"], data="one")
        store.set(["dataSources", "list"], data="sources")

        invalidated = store.invalidate([["mlModels"]])

        assert {e.key for e in invalidated} == {("mlModels", "list"), ("mlModels", "detail", "1")}
        assert store.get(["mlModels", "list"]).data == "list"
        assert store.get(["mlModels", "list"]).is_stale(0)
        assert not store.get(["dataSources", "list"]).is_invalidated

    def test_exact_invalidation(self, store):
        """Test that exact invalidation skips descendants."""
        store.set(["m", "detail", "1"], data=1)
        store.set(["m", "detail", "1", "metrics", 7], data=2)
        invalidated = store.invalidate([["m", "detail", "1"]], exact=True)
        assert [e.key for e in invalidated] == [("m", "detail", "1")]
        assert not store.get(["m", "detail", "1", "metrics", 7]).is_invalidated

    def test_invalidation_counts(self, store):
        """Test that each invalidation increments the counter once per entry."""
        store.set(["x"], data=1)
        store.invalidate([["x"], ["x"]])
        assert store.get(["x"]).invalidation_count == 1
        store.invalidate([["x"]])
        assert store.get(["x"]).invalidation_count == 2

    def test_invalidate_nothing(self, store):
        """Test that unmatched keys invalidate nothing."""
        store.set(["x"], data=1)
        assert store.invalidate([["y"]]) == []

    def test_empty_key_invalidates_all(self, store):
        """Test that the empty prefix matches every entry."""
        store.set(["x"], data=1)
        store.set(["y", 1], data=2)
        assert len(store.invalidate([[]])) == 2

    def test_subscribers_notified(self, store):
        """Test that subscribers of invalidated keys receive a snapshot."""
        store.set(["x"], data=1)
        received = []
        store.registry.subscribe(["x"], received.append)
        store.invalidate([["x"]])
        assert len(received) == 1
        assert received[0].is_invalidated


class TestRemoveAndClear:
    """Tests for remove and clear."""

    def test_remove(self, store):
        """Test that remove reports whether the entry existed."""
        store.set(["x"], data=1)
        assert store.remove(["x"])
        assert not store.remove(["x"])

    def test_remove_calls_eviction_hook(self, store):
        """Test that the on_evict hook sees removed hashes."""
        evicted = []
        store.on_evict = evicted.append
        store.set(["x"], data=1)
        store.remove(["x"])
        assert evicted == [store.hash(["x"])]

    def test_clear_keeps_subscriptions(self, store):
        """Test that clear drops entries but not subscribers."""
        received = []
        store.registry.subscribe(["x"], received.append)
        store.set(["x"], data=1)
        store.clear()
        assert len(store) == 0
        store.set(["x"], data=2)
        assert [e.data for e in received] == [1, 2]


class TestGarbageCollection:
    """Tests for eviction of unobserved entries."""

    def test_collect_after_gc_time(self, store, clock):
        """Test that idle entries are evicted once gc_time_ms has passed."""
        store.set(["x"], data=1)
        clock.advance(999)
        assert store.collect_garbage() == 0
        clock.advance(1)
        assert store.collect_garbage() == 1
        assert ["x"] not in store

    def test_observed_entries_survive(self, store, clock):
        """Test that entries with subscribers are never collected."""
        store.set(["x"], data=1)
        unsubscribe = store.registry.subscribe(["x"], lambda entry: None)
        clock.advance(5000)
        assert store.collect_garbage() == 0
        unsubscribe()
        assert store.collect_garbage() == 0
        clock.advance(1000)
        assert store.collect_garbage() == 1

    def test_fetching_entries_survive(self, store, clock):
        """Test that an entry with a fetch in flight is not collected."""
        store.set(["x"], is_fetching=True)
        clock.advance(5000)
        assert store.collect_garbage() == 0

    @pytest.mark.asyncio
    async def test_timer_evicts_unobserved_entry(self, clock):
        """Test that a real loop timer evicts an entry after gc_time_ms."""
        store = CacheStore(clock=clock, config=CacheConfig(gc_time_ms=10))
        store.set(["x"], data=1)
        await asyncio.sleep(0.05)
        assert ["x"] not in store

    @pytest.mark.asyncio
    async def test_subscriber_prevents_timer_eviction(self, clock):
        """Test that a subscriber arriving before the timer keeps the entry."""
        store = CacheStore(clock=clock, config=CacheConfig(gc_time_ms=10))
        store.set(["x"], data=1)
        store.registry.subscribe(["x"], lambda entry: None)
        await asyncio.sleep(0.05)
        assert ["x"] in store
