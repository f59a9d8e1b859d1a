"""
Tests for the query executor: staleness, de-duplication and generations.
"""

from __future__ import annotations

import asyncio

import pytest

from dashboard_query.core import FetchError, QueryStatus

from conftest import ControlledFetcher, CountingFetcher, drain

KEY = ["mlModels", "list", {"filters": {}}]


class TestStaleness:
    """Tests for serving fresh data without refetching."""

    @pytest.mark.asyncio
    async def test_fresh_data_served_from_cache(self, client, clock):
        """Test the stale-time window: hit inside it, refetch after it."""
        fetcher = CountingFetcher("first", "second")

        assert await client.query(KEY, fetcher, stale_time_ms=5000) == "first"
        assert fetcher.calls == 1

        clock.advance(2000)
        assert await client.query(KEY, fetcher, stale_time_ms=5000) == "first"
        assert fetcher.calls == 1

        clock.advance(4000)
        assert await client.query(KEY, fetcher, stale_time_ms=5000) == "second"
        assert fetcher.calls == 2

        clock.advance(100)
        assert await client.query(KEY, fetcher, stale_time_ms=5000) == "second"
        assert fetcher.calls == 2

    @pytest.mark.asyncio
    async def test_default_stale_time_always_refetches(self, client):
        """Test that the default stale time of 0 refetches every query."""
        fetcher = CountingFetcher(1, 2)
        await client.query(["x"], fetcher)
        assert await client.query(["x"], fetcher) == 2
        assert fetcher.calls == 2

    @pytest.mark.asyncio
    async def test_invalidated_entry_refetched(self, client):
        """Test that an invalidated entry is stale regardless of its age."""
        fetcher = CountingFetcher("a", "b")
        await client.query(["x"], fetcher, stale_time_ms=60_000)
        client.store.invalidate([["x"]])
        assert await client.query(["x"], fetcher, stale_time_ms=60_000) == "b"

    @pytest.mark.asyncio
    async def test_fetch_records_stale_time(self, client):
        """Test that the entry remembers the stale time it was fetched with."""
        await client.query(["x"], CountingFetcher(1), stale_time_ms=1234)
        assert client.get(["x"]).stale_time_ms == 1234


class TestDeduplication:
    """Tests for joining in-flight fetches."""

    @pytest.mark.asyncio
    async def test_concurrent_queries_share_one_fetch(self, client):
        """Test that two concurrent callers trigger one fetcher call."""
        fetcher = ControlledFetcher()
        first = asyncio.ensure_future(client.query(KEY, fetcher))
        second = asyncio.ensure_future(client.query(KEY, fetcher))
        await fetcher.wait_started()

        fetcher.resolve(["model"])

        assert await first == ["model"]
        assert await second == ["model"]
        assert fetcher.calls == 1

    @pytest.mark.asyncio
    async def test_fetch_returns_registered_task(self, client):
        """Test that fetch without supersede returns the in-flight task."""
        fetcher = ControlledFetcher()
        task = client.fetch(["x"], fetcher)
        assert client.fetch(["x"], fetcher) is task
        assert client.get(["x"]).is_fetching

        await fetcher.wait_started()
        fetcher.resolve(1)
        assert await task == 1
        assert not client.get(["x"]).is_fetching

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_fetch(self, client):
        """Test that cancelling one waiter leaves the shared fetch running."""
        fetcher = ControlledFetcher()
        leaving = asyncio.ensure_future(client.query(["x"], fetcher))
        staying = asyncio.ensure_future(client.query(["x"], fetcher))
        await fetcher.wait_started()

        leaving.cancel()
        await drain()
        fetcher.resolve("v")

        assert await staying == "v"
        assert leaving.cancelled()
        assert client.get_data(["x"]) == "v"

    @pytest.mark.asyncio
    async def test_shared_failure_reaches_every_caller(self, client):
        """Test that joined callers all receive the same FetchError."""
        fetcher = ControlledFetcher()
        first = asyncio.ensure_future(client.query(["x"], fetcher))
        second = asyncio.ensure_future(client.query(["x"], fetcher))
        await fetcher.wait_started()

        fetcher.reject(ConnectionError("down"))
        results = await asyncio.gather(first, second, return_exceptions=True)

        assert isinstance(results[0], FetchError)
        assert results[0] is results[1]


class TestGenerations:
    """Tests for superseded fetches."""

    @pytest.mark.asyncio
    async def test_superseded_result_discarded(self, client):
        """Test that a slow, older fetch never overwrites a newer one."""
        fetcher = ControlledFetcher()
        old = client.fetch(["x"], fetcher)
        await fetcher.wait_started(1)
        new = client.fetch(["x"], fetcher, supersede=True)
        await fetcher.wait_started(2)

        fetcher.resolve("new", index=1)
        assert await new == "new"
        fetcher.resolve("old", index=0)
        assert await old == "old"

        assert client.get_data(["x"]) == "new"

    @pytest.mark.asyncio
    async def test_superseded_result_arriving_first(self, client):
        """Test that an older result arriving first leaves the entry fetching."""
        fetcher = ControlledFetcher()
        old = client.fetch(["x"], fetcher)
        await fetcher.wait_started(1)
        new = client.fetch(["x"], fetcher, supersede=True)
        await fetcher.wait_started(2)

        fetcher.resolve("old", index=0)
        assert await old == "old"
        entry = client.get(["x"])
        assert entry.is_fetching
        assert not entry.has_data

        fetcher.resolve("new", index=1)
        await new
        assert client.get_data(["x"]) == "new"

    @pytest.mark.asyncio
    async def test_superseded_failure_not_recorded(self, client):
        """Test that an older fetch failing doesn't mark the entry errored."""
        fetcher = ControlledFetcher()
        old = client.fetch(["x"], fetcher)
        await fetcher.wait_started(1)
        new = client.fetch(["x"], fetcher, supersede=True)
        await fetcher.wait_started(2)

        fetcher.reject(TimeoutError("slow"), index=0)
        with pytest.raises(FetchError):
            await old
        assert client.get(["x"]).error is None

        fetcher.resolve("new", index=1)
        await new
        assert client.get(["x"]).status == QueryStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_revalidate_supersedes_pre_invalidation_fetch(self, client):
        """Test that a fetch started before an invalidation is replaced."""
        fetcher = ControlledFetcher()
        first = client.executor.fetch(["x"], fetcher)
        await fetcher.wait_started(1)

        client.store.invalidate([["x"]])
        second = client.executor.revalidate(["x"], fetcher)
        assert second is not first
        assert client.executor.revalidate(["x"], fetcher) is second

        await fetcher.wait_started(2)
        fetcher.resolve("stale", index=0)
        fetcher.resolve("fresh", index=1)
        await asyncio.gather(first, second)
        assert client.get_data(["x"]) == "fresh"

    @pytest.mark.asyncio
    async def test_revalidate_joins_later_fetch(self, client):
        """Test that a fetch started after the invalidation is joined."""
        client.set_data(["x"], "old")
        client.store.invalidate([["x"]])
        fetcher = ControlledFetcher()
        task = client.executor.fetch(["x"], fetcher)
        assert client.executor.revalidate(["x"], fetcher) is task

        await fetcher.wait_started()
        fetcher.resolve("new")
        await task

    @pytest.mark.asyncio
    async def test_superseded_fetch_outliving_eviction(self, client):
        """Test that an old fetch finishing after remove and refetch is discarded."""
        fetcher = ControlledFetcher()
        old = client.fetch(["x"], fetcher)
        await fetcher.wait_started(1)
        superseding = client.fetch(["x"], fetcher, supersede=True)
        await fetcher.wait_started(2)
        fetcher.resolve("superseding", index=1)
        await superseding

        client.remove(["x"])
        latest = client.fetch(["x"], fetcher)
        await fetcher.wait_started(3)

        fetcher.resolve("stale-old", index=0)
        assert await old == "stale-old"
        entry = client.get(["x"])
        assert entry.is_fetching
        assert not entry.has_data
        assert client.executor.in_flight_count == 1

        fetcher.resolve("latest", index=2)
        assert await latest == "latest"
        assert client.get_data(["x"]) == "latest"
        assert not client.get(["x"]).is_fetching

    @pytest.mark.asyncio
    async def test_invalidation_during_unobserved_fetch_kept(self, client):
        """Test that a result fetched before an invalidation lands stale."""
        fetcher = ControlledFetcher()
        task = client.fetch(["x"], fetcher, stale_time_ms=60_000)
        await fetcher.wait_started()

        client.invalidate([["x"]])
        fetcher.resolve("pre-mutation")
        await task

        entry = client.get(["x"])
        assert entry.data == "pre-mutation"
        assert entry.is_invalidated
        assert entry.is_stale(client.clock())

        refreshed = CountingFetcher("post-mutation")
        assert await client.query(["x"], refreshed, stale_time_ms=60_000) == "post-mutation"
        assert refreshed.calls == 1
        assert not client.get(["x"]).is_invalidated


class TestErrors:
    """Tests for failed fetches."""

    @pytest.mark.asyncio
    async def test_error_wrapped_and_data_kept(self, client):
        """Test that a failure keeps previous data and chains the cause."""
        client.set_data(["x"], "previous")
        fetcher = ControlledFetcher()
        task = client.fetch(["x"], fetcher)
        await fetcher.wait_started()
        fetcher.reject(ValueError("bad payload"))

        with pytest.raises(FetchError, match="bad payload") as excinfo:
            await task

        assert isinstance(excinfo.value.__cause__, ValueError)
        assert excinfo.value.cause is excinfo.value.__cause__
        entry = client.get(["x"])
        assert entry.data == "previous"
        assert entry.error is excinfo.value
        assert entry.status == QueryStatus.ERROR
        assert entry.error_count == 1

    @pytest.mark.asyncio
    async def test_query_retries_after_error(self, client):
        """Test that an errored entry without data is refetched."""
        calls = 0

        async def flaky():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise ConnectionError("down")
            return "up"

        with pytest.raises(FetchError):
            await client.query(["x"], flaky, stale_time_ms=60_000)
        assert await client.query(["x"], flaky, stale_time_ms=60_000) == "up"
        assert client.get(["x"]).error is None


class TestBookkeeping:
    """Tests for executor state tracking."""

    @pytest.mark.asyncio
    async def test_cancel_all(self, client):
        """Test that cancel_all cancels tasks and resets state."""
        fetcher = ControlledFetcher()
        task = client.executor.fetch(["x"], fetcher)
        await fetcher.wait_started()

        assert client.executor.cancel_all() == 1
        with pytest.raises(asyncio.CancelledError):
            await task
        assert client.executor.in_flight_count == 0
        assert client.executor.last_fetcher(client.store.hash(["x"])) is None

    @pytest.mark.asyncio
    async def test_last_fetcher_recorded(self, client):
        """Test that the last fetcher and stale time are remembered."""
        fetcher = CountingFetcher(1)
        await client.query(["x"], fetcher, stale_time_ms=10)
        assert client.executor.last_fetcher(client.store.hash(["x"])) == (fetcher, 10)

    @pytest.mark.asyncio
    async def test_eviction_forgets_fetcher(self, client):
        """Test that removing an entry drops its recorded fetcher."""
        await client.query(["x"], CountingFetcher(1))
        client.remove(["x"])
        assert client.executor.last_fetcher(client.store.hash(["x"])) is None

    @pytest.mark.asyncio
    async def test_is_fetching(self, client):
        """Test is_fetching while a fetch is registered."""
        fetcher = ControlledFetcher()
        task = client.executor.fetch(["x"], fetcher)
        assert client.executor.is_fetching(["x"])
        await fetcher.wait_started()
        fetcher.resolve(1)
        await task
        assert not client.executor.is_fetching(["x"])
