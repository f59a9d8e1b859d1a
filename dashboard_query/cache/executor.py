"""
Query executor: staleness policy, de-duplication and fetch generations.

At most one fetch is registered per key at any time. Concurrent callers
asking for the same stale key join the registered fetch instead of
calling their fetcher again. Every registered fetch carries a generation
number; a fetch that was superseded (by a refetch started after an
invalidation, for example) still resolves for whoever awaited it, but
its result is never written to the cache. This keeps a slow, older
response from overwriting a newer one.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import Any, TypeVar

from dashboard_query.cache.store import CacheStore
from dashboard_query.core.exceptions import DuplicateInFlightError, FetchError
from dashboard_query.core.keys import QueryHash, QueryKey, format_key
from dashboard_query.core.logging import EventType, get_logger, log_event
from dashboard_query.core.protocols import Fetcher, describe_callable

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class InFlightFetch:
    """A registered fetch for one key."""

    generation: int
    task: asyncio.Task[Any]
    invalidation_count: int  # entry's count when the fetch started


def _consume_result(task: asyncio.Task[Any]) -> None:
    """Mark background fetch failures as retrieved; they live on the entry."""
    if not task.cancelled():
        task.exception()


class QueryExecutor:
    """Runs fetchers against a CacheStore.

    Example:
        >>> executor = QueryExecutor(CacheStore())
        >>> models = await executor.query(["mlModels", "list"], service.get_models,
        ...                               stale_time_ms=300_000)
    """

    def __init__(self, store: CacheStore) -> None:
        self.store = store
        self._in_flight: dict[QueryHash, InFlightFetch] = {}
        # Executor-wide and never reset; unique across evictions
        self._generations = itertools.count(1)
        self._fetchers: dict[QueryHash, tuple[Fetcher[Any], float]] = {}
        store.on_evict = self._forget

    def _stale_time(self, stale_time_ms: float | None) -> float:
        if stale_time_ms is None:
            return self.store.config.default_stale_time_ms
        return stale_time_ms

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def query(
        self,
        key: QueryKey,
        fetcher: Fetcher[T],
        *,
        stale_time_ms: float | None = None,
    ) -> T:
        """Return data for ``key``, fetching only when needed.

        A fresh entry (younger than ``stale_time_ms`` and not invalidated)
        is returned without calling ``fetcher``. Otherwise the registered
        in-flight fetch is joined, or a new one is started.

        Args:
            key: Query key.
            fetcher: Zero-argument coroutine function producing the data.
            stale_time_ms: Freshness window; defaults to the cache config.

        Returns:
            Cached or freshly fetched data.

        Raises:
            FetchError: If the fetch this call resolved against failed.
        """
        stale_time = self._stale_time(stale_time_ms)
        query_hash = self.store.hash(key)
        entry = self.store.peek(query_hash)
        if entry is not None and not entry.is_stale(self.store.clock(), stale_time):
            log_event(logger, logging.DEBUG, EventType.QUERY_HIT, format_key(query_hash), "served from cache")
            return entry.data

        task = self.fetch(key, fetcher, stale_time_ms=stale_time)
        return await asyncio.shield(task)

    def fetch(
        self,
        key: QueryKey,
        fetcher: Fetcher[T],
        *,
        stale_time_ms: float | None = None,
        supersede: bool = False,
    ) -> asyncio.Task[T]:
        """Start a fetch for ``key`` now, ignoring freshness.

        ``is_fetching`` is already True on the entry when this returns.
        Must be called from a running event loop.

        Args:
            key: Query key.
            fetcher: Zero-argument coroutine function producing the data.
            stale_time_ms: Freshness window recorded on the entry.
            supersede: Start a new generation even if a fetch is in flight.
                When False an in-flight fetch is returned instead.

        Returns:
            Task resolving with this fetch's outcome.
        """
        stale_time = self._stale_time(stale_time_ms)
        query_hash = self.store.hash(key)
        try:
            return self._register(query_hash, key, fetcher, stale_time, supersede=supersede)
        except DuplicateInFlightError:
            log_event(logger, logging.DEBUG, EventType.QUERY_DEDUPED, format_key(query_hash), "joined in-flight fetch")
            return self._in_flight[query_hash].task

    def revalidate(
        self,
        key: QueryKey,
        fetcher: Fetcher[T],
        *,
        stale_time_ms: float | None = None,
    ) -> asyncio.Task[T]:
        """Refetch after an invalidation.

        An in-flight fetch that started after the entry's latest invalidation
        is joined; one that started before it is superseded.
        """
        query_hash = self.store.hash(key)
        in_flight = self._in_flight.get(query_hash)
        entry = self.store.peek(query_hash)
        supersede = (
            in_flight is not None
            and entry is not None
            and in_flight.invalidation_count < entry.invalidation_count
        )
        return self.fetch(key, fetcher, stale_time_ms=stale_time_ms, supersede=supersede)

    def is_fetching(self, key: QueryKey) -> bool:
        """Whether a fetch is registered for ``key``."""
        return self.store.hash(key) in self._in_flight

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def last_fetcher(self, query_hash: QueryHash) -> tuple[Fetcher[Any], float] | None:
        """Most recent (fetcher, stale_time_ms) used for a hashed key."""
        return self._fetchers.get(query_hash)

    def cancel_all(self) -> int:
        """Cancel every registered fetch (used when the cache is cleared)."""
        in_flight = list(self._in_flight.values())
        self._in_flight.clear()
        for fetch in in_flight:
            fetch.task.cancel()
        self._fetchers.clear()
        return len(in_flight)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _register(
        self,
        query_hash: QueryHash,
        key: QueryKey,
        fetcher: Fetcher[T],
        stale_time_ms: float,
        *,
        supersede: bool,
    ) -> asyncio.Task[T]:
        current = self._in_flight.get(query_hash)
        if current is not None and not supersede:
            raise DuplicateInFlightError(key, generation=current.generation)

        loop = asyncio.get_running_loop()
        generation = next(self._generations)
        self._fetchers[query_hash] = (fetcher, stale_time_ms)

        if current is not None:
            log_event(
                logger,
                logging.DEBUG,
                EventType.QUERY_SUPERSEDED,
                format_key(query_hash),
                "newer fetch started",
                old=current.generation,
                new=generation,
            )

        entry = self.store.peek(query_hash)
        invalidation_count = entry.invalidation_count if entry is not None else 0
        task = loop.create_task(self._run(query_hash, key, fetcher, generation))
        task.add_done_callback(_consume_result)
        self._in_flight[query_hash] = InFlightFetch(generation, task, invalidation_count)

        log_event(
            logger,
            logging.DEBUG,
            EventType.QUERY_FETCH,
            format_key(query_hash),
            f"calling {describe_callable(fetcher)}",
            generation=generation,
        )
        # A superseding fetch keeps is_fetching True: no transition to report.
        self.store.set(
            key,
            is_fetching=True,
            stale_time_ms=stale_time_ms,
            notify=current is None,
        )
        return task

    def _forget(self, query_hash: QueryHash) -> None:
        """Store hook: drop bookkeeping for an evicted entry."""
        if query_hash not in self._in_flight:
            self._fetchers.pop(query_hash, None)

    def _is_current(self, query_hash: QueryHash, generation: int) -> bool:
        in_flight = self._in_flight.get(query_hash)
        return in_flight is not None and in_flight.generation == generation

    async def _run(self, query_hash: QueryHash, key: QueryKey, fetcher: Fetcher[T], generation: int) -> T:
        try:
            data = await fetcher()
        except asyncio.CancelledError:
            if self._is_current(query_hash, generation):
                del self._in_flight[query_hash]
                self.store.set(key, is_fetching=False)
            raise
        except Exception as e:
            error = FetchError(key, reason=f"{type(e).__name__}: {e}", cause=e)
            if self._is_current(query_hash, generation):
                del self._in_flight[query_hash]
                # Previous data stays; observers render it with the error.
                self.store.set(key, error=error, is_fetching=False)
                log_event(logger, logging.DEBUG, EventType.QUERY_ERROR, format_key(query_hash), str(e))
            else:
                self._log_discarded(query_hash, generation)
            raise error from e

        if self._is_current(query_hash, generation):
            started = self._in_flight.pop(query_hash)
            entry = self.store.peek(query_hash)
            # Invalidated while in flight: the result predates the invalidation
            invalidated = entry is not None and entry.invalidation_count > started.invalidation_count
            self.store.set(key, data=data, error=None, is_fetching=False, is_invalidated=invalidated)
            log_event(logger, logging.DEBUG, EventType.QUERY_SUCCESS, format_key(query_hash), "cache updated")
        else:
            self._log_discarded(query_hash, generation)
        return data

    def _log_discarded(self, query_hash: QueryHash, generation: int) -> None:
        log_event(
            logger,
            logging.DEBUG,
            EventType.QUERY_SUPERSEDED,
            format_key(query_hash),
            "discarded result of superseded fetch",
            generation=generation,
        )
