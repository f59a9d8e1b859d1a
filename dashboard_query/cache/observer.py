"""
Query observer: a framework-agnostic binding of one query key.

An observer is what a UI component would hold. It subscribes to its key
while mounted, fetches when the cached entry is stale, refetches when the
entry gets invalidated, and exposes a pull-based ``snapshot()``. After
``unmount()`` the liveness flag is down and late results are no longer
delivered to its listener; the fetch itself is not aborted.
"""

from __future__ import annotations

import asyncio
from typing import Any, Generic, TypeVar

from dashboard_query.cache.executor import QueryExecutor
from dashboard_query.cache.store import CacheEntry
from dashboard_query.core.constants import QueryStatus
from dashboard_query.core.keys import QueryKey
from dashboard_query.core.protocols import EntryListener, Fetcher, Unsubscribe

T = TypeVar("T")


class QueryObserver(Generic[T]):
    """Binds (key, fetcher, stale time) to a cache.

    Args:
        executor: Executor (and through it, the store) to read and fetch with.
        key: Query key to observe.
        fetcher: Zero-argument coroutine function producing the data.
        stale_time_ms: Freshness window; defaults to the cache config.
        enabled: When False the observer reads the cache but never fetches.
        refetch_on_invalidate: Refetch when the entry is invalidated.
        listener: Called with every entry snapshot delivered while mounted.

    Example:
        >>> observer = QueryObserver(executor, ["mlModels", "list"], service.get_models,
        ...                          listener=lambda entry: render(entry.data))
        >>> observer.mount()
        >>> ...
        >>> observer.unmount()
    """

    def __init__(
        self,
        executor: QueryExecutor,
        key: QueryKey,
        fetcher: Fetcher[T],
        *,
        stale_time_ms: float | None = None,
        enabled: bool = True,
        refetch_on_invalidate: bool = True,
        listener: EntryListener | None = None,
    ) -> None:
        self.executor = executor
        self.store = executor.store
        self.key = tuple(key)
        self.fetcher = fetcher
        self.stale_time_ms = (
            self.store.config.default_stale_time_ms if stale_time_ms is None else stale_time_ms
        )
        self.enabled = enabled
        self.refetch_on_invalidate = refetch_on_invalidate
        self.listener = listener

        self._hash = self.store.hash(self.key)
        self._unsubscribe: Unsubscribe | None = None
        self._active = False
        self._seen_invalidations = 0
        self.notification_count = 0

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def is_mounted(self) -> bool:
        return self._active

    def mount(self) -> QueryObserver[T]:
        """Subscribe and fetch if the cached entry is missing or stale.

        Must be called from a running event loop when a fetch is needed.
        """
        if self._active:
            return self
        self._active = True
        self._unsubscribe = self.store.registry.subscribe_hash(self._hash, self._on_change)

        entry = self.store.peek(self._hash)
        self._seen_invalidations = entry.invalidation_count if entry is not None else 0
        if self.enabled and (entry is None or entry.is_stale(self.store.clock(), self.stale_time_ms)):
            self.executor.fetch(self.key, self.fetcher, stale_time_ms=self.stale_time_ms)
        return self

    def unmount(self) -> None:
        """Stop receiving notifications; in-flight fetches keep running."""
        self._active = False
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def set_enabled(self, enabled: bool) -> None:
        """Toggle fetching; enabling a mounted observer fetches if stale."""
        self.enabled = enabled
        if enabled and self._active and self.is_stale:
            self.executor.fetch(self.key, self.fetcher, stale_time_ms=self.stale_time_ms)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def snapshot(self) -> CacheEntry | None:
        """Current entry for the observed key (pull-based read)."""
        return self.store.get(self.key)

    @property
    def data(self) -> Any:
        entry = self.store.peek(self._hash)
        return entry.data if entry is not None else None

    @property
    def error(self) -> BaseException | None:
        entry = self.store.peek(self._hash)
        return entry.error if entry is not None else None

    @property
    def status(self) -> QueryStatus:
        entry = self.store.peek(self._hash)
        return entry.status if entry is not None else QueryStatus.IDLE

    @property
    def is_fetching(self) -> bool:
        entry = self.store.peek(self._hash)
        return entry is not None and entry.is_fetching

    @property
    def is_stale(self) -> bool:
        entry = self.store.peek(self._hash)
        return entry is None or entry.is_stale(self.store.clock(), self.stale_time_ms)

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    async def refetch(self) -> T:
        """Fetch now, superseding any fetch in flight for this key."""
        task = self.executor.fetch(
            self.key, self.fetcher, stale_time_ms=self.stale_time_ms, supersede=True
        )
        return await asyncio.shield(task)

    def _on_change(self, entry: CacheEntry) -> None:
        if not self._active:
            return
        # Subscriptions fan out to ancestors; only react to our own key.
        if self.store.hash(entry.key) != self._hash:
            return

        self.notification_count += 1
        if self.listener is not None:
            self.listener(entry)

        if entry.invalidation_count > self._seen_invalidations:
            self._seen_invalidations = entry.invalidation_count
            if self.enabled and self.refetch_on_invalidate and self._active:
                self.executor.revalidate(self.key, self.fetcher, stale_time_ms=self.stale_time_ms)

    def __repr__(self) -> str:
        state = "mounted" if self._active else "unmounted"
        return f"QueryObserver(key={list(self.key)!r}, {state}, status={self.status.value})"
