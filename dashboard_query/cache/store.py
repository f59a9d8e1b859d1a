"""
Cache store: keyed storage of query results.

Each entry holds the last successful data, the last error, fetch
bookkeeping and a staleness flag. Invalidation marks entries stale but
keeps their data visible (stale-while-revalidate). Every change is
pushed to the subscription registry as a snapshot.

The store does no I/O. It is the single shared mutable structure of a
QueryClient and must only be touched from the event loop thread.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from typing import Any

from dashboard_query.cache.subscriptions import SubscriptionRegistry
from dashboard_query.core.config import CacheConfig
from dashboard_query.core.constants import ENTRY_FIELDS, QueryStatus
from dashboard_query.core.exceptions import CacheStoreError, InvalidQueryKeyError, StaleDataWarning
from dashboard_query.core.keys import QueryHash, QueryKey, format_key, hash_key, matches
from dashboard_query.core.logging import EventType, get_logger, log_event
from dashboard_query.core.protocols import Clock, system_clock

logger = get_logger(__name__)


@dataclass
class CacheEntry:
    """State of one query key.

    Invariant: ``is_fetching`` is True exactly while the executor has a
    fetch registered for this key.
    """

    key: tuple[Any, ...]
    data: Any = None
    error: BaseException | None = None
    fetched_at: float | None = None  # ms; stamped on every data update
    is_fetching: bool = False
    stale_time_ms: float = 0
    is_invalidated: bool = False
    invalidation_count: int = 0
    updated_at: float | None = None
    fetch_count: int = 0  # successful data updates
    error_count: int = 0

    @property
    def has_data(self) -> bool:
        return self.fetched_at is not None

    @property
    def status(self) -> QueryStatus:
        if self.is_fetching:
            return QueryStatus.FETCHING
        if self.error is not None:
            return QueryStatus.ERROR
        if self.has_data:
            return QueryStatus.SUCCESS
        return QueryStatus.IDLE

    @property
    def warning(self) -> StaleDataWarning | None:
        """Set while previously fetched data is shown during a revalidation."""
        if self.is_fetching and self.has_data:
            return StaleDataWarning(self.key, fetched_at=self.fetched_at)
        return None

    def is_stale(self, now: float, stale_time_ms: float | None = None) -> bool:
        """Whether a query at ``now`` must refetch.

        Args:
            now: Current time in milliseconds.
            stale_time_ms: Freshness window of the asking query; defaults to
                the window recorded on the entry.
        """
        if self.fetched_at is None or self.is_invalidated:
            return True
        window = self.stale_time_ms if stale_time_ms is None else stale_time_ms
        return now - self.fetched_at >= window

    def snapshot(self) -> CacheEntry:
        """Shallow copy handed to callers and observers."""
        return replace(self)


class CacheStore:
    """In-memory cache entries keyed by hashed query keys.

    Example:
        >>> store = CacheStore()
        >>> _ = store.set(["x"], data=1)
        >>> store.get(["x"]).data
        1
    """

    def __init__(
        self,
        registry: SubscriptionRegistry | None = None,
        *,
        clock: Clock = system_clock,
        config: CacheConfig | None = None,
    ) -> None:
        self._config = config or CacheConfig()
        self.registry = registry or SubscriptionRegistry(normalize_keys=self._config.normalize_keys)
        self.registry.on_idle = self._on_idle
        self.clock = clock
        self._entries: dict[QueryHash, CacheEntry] = {}
        self._released_at: dict[QueryHash, float] = {}
        self._gc_handles: dict[QueryHash, tuple[int, asyncio.TimerHandle]] = {}
        self._gc_tokens = itertools.count(1)
        # Called with a hash after its entry is removed
        self.on_evict: Callable[[QueryHash], None] | None = None

    @property
    def config(self) -> CacheConfig:
        return self._config

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def init(self) -> None:
        """Prepare an empty store; safe to call again after ``clear``."""
        self.clear()

    def clear(self) -> None:
        """Drop every entry and pending eviction timer.

        Subscriptions survive so mounted observers see new entries.
        """
        for _, handle in self._gc_handles.values():
            handle.cancel()
        self._gc_handles.clear()
        self._released_at.clear()
        count = len(self._entries)
        self._entries.clear()
        if count:
            log_event(logger, logging.DEBUG, EventType.CACHE_CLEARED, "*", f"dropped {count} entries")

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def hash(self, key: QueryKey, *, allow_empty: bool = False) -> QueryHash:
        """Hash ``key`` with this store's normalization setting."""
        return hash_key(key, sort_fields=self._config.normalize_keys, allow_empty=allow_empty)

    def get(self, key: QueryKey) -> CacheEntry | None:
        """Snapshot of the entry for ``key``, or None."""
        entry = self._entries.get(self.hash(key))
        return entry.snapshot() if entry is not None else None

    def peek(self, query_hash: QueryHash) -> CacheEntry | None:
        """Live entry for an already hashed key (internal; do not mutate)."""
        return self._entries.get(query_hash)

    def find(self, key: QueryKey | None = None, *, exact: bool = False) -> list[CacheEntry]:
        """Snapshots of all entries matching ``key`` (all entries when None)."""
        if key is None:
            return [entry.snapshot() for entry in self._entries.values()]
        filter_hash = self.hash(key, allow_empty=True)
        return [
            entry.snapshot()
            for query_hash, entry in self._entries.items()
            if matches(filter_hash, query_hash, exact=exact)
        ]

    def __contains__(self, key: object) -> bool:
        try:
            return self.hash(key) in self._entries  # type: ignore[arg-type]
        except InvalidQueryKeyError:
            return False

    def __len__(self) -> int:
        return len(self._entries)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def set(
        self,
        key: QueryKey,
        partial: Mapping[str, Any] | None = None,
        *,
        notify: bool = True,
        **fields: Any,
    ) -> CacheEntry:
        """Merge fields into the entry for ``key``, creating it if needed.

        A ``data`` update stamps ``fetched_at`` with the current time (unless
        given) and clears the invalidation flag (unless given).

        Args:
            key: Query key.
            partial: Mapping of entry fields; merged with ``fields``.
            notify: Push the resulting snapshot to subscribers.
            **fields: Entry fields (data, error, fetched_at, is_fetching,
                is_invalidated, stale_time_ms).

        Returns:
            Snapshot of the updated entry.

        Raises:
            CacheStoreError: If an unknown field is passed.
        """
        updates = {**(partial or {}), **fields}
        unknown = set(updates) - ENTRY_FIELDS
        if unknown:
            raise CacheStoreError(key, reason=f"unknown field(s) {sorted(unknown)}")

        query_hash = self.hash(key)
        now = self.clock()
        entry = self._entries.get(query_hash)
        created = entry is None
        if entry is None:
            entry = CacheEntry(key=tuple(key), stale_time_ms=self._config.default_stale_time_ms)
            self._entries[query_hash] = entry

        if "data" in updates:
            updates.setdefault("fetched_at", now)
            updates.setdefault("is_invalidated", False)
            entry.fetch_count += 1
        if updates.get("error") is not None:
            entry.error_count += 1
        for name, value in updates.items():
            setattr(entry, name, value)
        entry.updated_at = now

        if created and not self.registry.has_observers(query_hash):
            self._schedule_gc(query_hash)

        snapshot = entry.snapshot()
        if notify:
            self.registry.notify(query_hash, snapshot)
        return snapshot

    def invalidate(self, keys: Iterable[QueryKey], *, exact: bool = False) -> list[CacheEntry]:
        """Mark every entry matching any of ``keys`` as stale.

        Matching is exact or by key prefix (``["mlModels"]`` matches
        ``["mlModels", "list", ...]``). Data is kept. Each matched entry's
        subscribers are notified once.

        Returns:
            Snapshots of the invalidated entries.
        """
        filters = [self.hash(key, allow_empty=True) for key in keys]
        matched = [
            query_hash
            for query_hash in self._entries
            if any(matches(f, query_hash, exact=exact) for f in filters)
        ]

        now = self.clock()
        snapshots: list[CacheEntry] = []
        for query_hash in matched:
            entry = self._entries.get(query_hash)
            if entry is None:  # removed by an earlier observer in this pass
                continue
            entry.is_invalidated = True
            entry.invalidation_count += 1
            entry.updated_at = now
            snapshot = entry.snapshot()
            snapshots.append(snapshot)
            self.registry.notify(query_hash, snapshot)

        if matched:
            log_event(
                logger,
                logging.DEBUG,
                EventType.CACHE_INVALIDATED,
                [format_key(f) for f in filters],
                f"{len(snapshots)} entries marked stale",
                exact=exact,
            )
        return snapshots

    def remove(self, key: QueryKey) -> bool:
        """Delete the entry for ``key``; returns whether it existed."""
        return self._evict(self.hash(key))

    # -------------------------------------------------------------------------
    # Eviction
    # -------------------------------------------------------------------------

    def collect_garbage(self) -> int:
        """Evict unobserved, idle entries older than ``gc_time_ms``.

        Returns:
            Number of evicted entries.
        """
        now = self.clock()
        expired = [
            query_hash
            for query_hash, entry in self._entries.items()
            if self._is_collectable(query_hash, entry, now)
        ]
        for query_hash in expired:
            self._evict(query_hash)
        return len(expired)

    def _is_collectable(self, query_hash: QueryHash, entry: CacheEntry, now: float) -> bool:
        if entry.is_fetching or self.registry.has_observers(query_hash):
            return False
        idle_since = self._released_at.get(query_hash, entry.updated_at or now)
        return now - idle_since >= self._config.gc_time_ms

    def _on_idle(self, query_hash: QueryHash) -> None:
        """Registry hook: the last exact subscriber of ``query_hash`` left."""
        if query_hash not in self._entries:
            return
        self._released_at[query_hash] = self.clock()
        self._schedule_gc(query_hash)

    def _schedule_gc(self, query_hash: QueryHash) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # no loop: eviction happens through collect_garbage()
        previous = self._gc_handles.pop(query_hash, None)
        if previous is not None:
            previous[1].cancel()
        token = next(self._gc_tokens)
        handle = loop.call_later(self._config.gc_time_ms / 1000, self._gc_timer_fired, query_hash, token)
        self._gc_handles[query_hash] = (token, handle)

    def _gc_timer_fired(self, query_hash: QueryHash, token: int) -> None:
        pending = self._gc_handles.get(query_hash)
        if pending is None or pending[0] != token:
            return
        self._gc_handles.pop(query_hash, None)
        entry = self._entries.get(query_hash)
        if entry is None or self.registry.has_observers(query_hash):
            return
        if entry.is_fetching:
            self._schedule_gc(query_hash)
            return
        self._evict(query_hash)

    def _evict(self, query_hash: QueryHash) -> bool:
        pending = self._gc_handles.pop(query_hash, None)
        if pending is not None:
            pending[1].cancel()
        self._released_at.pop(query_hash, None)
        if self._entries.pop(query_hash, None) is None:
            return False
        if self.on_evict is not None:
            self.on_evict(query_hash)
        log_event(logger, logging.DEBUG, EventType.CACHE_EVICTED, format_key(query_hash), "entry removed")
        return True
