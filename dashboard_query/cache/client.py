"""
QueryClient: one explicitly constructed cache with its collaborators.

The client owns a SubscriptionRegistry, a CacheStore, a QueryExecutor and
a MutationRunner, and wires them together. There is no module-level
client: every consumer receives the instance it should use, and tests
build as many independent clients as they need.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping, Sequence
from types import TracebackType
from typing import Any, TypeVar

from dashboard_query.cache.executor import QueryExecutor
from dashboard_query.cache.mutations import MutationDescriptor, MutationRunner
from dashboard_query.cache.observer import QueryObserver
from dashboard_query.cache.store import CacheEntry, CacheStore
from dashboard_query.cache.subscriptions import SubscriptionRegistry
from dashboard_query.core.config import CacheConfig, QueryClientConfig, get_config
from dashboard_query.core.constants import RefetchPolicy
from dashboard_query.core.keys import QueryKey
from dashboard_query.core.logging import get_logger
from dashboard_query.core.protocols import Clock, EntryListener, Fetcher, MutationFn, Unsubscribe, system_clock

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class QueryClient:
    """Data-fetching cache with invalidation-driven refetching.

    Args:
        config: Cache settings, or a full QueryClientConfig (its ``cache``
            section is used). Defaults to the process configuration.
        clock: Millisecond time source; inject a fake one in tests.

    Example:
        >>> async with QueryClient() as client:
        ...     models = await client.query(["mlModels", "list"], service.get_models,
        ...                                 stale_time_ms=5 * 60 * 1000)
        ...     await client.mutate(service.delete_model, [["mlModels", "list"]], "model-1")
    """

    def __init__(
        self,
        config: CacheConfig | QueryClientConfig | None = None,
        *,
        clock: Clock = system_clock,
    ) -> None:
        if config is None:
            config = get_config().cache
        elif isinstance(config, QueryClientConfig):
            config = config.cache
        self.config = config

        self.registry = SubscriptionRegistry(normalize_keys=config.normalize_keys)
        self.store = CacheStore(self.registry, clock=clock, config=config)
        self.executor = QueryExecutor(self.store)
        self.mutations = MutationRunner(
            self.store,
            invalidate=lambda keys, exact: self.invalidate(keys, exact=exact),
        )

    @property
    def clock(self) -> Clock:
        return self.store.clock

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def init(self) -> QueryClient:
        """Start from an empty cache."""
        self.clear()
        return self

    def clear(self) -> None:
        """Cancel in-flight fetches and drop every entry.

        Subscriptions and mounted observers stay registered.
        """
        self.executor.cancel_all()
        self.store.clear()

    async def __aenter__(self) -> QueryClient:
        return self.init()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.registry.clear()
        self.clear()
        # Let cancelled fetches unwind before the loop moves on
        await asyncio.sleep(0)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def query(self, key: QueryKey, fetcher: Fetcher[T], *, stale_time_ms: float | None = None) -> T:
        """Cached read; see QueryExecutor.query."""
        return await self.executor.query(key, fetcher, stale_time_ms=stale_time_ms)

    def fetch(
        self,
        key: QueryKey,
        fetcher: Fetcher[T],
        *,
        stale_time_ms: float | None = None,
        supersede: bool = False,
    ) -> asyncio.Task[T]:
        """Start a fetch regardless of freshness; see QueryExecutor.fetch."""
        return self.executor.fetch(key, fetcher, stale_time_ms=stale_time_ms, supersede=supersede)

    async def prefetch(self, key: QueryKey, fetcher: Fetcher[Any], *, stale_time_ms: float | None = None) -> None:
        """Warm the cache; a failure is only recorded on the entry."""
        try:
            await self.query(key, fetcher, stale_time_ms=stale_time_ms)
        except Exception as e:
            logger.debug(f"Prefetch of {list(key)!r} failed: {e}")

    def get(self, key: QueryKey) -> CacheEntry | None:
        """Snapshot of the entry for ``key``."""
        return self.store.get(key)

    def get_data(self, key: QueryKey, default: Any = None) -> Any:
        """Cached data for ``key`` (``default`` when nothing was fetched yet)."""
        entry = self.store.get(key)
        if entry is None or not entry.has_data:
            return default
        return entry.data

    def set(self, key: QueryKey, partial: Mapping[str, Any] | None = None, **fields: Any) -> CacheEntry:
        """Merge fields into an entry; see CacheStore.set."""
        return self.store.set(key, partial, **fields)

    def set_data(self, key: QueryKey, data: Any) -> CacheEntry:
        """Write data directly, as if a fetch had just returned it."""
        return self.store.set(key, data=data, error=None)

    def remove(self, key: QueryKey) -> bool:
        return self.store.remove(key)

    def find(self, key: QueryKey | None = None, *, exact: bool = False) -> list[CacheEntry]:
        return self.store.find(key, exact=exact)

    # -------------------------------------------------------------------------
    # Invalidation
    # -------------------------------------------------------------------------

    def invalidate(
        self,
        keys: Iterable[QueryKey],
        *,
        exact: bool = False,
        refetch_inactive: bool | None = None,
    ) -> list[CacheEntry]:
        """Mark matching entries stale and refetch according to policy.

        Entries with a subscriber are refetched with the last fetcher used
        for them (mounted observers do this themselves). With
        ``refetch_inactive`` (default: config policy ``all``) unobserved
        entries with a known fetcher are refetched too. Under policy
        ``none`` nothing is refetched.

        Args:
            keys: Keys or key prefixes to invalidate.
            exact: Match keys exactly instead of by prefix.
            refetch_inactive: Override the policy for unobserved entries.

        Returns:
            Snapshots of the invalidated entries, taken before refetching.
        """
        policy = self.config.refetch_on_invalidate
        if refetch_inactive is None:
            refetch_inactive = policy is RefetchPolicy.ALL

        invalidated = self.store.invalidate(keys, exact=exact)
        if policy is RefetchPolicy.NONE:
            return invalidated

        for entry in invalidated:
            query_hash = self.store.hash(entry.key)
            if not (refetch_inactive or self.registry.has_observers(query_hash)):
                continue
            known = self.executor.last_fetcher(query_hash)
            if known is None or self.store.peek(query_hash) is None:
                continue
            fetcher, stale_time_ms = known
            self.executor.revalidate(entry.key, fetcher, stale_time_ms=stale_time_ms)
        return invalidated

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def mutate(
        self,
        fn: MutationFn[R],
        invalidates: MutationDescriptor | Sequence[QueryKey] | None = None,
        *args: Any,
        **kwargs: Any,
    ) -> R:
        """Run a write and invalidate ``invalidates`` once it succeeds.

        Args:
            fn: Coroutine function performing the write.
            invalidates: A MutationDescriptor, or a list of keys to invalidate
                by prefix.
            *args: Positional mutation variables.
            **kwargs: Keyword mutation variables.
        """
        if invalidates is not None and not isinstance(invalidates, MutationDescriptor):
            invalidates = MutationDescriptor(invalidates=tuple(invalidates))
        return await self.mutations.mutate(fn, invalidates, *args, **kwargs)

    @property
    def is_mutating(self) -> int:
        """Number of mutations currently running."""
        return self.mutations.is_mutating

    # -------------------------------------------------------------------------
    # Observation
    # -------------------------------------------------------------------------

    def subscribe(self, key: QueryKey, callback: EntryListener) -> Unsubscribe:
        """Receive snapshots for ``key`` and every key below it."""
        return self.registry.subscribe(key, callback)

    def observe(
        self,
        key: QueryKey,
        fetcher: Fetcher[T],
        *,
        stale_time_ms: float | None = None,
        enabled: bool = True,
        listener: EntryListener | None = None,
        mount: bool = True,
    ) -> QueryObserver[T]:
        """Create (and by default mount) an observer bound to this client."""
        observer = QueryObserver(
            self.executor,
            key,
            fetcher,
            stale_time_ms=stale_time_ms,
            enabled=enabled,
            refetch_on_invalidate=self.config.refetch_on_invalidate is not RefetchPolicy.NONE,
            listener=listener,
        )
        if mount:
            observer.mount()
        return observer

    def is_fetching(self, key: QueryKey | None = None) -> int:
        """Number of entries (under ``key`` when given) with a fetch in flight."""
        return sum(1 for entry in self.store.find(key) if entry.is_fetching)

    def collect_garbage(self) -> int:
        """Evict idle, unobserved entries now; see CacheStore.collect_garbage."""
        return self.store.collect_garbage()

    def __len__(self) -> int:
        return len(self.store)

    def __repr__(self) -> str:
        return (
            f"QueryClient(entries={len(self.store)}, observers={len(self.registry)}, "
            f"fetching={self.executor.in_flight_count})"
        )
