"""
Cache module - the query cache core.

This module contains:
    - store: CacheStore and CacheEntry, keyed storage of query results
    - subscriptions: SubscriptionRegistry, observer lists with prefix fan-out
    - executor: QueryExecutor, staleness policy, de-duplication and generations
    - mutations: MutationRunner and MutationDescriptor
    - observer: QueryObserver, a framework-agnostic binding of one key
    - client: QueryClient, the facade wiring everything together
"""

from dashboard_query.cache.client import QueryClient
from dashboard_query.cache.executor import InFlightFetch, QueryExecutor
from dashboard_query.cache.mutations import NO_INVALIDATION, MutationDescriptor, MutationRunner
from dashboard_query.cache.observer import QueryObserver
from dashboard_query.cache.store import CacheEntry, CacheStore
from dashboard_query.cache.subscriptions import Subscription, SubscriptionRegistry

__all__ = [
    # Facade
    "QueryClient",
    # Storage
    "CacheEntry",
    "CacheStore",
    # Fetching
    "InFlightFetch",
    "QueryExecutor",
    # Mutations
    "MutationDescriptor",
    "MutationRunner",
    "NO_INVALIDATION",
    # Observation
    "QueryObserver",
    "Subscription",
    "SubscriptionRegistry",
]
