"""
Dashboard Query Cache.

An asyncio data-fetching cache for dashboard data services: keyed query
results with stale-while-revalidate, de-duplicated in-flight fetches,
generation-checked writes, mutation-driven invalidation and observers.

Package Structure:
    - core: Configuration, constants, exceptions, keys, logging, protocols
    - cache: Cache store, query executor, mutations, subscriptions, client
    - services: Dashboard data models, in-memory services, HTTP client, query bindings

Example usage:
    from dashboard_query import QueryClient, get_config
    from dashboard_query.services import MLModelService, MLModelQueries

    async with QueryClient(get_config()) as client:
        queries = MLModelQueries(client, MLModelService())
        models = await queries.models()
"""

__version__ = "1.0.0"

# Core exports - most commonly used items
from dashboard_query.cache.client import QueryClient
from dashboard_query.cache.mutations import MutationDescriptor
from dashboard_query.cache.observer import QueryObserver
from dashboard_query.cache.store import CacheEntry
from dashboard_query.core.config import QueryClientConfig, get_config
from dashboard_query.core.constants import QueryStatus, RefetchPolicy
from dashboard_query.core.exceptions import FetchError, QueryCacheError, StaleDataWarning
from dashboard_query.core.logging import configure_logging, get_logger

__all__ = [
    # Version
    "__version__",
    # Config
    "get_config",
    "QueryClientConfig",
    # Cache
    "QueryClient",
    "QueryObserver",
    "MutationDescriptor",
    "CacheEntry",
    # Constants
    "QueryStatus",
    "RefetchPolicy",
    # Exceptions
    "QueryCacheError",
    "FetchError",
    "StaleDataWarning",
    # Logging
    "get_logger",
    "configure_logging",
]
