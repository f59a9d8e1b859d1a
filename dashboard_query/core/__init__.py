"""
Core module - configuration, constants, exceptions, keys, logging, protocols.
"""

from dashboard_query.core.config import (
    CacheConfig,
    HttpConfig,
    QueryClientConfig,
    QueryDefaults,
    ServiceConfig,
    get_config,
    reset_config,
    set_config,
)
from dashboard_query.core.constants import (
    DEFAULT_GC_TIME_MS,
    DEFAULT_STALE_TIME_MS,
    MODEL_LIST_STALE_TIME_MS,
    MODEL_METRICS_STALE_TIME_MS,
    MODEL_SEARCH_STALE_TIME_MS,
    QueryStatus,
    RefetchPolicy,
)
from dashboard_query.core.exceptions import (
    CacheStoreError,
    CircuitBreakerOpenError,
    ConfigurationError,
    DuplicateInFlightError,
    FetchError,
    HttpRequestError,
    InvalidQueryKeyError,
    NotFoundError,
    QueryCacheError,
    ServiceError,
    StaleDataWarning,
)
from dashboard_query.core.keys import QueryHash, QueryKey, format_key, hash_key, is_prefix, matches, validate_key
from dashboard_query.core.logging import EventType, LogContext, configure_logging, get_logger, log_event
from dashboard_query.core.protocols import (
    Clock,
    DataSourceCatalog,
    Fetcher,
    ModelCatalog,
    MutationFn,
    system_clock,
)

__all__ = [
    # Config
    "CacheConfig",
    "HttpConfig",
    "ServiceConfig",
    "QueryDefaults",
    "QueryClientConfig",
    "get_config",
    "set_config",
    "reset_config",
    # Constants
    "QueryStatus",
    "RefetchPolicy",
    "DEFAULT_STALE_TIME_MS",
    "DEFAULT_GC_TIME_MS",
    "MODEL_LIST_STALE_TIME_MS",
    "MODEL_METRICS_STALE_TIME_MS",
    "MODEL_SEARCH_STALE_TIME_MS",
    # Exceptions
    "QueryCacheError",
    "InvalidQueryKeyError",
    "FetchError",
    "DuplicateInFlightError",
    "CacheStoreError",
    "StaleDataWarning",
    "ConfigurationError",
    "ServiceError",
    "NotFoundError",
    "HttpRequestError",
    "CircuitBreakerOpenError",
    # Keys
    "QueryKey",
    "QueryHash",
    "validate_key",
    "hash_key",
    "is_prefix",
    "matches",
    "format_key",
    # Logging
    "EventType",
    "LogContext",
    "configure_logging",
    "get_logger",
    "log_event",
    # Protocols
    "Clock",
    "Fetcher",
    "MutationFn",
    "ModelCatalog",
    "DataSourceCatalog",
    "system_clock",
]
