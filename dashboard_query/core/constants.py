"""
Constants and enumerations shared across the query cache.
"""

from __future__ import annotations

from enum import Enum
from typing import Final


class QueryStatus(str, Enum):
    """Lifecycle state of a single cache entry.

    idle -> fetching -> {success, error}; an invalidation on success or
    error returns the entry to fetching while previous data stays visible.
    """

    IDLE = "idle"
    FETCHING = "fetching"
    SUCCESS = "success"
    ERROR = "error"


class RefetchPolicy(str, Enum):
    """Which invalidated entries get refetched immediately."""

    ACTIVE = "active"  # entries with at least one mounted observer
    ALL = "all"  # also entries whose last fetcher is known but unobserved
    NONE = "none"  # mark stale only

    @classmethod
    def parse(cls, value: str | RefetchPolicy) -> RefetchPolicy:
        """Coerce a config string into a policy."""
        if isinstance(value, RefetchPolicy):
            return value
        return cls(str(value).strip().lower())


# =============================================================================
# Timing defaults (milliseconds)
# =============================================================================

MS_PER_SECOND: Final[int] = 1000
MS_PER_MINUTE: Final[int] = 60 * MS_PER_SECOND

DEFAULT_STALE_TIME_MS: Final[int] = 0
DEFAULT_GC_TIME_MS: Final[int] = 5 * MS_PER_MINUTE

# Per-query stale times used by the dashboard bindings
MODEL_LIST_STALE_TIME_MS: Final[int] = 5 * MS_PER_MINUTE
MODEL_METRICS_STALE_TIME_MS: Final[int] = 2 * MS_PER_MINUTE
MODEL_SEARCH_STALE_TIME_MS: Final[int] = 1 * MS_PER_MINUTE

# Entry fields callers may pass to CacheStore.set()
ENTRY_FIELDS: Final[frozenset[str]] = frozenset({
    "data",
    "error",
    "fetched_at",
    "is_fetching",
    "is_invalidated",
    "stale_time_ms",
})
