"""
Custom exception hierarchy for the dashboard query cache.

Everything derives from QueryCacheError, which carries a context dict and
the underlying cause. Cache-core errors (keys, fetches, the store) and
collaborator errors (services, HTTP) are separate branches. StaleDataWarning
is a UserWarning, not an error: it marks data shown while a refetch runs.
"""

from __future__ import annotations

from typing import Any


class QueryCacheError(Exception):
    """Base exception for all query cache errors.

    All custom exceptions in the package inherit from this class,
    enabling catching all cache-related errors with a single except clause.
    """

    def __init__(
        self,
        message: str,
        *,
        context: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.message = message
        self.context = context or {}
        self.cause = cause
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the full error message including context."""
        parts = [self.message]
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"[{context_str}]")
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " ".join(parts)


# =============================================================================
# Cache Core Exceptions
# =============================================================================


class InvalidQueryKeyError(QueryCacheError):
    """Raised when a query key cannot be used as a cache identity.

    Examples:
        - Key is a bare string or mapping instead of a sequence
        - Key is empty where a concrete entry is addressed
        - Key contains values that cannot be serialized
    """

    def __init__(self, key: Any, *, reason: str) -> None:
        super().__init__(f"Invalid query key: {reason}", context={"key": repr(key)})
        self.key = key


class FetchError(QueryCacheError):
    """Raised when a fetcher rejects.

    The same instance is delivered to every caller that joined the fetch
    and is stored on the cache entry for observers to read.
    """

    def __init__(
        self,
        key: Any,
        *,
        reason: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        message = f"Fetch failed for {list(key)!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, cause=cause)
        self.key = key


class DuplicateInFlightError(QueryCacheError):
    """Raised internally when a fetch is already registered for a key.

    Never surfaced to callers: the executor catches it and joins the
    registered fetch instead.
    """

    def __init__(self, key: Any, *, generation: int) -> None:
        super().__init__(
            f"Fetch already in flight for {list(key)!r}",
            context={"generation": generation},
        )
        self.key = key
        self.generation = generation


class CacheStoreError(QueryCacheError):
    """Raised when a cache entry update is malformed."""

    def __init__(self, key: Any, *, reason: str) -> None:
        super().__init__(f"Cannot update cache entry: {reason}", context={"key": list(key)})
        self.key = key


class StaleDataWarning(UserWarning):
    """Informational: the data being shown is known to be stale.

    Attached to cache entry snapshots while a revalidation is running on
    top of previously fetched data. Never raised.
    """

    def __init__(self, key: Any, *, fetched_at: float | None) -> None:
        super().__init__(f"Showing stale data for {list(key)!r} while revalidating")
        self.key = key
        self.fetched_at = fetched_at


# =============================================================================
# Configuration-Related Exceptions
# =============================================================================


class ConfigurationError(QueryCacheError):
    """Raised when configuration is invalid or missing."""

    def __init__(
        self,
        parameter: str,
        *,
        reason: str,
        value: Any = None,
    ) -> None:
        context = {"parameter": parameter}
        if value is not None:
            context["value"] = value
        super().__init__(f"Configuration error for {parameter}: {reason}", context=context)
        self.parameter = parameter


# =============================================================================
# Service-Related Exceptions
# =============================================================================


class ServiceError(QueryCacheError):
    """Base exception for data service (collaborator) errors."""

    pass


class NotFoundError(ServiceError):
    """Raised when a referenced resource doesn't exist."""

    def __init__(self, resource: str, identifier: Any) -> None:
        super().__init__(f"{resource} not found", context={"id": identifier})
        self.resource = resource
        self.identifier = identifier


class HttpRequestError(ServiceError):
    """Raised when an HTTP call to the backing API fails."""

    def __init__(
        self,
        endpoint: str,
        *,
        status_code: int | None = None,
        reason: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        context: dict[str, Any] = {"endpoint": endpoint}
        if status_code is not None:
            context["status_code"] = status_code
        message = f"Request to {endpoint} failed"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, context=context, cause=cause)
        self.endpoint = endpoint
        self.status_code = status_code


class CircuitBreakerOpenError(ServiceError):
    """Raised when circuit breaker prevents operation."""

    def __init__(
        self,
        service: str = "API",
        *,
        failures: int | None = None,
        timeout_remaining: float | None = None,
    ) -> None:
        context: dict[str, Any] = {"service": service}
        if failures is not None:
            context["failures"] = failures
        if timeout_remaining is not None:
            context["timeout_remaining_sec"] = round(timeout_remaining, 1)
        super().__init__(f"Circuit breaker open for {service}", context=context)
