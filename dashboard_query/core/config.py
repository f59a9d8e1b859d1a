"""
Configuration for the dashboard query cache.

One frozen dataclass per concern (cache core, HTTP client, simulated
services, per-query defaults), aggregated by QueryClientConfig. Each
value resolves in this order:

1. Environment variable, where one is defined for it
2. Section of the JSON config file
3. Dataclass default

The config file is ``$CONFIG_FILE`` when set, otherwise the first of
CONFIG_FILE_PATHS that exists.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dashboard_query.core.constants import (
    DEFAULT_GC_TIME_MS,
    DEFAULT_STALE_TIME_MS,
    MODEL_LIST_STALE_TIME_MS,
    MODEL_METRICS_STALE_TIME_MS,
    MODEL_SEARCH_STALE_TIME_MS,
    RefetchPolicy,
)
from dashboard_query.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_FILE_PATHS = [
    Path("config.json"),
    Path("config") / "config.json",
    Path.home() / ".dashboard_query" / "config.json",
]

_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off"})


def _find_config_file() -> Path | None:
    explicit = os.getenv("CONFIG_FILE")
    if explicit:
        path = Path(explicit)
        if path.is_file():
            return path
        logger.warning(f"CONFIG_FILE={explicit} does not exist, searching default locations")
    return next((path for path in CONFIG_FILE_PATHS if path.is_file()), None)


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        with path.open() as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError("config_file", reason=f"invalid JSON: {e}", value=str(path)) from e
    if not isinstance(data, dict):
        raise ConfigurationError("config_file", reason="top level must be an object", value=str(path))
    return data


def _parse_bool(text: str) -> bool:
    lowered = text.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError(f"expected one of {sorted(_TRUE | _FALSE)}")


def _coerce(value: Any, cast: Callable[[str], Any] | None) -> Any:
    if cast is None:
        return value
    if cast is bool:
        if isinstance(value, bool):
            return value
        if not isinstance(value, str):
            raise ValueError(f"expected a boolean, got {value!r}")
        return _parse_bool(value)
    if isinstance(value, bool):
        raise ValueError(f"expected a number, got {value!r}")
    return cast(value)


def _get_env_or_config(
    env_key: str | None,
    section: dict[str, Any],
    config_key: str,
    default: Any,
    cast: Callable[[str], Any] | None = None,
) -> Any:
    """Resolve one value: environment, then config section, then default.

    Environment strings and config file values both go through ``cast``
    (booleans accept true/false spellings such as "off" or "yes").

    Raises:
        ConfigurationError: If the value cannot be converted.
    """
    raw = os.getenv(env_key) if env_key else None
    if raw is not None:
        source, value = env_key, raw
    elif config_key in section:
        source, value = config_key, section[config_key]
    else:
        return default
    try:
        return _coerce(value, cast)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(source, reason=str(e), value=value) from e


def _from_section(section: dict[str, Any], config_key: str, default: Any, cast: Callable[[str], Any]) -> Any:
    """Config file value without an environment override."""
    return _get_env_or_config(None, section, config_key, default, cast)


def _load_sections() -> dict[str, Any]:
    path = _find_config_file()
    return _read_config_file(path) if path is not None else {}


@dataclass(frozen=True)
class CacheConfig:
    """Configuration for the cache core."""

    default_stale_time_ms: int = DEFAULT_STALE_TIME_MS
    gc_time_ms: int = DEFAULT_GC_TIME_MS
    normalize_keys: bool = True  # sort mapping fields before hashing keys
    refetch_on_invalidate: RefetchPolicy = RefetchPolicy.ACTIVE

    def __post_init__(self) -> None:
        if self.default_stale_time_ms < 0:
            raise ConfigurationError(
                "default_stale_time_ms", reason="must be >= 0", value=self.default_stale_time_ms
            )
        if self.gc_time_ms < 0:
            raise ConfigurationError("gc_time_ms", reason="must be >= 0", value=self.gc_time_ms)
        try:
            object.__setattr__(
                self, "refetch_on_invalidate", RefetchPolicy.parse(self.refetch_on_invalidate)
            )
        except ValueError as e:
            raise ConfigurationError(
                "refetch_on_invalidate",
                reason="must be one of active, all, none",
                value=self.refetch_on_invalidate,
            ) from e

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> CacheConfig:
        """Create configuration from config dict with environment overrides."""
        cache_config = config.get("cache", {})
        return cls(
            default_stale_time_ms=_get_env_or_config(
                "CACHE_STALE_TIME_MS", cache_config, "default_stale_time_ms", cls.default_stale_time_ms, int
            ),
            gc_time_ms=_get_env_or_config("CACHE_GC_TIME_MS", cache_config, "gc_time_ms", cls.gc_time_ms, int),
            normalize_keys=_get_env_or_config(
                "CACHE_NORMALIZE_KEYS", cache_config, "normalize_keys", cls.normalize_keys, bool
            ),
            refetch_on_invalidate=cache_config.get("refetch_on_invalidate", cls.refetch_on_invalidate),
        )

    @classmethod
    def from_env(cls) -> CacheConfig:
        """Create configuration from environment variables."""
        return cls.from_config(_load_sections())


@dataclass(frozen=True)
class HttpConfig:
    """Configuration for the HTTP-backed data client."""

    base_url: str = "http://localhost:8000/api"
    timeout_seconds: float = 10.0
    max_retries: int = 3
    pool_connections: int = 10
    pool_maxsize: int = 10
    retry_backoff_factor: float = 0.3
    retry_status_forcelist: tuple[int, ...] = (500, 502, 503, 504)
    circuit_breaker_threshold: int = 5
    circuit_breaker_timeout_seconds: int = 60

    def __post_init__(self) -> None:
        if self.timeout_seconds <= 0:
            raise ConfigurationError("timeout_seconds", reason="must be > 0", value=self.timeout_seconds)
        if self.max_retries < 0:
            raise ConfigurationError("max_retries", reason="must be >= 0", value=self.max_retries)

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> HttpConfig:
        """Create configuration from config dict with environment overrides."""
        http_config = config.get("http", {})
        return cls(
            base_url=_get_env_or_config("API_BASE_URL", http_config, "base_url", cls.base_url),
            timeout_seconds=_get_env_or_config(
                "API_TIMEOUT", http_config, "timeout_seconds", cls.timeout_seconds, float
            ),
            max_retries=_get_env_or_config("API_MAX_RETRIES", http_config, "max_retries", cls.max_retries, int),
            pool_connections=_from_section(http_config, "pool_connections", cls.pool_connections, int),
            pool_maxsize=_from_section(http_config, "pool_maxsize", cls.pool_maxsize, int),
            retry_backoff_factor=_from_section(
                http_config, "retry_backoff_factor", cls.retry_backoff_factor, float
            ),
            retry_status_forcelist=tuple(http_config.get("retry_status_forcelist", cls.retry_status_forcelist)),
            circuit_breaker_threshold=_from_section(
                http_config, "circuit_breaker_threshold", cls.circuit_breaker_threshold, int
            ),
            circuit_breaker_timeout_seconds=_from_section(
                http_config, "circuit_breaker_timeout_seconds", cls.circuit_breaker_timeout_seconds, int
            ),
        )

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Create configuration from environment variables."""
        return cls.from_config(_load_sections())


@dataclass(frozen=True)
class ServiceConfig:
    """Configuration for the in-memory dashboard services."""

    simulate_latency: bool = True
    latency_scale: float = 1.0  # multiplier on each call's simulated delay
    random_seed: int | None = None
    training_duration_seconds: float = 10.0

    def __post_init__(self) -> None:
        if self.latency_scale < 0:
            raise ConfigurationError("latency_scale", reason="must be >= 0", value=self.latency_scale)

    def delay_seconds(self, base_ms: int) -> float:
        """Scaled delay for a simulated call, 0 when latency is disabled."""
        if not self.simulate_latency:
            return 0.0
        return base_ms * self.latency_scale / 1000

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> ServiceConfig:
        """Create configuration from config dict with environment overrides."""
        service_config = config.get("services", {})
        return cls(
            simulate_latency=_get_env_or_config(
                "SERVICE_SIMULATE_LATENCY", service_config, "simulate_latency", cls.simulate_latency, bool
            ),
            latency_scale=_get_env_or_config(
                "SERVICE_LATENCY_SCALE", service_config, "latency_scale", cls.latency_scale, float
            ),
            random_seed=service_config.get("random_seed", cls.random_seed),
            training_duration_seconds=_from_section(
                service_config, "training_duration_seconds", cls.training_duration_seconds, float
            ),
        )


@dataclass(frozen=True)
class QueryDefaults:
    """Per-query stale times used by the dashboard bindings."""

    model_list_stale_time_ms: int = MODEL_LIST_STALE_TIME_MS
    model_detail_stale_time_ms: int = DEFAULT_STALE_TIME_MS
    model_metrics_stale_time_ms: int = MODEL_METRICS_STALE_TIME_MS
    model_search_stale_time_ms: int = MODEL_SEARCH_STALE_TIME_MS
    data_source_stale_time_ms: int = DEFAULT_STALE_TIME_MS

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> QueryDefaults:
        """Create configuration from config dict."""
        query_config = config.get("queries", {})
        return cls(
            model_list_stale_time_ms=_from_section(
                query_config, "model_list_stale_time_ms", cls.model_list_stale_time_ms, int
            ),
            model_detail_stale_time_ms=_from_section(
                query_config, "model_detail_stale_time_ms", cls.model_detail_stale_time_ms, int
            ),
            model_metrics_stale_time_ms=_from_section(
                query_config, "model_metrics_stale_time_ms", cls.model_metrics_stale_time_ms, int
            ),
            model_search_stale_time_ms=_from_section(
                query_config, "model_search_stale_time_ms", cls.model_search_stale_time_ms, int
            ),
            data_source_stale_time_ms=_from_section(
                query_config, "data_source_stale_time_ms", cls.data_source_stale_time_ms, int
            ),
        )


@dataclass
class QueryClientConfig:
    """Root configuration aggregating all sub-configurations."""

    cache: CacheConfig = field(default_factory=CacheConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    services: ServiceConfig = field(default_factory=ServiceConfig)
    queries: QueryDefaults = field(default_factory=QueryDefaults)

    config_file_path: str | None = None  # file the values came from, if any

    @classmethod
    def from_file(cls, file_path: str | Path) -> QueryClientConfig:
        """Load every section from ``file_path`` (environment still wins).

        Raises:
            FileNotFoundError: If the file doesn't exist.
            ConfigurationError: If it isn't a JSON object.
        """
        path = Path(file_path)
        return cls.from_config(_read_config_file(path), config_file_path=str(path))

    @classmethod
    def from_config(cls, config: dict[str, Any], config_file_path: str | None = None) -> QueryClientConfig:
        """Build every section from an already loaded config dict."""
        return cls(
            cache=CacheConfig.from_config(config),
            http=HttpConfig.from_config(config),
            services=ServiceConfig.from_config(config),
            queries=QueryDefaults.from_config(config),
            config_file_path=config_file_path,
        )

    @classmethod
    def from_env(cls) -> QueryClientConfig:
        """Discover the config file and apply environment overrides."""
        path = _find_config_file()
        if path is None:
            return cls.from_config({})
        return cls.from_file(path)

    @classmethod
    def default(cls) -> QueryClientConfig:
        """Create configuration with all defaults (no file loading)."""
        return cls()


# Global configuration instance - can be overridden for testing
_config: QueryClientConfig | None = None


def get_config() -> QueryClientConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = QueryClientConfig.from_env()
    return _config


def set_config(config: QueryClientConfig) -> None:
    """Set the global configuration instance (useful for testing)."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset configuration to be reloaded on next access."""
    global _config
    _config = None
