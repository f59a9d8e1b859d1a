"""
Tests for configuration module.
"""

from __future__ import annotations

import json
import os
from unittest.mock import patch

import pytest

from dashboard_query.core import (
    CacheConfig,
    ConfigurationError,
    HttpConfig,
    QueryClientConfig,
    QueryDefaults,
    RefetchPolicy,
    ServiceConfig,
    get_config,
    reset_config,
    set_config,
)


class TestCacheConfig:
    """Tests for cache configuration."""

    def test_default_values(self):
        """Test default configuration values."""
        config = CacheConfig()
        assert config.default_stale_time_ms == 0
        assert config.gc_time_ms == 5 * 60 * 1000
        assert config.normalize_keys is True
        assert config.refetch_on_invalidate is RefetchPolicy.ACTIVE

    def test_from_env(self):
        """Test loading from environment variables."""
        with patch.dict(os.environ, {
            "CACHE_STALE_TIME_MS": "2000",
            "CACHE_GC_TIME_MS": "1000",
            "CACHE_NORMALIZE_KEYS": "false",
        }):
            config = CacheConfig.from_config({})
            assert config.default_stale_time_ms == 2000
            assert config.gc_time_ms == 1000
            assert config.normalize_keys is False

    def test_policy_parsed_from_string(self):
        """Test that the refetch policy accepts config strings."""
        assert CacheConfig(refetch_on_invalidate=" ALL ").refetch_on_invalidate is RefetchPolicy.ALL
        config = CacheConfig.from_config({"cache": {"refetch_on_invalidate": "none"}})
        assert config.refetch_on_invalidate is RefetchPolicy.NONE

    def test_invalid_policy(self):
        """Test that an unknown policy is a configuration error."""
        with pytest.raises(ConfigurationError, match="refetch_on_invalidate"):
            CacheConfig(refetch_on_invalidate="sometimes")

    def test_negative_times_rejected(self):
        """Test validation of time windows."""
        with pytest.raises(ConfigurationError):
            CacheConfig(default_stale_time_ms=-1)
        with pytest.raises(ConfigurationError):
            CacheConfig(gc_time_ms=-1)

    def test_bad_env_value(self):
        """Test that an uncastable environment value is reported."""
        with patch.dict(os.environ, {"CACHE_GC_TIME_MS": "soon"}):
            with pytest.raises(ConfigurationError, match="CACHE_GC_TIME_MS"):
                CacheConfig.from_config({})

    def test_bool_env_values(self):
        """Test accepted and rejected boolean spellings."""
        with patch.dict(os.environ, {"CACHE_NORMALIZE_KEYS": "off"}):
            assert CacheConfig.from_config({}).normalize_keys is False
        with patch.dict(os.environ, {"CACHE_NORMALIZE_KEYS": "maybe"}):
            with pytest.raises(ConfigurationError, match="CACHE_NORMALIZE_KEYS"):
                CacheConfig.from_config({})

    def test_file_values_coerced(self):
        """Test that string values from the config file are converted."""
        config = CacheConfig.from_config({"cache": {"normalize_keys": "false", "gc_time_ms": "5000"}})
        assert config.normalize_keys is False
        assert config.gc_time_ms == 5000

    def test_bad_file_value(self):
        """Test that an unconvertible file value names its key."""
        with pytest.raises(ConfigurationError, match="gc_time_ms"):
            CacheConfig.from_config({"cache": {"gc_time_ms": "soon"}})
        with pytest.raises(ConfigurationError, match="normalize_keys"):
            CacheConfig.from_config({"cache": {"normalize_keys": 1}})

    def test_immutability(self):
        """Test that config is immutable (frozen)."""
        config = CacheConfig()
        with pytest.raises(Exception):  # FrozenInstanceError
            config.gc_time_ms = 999


class TestHttpConfig:
    """Tests for HTTP client configuration."""

    def test_default_values(self):
        """Test default configuration values."""
        config = HttpConfig()
        assert config.timeout_seconds == 10
        assert config.max_retries == 3
        assert config.circuit_breaker_threshold == 5

    def test_from_env(self):
        """Test loading from environment variables."""
        with patch.dict(os.environ, {
            "API_BASE_URL": "https://dashboard.test/api",
            "API_TIMEOUT": "2.5",
        }):
            config = HttpConfig.from_config({})
            assert config.base_url == "https://dashboard.test/api"
            assert config.timeout_seconds == 2.5

    def test_invalid_timeout(self):
        """Test that a non-positive timeout is rejected."""
        with pytest.raises(ConfigurationError):
            HttpConfig(timeout_seconds=0)


class TestServiceConfig:
    """Tests for simulated service configuration."""

    def test_delay_scaled(self):
        """Test that simulated delays are scaled and converted to seconds."""
        config = ServiceConfig(latency_scale=0.5)
        assert config.delay_seconds(800) == pytest.approx(0.4)

    def test_delay_disabled(self):
        """Test that disabling latency removes every delay."""
        assert ServiceConfig(simulate_latency=False).delay_seconds(800) == 0.0

    def test_from_env(self):
        """Test environment overrides for service settings."""
        with patch.dict(os.environ, {"SERVICE_SIMULATE_LATENCY": "0", "SERVICE_LATENCY_SCALE": "2"}):
            config = ServiceConfig.from_config({"services": {"random_seed": 7}})
            assert config.simulate_latency is False
            assert config.latency_scale == 2.0
            assert config.random_seed == 7


class TestQueryClientConfig:
    """Tests for root configuration."""

    def test_default_creation(self):
        """Test creating config with defaults."""
        config = QueryClientConfig.default()
        assert config.cache is not None
        assert config.http is not None
        assert config.queries == QueryDefaults()

    def test_from_file(self, tmp_path):
        """Test loading sections from a JSON file."""
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "cache": {"default_stale_time_ms": 1000},
            "queries": {"model_list_stale_time_ms": 42},
        }))

        config = QueryClientConfig.from_file(path)

        assert config.cache.default_stale_time_ms == 1000
        assert config.queries.model_list_stale_time_ms == 42
        assert config.config_file_path == str(path)

    def test_config_file_env_var(self, tmp_path):
        """Test that CONFIG_FILE points from_env at a specific file."""
        path = tmp_path / "custom.json"
        path.write_text(json.dumps({"cache": {"gc_time_ms": 123}}))
        with patch.dict(os.environ, {"CONFIG_FILE": str(path)}):
            config = QueryClientConfig.from_env()
        assert config.cache.gc_time_ms == 123
        assert config.config_file_path == str(path)

    def test_invalid_json_file(self, tmp_path):
        """Test that a malformed file is a configuration error."""
        path = tmp_path / "config.json"
        path.write_text("{not json")
        with pytest.raises(ConfigurationError, match="invalid JSON"):
            QueryClientConfig.from_file(path)

    def test_non_object_file(self, tmp_path):
        """Test that the top level must be an object."""
        path = tmp_path / "config.json"
        path.write_text("[1, 2]")
        with pytest.raises(ConfigurationError, match="top level"):
            QueryClientConfig.from_file(path)


class TestGlobalConfig:
    """Tests for global configuration management."""

    def setup_method(self):
        """Reset config before each test."""
        reset_config()

    def teardown_method(self):
        """Reset config after each test."""
        reset_config()

    def test_get_config_creates_default(self):
        """Test that get_config creates default if none set."""
        config = get_config()
        assert isinstance(config, QueryClientConfig)

    def test_set_config(self):
        """Test setting a custom configuration."""
        custom = QueryClientConfig(cache=CacheConfig(default_stale_time_ms=777))
        set_config(custom)
        assert get_config().cache.default_stale_time_ms == 777

    def test_reset_config(self):
        """Test resetting configuration."""
        set_config(QueryClientConfig(cache=CacheConfig(default_stale_time_ms=777)))
        reset_config()
        assert get_config().cache.default_stale_time_ms != 777

    def test_config_singleton_behavior(self):
        """Test that get_config returns same instance."""
        assert get_config() is get_config()
