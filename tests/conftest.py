"""
Pytest configuration and shared fixtures.

This module provides reusable fixtures for testing the dashboard_query package.
"""

from __future__ import annotations

import asyncio
from collections.abc import Generator
from typing import Any

import pytest

from dashboard_query.cache import QueryClient
from dashboard_query.core import (
    CacheConfig,
    QueryClientConfig,
    ServiceConfig,
    reset_config,
    set_config,
)
from dashboard_query.services import DataSourceService, MLModelService

# =============================================================================
# Test Doubles
# =============================================================================


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class CountingFetcher:
    """Fetcher returning queued values (the last one repeats) and counting calls."""

    def __init__(self, *values: Any) -> None:
        self.values = list(values) or [None]
        self.calls = 0
        self.__qualname__ = "CountingFetcher"

    async def __call__(self) -> Any:
        index = min(self.calls, len(self.values) - 1)
        self.calls += 1
        return self.values[index]


class ControlledFetcher:
    """Fetcher whose calls block until the test resolves or rejects them."""

    def __init__(self) -> None:
        self.calls = 0
        self.pending: list[asyncio.Future[Any]] = []
        self.__qualname__ = "ControlledFetcher"

    async def __call__(self) -> Any:
        self.calls += 1
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self.pending.append(future)
        return await future

    async def wait_started(self, count: int = 1) -> None:
        """Yield to the loop until ``count`` calls are waiting."""
        for _ in range(100):
            if len(self.pending) >= count:
                return
            await asyncio.sleep(0)
        raise AssertionError(f"expected {count} fetcher calls, got {len(self.pending)}")

    def resolve(self, value: Any, index: int = -1) -> None:
        self.pending[index].set_result(value)

    def reject(self, error: BaseException, index: int = -1) -> None:
        self.pending[index].set_exception(error)


async def drain(rounds: int = 10) -> None:
    """Let scheduled tasks and callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def cache_config() -> CacheConfig:
    """Provide the default cache configuration."""
    return CacheConfig()


@pytest.fixture
def test_config(cache_config: CacheConfig) -> Generator[QueryClientConfig, None, None]:
    """Provide a test configuration: no simulated latency, fixed seed."""
    config = QueryClientConfig(
        cache=cache_config,
        services=ServiceConfig(
            simulate_latency=False,
            random_seed=42,
            training_duration_seconds=0.01,
        ),
    )
    set_config(config)
    yield config
    reset_config()


# =============================================================================
# Cache Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    """Provide a fake clock starting at t=0."""
    return FakeClock()


@pytest.fixture
def client(test_config: QueryClientConfig, clock: FakeClock) -> QueryClient:
    """Provide a fresh query client driven by the fake clock."""
    return QueryClient(test_config, clock=clock)


@pytest.fixture
def fetcher_factory() -> type[ControlledFetcher]:
    """Provide the controlled fetcher class."""
    return ControlledFetcher


# =============================================================================
# Service Fixtures
# =============================================================================


@pytest.fixture
def model_service(test_config: QueryClientConfig) -> MLModelService:
    """Provide an in-memory model service with the seed catalog."""
    return MLModelService(test_config.services)


@pytest.fixture
def data_source_service(test_config: QueryClientConfig) -> DataSourceService:
    """Provide an in-memory data source service with the seed sources."""
    return DataSourceService(test_config.services)
