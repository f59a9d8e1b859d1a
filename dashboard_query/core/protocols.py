"""
Protocol definitions and abstract base classes for the query cache.

This module defines interfaces that enable:
- Loose coupling between the cache core and the data services
- Easy mocking for testing (fake clocks, stub services)
- Clear contracts for implementations
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Protocol, TypeVar, runtime_checkable

if TYPE_CHECKING:
    from dashboard_query.cache.store import CacheEntry
    from dashboard_query.services.models import (
        ConnectionTestResult,
        CreateDataSourceData,
        CreateModelRequest,
        DataSource,
        DataSourceStats,
        MLModel,
        ModelDeployment,
        ModelMetrics,
        ModelPrediction,
        ModelPredictionRequest,
        ModelTrainingRequest,
        SyncAllResult,
        SyncResult,
        UpdateModelRequest,
    )

T = TypeVar("T")
R = TypeVar("R")

# =============================================================================
# Call Signatures
# =============================================================================

Fetcher = Callable[[], Awaitable[T]]
"""Zero-argument coroutine function producing the data for one query key."""

MutationFn = Callable[..., Awaitable[R]]
"""Coroutine function performing a write; receives the mutation variables."""

EntryListener = Callable[["CacheEntry"], None]
"""Observer callback receiving a cache entry snapshot."""

Unsubscribe = Callable[[], None]


@runtime_checkable
class Clock(Protocol):
    """Source of the current time in milliseconds."""

    def __call__(self) -> float:
        ...


def system_clock() -> float:
    """Wall-clock time in milliseconds since the epoch."""
    return time.time() * 1000


# =============================================================================
# Data Service Interfaces
# =============================================================================


class ModelCatalog(ABC):
    """Abstract base class for ML model data services.

    Implementations may be in-memory simulations or real API clients;
    the query bindings only rely on this contract.
    """

    @abstractmethod
    async def get_models(self) -> list[MLModel]:
        """List every model."""
        ...

    @abstractmethod
    async def get_model_by_id(self, model_id: str) -> MLModel | None:
        """Return one model, or None when unknown."""
        ...

    @abstractmethod
    async def create_model(self, request: CreateModelRequest) -> MLModel:
        """Register a new model (starts in Training)."""
        ...

    @abstractmethod
    async def update_model(self, model_id: str, request: UpdateModelRequest) -> MLModel | None:
        """Apply a partial update; None when the model is unknown."""
        ...

    @abstractmethod
    async def delete_model(self, model_id: str) -> bool:
        """Delete a model; False when it was unknown."""
        ...

    @abstractmethod
    async def start_training(self, request: ModelTrainingRequest) -> bool:
        """Kick off (re)training; False when the model is unknown."""
        ...

    @abstractmethod
    async def toggle_model_status(self, model_id: str) -> bool:
        """Flip Active <-> Paused; False when the model is unknown."""
        ...

    @abstractmethod
    async def deploy_model(self, model_id: str) -> ModelDeployment | None:
        """Deploy a model behind an endpoint."""
        ...

    @abstractmethod
    async def make_prediction(self, request: ModelPredictionRequest) -> ModelPrediction:
        """Run a prediction against a model."""
        ...

    @abstractmethod
    async def get_model_metrics(self, model_id: str, days: int = 7) -> list[ModelMetrics]:
        """Daily metrics for the last ``days`` days."""
        ...

    @abstractmethod
    async def search_models(self, query: str) -> list[MLModel]:
        """Case-insensitive search over name, description, tags and type."""
        ...


class DataSourceCatalog(ABC):
    """Abstract base class for data source services."""

    @abstractmethod
    async def get_all(self) -> list[DataSource]:
        """List every data source."""
        ...

    @abstractmethod
    async def get_by_id(self, source_id: int) -> DataSource | None:
        """Return one data source, or None when unknown."""
        ...

    @abstractmethod
    async def create(self, data: CreateDataSourceData) -> DataSource:
        """Register a new (disconnected) data source."""
        ...

    @abstractmethod
    async def update(self, source_id: int, data: CreateDataSourceData) -> DataSource:
        """Replace a data source's settings.

        Raises:
            NotFoundError: If the data source doesn't exist.
        """
        ...

    @abstractmethod
    async def delete(self, source_id: int) -> None:
        """Delete a data source.

        Raises:
            NotFoundError: If the data source doesn't exist.
        """
        ...

    @abstractmethod
    async def test_connection(self, source_id: int) -> ConnectionTestResult:
        """Check connectivity."""
        ...

    @abstractmethod
    async def sync(self, source_id: int) -> SyncResult:
        """Pull records from the source."""
        ...

    @abstractmethod
    async def sync_all(self) -> SyncAllResult:
        """Sync every data source concurrently."""
        ...

    @abstractmethod
    async def get_stats(self) -> DataSourceStats:
        """Aggregate counts and total records."""
        ...


def describe_callable(fn: Callable[..., Any]) -> str:
    """Human-readable name of a fetcher or mutation function (for logs)."""
    return getattr(fn, "__qualname__", None) or getattr(fn, "__name__", None) or repr(fn)
