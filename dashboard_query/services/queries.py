"""
Query and mutation bindings for the dashboard services.

Key factories define the key hierarchy each service lives under, e.g.::

    ["mlModels"]
    ["mlModels", "list", {"filters": {...}}]
    ["mlModels", "detail", "3"]
    ["mlModels", "detail", "3", "metrics", 7]
    ["mlModels", "search", "churn"]

Invalidating a prefix (``detail("3")``) therefore also covers the keys
below it (that model's metrics). The bindings pair every read with its
stale time and every write with the keys it makes stale.
"""

from __future__ import annotations

from collections.abc import Mapping
from functools import partial
from typing import Any, Final

import numpy as np

from dashboard_query.cache.client import QueryClient
from dashboard_query.cache.mutations import NO_INVALIDATION, MutationDescriptor
from dashboard_query.cache.observer import QueryObserver
from dashboard_query.core.config import QueryDefaults, get_config
from dashboard_query.core.protocols import DataSourceCatalog, EntryListener, ModelCatalog
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
    ModelStats,
    ModelStatus,
    ModelTrainingRequest,
    SyncAllResult,
    SyncResult,
    UpdateModelRequest,
)

# =============================================================================
# Query Keys
# =============================================================================


class MLModelKeys:
    """Key factory for ML model queries."""

    all: Final[tuple[str, ...]] = ("mlModels",)

    @classmethod
    def lists(cls) -> list[Any]:
        return [*cls.all, "list"]

    @classmethod
    def list(cls, filters: Mapping[str, Any] | None = None) -> list[Any]:
        return [*cls.lists(), {"filters": dict(filters or {})}]

    @classmethod
    def details(cls) -> list[Any]:
        return [*cls.all, "detail"]

    @classmethod
    def detail(cls, model_id: str) -> list[Any]:
        return [*cls.details(), model_id]

    @classmethod
    def metrics(cls, model_id: str, days: int) -> list[Any]:
        return [*cls.detail(model_id), "metrics", days]

    @classmethod
    def search(cls, query: str) -> list[Any]:
        return [*cls.all, "search", query]


class DataSourceKeys:
    """Key factory for data source queries."""

    all: Final[tuple[str, ...]] = ("dataSources",)

    @classmethod
    def lists(cls) -> list[Any]:
        return [*cls.all, "list"]

    @classmethod
    def details(cls) -> list[Any]:
        return [*cls.all, "detail"]

    @classmethod
    def detail(cls, source_id: int) -> list[Any]:
        return [*cls.details(), source_id]

    @classmethod
    def stats(cls) -> list[Any]:
        return [*cls.all, "stats"]


ml_model_keys = MLModelKeys
data_source_keys = DataSourceKeys


# =============================================================================
# Derived data
# =============================================================================


def compute_model_stats(models: list[MLModel]) -> ModelStats:
    """Counts per status, mean accuracy and total training rows."""
    if not models:
        return ModelStats()
    statuses = [m.status for m in models]
    return ModelStats(
        total=len(models),
        active=statuses.count(ModelStatus.ACTIVE),
        training=statuses.count(ModelStatus.TRAINING),
        paused=statuses.count(ModelStatus.PAUSED),
        deployed=statuses.count(ModelStatus.DEPLOYED),
        average_accuracy=float(np.mean([m.accuracy for m in models])),
        total_training_data=int(np.sum([m.training_data_size for m in models])),
    )


# =============================================================================
# ML Model Bindings
# =============================================================================


class MLModelQueries:
    """Cached reads and invalidating writes for a ModelCatalog.

    Args:
        client: Query client to cache in.
        service: Model catalog (in-memory or HTTP).
        defaults: Per-query stale times; defaults to the process config.
    """

    keys = MLModelKeys

    def __init__(
        self,
        client: QueryClient,
        service: ModelCatalog,
        defaults: QueryDefaults | None = None,
    ) -> None:
        self.client = client
        self.service = service
        self.defaults = defaults or get_config().queries

    # --- reads ---------------------------------------------------------------

    async def models(self, filters: Mapping[str, Any] | None = None) -> list[MLModel]:
        return await self.client.query(
            self.keys.list(filters),
            self.service.get_models,
            stale_time_ms=self.defaults.model_list_stale_time_ms,
        )

    async def model(self, model_id: str) -> MLModel | None:
        """One model; an empty id is a disabled query and returns None."""
        if not model_id:
            return None
        return await self.client.query(
            self.keys.detail(model_id),
            partial(self.service.get_model_by_id, model_id),
            stale_time_ms=self.defaults.model_detail_stale_time_ms,
        )

    async def metrics(self, model_id: str, days: int = 7) -> list[ModelMetrics]:
        if not model_id:
            return []
        return await self.client.query(
            self.keys.metrics(model_id, days),
            partial(self.service.get_model_metrics, model_id, days),
            stale_time_ms=self.defaults.model_metrics_stale_time_ms,
        )

    async def search(self, query: str) -> list[MLModel]:
        """Search; an empty query is a disabled query and returns []."""
        if not query:
            return []
        return await self.client.query(
            self.keys.search(query),
            partial(self.service.search_models, query),
            stale_time_ms=self.defaults.model_search_stale_time_ms,
        )

    async def stats(self) -> ModelStats:
        return compute_model_stats(await self.models())

    def observe_models(
        self,
        filters: Mapping[str, Any] | None = None,
        *,
        listener: EntryListener | None = None,
    ) -> QueryObserver[list[MLModel]]:
        return self.client.observe(
            self.keys.list(filters),
            self.service.get_models,
            stale_time_ms=self.defaults.model_list_stale_time_ms,
            listener=listener,
        )

    def observe_model(self, model_id: str, *, listener: EntryListener | None = None) -> QueryObserver[MLModel | None]:
        return self.client.observe(
            self.keys.detail(model_id),
            partial(self.service.get_model_by_id, model_id),
            stale_time_ms=self.defaults.model_detail_stale_time_ms,
            enabled=bool(model_id),
            listener=listener,
        )

    # --- writes --------------------------------------------------------------

    def _lists_and_detail(self, model_id: str) -> MutationDescriptor:
        return MutationDescriptor.of(self.keys.lists(), self.keys.detail(model_id))

    async def create(self, request: CreateModelRequest) -> MLModel:
        return await self.client.mutate(
            self.service.create_model, MutationDescriptor.of(self.keys.lists()), request
        )

    async def update(self, model_id: str, request: UpdateModelRequest) -> MLModel | None:
        return await self.client.mutate(
            self.service.update_model, self._lists_and_detail(model_id), model_id, request
        )

    async def delete(self, model_id: str) -> bool:
        return await self.client.mutate(
            self.service.delete_model, MutationDescriptor.of(self.keys.lists()), model_id
        )

    async def train(self, request: ModelTrainingRequest) -> bool:
        return await self.client.mutate(
            self.service.start_training, self._lists_and_detail(request.model_id), request
        )

    async def toggle_status(self, model_id: str) -> bool:
        return await self.client.mutate(
            self.service.toggle_model_status, self._lists_and_detail(model_id), model_id
        )

    async def deploy(self, model_id: str) -> ModelDeployment | None:
        return await self.client.mutate(
            self.service.deploy_model, self._lists_and_detail(model_id), model_id
        )

    async def predict(self, request: ModelPredictionRequest) -> ModelPrediction:
        return await self.client.mutate(self.service.make_prediction, NO_INVALIDATION, request)


# =============================================================================
# Data Source Bindings
# =============================================================================


class DataSourceQueries:
    """Cached reads and invalidating writes for a DataSourceCatalog."""

    keys = DataSourceKeys

    def __init__(
        self,
        client: QueryClient,
        service: DataSourceCatalog,
        defaults: QueryDefaults | None = None,
    ) -> None:
        self.client = client
        self.service = service
        self.defaults = defaults or get_config().queries

    async def sources(self) -> list[DataSource]:
        return await self.client.query(
            self.keys.lists(),
            self.service.get_all,
            stale_time_ms=self.defaults.data_source_stale_time_ms,
        )

    async def source(self, source_id: int) -> DataSource | None:
        return await self.client.query(
            self.keys.detail(source_id),
            partial(self.service.get_by_id, source_id),
            stale_time_ms=self.defaults.data_source_stale_time_ms,
        )

    async def stats(self) -> DataSourceStats:
        return await self.client.query(
            self.keys.stats(),
            self.service.get_stats,
            stale_time_ms=self.defaults.data_source_stale_time_ms,
        )

    def observe_sources(self, *, listener: EntryListener | None = None) -> QueryObserver[list[DataSource]]:
        return self.client.observe(
            self.keys.lists(),
            self.service.get_all,
            stale_time_ms=self.defaults.data_source_stale_time_ms,
            listener=listener,
        )

    def _changed(self, source_id: int) -> MutationDescriptor:
        return MutationDescriptor.of(self.keys.lists(), self.keys.detail(source_id), self.keys.stats())

    async def create(self, data: CreateDataSourceData) -> DataSource:
        return await self.client.mutate(
            self.service.create, MutationDescriptor.of(self.keys.lists(), self.keys.stats()), data
        )

    async def update(self, source_id: int, data: CreateDataSourceData) -> DataSource:
        return await self.client.mutate(self.service.update, self._changed(source_id), source_id, data)

    async def delete(self, source_id: int) -> None:
        await self.client.mutate(self.service.delete, self._changed(source_id), source_id)

    async def test_connection(self, source_id: int) -> ConnectionTestResult:
        return await self.client.mutate(self.service.test_connection, NO_INVALIDATION, source_id)

    async def sync(self, source_id: int) -> SyncResult:
        return await self.client.mutate(self.service.sync, self._changed(source_id), source_id)

    async def sync_all(self) -> SyncAllResult:
        return await self.client.mutate(self.service.sync_all, MutationDescriptor.of(list(self.keys.all)))
