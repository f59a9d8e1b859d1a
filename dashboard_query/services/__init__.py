"""
Services module - dashboard data services and their cache bindings.

This module contains:
    - models: Pydantic data models for ML models and data sources
    - ml_models: MLModelService, in-memory model catalog with simulated latency
    - data_sources: DataSourceService, in-memory data source registry
    - http: HttpJsonClient and HttpModelCatalog for a real dashboard API
    - queries: Key factories and query/mutation bindings for a QueryClient
"""

from dashboard_query.services.data_sources import DataSourceService, format_record_count, parse_record_count
from dashboard_query.services.http import CircuitBreakerState, HttpJsonClient, HttpModelCatalog
from dashboard_query.services.ml_models import MLModelService
from dashboard_query.services.models import (
    ConnectionTestResult,
    CreateDataSourceData,
    CreateModelRequest,
    DataSource,
    DataSourceHealth,
    DataSourceStats,
    DataSourceStatus,
    DeploymentStatus,
    MLModel,
    ModelDeployment,
    ModelMetrics,
    ModelPerformance,
    ModelPrediction,
    ModelPredictionRequest,
    ModelStats,
    ModelStatus,
    ModelTrainingRequest,
    ModelType,
    PredictionStatus,
    SyncAllResult,
    SyncResult,
    UpdateModelRequest,
)
from dashboard_query.services.queries import (
    DataSourceKeys,
    DataSourceQueries,
    MLModelKeys,
    MLModelQueries,
    compute_model_stats,
    data_source_keys,
    ml_model_keys,
)

__all__ = [
    # Services
    "MLModelService",
    "DataSourceService",
    "HttpJsonClient",
    "HttpModelCatalog",
    "CircuitBreakerState",
    # Bindings
    "MLModelKeys",
    "DataSourceKeys",
    "ml_model_keys",
    "data_source_keys",
    "MLModelQueries",
    "DataSourceQueries",
    "compute_model_stats",
    # Record counts
    "parse_record_count",
    "format_record_count",
    # Enumerations
    "ModelType",
    "ModelStatus",
    "PredictionStatus",
    "DeploymentStatus",
    "DataSourceStatus",
    "DataSourceHealth",
    # ML model data
    "MLModel",
    "ModelPerformance",
    "ModelMetrics",
    "ModelDeployment",
    "ModelPrediction",
    "ModelStats",
    "CreateModelRequest",
    "UpdateModelRequest",
    "ModelTrainingRequest",
    "ModelPredictionRequest",
    # Data source data
    "DataSource",
    "CreateDataSourceData",
    "ConnectionTestResult",
    "SyncResult",
    "SyncAllResult",
    "DataSourceStats",
]
