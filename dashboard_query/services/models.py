"""
Pydantic data models for the dashboard data services.

This module defines the data contracts for:
- ML models, their metrics, deployments and predictions
- Data sources, connection tests and sync results
- Request payloads for the write operations

Fields are snake_case in Python and camelCase on the wire, so payloads
from a JSON API validate directly (``MLModel.model_validate(payload)``).
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ApiModel(BaseModel):
    """Base for all service models: camelCase aliases, snake_case names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, protected_namespaces=())

    def to_api(self) -> dict[str, Any]:
        """JSON-ready dict with wire (camelCase) field names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# Enumerations
# =============================================================================


class ModelType(str, Enum):
    """Kinds of ML models the dashboard manages."""

    REGRESSION = "Regression"
    CLASSIFICATION = "Classification"
    TIME_SERIES = "Time Series"
    UNSUPERVISED = "Unsupervised"
    DEEP_LEARNING = "Deep Learning"
    NLP = "NLP"
    COMPUTER_VISION = "Computer Vision"


class ModelStatus(str, Enum):
    """Lifecycle status of an ML model."""

    ACTIVE = "Active"
    TRAINING = "Training"
    PAUSED = "Paused"
    FAILED = "Failed"
    DEPLOYED = "Deployed"
    RETIRED = "Retired"

    @property
    def serves_predictions(self) -> bool:
        return self in (ModelStatus.ACTIVE, ModelStatus.DEPLOYED)


class PredictionStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class DeploymentStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ERROR = "error"


class DataSourceStatus(str, Enum):
    """Connection state of a data source."""

    CONNECTED = "connected"
    SYNCING = "syncing"
    ERROR = "error"
    DISCONNECTED = "disconnected"


class DataSourceHealth(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    ERROR = "error"


# =============================================================================
# ML Model Models
# =============================================================================


class ModelPerformance(ApiModel):
    """Evaluation scores; which optional ones exist depends on the model type."""

    precision: float = Field(0.0, ge=0, description="Precision in percent")
    recall: float = Field(0.0, ge=0, description="Recall in percent")
    f1_score: float = Field(0.0, ge=0, description="F1 score in percent")
    auc: float | None = Field(None, description="Area under ROC curve")
    mse: float | None = Field(None, ge=0, description="Mean squared error")
    mae: float | None = Field(None, ge=0, description="Mean absolute error")
    r2_score: float | None = Field(None, description="Coefficient of determination")


class MLModel(ApiModel):
    """An ML model as shown on the dashboard."""

    id: str
    name: str
    type: ModelType
    status: ModelStatus
    accuracy: float = Field(0.0, ge=0, le=100, description="Accuracy in percent")
    last_trained: str = Field("Never", description="Human-readable training recency")
    description: str = ""
    features: list[str] = Field(default_factory=list)
    performance: ModelPerformance = Field(default_factory=ModelPerformance)
    version: str = "1.0.0"
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    training_data_size: int = Field(0, ge=0)
    training_duration: int = Field(0, ge=0, description="Training duration in minutes")
    deployment_endpoint: str | None = None
    tags: list[str] = Field(default_factory=list)
    created_by: str = "current-user"
    is_public: bool = False

    def matches(self, query: str) -> bool:
        """Case-insensitive match on name, description, tags or type."""
        needle = query.lower()
        return (
            needle in self.name.lower()
            or needle in self.description.lower()
            or any(needle in tag.lower() for tag in self.tags)
            or needle in self.type.value.lower()
        )


class ModelMetrics(ApiModel):
    """One day of model metrics."""

    model_id: str
    timestamp: datetime
    accuracy: float
    loss: float
    precision: float
    recall: float
    f1_score: float
    training_time: float = Field(..., description="Training time in minutes")
    inference_time: float = Field(..., description="Inference time in ms")


class ModelDeployment(ApiModel):
    """A model served behind an endpoint."""

    id: str
    model_id: str
    endpoint: str
    status: DeploymentStatus = DeploymentStatus.ACTIVE
    created_at: datetime = Field(default_factory=utc_now)
    last_used: datetime = Field(default_factory=utc_now)
    request_count: int = Field(0, ge=0)
    average_response_time: float = Field(0.0, ge=0)


class ModelPrediction(ApiModel):
    """Outcome of a prediction call.

    An unavailable model yields ``status=error`` instead of an exception.
    """

    id: str
    model_id: str
    input: dict[str, Any] = Field(default_factory=dict)
    output: dict[str, Any] = Field(default_factory=dict)
    confidence: float = 0.0
    timestamp: datetime = Field(default_factory=utc_now)
    status: PredictionStatus = PredictionStatus.SUCCESS
    error: str | None = None

    @field_validator("confidence", mode="before")
    @classmethod
    def validate_confidence(cls, v: float | None) -> float:
        """Clamp confidence to [0, 1]."""
        if v is None:
            return 0.0
        return max(0.0, min(1.0, float(v)))


class ModelStats(ApiModel):
    """Aggregate counts over a list of models."""

    total: int = 0
    active: int = 0
    training: int = 0
    paused: int = 0
    deployed: int = 0
    average_accuracy: float = 0.0
    total_training_data: int = 0


# =============================================================================
# ML Model Requests
# =============================================================================


class CreateModelRequest(ApiModel):
    name: str = Field(..., min_length=1)
    type: ModelType
    description: str = ""
    features: list[str] = Field(default_factory=list)
    training_data_id: str = ""
    tags: list[str] = Field(default_factory=list)
    is_public: bool = False


class UpdateModelRequest(ApiModel):
    """Partial update; only fields that are set are applied."""

    name: str | None = Field(None, min_length=1)
    description: str | None = None
    tags: list[str] | None = None
    is_public: bool | None = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ModelTrainingRequest(ApiModel):
    model_id: str
    epochs: int = Field(10, ge=1)
    batch_size: int = Field(32, ge=1)
    learning_rate: float = Field(0.001, gt=0)
    validation_split: float = Field(0.2, ge=0, lt=1)


class ModelPredictionRequest(ApiModel):
    model_id: str
    input: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Data Source Models
# =============================================================================


class DataSource(ApiModel):
    """An external system the dashboard pulls data from."""

    id: int
    name: str
    type: str
    status: DataSourceStatus = DataSourceStatus.DISCONNECTED
    last_sync: str = "Never"
    records: str = Field("0", description="Abbreviated record count, e.g. 2.4M or 847K")
    description: str = ""
    health: DataSourceHealth = DataSourceHealth.HEALTHY
    host: str | None = None
    port: str | None = None
    database: str | None = None
    username: str | None = None
    password: str | None = None
    api_url: str | None = None
    api_key: str | None = None
    sync_interval: str | None = Field(None, description="Minutes between automatic syncs")
    auto_sync: bool | None = None
    ssl_enabled: bool | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class CreateDataSourceData(ApiModel):
    """Settings for creating or replacing a data source."""

    name: str = Field(..., min_length=1)
    type: str
    description: str | None = None
    host: str | None = None
    port: str | None = None
    database: str | None = None
    username: str | None = None
    password: str | None = None
    api_url: str | None = None
    api_key: str | None = None
    sync_interval: str | None = None
    auto_sync: bool | None = None
    ssl_enabled: bool | None = None


class ConnectionTestResult(ApiModel):
    success: bool
    message: str


class SyncResult(ApiModel):
    success: bool
    message: str
    records: int | None = None


class SyncAllResult(ApiModel):
    success: int = 0
    failed: int = 0
    total: int = 0


class DataSourceStats(ApiModel):
    total: int = 0
    connected: int = 0
    syncing: int = 0
    error: int = 0
    total_records: str = "0.0K"
