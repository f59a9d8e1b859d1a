"""
In-memory ML model service with simulated latency.

Stands in for a model-management API: every call sleeps for a scaled,
per-operation delay before touching an in-memory catalog. Returned
models are copies, so data held in the query cache never changes behind
its back. Random values (accuracy after training, metrics, predictions)
come from a numpy Generator seeded from ServiceConfig.random_seed.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import re
import uuid
from datetime import date, timedelta
from typing import Any, Final

import numpy as np

from dashboard_query.core.config import ServiceConfig, get_config
from dashboard_query.core.logging import EventType, get_logger, log_event
from dashboard_query.core.protocols import ModelCatalog
from dashboard_query.services.models import (
    CreateModelRequest,
    MLModel,
    ModelDeployment,
    ModelMetrics,
    ModelPerformance,
    ModelPrediction,
    ModelPredictionRequest,
    ModelStatus,
    ModelTrainingRequest,
    ModelType,
    PredictionStatus,
    UpdateModelRequest,
    utc_now,
)

logger = get_logger(__name__)

# Simulated latency per operation (ms, before ServiceConfig.latency_scale)
LATENCY_MS: Final[dict[str, int]] = {
    "get_models": 500,
    "get_model_by_id": 300,
    "create_model": 800,
    "update_model": 600,
    "delete_model": 400,
    "start_training": 1000,
    "toggle_model_status": 300,
    "deploy_model": 1200,
    "make_prediction": 800,
    "get_model_metrics": 400,
    "search_models": 300,
}

ENDPOINT_BASE: Final[str] = "https://api.example.com/models"

SEED_MODELS: Final[list[dict[str, Any]]] = [
    {
        "id": "1",
        "name": "Revenue Prediction Model v2.1",
        "type": ModelType.REGRESSION,
        "status": ModelStatus.ACTIVE,
        "accuracy": 94.2,
        "last_trained": "2 days ago",
        "description": "Predicts monthly revenue based on user behavior and market trends",
        "features": ["User engagement", "Seasonal patterns", "Market data"],
        "performance": {"precision": 92.1, "recall": 89.7, "f1_score": 90.9, "mse": 0.15, "mae": 0.08, "r2_score": 0.94},
        "version": "2.1.0",
        "created_at": "2024-01-15T10:00:00Z",
        "updated_at": "2024-01-20T14:30:00Z",
        "training_data_size": 50000,
        "training_duration": 120,
        "deployment_endpoint": f"{ENDPOINT_BASE}/revenue-prediction",
        "tags": ["revenue", "prediction", "business"],
        "created_by": "user1",
        "is_public": True,
    },
    {
        "id": "2",
        "name": "Customer Churn Predictor",
        "type": ModelType.CLASSIFICATION,
        "status": ModelStatus.TRAINING,
        "accuracy": 87.8,
        "last_trained": "6 hours ago",
        "description": "Identifies customers likely to churn within next 30 days",
        "features": ["Usage patterns", "Support tickets", "Payment history"],
        "performance": {"precision": 85.2, "recall": 88.1, "f1_score": 86.6, "auc": 0.89},
        "version": "1.3.0",
        "created_at": "2024-01-10T09:00:00Z",
        "updated_at": "2024-01-20T08:00:00Z",
        "training_data_size": 25000,
        "training_duration": 90,
        "tags": ["churn", "classification", "customer"],
        "created_by": "user2",
        "is_public": False,
    },
    {
        "id": "3",
        "name": "Demand Forecasting Engine",
        "type": ModelType.TIME_SERIES,
        "status": ModelStatus.ACTIVE,
        "accuracy": 91.5,
        "last_trained": "1 week ago",
        "description": "Forecasts product demand for inventory optimization",
        "features": ["Historical sales", "Seasonality", "External factors"],
        "performance": {"precision": 90.3, "recall": 92.1, "f1_score": 91.2, "mse": 0.12, "mae": 0.06},
        "version": "3.0.0",
        "created_at": "2024-01-05T11:00:00Z",
        "updated_at": "2024-01-15T16:45:00Z",
        "training_data_size": 100000,
        "training_duration": 180,
        "deployment_endpoint": f"{ENDPOINT_BASE}/demand-forecasting",
        "tags": ["forecasting", "inventory", "time-series"],
        "created_by": "user1",
        "is_public": True,
    },
    {
        "id": "4",
        "name": "Anomaly Detection System",
        "type": ModelType.UNSUPERVISED,
        "status": ModelStatus.ACTIVE,
        "accuracy": 89.3,
        "last_trained": "3 days ago",
        "description": "Detects unusual patterns in user behavior and system metrics",
        "features": ["Behavioral patterns", "System metrics", "Transaction data"],
        "performance": {"precision": 88.7, "recall": 87.9, "f1_score": 88.3},
        "version": "1.5.0",
        "created_at": "2024-01-12T14:00:00Z",
        "updated_at": "2024-01-17T10:20:00Z",
        "training_data_size": 75000,
        "training_duration": 150,
        "deployment_endpoint": f"{ENDPOINT_BASE}/anomaly-detection",
        "tags": ["anomaly", "detection", "security"],
        "created_by": "user3",
        "is_public": False,
    },
]


def endpoint_slug(name: str) -> str:
    """Deployment path segment for a model name."""
    return re.sub(r"\s+", "-", name.lower())


class MLModelService(ModelCatalog):
    """In-memory model catalog.

    Args:
        config: Latency, seed and training settings; defaults to the
            process configuration.
        models: Initial catalog; defaults to the four seed models.

    Example:
        >>> service = MLModelService(ServiceConfig(simulate_latency=False, random_seed=7))
        >>> models = await service.get_models()
        >>> len(models)
        4
    """

    def __init__(
        self,
        config: ServiceConfig | None = None,
        *,
        models: list[MLModel] | None = None,
    ) -> None:
        self.config = config or get_config().services
        self._rng = np.random.default_rng(self.config.random_seed)
        if models is None:
            models = [MLModel.model_validate(seed) for seed in SEED_MODELS]
        self._models: dict[str, MLModel] = {m.id: m.model_copy(deep=True) for m in models}
        numeric_ids = [int(model_id) for model_id in self._models if model_id.isdigit()]
        self._next_id = itertools.count(max(numeric_ids, default=0) + 1)
        self._training: dict[str, asyncio.Task[None]] = {}

    async def _delay(self, operation: str) -> None:
        delay = self.config.delay_seconds(LATENCY_MS[operation])
        if delay > 0:
            await asyncio.sleep(delay)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_models(self) -> list[MLModel]:
        await self._delay("get_models")
        return [m.model_copy(deep=True) for m in self._models.values()]

    async def get_model_by_id(self, model_id: str) -> MLModel | None:
        await self._delay("get_model_by_id")
        model = self._models.get(model_id)
        return model.model_copy(deep=True) if model is not None else None

    async def search_models(self, query: str) -> list[MLModel]:
        await self._delay("search_models")
        return [m.model_copy(deep=True) for m in self._models.values() if m.matches(query)]

    async def get_model_metrics(self, model_id: str, days: int = 7) -> list[ModelMetrics]:
        """Daily metrics, oldest first, ending today."""
        await self._delay("get_model_metrics")
        now = utc_now()
        return [
            ModelMetrics(
                model_id=model_id,
                timestamp=now - timedelta(days=offset),
                accuracy=float(self._rng.uniform(85, 95)),
                loss=float(self._rng.uniform(0.1, 0.6)),
                precision=float(self._rng.uniform(85, 95)),
                recall=float(self._rng.uniform(85, 95)),
                f1_score=float(self._rng.uniform(85, 95)),
                training_time=float(self._rng.uniform(50, 150)),
                inference_time=float(self._rng.uniform(5, 15)),
            )
            for offset in range(days - 1, -1, -1)
        ]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def create_model(self, request: CreateModelRequest) -> MLModel:
        await self._delay("create_model")
        now = utc_now()
        model = MLModel(
            id=str(next(self._next_id)),
            name=request.name,
            type=request.type,
            status=ModelStatus.TRAINING,
            last_trained="Just now",
            description=request.description,
            features=list(request.features),
            performance=ModelPerformance(),
            created_at=now,
            updated_at=now,
            tags=list(request.tags),
            is_public=request.is_public,
        )
        self._models[model.id] = model
        logger.info(f"Created model {model.id} ({model.name})")
        return model.model_copy(deep=True)

    async def update_model(self, model_id: str, request: UpdateModelRequest) -> MLModel | None:
        await self._delay("update_model")
        model = self._models.get(model_id)
        if model is None:
            return None
        updated = model.model_copy(update={**request.changes(), "updated_at": utc_now()}, deep=True)
        self._models[model_id] = updated
        return updated.model_copy(deep=True)

    async def delete_model(self, model_id: str) -> bool:
        await self._delay("delete_model")
        if self._models.pop(model_id, None) is None:
            return False
        task = self._training.pop(model_id, None)
        if task is not None:
            task.cancel()
        return True

    async def start_training(self, request: ModelTrainingRequest) -> bool:
        """Put a model into Training; it becomes Active in the background."""
        await self._delay("start_training")
        model = self._models.get(request.model_id)
        if model is None:
            return False
        model.status = ModelStatus.TRAINING
        model.updated_at = utc_now()

        previous = self._training.pop(model.id, None)
        if previous is not None:
            previous.cancel()
        task = asyncio.get_running_loop().create_task(self._finish_training(model.id))
        self._training[model.id] = task
        task.add_done_callback(lambda t, model_id=model.id: self._training_done(model_id, t))
        return True

    async def _finish_training(self, model_id: str) -> None:
        await asyncio.sleep(self.config.training_duration_seconds)
        model = self._models.get(model_id)
        if model is None:
            return
        model.status = ModelStatus.ACTIVE
        model.accuracy = float(self._rng.uniform(80, 100))
        model.last_trained = "Just now"
        model.updated_at = utc_now()
        log_event(
            logger,
            logging.INFO,
            EventType.TRAINING_COMPLETE,
            model_id,
            "training finished",
            accuracy=f"{model.accuracy:.1f}",
        )

    def _training_done(self, model_id: str, task: asyncio.Task[None]) -> None:
        if self._training.get(model_id) is task:
            del self._training[model_id]

    @property
    def training_in_progress(self) -> list[str]:
        return list(self._training)

    async def wait_for_training(self) -> None:
        """Wait until every background training run has finished."""
        while self._training:
            await asyncio.gather(*self._training.values(), return_exceptions=True)

    async def close(self) -> None:
        """Cancel background training runs."""
        tasks = list(self._training.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._training.clear()

    async def toggle_model_status(self, model_id: str) -> bool:
        """Active <-> Paused; other statuses are left as they are."""
        await self._delay("toggle_model_status")
        model = self._models.get(model_id)
        if model is None:
            return False
        if model.status is ModelStatus.ACTIVE:
            model.status = ModelStatus.PAUSED
        elif model.status is ModelStatus.PAUSED:
            model.status = ModelStatus.ACTIVE
        model.updated_at = utc_now()
        return True

    async def deploy_model(self, model_id: str) -> ModelDeployment | None:
        await self._delay("deploy_model")
        model = self._models.get(model_id)
        if model is None:
            return None
        deployment = ModelDeployment(
            id=f"deploy-{uuid.uuid4().hex[:12]}",
            model_id=model_id,
            endpoint=f"{ENDPOINT_BASE}/{endpoint_slug(model.name)}",
        )
        model.deployment_endpoint = deployment.endpoint
        model.status = ModelStatus.DEPLOYED
        model.updated_at = utc_now()
        return deployment

    # -------------------------------------------------------------------------
    # Predictions
    # -------------------------------------------------------------------------

    async def make_prediction(self, request: ModelPredictionRequest) -> ModelPrediction:
        """Simulated inference; output shape depends on the model type.

        A missing model, or one that is neither Active nor Deployed, yields an
        error prediction rather than an exception.
        """
        await self._delay("make_prediction")
        prediction_id = f"pred-{uuid.uuid4().hex[:12]}"
        model = self._models.get(request.model_id)
        if model is None or not model.status.serves_predictions:
            return ModelPrediction(
                id=prediction_id,
                model_id=request.model_id,
                input=request.input,
                status=PredictionStatus.ERROR,
                error="Model is not available for predictions",
            )

        output, confidence = self._simulate_output(model.type)
        return ModelPrediction(
            id=prediction_id,
            model_id=request.model_id,
            input=request.input,
            output=output,
            confidence=confidence,
        )

    def _uniform(self, low: float, high: float) -> float:
        return float(self._rng.uniform(low, high))

    def _simulate_output(self, model_type: ModelType) -> tuple[dict[str, Any], float]:
        rng = self._rng
        if model_type is ModelType.REGRESSION:
            value = self._uniform(100, 1100)
            output = {
                "prediction": value,
                "range": {"min": value * 0.8, "max": value * 1.2},
                "units": "units",
            }
            return output, self._uniform(0.8, 1.0)

        if model_type is ModelType.CLASSIFICATION:
            classes = ["Class A", "Class B", "Class C", "Class D"]
            predicted = str(rng.choice(classes))
            probabilities = {
                cls: self._uniform(0.6, 1.0) if cls == predicted else self._uniform(0, 0.3) for cls in classes
            }
            output = {"prediction": predicted, "probabilities": probabilities, "topClass": predicted}
            return output, self._uniform(0.7, 1.0)

        if model_type is ModelType.TIME_SERIES:
            base = self._uniform(50, 150)
            trend = 1 if rng.random() > 0.5 else -1
            today = date.today()
            forecast = [
                {
                    "date": (today + timedelta(days=step)).isoformat(),
                    "value": base + step * trend * self._uniform(0, 10),
                }
                for step in range(1, 8)
            ]
            output = {
                "prediction": base,
                "forecast": forecast,
                "trend": "increasing" if trend > 0 else "decreasing",
            }
            return output, self._uniform(0.75, 1.0)

        if model_type is ModelType.UNSUPERVISED:
            is_anomaly = bool(rng.random() > 0.8)
            output = {
                "prediction": "anomaly" if is_anomaly else "normal",
                "anomalyScore": float(rng.random()),
                "isAnomaly": is_anomaly,
                "explanation": "Unusual pattern detected" if is_anomaly else "Normal pattern",
            }
            return output, self._uniform(0.8, 1.0)

        if model_type is ModelType.NLP:
            sentiment = str(rng.choice(["positive", "negative", "neutral"]))
            keywords = ["keyword1", "keyword2", "keyword3"][: int(rng.integers(1, 4))]
            output = {
                "prediction": sentiment,
                "sentiment": sentiment,
                "confidence": self._uniform(0.7, 1.0),
                "keywords": keywords,
            }
            return output, self._uniform(0.7, 1.0)

        if model_type is ModelType.COMPUTER_VISION:
            detected = ["person", "car", "building", "tree", "dog"][: int(rng.integers(1, 4))]
            output = {
                "prediction": detected,
                "objects": [
                    {
                        "name": name,
                        "confidence": self._uniform(0.7, 1.0),
                        "bbox": {
                            "x": self._uniform(0, 100),
                            "y": self._uniform(0, 100),
                            "width": self._uniform(10, 60),
                            "height": self._uniform(10, 60),
                        },
                    }
                    for name in detected
                ],
                "imageAnalysis": {
                    "brightness": float(rng.random()),
                    "contrast": float(rng.random()),
                    "sharpness": float(rng.random()),
                },
            }
            return output, self._uniform(0.8, 1.0)

        output = {"prediction": self._uniform(0, 100), "confidence": self._uniform(0.7, 1.0)}
        return output, self._uniform(0.7, 1.0)
