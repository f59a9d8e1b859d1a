"""
HTTP JSON client for a real dashboard API.

Provides network-backed fetchers and mutation functions for the query
cache, with connection pooling, urllib3 retries on transient status codes
and a circuit breaker. Calls run on a worker thread via
``asyncio.to_thread`` so the event loop stays free while requests block.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from types import TracebackType
from typing import Any, TypeVar

import requests
import urllib3
from pydantic import TypeAdapter, ValidationError

from dashboard_query.core.config import HttpConfig, get_config
from dashboard_query.core.exceptions import CircuitBreakerOpenError, HttpRequestError
from dashboard_query.core.logging import EventType, get_logger, log_event
from dashboard_query.core.protocols import Fetcher, ModelCatalog
from dashboard_query.services.models import (
    CreateModelRequest,
    MLModel,
    ModelDeployment,
    ModelMetrics,
    ModelPrediction,
    ModelPredictionRequest,
    ModelTrainingRequest,
    UpdateModelRequest,
)

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class CircuitBreakerState:
    """Consecutive-failure counter that rejects calls for a cool-down period.

    After ``threshold`` failures in a row the circuit is open for
    ``timeout_seconds``; the next call after that is let through as a
    trial request ("half-open") and its outcome closes or re-opens the circuit.
    """

    failure_count: int = 0
    last_failure_time: float | None = None  # time.monotonic()
    threshold: int = 5
    timeout_seconds: int = 60

    def record_success(self) -> None:
        self.failure_count = 0
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.monotonic()

    def _elapsed(self) -> float | None:
        if self.failure_count < self.threshold or self.last_failure_time is None:
            return None
        return time.monotonic() - self.last_failure_time

    def is_open(self) -> bool:
        elapsed = self._elapsed()
        return elapsed is not None and elapsed < self.timeout_seconds

    @property
    def state(self) -> str:
        elapsed = self._elapsed()
        if elapsed is None:
            return "closed"
        return "open" if elapsed < self.timeout_seconds else "half-open"

    def time_until_reset(self) -> float | None:
        """Seconds until a trial request is allowed, None unless open."""
        elapsed = self._elapsed()
        if elapsed is None or elapsed >= self.timeout_seconds:
            return None
        return self.timeout_seconds - elapsed


class HttpJsonClient:
    """JSON-over-HTTP client usable as a source of cache fetchers.

    Example:
        >>> api = HttpJsonClient(HttpConfig(base_url="https://dashboard.example.com/api"))
        >>> models = await client.query(
        ...     ["mlModels", "list", {"filters": {}}],
        ...     api.fetcher("/models", parse=TypeAdapter(list[MLModel]).validate_python),
        ... )
    """

    def __init__(
        self,
        config: HttpConfig | None = None,
        *,
        session: requests.Session | None = None,
    ) -> None:
        self._config = config or get_config().http
        self._base_url = self._config.base_url.rstrip("/")
        self._session = session or self._create_session()
        self._circuit_breaker = CircuitBreakerState(
            threshold=self._config.circuit_breaker_threshold,
            timeout_seconds=self._config.circuit_breaker_timeout_seconds,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    def _create_session(self) -> requests.Session:
        """Create a configured requests session with connection pooling."""
        session = requests.Session()
        session.headers.update({"Accept": "application/json"})

        adapter = requests.adapters.HTTPAdapter(
            pool_connections=self._config.pool_connections,
            pool_maxsize=self._config.pool_maxsize,
            max_retries=urllib3.util.retry.Retry(
                total=self._config.max_retries,
                backoff_factor=self._config.retry_backoff_factor,
                status_forcelist=list(self._config.retry_status_forcelist),
                raise_on_status=False,
            ),
            pool_block=False,
        )

        session.mount("http://", adapter)
        session.mount("https://", adapter)

        return session

    def is_circuit_open(self) -> bool:
        """Check if circuit breaker is open."""
        return self._circuit_breaker.is_open()

    def url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    # -------------------------------------------------------------------------
    # Blocking request
    # -------------------------------------------------------------------------

    def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """Perform one request and decode the JSON body (blocking).

        Returns:
            Decoded JSON, or None for an empty body (e.g. 204).

        Raises:
            CircuitBreakerOpenError: If too many recent requests failed.
            HttpRequestError: On transport errors, non-2xx statuses and
                undecodable bodies.
        """
        if self.is_circuit_open():
            raise CircuitBreakerOpenError(
                "dashboard API",
                failures=self._circuit_breaker.failure_count,
                timeout_remaining=self._circuit_breaker.time_until_reset(),
            )

        endpoint = f"{method.upper()} {path}"
        try:
            response = self._session.request(
                method.upper(),
                self.url(path),
                params=dict(params) if params else None,
                json=json,
                timeout=self._config.timeout_seconds,
            )
        except requests.exceptions.Timeout as e:
            self._record_failure(endpoint)
            raise HttpRequestError(
                endpoint, reason=f"timed out after {self._config.timeout_seconds}s", cause=e
            ) from e
        except requests.RequestException as e:
            self._record_failure(endpoint)
            raise HttpRequestError(endpoint, reason=str(e), cause=e) from e

        if response.status_code >= 500:
            self._record_failure(endpoint)
        if not response.ok:
            raise HttpRequestError(endpoint, status_code=response.status_code, reason=response.reason)

        self._circuit_breaker.record_success()
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise HttpRequestError(
                endpoint, status_code=response.status_code, reason="invalid JSON body", cause=e
            ) from e

    def _record_failure(self, endpoint: str) -> None:
        was_open = self._circuit_breaker.is_open()
        self._circuit_breaker.record_failure()
        if not was_open and self._circuit_breaker.is_open():
            log_event(
                logger,
                logging.WARNING,
                EventType.CIRCUIT_BREAKER,
                endpoint,
                "circuit opened",
                failures=self._circuit_breaker.failure_count,
            )

    # -------------------------------------------------------------------------
    # Async API
    # -------------------------------------------------------------------------

    async def get_json(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        return await asyncio.to_thread(self.request, "GET", path, params=params)

    async def post_json(self, path: str, body: Any = None) -> Any:
        return await asyncio.to_thread(self.request, "POST", path, json=body)

    async def patch_json(self, path: str, body: Any = None) -> Any:
        return await asyncio.to_thread(self.request, "PATCH", path, json=body)

    async def put_json(self, path: str, body: Any = None) -> Any:
        return await asyncio.to_thread(self.request, "PUT", path, json=body)

    async def delete(self, path: str) -> Any:
        return await asyncio.to_thread(self.request, "DELETE", path)

    def fetcher(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        *,
        parse: Callable[[Any], T] | None = None,
    ) -> Fetcher[T]:
        """Zero-argument async fetcher for ``GET path`` usable with ``query``.

        Args:
            path: API path relative to the base URL.
            params: Query string parameters.
            parse: Converts the decoded JSON (e.g. a pydantic validator).
        """
        frozen_params = dict(params) if params else None

        async def fetch() -> T:
            payload = await self.get_json(path, frozen_params)
            return parse(payload) if parse is not None else payload

        fetch.__qualname__ = f"GET {path}"
        return fetch

    def close(self) -> None:
        """Close the session and clean up resources."""
        self._session.close()

    def __enter__(self) -> HttpJsonClient:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()


# =============================================================================
# Network-backed model catalog
# =============================================================================

_MODEL_LIST = TypeAdapter(list[MLModel])
_METRICS_LIST = TypeAdapter(list[ModelMetrics])


class HttpModelCatalog(ModelCatalog):
    """ModelCatalog served by a REST API under ``/models``.

    404 responses map to the catalog's "unknown model" results (None or
    False); every other failure propagates as HttpRequestError.
    """

    def __init__(self, api: HttpJsonClient) -> None:
        self.api = api

    @staticmethod
    def _parse(adapter: Callable[[Any], T], payload: Any, endpoint: str) -> T:
        try:
            return adapter(payload)
        except ValidationError as e:
            raise HttpRequestError(endpoint, reason="unexpected response shape", cause=e) from e

    async def _optional(self, call: Awaitable[Any]) -> Any:
        try:
            return await call
        except HttpRequestError as e:
            if e.status_code == 404:
                return None
            raise

    async def get_models(self) -> list[MLModel]:
        payload = await self.api.get_json("/models")
        return self._parse(_MODEL_LIST.validate_python, payload, "GET /models")

    async def get_model_by_id(self, model_id: str) -> MLModel | None:
        payload = await self._optional(self.api.get_json(f"/models/{model_id}"))
        if payload is None:
            return None
        return self._parse(MLModel.model_validate, payload, f"GET /models/{model_id}")

    async def create_model(self, request: CreateModelRequest) -> MLModel:
        payload = await self.api.post_json("/models", request.to_api())
        return self._parse(MLModel.model_validate, payload, "POST /models")

    async def update_model(self, model_id: str, request: UpdateModelRequest) -> MLModel | None:
        payload = await self._optional(self.api.patch_json(f"/models/{model_id}", request.to_api()))
        if payload is None:
            return None
        return self._parse(MLModel.model_validate, payload, f"PATCH /models/{model_id}")

    async def delete_model(self, model_id: str) -> bool:
        try:
            await self.api.delete(f"/models/{model_id}")
        except HttpRequestError as e:
            if e.status_code == 404:
                return False
            raise
        return True

    async def start_training(self, request: ModelTrainingRequest) -> bool:
        try:
            await self.api.post_json(f"/models/{request.model_id}/train", request.to_api())
        except HttpRequestError as e:
            if e.status_code == 404:
                return False
            raise
        return True

    async def toggle_model_status(self, model_id: str) -> bool:
        try:
            await self.api.post_json(f"/models/{model_id}/toggle")
        except HttpRequestError as e:
            if e.status_code == 404:
                return False
            raise
        return True

    async def deploy_model(self, model_id: str) -> ModelDeployment | None:
        payload = await self._optional(self.api.post_json(f"/models/{model_id}/deploy"))
        if payload is None:
            return None
        return self._parse(ModelDeployment.model_validate, payload, f"POST /models/{model_id}/deploy")

    async def make_prediction(self, request: ModelPredictionRequest) -> ModelPrediction:
        endpoint = f"/models/{request.model_id}/predict"
        payload = await self.api.post_json(endpoint, request.to_api())
        return self._parse(ModelPrediction.model_validate, payload, f"POST {endpoint}")

    async def get_model_metrics(self, model_id: str, days: int = 7) -> list[ModelMetrics]:
        endpoint = f"/models/{model_id}/metrics"
        payload = await self.api.get_json(endpoint, {"days": days})
        return self._parse(_METRICS_LIST.validate_python, payload, f"GET {endpoint}")

    async def search_models(self, query: str) -> list[MLModel]:
        payload = await self.api.get_json("/models/search", {"q": query})
        return self._parse(_MODEL_LIST.validate_python, payload, "GET /models/search")
