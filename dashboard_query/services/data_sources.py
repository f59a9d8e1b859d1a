"""
In-memory data source service with simulated latency.
"""

from __future__ import annotations

import asyncio
import itertools
import re
from typing import Any, Final

import numpy as np

from dashboard_query.core.config import ServiceConfig, get_config
from dashboard_query.core.exceptions import NotFoundError
from dashboard_query.core.logging import get_logger
from dashboard_query.core.protocols import DataSourceCatalog
from dashboard_query.services.models import (
    ConnectionTestResult,
    CreateDataSourceData,
    DataSource,
    DataSourceHealth,
    DataSourceStats,
    DataSourceStatus,
    SyncAllResult,
    SyncResult,
    utc_now,
)

logger = get_logger(__name__)

LATENCY_MS: Final[dict[str, int]] = {
    "get_all": 300,
    "get_by_id": 200,
    "create": 500,
    "update": 500,
    "delete": 300,
    "test_connection": 1000,
    "sync": 2000,
    "sync_all": 3000,
    "get_stats": 200,
}

CONNECTION_SUCCESS_RATE: Final[float] = 0.8
SYNC_SUCCESS_RATE: Final[float] = 0.9

_RECORD_SUFFIXES: Final[dict[str, int]] = {"": 1, "K": 1_000, "M": 1_000_000}
_RECORDS_PATTERN = re.compile(r"^\s*([0-9]*\.?[0-9]+)\s*([KM]?)\s*$", re.IGNORECASE)

SEED_DATA_SOURCES: Final[list[dict[str, Any]]] = [
    {
        "id": 1,
        "name": "PostgreSQL Database",
        "type": "Database",
        "status": DataSourceStatus.CONNECTED,
        "last_sync": "2 minutes ago",
        "records": "2.4M",
        "description": "Primary application database with user and transaction data",
        "health": DataSourceHealth.HEALTHY,
        "host": "localhost",
        "port": "5432",
        "database": "app_db",
        "username": "postgres",
        "sync_interval": "30",
        "auto_sync": True,
        "ssl_enabled": True,
        "created_at": "2024-01-15T10:00:00Z",
        "updated_at": "2024-01-15T10:00:00Z",
    },
    {
        "id": 2,
        "name": "Google Analytics",
        "type": "Analytics",
        "status": DataSourceStatus.CONNECTED,
        "last_sync": "5 minutes ago",
        "records": "847K",
        "description": "Website traffic and user behavior analytics",
        "health": DataSourceHealth.HEALTHY,
        "api_url": "https://analytics.google.com",
        "sync_interval": "60",
        "auto_sync": True,
        "created_at": "2024-01-10T14:30:00Z",
        "updated_at": "2024-01-10T14:30:00Z",
    },
    {
        "id": 3,
        "name": "Stripe Payments",
        "type": "API",
        "status": DataSourceStatus.CONNECTED,
        "last_sync": "1 hour ago",
        "records": "156K",
        "description": "Payment processing and transaction data",
        "health": DataSourceHealth.WARNING,
        "api_url": "https://api.stripe.com",
        "sync_interval": "240",
        "auto_sync": True,
        "created_at": "2024-01-08T09:15:00Z",
        "updated_at": "2024-01-08T09:15:00Z",
    },
    {
        "id": 4,
        "name": "Salesforce CRM",
        "type": "CRM",
        "status": DataSourceStatus.SYNCING,
        "last_sync": "30 minutes ago",
        "records": "89K",
        "description": "Customer relationship management data",
        "health": DataSourceHealth.HEALTHY,
        "api_url": "https://api.salesforce.com",
        "sync_interval": "60",
        "auto_sync": True,
        "created_at": "2024-01-05T16:45:00Z",
        "updated_at": "2024-01-05T16:45:00Z",
    },
    {
        "id": 5,
        "name": "AWS CloudWatch",
        "type": "Monitoring",
        "status": DataSourceStatus.CONNECTED,
        "last_sync": "3 minutes ago",
        "records": "1.2M",
        "description": "Infrastructure monitoring and log data",
        "health": DataSourceHealth.HEALTHY,
        "api_url": "https://monitoring.amazonaws.com",
        "sync_interval": "15",
        "auto_sync": True,
        "created_at": "2024-01-12T11:20:00Z",
        "updated_at": "2024-01-12T11:20:00Z",
    },
    {
        "id": 6,
        "name": "Slack Workspace",
        "type": "Communication",
        "status": DataSourceStatus.ERROR,
        "last_sync": "2 days ago",
        "records": "45K",
        "description": "Team communication and activity data",
        "health": DataSourceHealth.ERROR,
        "api_url": "https://slack.com/api",
        "sync_interval": "1440",
        "auto_sync": False,
        "created_at": "2024-01-03T13:10:00Z",
        "updated_at": "2024-01-03T13:10:00Z",
    },
]


def parse_record_count(records: str) -> float:
    """Parse an abbreviated count such as ``2.4M``, ``847K`` or ``0``.

    Unparseable values count as 0.
    """
    match = _RECORDS_PATTERN.match(records)
    if match is None:
        logger.debug(f"Unparseable record count: {records!r}")
        return 0.0
    number, suffix = match.groups()
    return float(number) * _RECORD_SUFFIXES[suffix.upper()]


def format_record_count(total: float) -> str:
    """Abbreviate a count as millions (``4.7M``) or thousands (``847.0K``)."""
    if total >= 1_000_000:
        return f"{total / 1_000_000:.1f}M"
    return f"{total / 1_000:.1f}K"


class DataSourceService(DataSourceCatalog):
    """In-memory data source registry.

    Unlike the model service, ``update`` and ``delete`` raise
    ``NotFoundError`` for unknown ids, while ``test_connection`` and
    ``sync`` report it in their result.
    """

    def __init__(
        self,
        config: ServiceConfig | None = None,
        *,
        sources: list[DataSource] | None = None,
    ) -> None:
        self.config = config or get_config().services
        self._rng = np.random.default_rng(self.config.random_seed)
        if sources is None:
            sources = [DataSource.model_validate(seed) for seed in SEED_DATA_SOURCES]
        self._sources: dict[int, DataSource] = {s.id: s.model_copy(deep=True) for s in sources}
        self._next_id = itertools.count(max(self._sources, default=0) + 1)

    async def _delay(self, operation: str) -> None:
        delay = self.config.delay_seconds(LATENCY_MS[operation])
        if delay > 0:
            await asyncio.sleep(delay)

    def _require(self, source_id: int) -> DataSource:
        source = self._sources.get(source_id)
        if source is None:
            raise NotFoundError("Data source", source_id)
        return source

    async def get_all(self) -> list[DataSource]:
        await self._delay("get_all")
        return [s.model_copy(deep=True) for s in self._sources.values()]

    async def get_by_id(self, source_id: int) -> DataSource | None:
        await self._delay("get_by_id")
        source = self._sources.get(source_id)
        return source.model_copy(deep=True) if source is not None else None

    async def create(self, data: CreateDataSourceData) -> DataSource:
        await self._delay("create")
        now = utc_now()
        source = DataSource(
            id=next(self._next_id),
            name=data.name,
            type=data.type,
            status=DataSourceStatus.DISCONNECTED,
            last_sync="Never",
            records="0",
            description=data.description or "",
            health=DataSourceHealth.HEALTHY,
            host=data.host,
            port=data.port,
            database=data.database,
            username=data.username,
            password=data.password,
            api_url=data.api_url,
            api_key=data.api_key,
            sync_interval=data.sync_interval or "30",
            auto_sync=True if data.auto_sync is None else data.auto_sync,
            ssl_enabled=False if data.ssl_enabled is None else data.ssl_enabled,
            created_at=now,
            updated_at=now,
        )
        self._sources[source.id] = source
        logger.info(f"Created data source {source.id} ({source.name})")
        return source.model_copy(deep=True)

    async def update(self, source_id: int, data: CreateDataSourceData) -> DataSource:
        await self._delay("update")
        source = self._require(source_id)
        changes = data.model_dump(exclude_unset=True)
        updated = source.model_copy(update={**changes, "id": source_id, "updated_at": utc_now()}, deep=True)
        self._sources[source_id] = updated
        return updated.model_copy(deep=True)

    async def delete(self, source_id: int) -> None:
        await self._delay("delete")
        self._require(source_id)
        del self._sources[source_id]

    async def test_connection(self, source_id: int) -> ConnectionTestResult:
        await self._delay("test_connection")
        if source_id not in self._sources:
            return ConnectionTestResult(success=False, message="Data source not found")
        success = bool(self._rng.random() < CONNECTION_SUCCESS_RATE)
        message = (
            "Connection successful" if success else "Connection failed: Invalid credentials or network error"
        )
        return ConnectionTestResult(success=success, message=message)

    async def sync(self, source_id: int) -> SyncResult:
        """Pull records; success marks the source connected and healthy."""
        await self._delay("sync")
        source = self._sources.get(source_id)
        if source is None:
            return SyncResult(success=False, message="Data source not found")

        success = bool(self._rng.random() < SYNC_SUCCESS_RATE)
        records = int(self._rng.integers(1000, 11000))
        if not success:
            source.status = DataSourceStatus.ERROR
            source.health = DataSourceHealth.ERROR
            return SyncResult(success=False, message="Sync failed: Connection timeout")

        source.status = DataSourceStatus.CONNECTED
        source.last_sync = "Just now"
        source.records = format_record_count(records)
        source.health = DataSourceHealth.HEALTHY
        return SyncResult(
            success=True,
            message=f"Sync completed successfully. {records} records processed.",
            records=records,
        )

    async def sync_all(self) -> SyncAllResult:
        """Sync every source concurrently; one failure doesn't stop the rest."""
        await self._delay("sync_all")
        results = await asyncio.gather(
            *(self.sync(source_id) for source_id in list(self._sources)),
            return_exceptions=True,
        )
        succeeded = sum(1 for r in results if isinstance(r, SyncResult) and r.success)
        for result in results:
            if isinstance(result, BaseException):
                logger.warning(f"Sync raised {type(result).__name__}: {result}")
        return SyncAllResult(success=succeeded, failed=len(results) - succeeded, total=len(results))

    async def get_stats(self) -> DataSourceStats:
        await self._delay("get_stats")
        sources = list(self._sources.values())
        total_records = sum(parse_record_count(s.records) for s in sources)
        return DataSourceStats(
            total=len(sources),
            connected=sum(1 for s in sources if s.status is DataSourceStatus.CONNECTED),
            syncing=sum(1 for s in sources if s.status is DataSourceStatus.SYNCING),
            error=sum(1 for s in sources if s.status is DataSourceStatus.ERROR),
            total_records=format_record_count(total_records),
        )
