"""Base connector contract every external source plugin implements."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import datetime, timezone
from threading import Lock
from typing import TYPE_CHECKING, ClassVar, TypeAlias

from ..models.connector_config import ConnectorConfig
from ..schemas.knowledge import (
    ConnectorMetrics,
    ItemFailure,
    KnowledgeItem,
    RateLimitStatus,
    SyncCheckpoint,
)
from ..schemas.sync import SyncContext

if TYPE_CHECKING:
    from ..services.credential_vault import CredentialVault

FetchedRecord: TypeAlias = KnowledgeItem | ItemFailure | SyncCheckpoint
KnowledgeSink: TypeAlias = Callable[[KnowledgeItem, ConnectorConfig], Awaitable[None]]


class ConnectorStatsTracker:
    """Thread-safe running totals of items a connector instance has handled."""

    def __init__(self, connector_type: str) -> None:
        self._connector_type = connector_type
        self._processed = 0
        self._failed = 0
        self._last_updated: datetime | None = None
        self._lock = Lock()

    def record_processed(self, count: int = 1) -> None:
        with self._lock:
            self._processed += count
            self._last_updated = datetime.now(timezone.utc)

    def record_failed(self, count: int = 1) -> None:
        with self._lock:
            self._failed += count
            self._last_updated = datetime.now(timezone.utc)

    def snapshot(self) -> ConnectorMetrics:
        with self._lock:
            return ConnectorMetrics(
                connector_type=self._connector_type,
                processed_total=self._processed,
                failed_total=self._failed,
                last_updated=self._last_updated,
            )


class DataConnector(ABC):
    """
    Abstract base class for all source connectors.

    Subclasses declare ``connector_type`` and implement the four primitives:
    config validation, record fetching, connection testing and rate-limit
    reporting. Job bookkeeping is handled by :class:`~.runner.SyncRunner`, which
    wraps any connector.
    """

    connector_type: ClassVar[str]

    def __init__(self, credentials: CredentialVault | None = None) -> None:
        self.credentials = credentials
        self.stats = ConnectorStatsTracker(self.get_type())

    def get_type(self) -> str:
        """Return the stable registry key for this connector."""

        return self.connector_type

    @abstractmethod
    def validate_config(self, config: ConnectorConfig) -> None:
        """
        Check that the configuration carries everything the connector needs.

        Raises:
            ConfigurationError: If required fields are missing or invalid
        """

    @abstractmethod
    def fetch_data(self, config: ConnectorConfig, context: SyncContext) -> AsyncIterator[FetchedRecord]:
        """
        Produce a fresh, finite stream of records for ``context``.

        Implementations are async generators. Per-record conversion problems
        are yielded as :class:`ItemFailure`; raising ends the sync as FAILED.
        A :class:`SyncCheckpoint` advances the resume cursor.
        """

    @abstractmethod
    async def test_connection(self, config: ConnectorConfig) -> bool:
        """Return True when the source is reachable with the stored credentials. Never raises."""

    @abstractmethod
    async def get_rate_limit_status(self, config: ConnectorConfig) -> RateLimitStatus:
        """Return the current rate-limit budget reported by the source."""

    async def get_metrics(self, config: ConnectorConfig) -> ConnectorMetrics:
        """Return processed/failed totals for this connector instance."""

        return self.stats.snapshot()
