"""SQLAlchemy model for per-connector configuration and sync state."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import JSON, Boolean, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UTCDateTime, utcnow

HEALTHY_ERROR_THRESHOLD = 3
DEFAULT_POLLING_INTERVAL_MINUTES = 30


class ConnectorConfig(Base):
    """Configuration and persisted sync state for one (connector_type, name) pair."""

    __tablename__ = "connector_configs"
    __table_args__ = (
        UniqueConstraint("connector_type", "name", name="uq_connector_configs_type_name"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    connector_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    configuration: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    polling_interval_minutes: Mapped[int] = mapped_column(
        Integer, nullable=False, default=DEFAULT_POLLING_INTERVAL_MINUTES
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    last_sync_time: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_sync_cursor: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_successful_sync: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    consecutive_error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_error_time: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    @property
    def full_name(self) -> str:
        return f"{self.connector_type}/{self.name}"

    @property
    def is_healthy(self) -> bool:
        return (self.consecutive_error_count or 0) <= HEALTHY_ERROR_THRESHOLD

    @property
    def next_scheduled_sync(self) -> datetime | None:
        """When the config next becomes due; ``None`` means it has never synced."""

        if self.last_sync_time is None:
            return None
        return self.last_sync_time + timedelta(minutes=self.polling_interval_minutes)

    def is_due(self, now: datetime) -> bool:
        next_sync = self.next_scheduled_sync
        return next_sync is None or now >= next_sync

    def record_sync_success(self, sync_time: datetime, cursor: str | None) -> None:
        self.last_sync_time = sync_time
        self.last_successful_sync = sync_time
        if cursor is not None:
            self.last_sync_cursor = cursor
        self.consecutive_error_count = 0
        self.last_error_message = None
        self.last_error_time = None

    def record_sync_error(self, message: str, error_time: datetime) -> None:
        self.consecutive_error_count = (self.consecutive_error_count or 0) + 1
        self.last_error_message = message
        self.last_error_time = error_time

    def __repr__(self) -> str:
        """Return a developer-friendly string representation."""

        return (
            f"<ConnectorConfig id={self.id} connector={self.full_name} "
            f"enabled={self.enabled}>"
        )
