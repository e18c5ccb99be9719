"""SQLAlchemy model for ingestion jobs and their lifecycle transitions."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..exceptions import InvalidJobTransitionError
from ..schemas.jobs import JobStatus, JobType
from .base import Base, UTCDateTime, utcnow


class IngestionJob(Base):
    """Database representation of a single sync attempt.

    Status moves PENDING -> RUNNING -> COMPLETED | FAILED | CANCELLED. A job may
    also be cancelled while still PENDING. Terminal states are final.
    """

    __tablename__ = "ingestion_jobs"
    __table_args__ = (
        Index("ix_ingestion_jobs_status_started_at", "status", "started_at"),
        Index("ix_ingestion_jobs_config_started_at", "connector_config_id", "started_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    connector_config_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("connector_configs.id", ondelete="CASCADE"), nullable=False
    )
    job_type: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    items_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    items_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_sync_cursor: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    job_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    def __init__(self, **kwargs: Any) -> None:
        kwargs.setdefault("id", uuid.uuid4())
        kwargs.setdefault("status", JobStatus.PENDING.value)
        kwargs.setdefault("items_processed", 0)
        kwargs.setdefault("items_failed", 0)
        kwargs.setdefault("job_metadata", {})
        kwargs.setdefault("created_at", utcnow())
        job_type = kwargs.get("job_type")
        if isinstance(job_type, JobType):
            kwargs["job_type"] = job_type.value
        super().__init__(**kwargs)

    @property
    def job_status(self) -> JobStatus:
        return JobStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.job_status.is_terminal

    @property
    def is_running(self) -> bool:
        return self.job_status is JobStatus.RUNNING

    def _transition(self, target: JobStatus, allowed_from: tuple[JobStatus, ...]) -> None:
        if self.job_status not in allowed_from:
            raise InvalidJobTransitionError(self.id, self.status, target.value)
        self.status = target.value

    def start(self, now: datetime | None = None) -> None:
        self._transition(JobStatus.RUNNING, (JobStatus.PENDING,))
        self.started_at = now or utcnow()

    def record_processed(self, count: int = 1) -> None:
        if not self.is_running:
            raise InvalidJobTransitionError(self.id, self.status, "record_processed")
        self.items_processed += max(count, 0)

    def record_failed(self, count: int = 1) -> None:
        if not self.is_running:
            raise InvalidJobTransitionError(self.id, self.status, "record_failed")
        self.items_failed += max(count, 0)

    def complete(self, cursor: str | None = None, now: datetime | None = None) -> None:
        self._transition(JobStatus.COMPLETED, (JobStatus.RUNNING,))
        self.completed_at = now or utcnow()
        if cursor is not None:
            self.last_sync_cursor = cursor

    def fail(self, message: str, now: datetime | None = None) -> None:
        self._transition(JobStatus.FAILED, (JobStatus.PENDING, JobStatus.RUNNING))
        self.completed_at = now or utcnow()
        self.error_message = message

    def cancel(self, reason: str | None = None, now: datetime | None = None) -> None:
        self._transition(JobStatus.CANCELLED, (JobStatus.PENDING, JobStatus.RUNNING))
        self.completed_at = now or utcnow()
        if reason:
            self.error_message = reason

    @property
    def duration(self) -> timedelta | None:
        if self.started_at is None:
            return None
        end = self.completed_at or utcnow()
        return end - self.started_at

    @property
    def total_items(self) -> int:
        return (self.items_processed or 0) + (self.items_failed or 0)

    @property
    def success_rate(self) -> float:
        total = self.total_items
        return (self.items_processed or 0) / total if total else 0.0

    def __repr__(self) -> str:
        """Return a developer-friendly string representation."""

        return (
            f"<IngestionJob id={self.id} config={self.connector_config_id} "
            f"type={self.job_type} status={self.status}>"
        )
