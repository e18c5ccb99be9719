"""Repository helpers for persistence models.

Repositories wrap a caller-owned :class:`~sqlalchemy.orm.Session`; transaction
boundaries are decided by the services through ``session_scope``.
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.orm import Session

from ..exceptions import InvalidJobTransitionError
from ..schemas.jobs import (
    TERMINAL_STATUSES,
    ConnectorTypeJobStats,
    HourlyPerformance,
    JobStatistics,
    JobStatus,
)
from .api_credential import ApiCredential
from .connector_config import ConnectorConfig
from .ingestion_job import IngestionJob


@dataclass(slots=True)
class ConnectorConfigCreate:
    """Value object capturing required fields to persist a connector configuration."""

    connector_type: str
    name: str
    configuration: dict[str, Any]
    enabled: bool = False
    description: str | None = None
    polling_interval_minutes: int | None = None
    created_by: str | None = None


@dataclass(slots=True)
class ConnectorTypeCount:
    connector_type: str
    total: int
    enabled: int


class ConnectorConfigRepository:
    """Data access helpers for :class:`ConnectorConfig`."""

    def __init__(self, session: Session):
        self._session = session

    def create(self, data: ConnectorConfigCreate, *, default_interval: int) -> ConnectorConfig:
        config = ConnectorConfig(
            connector_type=data.connector_type,
            name=data.name,
            configuration=dict(data.configuration),
            enabled=data.enabled,
            description=data.description,
            polling_interval_minutes=data.polling_interval_minutes or default_interval,
            created_by=data.created_by,
            consecutive_error_count=0,
        )
        self._session.add(config)
        self._session.flush()
        return config

    def get(self, config_id: uuid.UUID) -> ConnectorConfig | None:
        return self._session.get(ConnectorConfig, config_id)

    def find_by_type_and_name(self, connector_type: str, name: str) -> ConnectorConfig | None:
        stmt = select(ConnectorConfig).where(
            ConnectorConfig.connector_type == connector_type,
            ConnectorConfig.name == name,
        )
        return self._session.scalars(stmt).first()

    def list_all(self) -> list[ConnectorConfig]:
        stmt = select(ConnectorConfig).order_by(ConnectorConfig.connector_type, ConnectorConfig.name)
        return list(self._session.scalars(stmt))

    def list_enabled(self, connector_type: str | None = None) -> list[ConnectorConfig]:
        stmt = select(ConnectorConfig).where(ConnectorConfig.enabled.is_(True))
        if connector_type is not None:
            stmt = stmt.where(ConnectorConfig.connector_type == connector_type)
        stmt = stmt.order_by(ConnectorConfig.connector_type, ConnectorConfig.name)
        return list(self._session.scalars(stmt))

    def list_by_type(self, connector_type: str) -> list[ConnectorConfig]:
        stmt = (
            select(ConnectorConfig)
            .where(ConnectorConfig.connector_type == connector_type)
            .order_by(ConnectorConfig.name)
        )
        return list(self._session.scalars(stmt))

    def list_due_for_scheduled_sync(self, now: datetime) -> list[ConnectorConfig]:
        """Enabled configs that never synced or whose polling interval has elapsed."""

        stmt = (
            select(ConnectorConfig)
            .where(ConnectorConfig.enabled.is_(True))
            .order_by(ConnectorConfig.last_sync_time.is_not(None), ConnectorConfig.last_sync_time)
        )
        return [config for config in self._session.scalars(stmt) if config.is_due(now)]

    def list_failing(self) -> list[ConnectorConfig]:
        stmt = (
            select(ConnectorConfig)
            .where(ConnectorConfig.consecutive_error_count > 0)
            .order_by(ConnectorConfig.consecutive_error_count.desc())
        )
        return list(self._session.scalars(stmt))

    def count_by_type(self) -> list[ConnectorTypeCount]:
        stmt = (
            select(
                ConnectorConfig.connector_type,
                func.count(ConnectorConfig.id),
                func.sum(case((ConnectorConfig.enabled.is_(True), 1), else_=0)),
            )
            .group_by(ConnectorConfig.connector_type)
            .order_by(ConnectorConfig.connector_type)
        )
        return [
            ConnectorTypeCount(connector_type=row[0], total=int(row[1]), enabled=int(row[2] or 0))
            for row in self._session.execute(stmt)
        ]

    def delete(self, config: ConnectorConfig) -> None:
        """Remove a config together with its job history and credential records."""

        self._session.execute(
            delete(IngestionJob).where(IngestionJob.connector_config_id == config.id)
        )
        self._session.execute(
            delete(ApiCredential).where(ApiCredential.connector_config_id == config.id)
        )
        self._session.delete(config)
        self._session.flush()


class IngestionJobRepository:
    """Data access helpers for :class:`IngestionJob`."""

    def __init__(self, session: Session):
        self._session = session

    def add(self, job: IngestionJob) -> IngestionJob:
        self._session.add(job)
        self._session.flush()
        return job

    def merge(self, job: IngestionJob) -> IngestionJob:
        """
        Write ``job`` over its stored row.

        Raises:
            InvalidJobTransitionError: If the stored row is already terminal, e.g. a job
                cancelled by another process while this one was still running it.
        """
        stored_status = self._session.scalar(
            select(IngestionJob.status).where(IngestionJob.id == job.id).with_for_update()
        )
        if stored_status is not None and JobStatus(stored_status).is_terminal:
            raise InvalidJobTransitionError(job.id, stored_status, job.status)
        merged = self._session.merge(job)
        self._session.flush()
        return merged

    def get(self, job_id: uuid.UUID) -> IngestionJob | None:
        return self._session.get(IngestionJob, job_id)

    def list_by_connector(
        self, connector_config_id: uuid.UUID, limit: int | None = None
    ) -> list[IngestionJob]:
        stmt = (
            select(IngestionJob)
            .where(IngestionJob.connector_config_id == connector_config_id)
            .order_by(IngestionJob.created_at.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self._session.scalars(stmt))

    def list_running(self) -> list[IngestionJob]:
        stmt = (
            select(IngestionJob)
            .where(IngestionJob.status == JobStatus.RUNNING.value)
            .order_by(IngestionJob.started_at.asc())
        )
        return list(self._session.scalars(stmt))

    def count_running(self) -> int:
        stmt = select(func.count(IngestionJob.id)).where(
            IngestionJob.status == JobStatus.RUNNING.value
        )
        return int(self._session.scalar(stmt) or 0)

    def latest_for_connector(self, connector_config_id: uuid.UUID) -> IngestionJob | None:
        stmt = (
            select(IngestionJob)
            .where(IngestionJob.connector_config_id == connector_config_id)
            .order_by(IngestionJob.created_at.desc())
            .limit(1)
        )
        return self._session.scalars(stmt).first()

    def latest_successful_for_connector(
        self, connector_config_id: uuid.UUID
    ) -> IngestionJob | None:
        stmt = (
            select(IngestionJob)
            .where(
                IngestionJob.connector_config_id == connector_config_id,
                IngestionJob.status == JobStatus.COMPLETED.value,
            )
            .order_by(IngestionJob.completed_at.desc())
            .limit(1)
        )
        return self._session.scalars(stmt).first()

    def list_long_running(self, started_before: datetime) -> list[IngestionJob]:
        stmt = (
            select(IngestionJob)
            .where(
                IngestionJob.status == JobStatus.RUNNING.value,
                IngestionJob.started_at < started_before,
            )
            .order_by(IngestionJob.started_at.asc())
        )
        return list(self._session.scalars(stmt))

    def delete_terminal_older_than(self, threshold: datetime) -> int:
        stmt = delete(IngestionJob).where(
            IngestionJob.status.in_([status.value for status in TERMINAL_STATUSES]),
            IngestionJob.completed_at < threshold,
        )
        result = self._session.execute(stmt)
        return int(result.rowcount or 0)

    def status_counts(self) -> JobStatistics:
        stmt = select(IngestionJob.status, func.count(IngestionJob.id)).group_by(
            IngestionJob.status
        )
        counts = {row[0]: int(row[1]) for row in self._session.execute(stmt)}
        return JobStatistics(
            running=counts.get(JobStatus.RUNNING.value, 0),
            completed=counts.get(JobStatus.COMPLETED.value, 0),
            failed=counts.get(JobStatus.FAILED.value, 0),
            cancelled=counts.get(JobStatus.CANCELLED.value, 0),
            total=sum(counts.values()),
        )

    def stats_by_connector_type(self) -> list[ConnectorTypeJobStats]:
        def _count_status(status: JobStatus) -> Any:
            return func.sum(case((IngestionJob.status == status.value, 1), else_=0))

        stmt = (
            select(
                ConnectorConfig.connector_type,
                func.count(IngestionJob.id),
                _count_status(JobStatus.COMPLETED),
                _count_status(JobStatus.FAILED),
                _count_status(JobStatus.RUNNING),
                func.avg(IngestionJob.items_processed),
                func.sum(IngestionJob.items_processed),
                func.sum(IngestionJob.items_failed),
            )
            .join(ConnectorConfig, ConnectorConfig.id == IngestionJob.connector_config_id)
            .group_by(ConnectorConfig.connector_type)
            .order_by(ConnectorConfig.connector_type)
        )
        return [
            ConnectorTypeJobStats(
                connector_type=row[0],
                total_jobs=int(row[1]),
                completed_jobs=int(row[2] or 0),
                failed_jobs=int(row[3] or 0),
                running_jobs=int(row[4] or 0),
                avg_items_processed=round(float(row[5] or 0.0), 2),
                total_items_processed=int(row[6] or 0),
                total_items_failed=int(row[7] or 0),
            )
            for row in self._session.execute(stmt)
        ]

    def hourly_performance(self, since: datetime) -> list[HourlyPerformance]:
        """Aggregate finished jobs started since ``since`` into hour buckets, newest first."""

        stmt = select(IngestionJob).where(
            IngestionJob.started_at >= since,
            IngestionJob.completed_at.is_not(None),
        )
        buckets: dict[datetime, list[IngestionJob]] = defaultdict(list)
        for job in self._session.scalars(stmt):
            hour = job.started_at.replace(minute=0, second=0, microsecond=0)
            buckets[hour].append(job)

        report: list[HourlyPerformance] = []
        for hour in sorted(buckets, reverse=True):
            jobs = buckets[hour]
            durations = [job.duration or timedelta(0) for job in jobs]
            report.append(
                HourlyPerformance(
                    hour=hour,
                    job_count=len(jobs),
                    successful=sum(1 for job in jobs if job.status == JobStatus.COMPLETED.value),
                    failed=sum(1 for job in jobs if job.status == JobStatus.FAILED.value),
                    avg_items_processed=round(
                        sum(job.items_processed for job in jobs) / len(jobs), 2
                    ),
                    avg_duration_seconds=round(
                        sum(d.total_seconds() for d in durations) / len(jobs), 2
                    ),
                )
            )
        return report


class ApiCredentialRepository:
    """Data access helpers for :class:`ApiCredential`."""

    def __init__(self, session: Session):
        self._session = session

    def add(self, credential: ApiCredential) -> ApiCredential:
        self._session.add(credential)
        self._session.flush()
        return credential

    def flush(self) -> None:
        self._session.flush()

    def get(self, credential_id: uuid.UUID) -> ApiCredential | None:
        return self._session.get(ApiCredential, credential_id)

    def find_active(
        self, connector_config_id: uuid.UUID, credential_type: str
    ) -> ApiCredential | None:
        stmt = select(ApiCredential).where(
            ApiCredential.connector_config_id == connector_config_id,
            ApiCredential.credential_type == credential_type,
            ApiCredential.is_active.is_(True),
        )
        return self._session.scalars(stmt).first()

    def list_for_connector(
        self, connector_config_id: uuid.UUID, *, active_only: bool = False
    ) -> list[ApiCredential]:
        stmt = select(ApiCredential).where(
            ApiCredential.connector_config_id == connector_config_id
        )
        if active_only:
            stmt = stmt.where(ApiCredential.is_active.is_(True))
        stmt = stmt.order_by(ApiCredential.created_at.desc())
        return list(self._session.scalars(stmt))

    def count_active_for_connector(self, connector_config_id: uuid.UUID) -> int:
        stmt = select(func.count(ApiCredential.id)).where(
            ApiCredential.connector_config_id == connector_config_id,
            ApiCredential.is_active.is_(True),
        )
        return int(self._session.scalar(stmt) or 0)

    def find_expiring_between(self, start: datetime, end: datetime) -> list[ApiCredential]:
        stmt = (
            select(ApiCredential)
            .where(
                ApiCredential.is_active.is_(True),
                ApiCredential.expires_at.is_not(None),
                ApiCredential.expires_at >= start,
                ApiCredential.expires_at <= end,
            )
            .order_by(ApiCredential.expires_at.asc())
        )
        return list(self._session.scalars(stmt))

    def find_expired(self, now: datetime) -> list[ApiCredential]:
        stmt = (
            select(ApiCredential)
            .where(
                ApiCredential.is_active.is_(True),
                ApiCredential.expires_at.is_not(None),
                ApiCredential.expires_at < now,
            )
            .order_by(ApiCredential.expires_at.asc())
        )
        return list(self._session.scalars(stmt))

    def deactivate_all_for_connector(self, connector_config_id: uuid.UUID) -> int:
        stmt = (
            update(ApiCredential)
            .where(
                ApiCredential.connector_config_id == connector_config_id,
                ApiCredential.is_active.is_(True),
            )
            .values(is_active=False)
        )
        result = self._session.execute(stmt)
        return int(result.rowcount or 0)

    def list_all(self) -> list[ApiCredential]:
        stmt = select(ApiCredential).order_by(ApiCredential.credential_type)
        return list(self._session.scalars(stmt))
