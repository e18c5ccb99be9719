"""Job lifecycle tracker: persistence and reporting for ingestion jobs."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from ..exceptions import JobNotFoundError, PersistenceError
from ..models.base import session_scope, utcnow
from ..models.ingestion_job import IngestionJob
from ..models.repository import IngestionJobRepository
from ..schemas.jobs import ConnectorTypeJobStats, HourlyPerformance, JobStatistics, JobType
from ..utils.logging import setup_logger
from .base import ThreadedService

logger = setup_logger(__name__)

T = TypeVar("T")


class IngestionJobService(ThreadedService):
    """Creates, saves and queries :class:`IngestionJob` records.

    Lifecycle rules live on the model (``start``/``complete``/``fail``/``cancel``);
    this service only persists the resulting state.
    """

    async def create_job(
        self,
        connector_config_id: uuid.UUID,
        job_type: JobType,
        metadata: dict[str, Any] | None = None,
    ) -> IngestionJob:
        """
        Persist a new job in PENDING state.

        Raises:
            PersistenceError: If the job could not be stored; the sync must not start.
        """
        job = IngestionJob(
            connector_config_id=connector_config_id,
            job_type=job_type,
            job_metadata=dict(metadata or {}),
        )
        try:
            return await self._with_repository(lambda repo: repo.add(job))
        except SQLAlchemyError as exc:
            logger.error(
                "Failed to create ingestion job: %s",
                exc,
                extra={"status": "error"},
            )
            raise PersistenceError(f"Failed to create ingestion job: {exc}") from exc

    async def save_job(self, job: IngestionJob) -> IngestionJob:
        return await self._with_repository(lambda repo: repo.merge(job))

    async def get_job(self, job_id: uuid.UUID) -> IngestionJob:
        job = await self._with_repository(lambda repo: repo.get(job_id))
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def list_jobs_for_connector(
        self, connector_config_id: uuid.UUID, limit: int | None = None
    ) -> list[IngestionJob]:
        return await self._with_repository(
            lambda repo: repo.list_by_connector(connector_config_id, limit)
        )

    async def list_running_jobs(self) -> list[IngestionJob]:
        return await self._with_repository(lambda repo: repo.list_running())

    async def count_running_jobs(self) -> int:
        return await self._with_repository(lambda repo: repo.count_running())

    async def get_latest_job(self, connector_config_id: uuid.UUID) -> IngestionJob | None:
        return await self._with_repository(
            lambda repo: repo.latest_for_connector(connector_config_id)
        )

    async def get_latest_successful_job(
        self, connector_config_id: uuid.UUID
    ) -> IngestionJob | None:
        return await self._with_repository(
            lambda repo: repo.latest_successful_for_connector(connector_config_id)
        )

    async def list_long_running_jobs(
        self, threshold_minutes: int, now: datetime | None = None
    ) -> list[IngestionJob]:
        started_before = (now or utcnow()) - timedelta(minutes=threshold_minutes)
        return await self._with_repository(lambda repo: repo.list_long_running(started_before))

    async def cleanup_old_jobs(self, retention_days: int, now: datetime | None = None) -> int:
        """Delete terminal jobs completed more than ``retention_days`` ago; returns the count."""

        threshold = (now or utcnow()) - timedelta(days=retention_days)
        deleted = await self._with_repository(
            lambda repo: repo.delete_terminal_older_than(threshold)
        )
        logger.info(
            "Cleaned up %d jobs completed before %s",
            deleted,
            threshold.isoformat(),
            extra={"status": "cleanup"},
        )
        return deleted

    async def hourly_performance(
        self, since: datetime | None = None, *, hours: int = 24
    ) -> list[HourlyPerformance]:
        start = since or utcnow() - timedelta(hours=hours)
        return await self._with_repository(lambda repo: repo.hourly_performance(start))

    async def stats_by_connector_type(self) -> list[ConnectorTypeJobStats]:
        return await self._with_repository(lambda repo: repo.stats_by_connector_type())

    async def get_job_statistics(self) -> JobStatistics:
        return await self._with_repository(lambda repo: repo.status_counts())

    async def cancel_job(self, job_id: uuid.UUID, reason: str = "Cancelled by operator") -> IngestionJob:
        """Mark a PENDING or RUNNING job as CANCELLED directly in storage."""

        def _cancel(repo: IngestionJobRepository) -> IngestionJob | None:
            job = repo.get(job_id)
            if job is not None:
                job.cancel(reason)
                repo.merge(job)
            return job

        job = await self._with_repository(_cancel)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def _with_repository(self, operation: Callable[[IngestionJobRepository], T]) -> T:
        def _run() -> T:
            with session_scope() as session:
                return operation(IngestionJobRepository(session))

        return await self._run_in_thread(_run)
