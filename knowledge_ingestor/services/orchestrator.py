"""Sync orchestration: admission checks, cursor resolution and outcome bookkeeping."""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from ..connectors.base import DataConnector, KnowledgeSink
from ..connectors.runner import SyncRunner
from ..exceptions import (
    ConcurrencyLimitExceededError,
    ConfigurationError,
    ConnectorConfigNotFoundError,
    ConnectorDisabledError,
    KnowledgeIngestorError,
    UnknownConnectorTypeError,
)
from ..models.base import utcnow
from ..models.connector_config import ConnectorConfig
from ..models.ingestion_job import IngestionJob
from ..monitoring.metrics import record_sync_rejection
from ..schemas.jobs import JobStatus
from ..schemas.knowledge import ConnectorMetricsView, JobSummary
from ..schemas.sync import CancellationToken, SyncContext, SyncResult, SyncType
from ..utils.audit import AuditAction, AuditLogger, AuditOutcome, get_audit_logger
from ..utils.config import get_settings
from ..utils.logging import setup_logger
from .config_service import ConnectorConfigService
from .job_service import IngestionJobService

logger = setup_logger(__name__, context={"connector_type": "SyncOrchestrator"})


class SyncOrchestrator:
    """
    Entry point for triggering syncs against registered connectors.

    The connector map is fixed at construction. Every trigger passes the same
    admission sequence (config lookup, enabled flag, registered connector,
    global concurrency gate) before the shared :class:`SyncRunner` creates a job.
    The concurrency gate is best-effort: a race between the count and job
    creation can briefly exceed the limit.
    """

    def __init__(
        self,
        connectors: Mapping[str, DataConnector],
        config_service: ConnectorConfigService,
        job_service: IngestionJobService,
        *,
        runner: SyncRunner | None = None,
        sink: KnowledgeSink | None = None,
        max_concurrent_jobs: int | None = None,
        recent_jobs_limit: int | None = None,
        audit: AuditLogger | None = None,
    ) -> None:
        settings = get_settings()
        self._connectors = dict(connectors)
        self._configs = config_service
        self._jobs = job_service
        self._runner = runner or SyncRunner(
            job_service, sink=sink, progress_flush_every=settings.job_progress_flush_every
        )
        self._max_concurrent_jobs = (
            settings.max_concurrent_jobs if max_concurrent_jobs is None else max_concurrent_jobs
        )
        self._recent_jobs_limit = (
            settings.recent_jobs_limit if recent_jobs_limit is None else recent_jobs_limit
        )
        self._audit = audit or get_audit_logger()
        self._active_tokens: dict[uuid.UUID, CancellationToken] = {}

    @property
    def max_concurrent_jobs(self) -> int:
        return self._max_concurrent_jobs

    def get_available_connectors(self) -> list[str]:
        return sorted(self._connectors)

    def active_job_ids(self) -> list[uuid.UUID]:
        """Jobs started by this orchestrator that are still in flight."""

        return list(self._active_tokens)

    async def trigger_full_sync(self, connector_type: str, name: str) -> SyncResult:
        return await self._trigger(connector_type, name, SyncType.FULL)

    async def trigger_incremental_sync(self, connector_type: str, name: str) -> SyncResult:
        return await self._trigger(connector_type, name, SyncType.INCREMENTAL)

    async def trigger_real_time_sync(self, connector_type: str, name: str) -> SyncResult:
        return await self._trigger(connector_type, name, SyncType.REAL_TIME)

    async def cancel_sync(self, job_id: uuid.UUID, reason: str = "Cancelled by operator") -> bool:
        """
        Cancel a sync.

        Returns True when an in-flight sync of this process was signalled; the
        runner then finalizes the job as CANCELLED. Otherwise the stored job is
        cancelled directly and False is returned.

        Raises:
            JobNotFoundError: If the job does not exist.
            InvalidJobTransitionError: If the job is already terminal.
        """
        token = self._active_tokens.get(job_id)
        if token is not None:
            token.cancel(reason)
            logger.info("Cancellation requested", extra={"job_id": str(job_id)})
            return True

        await self._jobs.cancel_job(job_id, reason)
        logger.info(
            "Cancelled job outside this process", extra={"job_id": str(job_id)}
        )
        return False

    async def test_connection(self, connector_type: str, name: str) -> bool:
        config = await self._configs.get_by_type_and_name(connector_type, name)
        connector = self._get_connector(connector_type)
        connected = await connector.test_connection(config)
        logger.info(
            "Connection test %s",
            "succeeded" if connected else "failed",
            extra={"connector_type": connector_type, "connector_name": name},
        )
        return connected

    def should_run_scheduled_sync(
        self, config: ConnectorConfig, now: datetime | None = None
    ) -> bool:
        """True when the config never synced or its polling interval has elapsed."""

        return config.is_due(now or utcnow())

    async def get_connector_metrics(self, connector_type: str, name: str) -> ConnectorMetricsView:
        config = await self._configs.get_by_type_and_name(connector_type, name)
        connector = self._get_connector(connector_type)
        metrics = await connector.get_metrics(config)
        rate_limit = await connector.get_rate_limit_status(config)
        jobs = await self._jobs.list_jobs_for_connector(config.id, self._recent_jobs_limit)
        return ConnectorMetricsView(
            connector_type=connector_type,
            name=name,
            metrics=metrics,
            rate_limit=rate_limit,
            recent_jobs=[JobSummary.model_validate(job) for job in jobs],
        )

    async def _trigger(self, connector_type: str, name: str, sync_type: SyncType) -> SyncResult:
        try:
            config, connector = await self._admit(connector_type, name)
        except KnowledgeIngestorError as exc:
            self._reject(connector_type, name, sync_type, exc)
            raise

        context = await self._build_context(config, sync_type)
        token = CancellationToken()
        started_jobs: list[uuid.UUID] = []

        def _register(job: IngestionJob) -> None:
            started_jobs.append(job.id)
            self._active_tokens[job.id] = token
            self._audit.log_sync_event(
                AuditAction.SYNC_TRIGGERED,
                AuditOutcome.SUCCESS,
                connector_type=connector_type,
                name=name,
                sync_type=sync_type.value,
                job_id=job.id,
                strategy=context.strategy.value,
            )

        try:
            result = await self._runner.run(
                connector, config, context, token=token, on_job_started=_register
            )
        except ConfigurationError as exc:
            self._reject(connector_type, name, sync_type, exc)
            raise
        finally:
            for job_id in started_jobs:
                self._active_tokens.pop(job_id, None)

        await self._record_outcome(config, sync_type, result)
        return result

    async def _admit(
        self, connector_type: str, name: str
    ) -> tuple[ConnectorConfig, DataConnector]:
        config = await self._configs.find_by_type_and_name(connector_type, name)
        if config is None:
            raise ConnectorConfigNotFoundError(connector_type, name)
        if not config.enabled:
            raise ConnectorDisabledError(connector_type, name)
        connector = self._get_connector(connector_type)

        running = await self._jobs.count_running_jobs()
        if running >= self._max_concurrent_jobs:
            raise ConcurrencyLimitExceededError(running, self._max_concurrent_jobs)
        return config, connector

    def _get_connector(self, connector_type: str) -> DataConnector:
        connector = self._connectors.get(connector_type)
        if connector is None:
            available = ", ".join(self.get_available_connectors()) or "none"
            raise UnknownConnectorTypeError(
                f"No connector registered for type '{connector_type}'. "
                f"Available connectors: {available}."
            )
        return connector

    async def _build_context(self, config: ConnectorConfig, sync_type: SyncType) -> SyncContext:
        if sync_type is SyncType.FULL:
            return SyncContext.for_full()
        if sync_type is SyncType.REAL_TIME:
            return SyncContext.for_real_time()

        # Only a successful job may seed the resume cursor.
        latest = await self._jobs.get_latest_successful_job(config.id)
        cursor = latest.last_sync_cursor if latest is not None else None
        return SyncContext.for_incremental(cursor, config.last_successful_sync)

    def _reject(
        self,
        connector_type: str,
        name: str,
        sync_type: SyncType,
        exc: KnowledgeIngestorError,
    ) -> None:
        record_sync_rejection(exc.kind)
        self._audit.log_sync_event(
            AuditAction.SYNC_REJECTED,
            AuditOutcome.DENIED,
            connector_type=connector_type,
            name=name,
            sync_type=sync_type.value,
            error_message=str(exc),
            reason=exc.kind,
        )
        logger.warning(
            "Sync rejected: %s",
            exc,
            extra={
                "connector_type": connector_type,
                "connector_name": name,
                "sync_type": sync_type.value,
                "status": exc.kind,
            },
        )

    async def _record_outcome(
        self, config: ConnectorConfig, sync_type: SyncType, result: SyncResult
    ) -> None:
        if result.success:
            action, outcome, error = AuditAction.SYNC_COMPLETED, AuditOutcome.SUCCESS, None
        elif result.status == JobStatus.CANCELLED:
            action, outcome = AuditAction.SYNC_CANCELLED, AuditOutcome.SUCCESS
            error = result.errors[-1] if result.errors else None
        else:
            action, outcome = AuditAction.SYNC_FAILED, AuditOutcome.FAILURE
            error = result.errors[-1] if result.errors else "Sync failed"

        try:
            if result.success:
                await self._configs.record_sync_success(
                    config.id, result.end_time, result.next_cursor
                )
            elif action is AuditAction.SYNC_FAILED:
                await self._configs.record_sync_error(config.id, error, result.end_time)
        except (KnowledgeIngestorError, SQLAlchemyError) as exc:
            logger.error(
                "Failed to record sync state on connector configuration: %s",
                exc,
                extra={"connector_type": config.connector_type, "connector_name": config.name},
            )

        self._audit.log_sync_event(
            action,
            outcome,
            connector_type=config.connector_type,
            name=config.name,
            sync_type=sync_type.value,
            job_id=result.job_id,
            error_message=error,
            items_processed=result.items_processed,
            items_failed=result.items_failed,
        )
