"""Shared sync template wrapped around any :class:`DataConnector`."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..exceptions import InvalidJobTransitionError, PersistenceError
from ..models.base import utcnow
from ..models.connector_config import ConnectorConfig
from ..models.ingestion_job import IngestionJob
from ..monitoring.metrics import (
    decrement_running_jobs,
    increment_running_jobs,
    record_item_outcome,
    record_job_finished,
)
from ..schemas.jobs import JobStatus, JobType
from ..schemas.knowledge import ItemFailure, SyncCheckpoint
from ..schemas.sync import CancellationToken, SyncContext, SyncResult, SyncType
from ..services.job_service import IngestionJobService
from ..utils.logging import log_sync_outcome, setup_logger
from .base import DataConnector, FetchedRecord, KnowledgeSink

logger = setup_logger(__name__, context={"connector_type": "SyncRunner"})

MAX_RECORDED_ERRORS = 50
FINALIZED_ELSEWHERE = "Job was finalized by another process"

_JOB_TYPES = {
    SyncType.FULL: JobType.FULL,
    SyncType.INCREMENTAL: JobType.INCREMENTAL,
    SyncType.REAL_TIME: JobType.REAL_TIME,
}


class _SyncCancelled(Exception):
    def __init__(self, reason: str | None) -> None:
        super().__init__(reason or "Sync cancelled")


@dataclass(slots=True)
class _SyncProgress:
    started_at: datetime
    processed: int = 0
    failed: int = 0
    cursor: str | None = None
    errors: list[str] = field(default_factory=list)
    status: JobStatus = JobStatus.FAILED
    terminal_error: str | None = None

    def add_error(self, message: str) -> None:
        if len(self.errors) < MAX_RECORDED_ERRORS:
            self.errors.append(message)


async def _next_record(
    iterator: AsyncIterator[FetchedRecord],
    token: CancellationToken | None,
) -> FetchedRecord:
    """Await the next record, abandoning the wait as soon as ``token`` fires."""

    if token is None:
        return await anext(iterator)
    if token.cancelled:
        raise _SyncCancelled(token.reason)

    next_task = asyncio.ensure_future(anext(iterator))
    cancel_task = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait({next_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        next_task.cancel()
        await asyncio.wait({next_task})
        raise
    finally:
        cancel_task.cancel()

    if next_task in done:
        return next_task.result()

    next_task.cancel()
    await asyncio.wait({next_task})
    raise _SyncCancelled(token.reason)


class SyncRunner:
    """Drives one sync attempt and guarantees the job is finalized exactly once.

    Validation happens before any job exists. Once a job is RUNNING, every exit
    path (normal completion, per-item failures, fatal errors, cancellation)
    ends in exactly one terminal transition followed by a best-effort save.
    """

    def __init__(
        self,
        job_service: IngestionJobService,
        *,
        sink: KnowledgeSink | None = None,
        progress_flush_every: int = 0,
    ) -> None:
        self._jobs = job_service
        self._sink = sink
        self._progress_flush_every = progress_flush_every

    async def perform_sync(
        self,
        connector: DataConnector,
        config: ConnectorConfig,
        *,
        token: CancellationToken | None = None,
        on_job_started: Callable[[IngestionJob], Any] | None = None,
    ) -> SyncResult:
        return await self.run(
            connector, config, SyncContext.for_full(), token=token, on_job_started=on_job_started
        )

    async def perform_incremental_sync(
        self,
        connector: DataConnector,
        config: ConnectorConfig,
        cursor: str | None,
        last_sync_time: datetime | None = None,
        *,
        token: CancellationToken | None = None,
        on_job_started: Callable[[IngestionJob], Any] | None = None,
    ) -> SyncResult:
        context = SyncContext.for_incremental(cursor, last_sync_time)
        return await self.run(
            connector, config, context, token=token, on_job_started=on_job_started
        )

    async def run(
        self,
        connector: DataConnector,
        config: ConnectorConfig,
        context: SyncContext,
        *,
        token: CancellationToken | None = None,
        on_job_started: Callable[[IngestionJob], Any] | None = None,
    ) -> SyncResult:
        """
        Execute the sync template for ``context``.

        Raises:
            ConfigurationError: If the connector rejects the configuration (no job is created).
            PersistenceError: If the job could not be created (the sync does not start).
        """
        connector.validate_config(config)

        job = await self._jobs.create_job(
            config.id,
            _JOB_TYPES[context.sync_type],
            metadata={
                "connector_type": config.connector_type,
                "connector_name": config.name,
                "strategy": context.strategy.value,
                "cursor": context.cursor,
            },
        )
        job.start()
        try:
            await self._jobs.save_job(job)
        except Exception as exc:
            await self._abandon_pending_job(job, exc)
            raise PersistenceError(f"Failed to start ingestion job {job.id}: {exc}") from exc

        job_logger = logger.bind(
            connector_type=config.connector_type,
            connector_name=config.name,
            job_id=str(job.id),
            sync_type=context.sync_type.value,
        )
        job_logger.info("Sync started with strategy %s", context.strategy.value)

        if on_job_started is not None:
            on_job_started(job)

        progress = _SyncProgress(started_at=job.started_at or utcnow())
        increment_running_jobs(config.connector_type)
        try:
            await self._consume(connector, config, context, job, progress, token, job_logger)
            progress.status = JobStatus.COMPLETED
        except _SyncCancelled as exc:
            progress.status = JobStatus.CANCELLED
            progress.terminal_error = str(exc)
        except asyncio.CancelledError:
            progress.status = JobStatus.CANCELLED
            progress.terminal_error = "Sync task cancelled"
            raise
        except Exception as exc:
            progress.status = JobStatus.FAILED
            progress.terminal_error = str(exc) or type(exc).__name__
            job_logger.error("Sync aborted by fatal error: %s", progress.terminal_error, exc_info=True)
        finally:
            decrement_running_jobs(config.connector_type)
            result = await self._finalize(connector, config, context, job, progress, job_logger)
        return result

    async def _consume(
        self,
        connector: DataConnector,
        config: ConnectorConfig,
        context: SyncContext,
        job: IngestionJob,
        progress: _SyncProgress,
        token: CancellationToken | None,
        job_logger: Any,
    ) -> None:
        connector_type = config.connector_type
        stream = connector.fetch_data(config, context)
        iterator = stream.__aiter__()
        try:
            while True:
                try:
                    record = await _next_record(iterator, token)
                except StopAsyncIteration:
                    break

                if isinstance(record, SyncCheckpoint):
                    progress.cursor = record.cursor
                    continue

                if isinstance(record, ItemFailure):
                    self._record_failure(
                        connector, connector_type, job, progress, record.reference, record.error
                    )
                    job_logger.warning("Skipping record %s: %s", record.reference, record.error)
                    continue

                if self._sink is not None:
                    try:
                        await self._sink(record, config)
                    except Exception as exc:
                        self._record_failure(
                            connector,
                            connector_type,
                            job,
                            progress,
                            record.source_reference,
                            str(exc),
                        )
                        job_logger.warning(
                            "Failed to deliver record %s: %s", record.source_reference, exc
                        )
                        continue

                job.record_processed()
                progress.processed += 1
                connector.stats.record_processed()
                record_item_outcome(connector_type, "processed")
                await self._maybe_flush_progress(job, progress, job_logger)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    @staticmethod
    def _record_failure(
        connector: DataConnector,
        connector_type: str,
        job: IngestionJob,
        progress: _SyncProgress,
        reference: str,
        message: str,
    ) -> None:
        job.record_failed()
        progress.failed += 1
        progress.add_error(f"{reference}: {message}")
        connector.stats.record_failed()
        record_item_outcome(connector_type, "failed")

    async def _maybe_flush_progress(
        self, job: IngestionJob, progress: _SyncProgress, job_logger: Any
    ) -> None:
        every = self._progress_flush_every
        if every <= 0 or progress.processed % every != 0:
            return
        try:
            await self._jobs.save_job(job)
        except InvalidJobTransitionError:
            raise _SyncCancelled(FINALIZED_ELSEWHERE) from None
        except Exception as exc:
            job_logger.warning("Failed to persist job progress: %s", exc)

    async def _abandon_pending_job(self, job: IngestionJob, exc: Exception) -> None:
        """Cancel the stored PENDING row of a job that could not be started."""

        try:
            await self._jobs.cancel_job(job.id, f"Failed to start: {exc}")
        except Exception as cancel_exc:
            logger.error(
                "Failed to cancel unstarted job %s: %s",
                job.id,
                cancel_exc,
                extra={"job_id": str(job.id), "status": "persistence_error"},
            )

    async def _adopt_stored_outcome(
        self, job: IngestionJob, progress: _SyncProgress, job_logger: Any
    ) -> None:
        """Report the terminal state another process already wrote for ``job``."""

        progress.status = JobStatus.CANCELLED
        progress.terminal_error = FINALIZED_ELSEWHERE
        try:
            stored = await self._jobs.get_job(job.id)
        except Exception as exc:
            job_logger.error("Failed to reload job finalized elsewhere: %s", exc)
            return
        progress.status = stored.job_status
        progress.terminal_error = stored.error_message or FINALIZED_ELSEWHERE
        job_logger.warning(
            "Job was already %s in storage; discarding local outcome",
            stored.status,
            extra={"status": stored.status},
        )

    async def _finalize(
        self,
        connector: DataConnector,
        config: ConnectorConfig,
        context: SyncContext,
        job: IngestionJob,
        progress: _SyncProgress,
        job_logger: Any,
    ) -> SyncResult:
        end_time = utcnow()
        next_cursor: str | None = None
        if progress.status is JobStatus.COMPLETED:
            next_cursor = progress.cursor or progress.started_at.isoformat()
            job.complete(next_cursor, end_time)
        elif progress.status is JobStatus.CANCELLED:
            job.cancel(progress.terminal_error, end_time)
        else:
            job.fail(progress.terminal_error or "Unknown error", end_time)

        try:
            await self._jobs.save_job(job)
        except InvalidJobTransitionError:
            await self._adopt_stored_outcome(job, progress, job_logger)
            next_cursor = None
        except Exception as exc:
            job_logger.error(
                "Failed to persist final job state %s: %s",
                job.status,
                exc,
                extra={"status": "persistence_error"},
            )

        status = progress.status.value
        duration = (end_time - progress.started_at).total_seconds()
        record_job_finished(config.connector_type, context.sync_type.value, status, duration)
        log_sync_outcome(
            job_logger,
            connector_type=config.connector_type,
            connector_name=config.name,
            job_id=job.id,
            sync_type=context.sync_type.value,
            status=status,
            duration_ms=int(duration * 1000),
            processed=progress.processed,
            failed=progress.failed,
            error_message=progress.terminal_error,
        )

        errors = list(progress.errors)
        if progress.terminal_error:
            errors.append(progress.terminal_error)
        return SyncResult(
            connector_type=config.connector_type,
            sync_type=context.sync_type,
            start_time=progress.started_at,
            end_time=end_time,
            items_processed=progress.processed,
            items_failed=progress.failed,
            next_cursor=next_cursor,
            errors=tuple(errors),
            success=progress.status is JobStatus.COMPLETED,
            job_id=job.id,
            status=status,
        )
