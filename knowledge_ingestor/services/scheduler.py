"""Periodic maintenance: scheduled ingestion, job cleanup, credential and job monitoring."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from ..exceptions import KnowledgeIngestorError
from ..models.base import utcnow
from ..monitoring.metrics import (
    record_scheduler_run,
    set_expiring_credentials,
    set_long_running_jobs,
)
from ..utils.config import SchedulerSettings, get_settings
from ..utils.logging import setup_logger
from .config_service import ConnectorConfigService
from .credential_vault import CredentialVault
from .job_service import IngestionJobService
from .orchestrator import SyncOrchestrator

logger = setup_logger(__name__, context={"connector_type": "IngestionScheduler"})


class IngestionScheduler:
    """
    Coroutines behind the periodic tasks; the cadence itself comes from Celery beat.

    Each method returns a JSON-serialisable summary so the Celery task result
    can be inspected from the backend.
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        config_service: ConnectorConfigService,
        job_service: IngestionJobService,
        vault: CredentialVault,
        *,
        settings: SchedulerSettings | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._configs = config_service
        self._jobs = job_service
        self._vault = vault
        self._settings = settings or get_settings().scheduler

    async def run_scheduled_ingestion(self, now: datetime | None = None) -> dict[str, Any]:
        """
        Trigger an incremental sync for every enabled config that is due.

        Syncs run one after another so the global concurrency gate sees each
        job. A failing connector is logged and recorded in the summary; the
        remaining connectors are still attempted.
        """
        current = now or utcnow()
        configs = await self._configs.list_due_for_scheduled_sync(current)
        summary: dict[str, Any] = {
            "checked": len(configs),
            "triggered": [],
            "skipped": [],
            "failed": [],
        }

        for config in configs:
            if not self._orchestrator.should_run_scheduled_sync(config, current):
                summary["skipped"].append(config.full_name)
                continue
            try:
                result = await self._orchestrator.trigger_incremental_sync(
                    config.connector_type, config.name
                )
            except KnowledgeIngestorError as exc:
                logger.warning(
                    "Scheduled sync not started: %s",
                    exc,
                    extra={
                        "connector_type": config.connector_type,
                        "connector_name": config.name,
                        "status": exc.kind,
                    },
                )
                summary["failed"].append(
                    {"connector": config.full_name, "kind": exc.kind, "message": str(exc)}
                )
                continue
            except Exception as exc:
                logger.exception(
                    "Scheduled sync crashed",
                    extra={"connector_type": config.connector_type, "connector_name": config.name},
                )
                summary["failed"].append(
                    {"connector": config.full_name, "kind": "internal_error", "message": str(exc)}
                )
                continue

            summary["triggered"].append(
                {
                    "connector": config.full_name,
                    "job_id": str(result.job_id),
                    "status": result.status,
                    "items_processed": result.items_processed,
                    "items_failed": result.items_failed,
                }
            )

        record_scheduler_run("ingestion", "failure" if summary["failed"] else "success")
        logger.info(
            "Scheduled ingestion tick: %d due, %d triggered, %d failed",
            len(configs),
            len(summary["triggered"]),
            len(summary["failed"]),
        )
        return summary

    async def cleanup_old_jobs(self, now: datetime | None = None) -> dict[str, Any]:
        """Delete terminal jobs older than the configured retention window."""

        if not self._settings.cleanup_enabled:
            record_scheduler_run("cleanup", "skipped")
            return {"deleted": 0, "skipped": True}

        deleted = await self._jobs.cleanup_old_jobs(self._settings.retention_days, now)
        record_scheduler_run("cleanup", "success")
        return {
            "deleted": deleted,
            "skipped": False,
            "retention_days": self._settings.retention_days,
        }

    async def check_expiring_credentials(self) -> dict[str, Any]:
        """Log credentials that expire within the warning window, plus already-expired ones."""

        if not self._settings.credential_check_enabled:
            record_scheduler_run("credential_check", "skipped")
            return {"expiring": [], "expired": 0, "skipped": True}

        days = self._settings.expiration_warning_days
        expiring = await self._vault.list_expiring_with_urgency(days)
        expired = await self._vault.list_expired()
        set_expiring_credentials(len(expiring))

        for entry in expiring:
            credential = entry.credential
            logger.warning(
                "Credential %s (%s) expires in %d day(s) [%s]",
                credential.id,
                credential.credential_type,
                entry.days_until_expiration,
                entry.urgency.value,
                extra={"status": "credential_expiring"},
            )
        if expired:
            logger.error(
                "%d active credential(s) are already expired",
                len(expired),
                extra={"status": "credential_expired"},
            )

        record_scheduler_run("credential_check", "success")
        return {
            "expiring": [
                {
                    "credential_id": str(entry.credential.id),
                    "connector_config_id": str(entry.credential.connector_config_id),
                    "credential_type": entry.credential.credential_type,
                    "days_until_expiration": entry.days_until_expiration,
                    "urgency": entry.urgency.value,
                }
                for entry in expiring
            ],
            "expired": len(expired),
            "skipped": False,
        }

    async def monitor_long_running_jobs(self, now: datetime | None = None) -> dict[str, Any]:
        """Report RUNNING jobs older than the threshold. Jobs are never terminated here."""

        current = now or utcnow()
        threshold = self._settings.long_running_threshold_minutes
        jobs = await self._jobs.list_long_running_jobs(threshold, current)
        set_long_running_jobs(len(jobs))

        report = []
        for job in jobs:
            running_minutes = (
                int((current - job.started_at).total_seconds() // 60) if job.started_at else None
            )
            logger.warning(
                "Job running for %s minutes (threshold %d)",
                running_minutes,
                threshold,
                extra={"job_id": str(job.id), "status": job.status},
            )
            report.append(
                {
                    "job_id": str(job.id),
                    "connector_config_id": str(job.connector_config_id),
                    "started_at": job.started_at.isoformat() if job.started_at else None,
                    "running_minutes": running_minutes,
                }
            )

        record_scheduler_run("long_running_monitor", "success")
        return {"long_running": report, "threshold_minutes": threshold}
