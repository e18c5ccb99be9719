"""Celery tasks driving the periodic scheduler coroutines."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from ..exceptions import KnowledgeIngestorError
from ..monitoring.metrics import record_scheduler_run
from ..services.runtime import build_services
from ..services.scheduler import IngestionScheduler
from ..utils.config import ensure_runtime_configuration, get_settings
from ..utils.logging import setup_logger
from .celery_app import celery_app

logger = setup_logger(__name__, context={"connector_type": "CeleryTasks"})


def _run_scheduler_task(
    task_name: str,
    operation: Callable[[IngestionScheduler], Awaitable[dict[str, Any]]],
) -> dict[str, Any]:
    """Build the service graph and run one scheduler coroutine to completion."""

    ensure_runtime_configuration(get_settings())
    scheduler = build_services().scheduler
    try:
        return asyncio.run(operation(scheduler))
    except KnowledgeIngestorError as exc:
        record_scheduler_run(task_name, "failure")
        logger.error(
            "Scheduler task %s failed: %s",
            task_name,
            exc,
            extra={"status": exc.kind},
        )
        raise


@celery_app.task(name="knowledge_ingestor.tasks.run_scheduled_ingestion")
def run_scheduled_ingestion() -> dict[str, Any]:
    return _run_scheduler_task(
        "ingestion", lambda scheduler: scheduler.run_scheduled_ingestion()
    )


@celery_app.task(name="knowledge_ingestor.tasks.cleanup_old_jobs")
def cleanup_old_jobs() -> dict[str, Any]:
    return _run_scheduler_task("cleanup", lambda scheduler: scheduler.cleanup_old_jobs())


@celery_app.task(name="knowledge_ingestor.tasks.check_expiring_credentials")
def check_expiring_credentials() -> dict[str, Any]:
    return _run_scheduler_task(
        "credential_check", lambda scheduler: scheduler.check_expiring_credentials()
    )


@celery_app.task(name="knowledge_ingestor.tasks.monitor_long_running_jobs")
def monitor_long_running_jobs() -> dict[str, Any]:
    return _run_scheduler_task(
        "long_running_monitor", lambda scheduler: scheduler.monitor_long_running_jobs()
    )


SCHEDULED_TASKS = {
    "ingestion": run_scheduled_ingestion,
    "cleanup": cleanup_old_jobs,
    "credential_check": check_expiring_credentials,
    "long_running_monitor": monitor_long_running_jobs,
}
