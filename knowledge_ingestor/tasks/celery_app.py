"""Celery application and beat schedule for knowledge_ingestor."""

from __future__ import annotations

from typing import Any

from celery import Celery
from celery.schedules import crontab

from ..utils.config import SchedulerSettings, get_settings


def _resolve_redis_url() -> str:
    """Return the Redis URL configured for the application."""

    settings = get_settings()
    return settings.redis_url or "redis://localhost:6379/0"


def build_beat_schedule(scheduler: SchedulerSettings) -> dict[str, dict[str, Any]]:
    """Translate scheduler settings into Celery beat entries."""

    schedule: dict[str, dict[str, Any]] = {
        "scheduled-ingestion": {
            "task": "knowledge_ingestor.tasks.run_scheduled_ingestion",
            "schedule": float(scheduler.ingestion_interval_seconds),
        },
        "monitor-long-running-jobs": {
            "task": "knowledge_ingestor.tasks.monitor_long_running_jobs",
            "schedule": float(scheduler.long_running_check_interval_seconds),
        },
    }
    if scheduler.cleanup_enabled:
        schedule["cleanup-old-jobs"] = {
            "task": "knowledge_ingestor.tasks.cleanup_old_jobs",
            "schedule": crontab(hour=scheduler.cleanup_hour, minute=0),
        }
    if scheduler.credential_check_enabled:
        schedule["check-expiring-credentials"] = {
            "task": "knowledge_ingestor.tasks.check_expiring_credentials",
            "schedule": crontab(
                day_of_week=scheduler.credential_check_day_of_week,
                hour=scheduler.credential_check_hour,
                minute=0,
            ),
        }
    return schedule


celery_app = Celery(
    "knowledge_ingestor",
    broker=_resolve_redis_url(),
    backend=_resolve_redis_url(),
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    worker_hijack_root_logger=False,
    beat_schedule=build_beat_schedule(get_settings().scheduler),
)

celery_app.autodiscover_tasks(["knowledge_ingestor.tasks"], related_name="scheduled")
