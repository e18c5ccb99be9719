"""Celery task package exposing the configured app and scheduled tasks."""

from __future__ import annotations

from .celery_app import celery_app as app
from .scheduled import (
    SCHEDULED_TASKS,
    check_expiring_credentials,
    cleanup_old_jobs,
    monitor_long_running_jobs,
    run_scheduled_ingestion,
)

__all__ = [
    "app",
    "SCHEDULED_TASKS",
    "check_expiring_credentials",
    "cleanup_old_jobs",
    "monitor_long_running_jobs",
    "run_scheduled_ingestion",
]
