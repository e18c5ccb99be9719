"""Prometheus metrics definitions for knowledge_ingestor."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

SYNC_JOBS = Counter(
    "sync_jobs_total",
    "Total finished sync jobs by connector type, sync type and terminal status.",
    labelnames=("connector_type", "sync_type", "status"),
)

SYNC_ITEMS = Counter(
    "sync_items_total",
    "Total knowledge items handled during syncs, split by outcome.",
    labelnames=("connector_type", "outcome"),
)

SYNC_DURATION = Histogram(
    "sync_duration_seconds",
    "Distribution of sync job durations in seconds.",
    labelnames=("connector_type",),
    buckets=(0.5, 1, 5, 15, 30, 60, 300, 900, 1800, 3600),
)

SYNC_JOBS_RUNNING = Gauge(
    "sync_jobs_running",
    "Number of sync jobs currently running in this process.",
    labelnames=("connector_type",),
)

SYNC_REJECTIONS = Counter(
    "sync_rejections_total",
    "Sync triggers rejected before a job was created.",
    labelnames=("reason",),
)

CREDENTIAL_OPERATIONS = Counter(
    "credential_operations_total",
    "Credential vault operations by operation and outcome.",
    labelnames=("operation", "outcome"),
)

CREDENTIALS_EXPIRING = Gauge(
    "credentials_expiring",
    "Active credentials expiring within the configured warning window.",
)

LONG_RUNNING_JOBS = Gauge(
    "long_running_jobs",
    "Jobs running longer than the configured threshold at the last check.",
)

SCHEDULER_RUNS = Counter(
    "scheduler_runs_total",
    "Scheduled maintenance task executions by task and outcome.",
    labelnames=("task", "outcome"),
)


def record_job_finished(
    connector_type: str,
    sync_type: str,
    status: str,
    duration_seconds: float,
) -> None:
    """Record the terminal status and duration of a sync job."""

    SYNC_JOBS.labels(connector_type=connector_type, sync_type=sync_type, status=status).inc()
    SYNC_DURATION.labels(connector_type=connector_type).observe(max(duration_seconds, 0.0))


def record_item_outcome(connector_type: str, outcome: str) -> None:
    """Increment the item counter for ``processed`` or ``failed`` outcomes."""

    SYNC_ITEMS.labels(connector_type=connector_type, outcome=outcome).inc()


def increment_running_jobs(connector_type: str) -> None:
    SYNC_JOBS_RUNNING.labels(connector_type=connector_type).inc()


def decrement_running_jobs(connector_type: str) -> None:
    SYNC_JOBS_RUNNING.labels(connector_type=connector_type).dec()


def record_sync_rejection(reason: str) -> None:
    """
    Record a trigger rejected by validation or gating.

    Args:
        reason: Error kind (connector_disabled, concurrency_limit_exceeded, ...)
    """
    SYNC_REJECTIONS.labels(reason=reason).inc()


def record_credential_operation(operation: str, outcome: str) -> None:
    CREDENTIAL_OPERATIONS.labels(operation=operation, outcome=outcome).inc()


def set_expiring_credentials(count: int) -> None:
    CREDENTIALS_EXPIRING.set(max(count, 0))


def set_long_running_jobs(count: int) -> None:
    LONG_RUNNING_JOBS.set(max(count, 0))


def record_scheduler_run(task: str, outcome: str) -> None:
    """Record a scheduler task execution outcome (success, failure, skipped)."""

    SCHEDULER_RUNS.labels(task=task, outcome=outcome).inc()
