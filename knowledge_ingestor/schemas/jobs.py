"""Job lifecycle enums and aggregate report models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    """Lifecycle states of an ingestion job."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


class JobType(str, Enum):
    """Kind of sync a job performs; mirrors ``SyncType`` values."""

    FULL = "FULL"
    INCREMENTAL = "INCREMENTAL"
    REAL_TIME = "REAL_TIME"


class HourlyPerformance(BaseModel):
    """Job throughput for one hour bucket."""

    hour: datetime = Field(..., description="Start of the hour bucket (UTC)")
    job_count: int = 0
    successful: int = 0
    failed: int = 0
    avg_items_processed: float = 0.0
    avg_duration_seconds: float = 0.0


class ConnectorTypeJobStats(BaseModel):
    """Job aggregates for one connector type."""

    connector_type: str
    total_jobs: int = 0
    completed_jobs: int = 0
    failed_jobs: int = 0
    running_jobs: int = 0
    avg_items_processed: float = 0.0
    total_items_processed: int = 0
    total_items_failed: int = 0


class JobStatistics(BaseModel):
    """System-wide job counts."""

    running: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    total: int = 0
