"""Pydantic models for knowledge records and connector telemetry."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


class KnowledgeItem(BaseModel):
    """Normalized record produced by a connector for the downstream platform."""

    model_config = ConfigDict(extra="forbid")

    id: UUID = Field(default_factory=uuid4, description="Identifier of the knowledge record")
    title: str = Field(..., description="Human readable title")
    content: str = Field(default="", description="Raw textual content")
    source_type: str = Field(..., description="Source category, e.g. github_commit")
    source_reference: str = Field(..., description="Stable reference (usually a URL) in the source")
    author: str | None = Field(default=None, description="Author or creator in the source system")
    created_at: datetime | None = None
    updated_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    extracted_text: str | None = Field(
        default=None, description="Plain text extracted for indexing when it differs from content"
    )


@dataclass(frozen=True, slots=True)
class ItemFailure:
    """Marker a connector yields when a single source record could not be converted."""

    reference: str
    error: str


@dataclass(frozen=True, slots=True)
class SyncCheckpoint:
    """Marker a connector yields to advance the resume cursor mid-stream."""

    cursor: str


class RateLimitStatus(BaseModel):
    """Rate-limit budget reported by an external source."""

    limit: int = Field(default=0, ge=0)
    remaining: int = Field(default=0, ge=0)
    reset_time: datetime | None = None
    scope: str = Field(default="unknown", description="Which budget the numbers describe")

    @classmethod
    def unknown(cls) -> RateLimitStatus:
        return cls(limit=0, remaining=0, reset_time=datetime.now(timezone.utc), scope="unknown")

    @property
    def is_exceeded(self) -> bool:
        return self.limit > 0 and self.remaining <= 0

    def is_near_limit(self, threshold: float = 0.1) -> bool:
        """True when the remaining share of the budget is at or below ``threshold``."""

        if self.limit <= 0:
            return False
        return self.remaining / self.limit <= threshold


class ConnectorMetrics(BaseModel):
    """Running totals a connector instance has processed since start-up."""

    connector_type: str
    processed_total: int = 0
    failed_total: int = 0
    last_updated: datetime | None = None

    @property
    def failure_rate(self) -> float:
        total = self.processed_total + self.failed_total
        return self.failed_total / total if total else 0.0

    @property
    def success_rate(self) -> float:
        total = self.processed_total + self.failed_total
        return self.processed_total / total if total else 0.0


class JobSummary(BaseModel):
    """Read-only projection of an ingestion job for reports."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    connector_config_id: UUID
    job_type: str
    status: str
    started_at: datetime | None = None
    completed_at: datetime | None = None
    items_processed: int = 0
    items_failed: int = 0
    last_sync_cursor: str | None = None
    error_message: str | None = None


class ConnectorMetricsView(BaseModel):
    """Merged view of connector metrics, rate-limit budget and recent jobs."""

    connector_type: str
    name: str
    metrics: ConnectorMetrics
    rate_limit: RateLimitStatus
    recent_jobs: list[JobSummary] = Field(default_factory=list)
