"""Schemas package initialization."""
from .connector import ConnectorSettings
from .credentials import (
    CredentialSummary,
    CredentialType,
    CredentialTypeStats,
    CredentialUsage,
    ExpirationUrgency,
    ExpiringCredential,
    HealthStatus,
    RecommendedAction,
    UsagePattern,
    expiration_urgency,
)
from .jobs import (
    ConnectorTypeJobStats,
    HourlyPerformance,
    JobStatistics,
    JobStatus,
    JobType,
)
from .knowledge import (
    ConnectorMetrics,
    ConnectorMetricsView,
    ItemFailure,
    JobSummary,
    KnowledgeItem,
    RateLimitStatus,
    SyncCheckpoint,
)
from .sync import CancellationToken, SyncContext, SyncResult, SyncStrategy, SyncType

__all__ = [
    "CancellationToken",
    "ConnectorMetrics",
    "ConnectorMetricsView",
    "ConnectorSettings",
    "ConnectorTypeJobStats",
    "CredentialSummary",
    "CredentialType",
    "CredentialTypeStats",
    "CredentialUsage",
    "ExpirationUrgency",
    "ExpiringCredential",
    "HealthStatus",
    "HourlyPerformance",
    "ItemFailure",
    "JobStatistics",
    "JobStatus",
    "JobSummary",
    "JobType",
    "KnowledgeItem",
    "RateLimitStatus",
    "RecommendedAction",
    "SyncCheckpoint",
    "SyncContext",
    "SyncResult",
    "SyncStrategy",
    "SyncType",
    "UsagePattern",
    "expiration_urgency",
]
