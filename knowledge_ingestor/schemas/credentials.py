"""Credential types and vault report models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class CredentialType(str, Enum):
    """Kinds of secrets a connector can authenticate with."""

    API_TOKEN = "api_token"
    OAUTH_TOKEN = "oauth_token"
    API_KEY = "api_key"
    WEBHOOK_SECRET = "webhook_secret"
    USERNAME_PASSWORD = "username_password"


class HealthStatus(str, Enum):
    HEALTHY = "HEALTHY"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class UsagePattern(str, Enum):
    ACTIVE = "ACTIVE"
    OCCASIONAL = "OCCASIONAL"
    RARELY_USED = "RARELY_USED"
    UNUSED = "UNUSED"


class RecommendedAction(str, Enum):
    NO_ACTION = "NO_ACTION"
    MONITOR = "MONITOR"
    CONSIDER_ROTATION = "CONSIDER_ROTATION"
    CONSIDER_REMOVAL = "CONSIDER_REMOVAL"


class ExpirationUrgency(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


def expiration_urgency(days_until_expiration: int) -> ExpirationUrgency:
    """Map days left before expiry onto an urgency bucket."""

    if days_until_expiration <= 1:
        return ExpirationUrgency.CRITICAL
    if days_until_expiration <= 3:
        return ExpirationUrgency.HIGH
    if days_until_expiration <= 7:
        return ExpirationUrgency.MEDIUM
    return ExpirationUrgency.LOW


class CredentialSummary(BaseModel):
    """Credential metadata; the secret value is never part of this model."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    connector_config_id: UUID
    credential_type: str
    expires_at: datetime | None = None
    created_at: datetime
    last_used: datetime | None = None
    usage_count: int = 0
    is_active: bool
    description: str | None = None


class ExpiringCredential(BaseModel):
    """Active credential approaching its expiry, with urgency classification."""

    credential: CredentialSummary
    days_until_expiration: int
    urgency: ExpirationUrgency


class CredentialTypeStats(BaseModel):
    """Health statistics for one credential type."""

    credential_type: str
    total: int = 0
    active: int = 0
    expired: int = 0
    expiring_soon: int = 0
    health_percentage: float = Field(default=0.0, description="active / total * 100")
    health_status: HealthStatus = HealthStatus.HEALTHY

    @classmethod
    def build(
        cls,
        credential_type: str,
        *,
        total: int,
        active: int,
        expired: int,
        expiring_soon: int,
    ) -> CredentialTypeStats:
        health = round(active / total * 100, 2) if total else 0.0
        if expired > 0:
            status = HealthStatus.CRITICAL
        elif expiring_soon > 0 or health < 90:
            status = HealthStatus.WARNING
        else:
            status = HealthStatus.HEALTHY
        return cls(
            credential_type=credential_type,
            total=total,
            active=active,
            expired=expired,
            expiring_soon=expiring_soon,
            health_percentage=health,
            health_status=status,
        )


class CredentialUsage(BaseModel):
    """Usage analytics and recommendation for one credential."""

    credential_id: UUID
    credential_type: str
    is_active: bool
    usage_count: int
    days_since_creation: int
    days_since_last_use: int | None
    average_uses_per_day: float
    pattern: UsagePattern
    recommended_action: RecommendedAction

    @property
    def is_unused(self) -> bool:
        return self.days_since_last_use is None


def classify_usage(
    usage_count: int,
    days_since_last_use: int | None,
    average_uses_per_day: float,
) -> UsagePattern:
    if usage_count == 0 or days_since_last_use is None or days_since_last_use > 30:
        return UsagePattern.UNUSED
    if average_uses_per_day >= 1.0 and days_since_last_use <= 7:
        return UsagePattern.ACTIVE
    if average_uses_per_day >= 0.1 and days_since_last_use <= 14:
        return UsagePattern.OCCASIONAL
    return UsagePattern.RARELY_USED


def recommend_action(pattern: UsagePattern, days_since_last_use: int | None) -> RecommendedAction:
    if pattern is UsagePattern.UNUSED:
        if days_since_last_use is not None and days_since_last_use > 90:
            return RecommendedAction.CONSIDER_REMOVAL
        return RecommendedAction.MONITOR
    if pattern is UsagePattern.RARELY_USED:
        return RecommendedAction.CONSIDER_ROTATION
    if pattern is UsagePattern.OCCASIONAL:
        return RecommendedAction.MONITOR
    return RecommendedAction.NO_ACTION
