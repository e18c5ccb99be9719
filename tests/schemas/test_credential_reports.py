"""Tests for credential urgency, health and usage classification."""

import pytest

from knowledge_ingestor.schemas.credentials import (
    CredentialTypeStats,
    ExpirationUrgency,
    HealthStatus,
    RecommendedAction,
    UsagePattern,
    classify_usage,
    expiration_urgency,
    recommend_action,
)


@pytest.mark.parametrize(
    ("days", "expected"),
    [
        (0, ExpirationUrgency.CRITICAL),
        (1, ExpirationUrgency.CRITICAL),
        (2, ExpirationUrgency.HIGH),
        (3, ExpirationUrgency.HIGH),
        (5, ExpirationUrgency.MEDIUM),
        (7, ExpirationUrgency.MEDIUM),
        (8, ExpirationUrgency.LOW),
        (20, ExpirationUrgency.LOW),
    ],
)
def test_expiration_urgency_thresholds(days: int, expected: ExpirationUrgency) -> None:
    assert expiration_urgency(days) is expected


def test_stats_critical_when_any_credential_expired() -> None:
    stats = CredentialTypeStats.build("api_token", total=10, active=10, expired=1, expiring_soon=0)

    assert stats.health_status is HealthStatus.CRITICAL
    assert stats.health_percentage == 100.0


def test_stats_warning_when_expiring_soon_or_low_health() -> None:
    expiring = CredentialTypeStats.build("api_token", total=4, active=4, expired=0, expiring_soon=1)
    unhealthy = CredentialTypeStats.build("api_key", total=4, active=3, expired=0, expiring_soon=0)

    assert expiring.health_status is HealthStatus.WARNING
    assert unhealthy.health_status is HealthStatus.WARNING
    assert unhealthy.health_percentage == 75.0


def test_stats_healthy_and_empty_group() -> None:
    healthy = CredentialTypeStats.build("api_token", total=2, active=2, expired=0, expiring_soon=0)
    empty = CredentialTypeStats.build("api_token", total=0, active=0, expired=0, expiring_soon=0)

    assert healthy.health_status is HealthStatus.HEALTHY
    assert empty.health_percentage == 0.0


@pytest.mark.parametrize(
    ("usage_count", "days_since_last_use", "average", "expected"),
    [
        (0, None, 0.0, UsagePattern.UNUSED),
        (5, 45, 0.5, UsagePattern.UNUSED),
        (30, 1, 3.0, UsagePattern.ACTIVE),
        (3, 10, 0.2, UsagePattern.OCCASIONAL),
        (2, 20, 0.05, UsagePattern.RARELY_USED),
    ],
)
def test_classify_usage(usage_count, days_since_last_use, average, expected) -> None:
    assert classify_usage(usage_count, days_since_last_use, average) is expected


def test_recommend_action_for_each_pattern() -> None:
    assert recommend_action(UsagePattern.ACTIVE, 1) is RecommendedAction.NO_ACTION
    assert recommend_action(UsagePattern.OCCASIONAL, 10) is RecommendedAction.MONITOR
    assert recommend_action(UsagePattern.RARELY_USED, 20) is RecommendedAction.CONSIDER_ROTATION
    assert recommend_action(UsagePattern.UNUSED, None) is RecommendedAction.MONITOR
    assert recommend_action(UsagePattern.UNUSED, 120) is RecommendedAction.CONSIDER_REMOVAL
