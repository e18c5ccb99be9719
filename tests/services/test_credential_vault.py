"""Behavioural tests for the encrypted credential vault."""

import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select

from knowledge_ingestor.exceptions import (
    ConnectorConfigNotFoundError,
    CredentialAlreadyExistsError,
    CredentialNotFoundError,
)
from knowledge_ingestor.models.api_credential import ApiCredential
from knowledge_ingestor.models.base import session_scope, utcnow
from knowledge_ingestor.schemas.credentials import (
    CredentialType,
    ExpirationUrgency,
    HealthStatus,
    RecommendedAction,
    UsagePattern,
)


def _stored_rows(config_id: uuid.UUID) -> list[ApiCredential]:
    with session_scope() as session:
        stmt = select(ApiCredential).where(ApiCredential.connector_config_id == config_id)
        return list(session.scalars(stmt))


@pytest.mark.asyncio
async def test_store_encrypts_value_at_rest(vault, acme_config) -> None:
    summary = await vault.store(acme_config.id, CredentialType.API_TOKEN, "ghp_secret")

    rows = _stored_rows(acme_config.id)
    assert len(rows) == 1
    assert rows[0].encrypted_value.startswith("enc:v1:")
    assert "ghp_secret" not in rows[0].encrypted_value
    assert summary.is_active
    assert summary.usage_count == 0
    assert "ghp_secret" not in summary.model_dump_json()


@pytest.mark.asyncio
async def test_second_active_credential_of_same_type_is_rejected(vault, acme_config) -> None:
    await vault.store(acme_config.id, CredentialType.API_TOKEN, "first")

    with pytest.raises(CredentialAlreadyExistsError):
        await vault.store(acme_config.id, "api_token", "second")

    other = await vault.store(acme_config.id, CredentialType.WEBHOOK_SECRET, "hook")
    assert other.credential_type == "webhook_secret"


@pytest.mark.asyncio
async def test_get_decrypted_returns_plaintext_and_records_usage(vault, acme_config) -> None:
    await vault.store(acme_config.id, CredentialType.API_TOKEN, "ghp_secret")

    assert await vault.get_decrypted(acme_config.id, CredentialType.API_TOKEN) == "ghp_secret"
    assert await vault.get_decrypted(acme_config.id, "api_token") == "ghp_secret"

    [summary] = await vault.list_credentials(acme_config.id)
    assert summary.usage_count == 2
    assert summary.last_used is not None


@pytest.mark.asyncio
async def test_missing_or_expired_credentials_are_not_found(vault, acme_config) -> None:
    with pytest.raises(CredentialNotFoundError):
        await vault.get_decrypted(acme_config.id, CredentialType.API_TOKEN)

    await vault.store(
        acme_config.id,
        CredentialType.API_TOKEN,
        "stale",
        expires_at=utcnow() - timedelta(hours=1),
    )
    with pytest.raises(CredentialNotFoundError):
        await vault.get_decrypted(acme_config.id, CredentialType.API_TOKEN)
    assert await vault.validate(acme_config.id, CredentialType.API_TOKEN) is False


@pytest.mark.asyncio
async def test_rotation_leaves_exactly_one_active_credential(vault, acme_config) -> None:
    original = await vault.store(acme_config.id, CredentialType.API_TOKEN, "old", description="ci")

    replacement = await vault.rotate(acme_config.id, CredentialType.API_TOKEN, "new")

    rows = _stored_rows(acme_config.id)
    active = [row for row in rows if row.is_active]
    assert len(rows) == 2
    assert [row.id for row in active] == [replacement.id]
    assert replacement.id != original.id
    assert replacement.description == "ci"
    assert await vault.get_decrypted(acme_config.id, CredentialType.API_TOKEN) == "new"


@pytest.mark.asyncio
async def test_rotation_without_active_credential_fails(vault, acme_config) -> None:
    with pytest.raises(CredentialNotFoundError):
        await vault.rotate(acme_config.id, CredentialType.API_TOKEN, "new")


@pytest.mark.asyncio
async def test_validate_and_deactivate(vault, acme_config) -> None:
    summary = await vault.store(acme_config.id, CredentialType.API_TOKEN, "ghp_secret")
    assert await vault.validate(acme_config.id, CredentialType.API_TOKEN) is True

    deactivated = await vault.deactivate(summary.id)

    assert deactivated.is_active is False
    assert await vault.validate(acme_config.id, CredentialType.API_TOKEN) is False
    assert await vault.list_credentials(acme_config.id, active_only=True) == []
    assert len(await vault.list_credentials(acme_config.id)) == 1

    with pytest.raises(CredentialNotFoundError):
        await vault.deactivate(uuid.uuid4())


@pytest.mark.asyncio
async def test_update_replaces_value_and_metadata(vault, acme_config) -> None:
    summary = await vault.store(acme_config.id, CredentialType.API_TOKEN, "v1")
    expires_at = utcnow() + timedelta(days=90)

    updated = await vault.update(summary.id, plaintext="v2", expires_at=expires_at, description="new")

    assert updated.description == "new"
    assert updated.expires_at == expires_at
    assert await vault.get_decrypted(acme_config.id, CredentialType.API_TOKEN) == "v2"


@pytest.mark.asyncio
async def test_deactivate_all_for_connector(vault, acme_config) -> None:
    await vault.store(acme_config.id, CredentialType.API_TOKEN, "a")
    await vault.store(acme_config.id, CredentialType.WEBHOOK_SECRET, "b")

    assert await vault.deactivate_all_for_connector(acme_config.id) == 2
    assert await vault.list_credentials(acme_config.id, active_only=True) == []


@pytest.mark.asyncio
async def test_expiring_soon_only_includes_window(vault, acme_config) -> None:
    now = utcnow()
    soon = await vault.store(
        acme_config.id, CredentialType.API_TOKEN, "a", expires_at=now + timedelta(days=2, hours=1)
    )
    await vault.store(
        acme_config.id, CredentialType.API_KEY, "b", expires_at=now + timedelta(days=10)
    )
    await vault.store(acme_config.id, CredentialType.OAUTH_TOKEN, "c")

    expiring = await vault.list_expiring_soon(7)
    with_urgency = await vault.list_expiring_with_urgency(7)

    assert [item.id for item in expiring] == [soon.id]
    assert len(with_urgency) == 1
    assert with_urgency[0].days_until_expiration == 2
    assert with_urgency[0].urgency is ExpirationUrgency.HIGH


@pytest.mark.asyncio
async def test_list_expired_returns_active_expired_credentials(vault, acme_config) -> None:
    expired = await vault.store(
        acme_config.id, CredentialType.API_TOKEN, "a", expires_at=utcnow() - timedelta(days=1)
    )
    await vault.store(acme_config.id, CredentialType.API_KEY, "b")

    assert [item.id for item in await vault.list_expired()] == [expired.id]


@pytest.mark.asyncio
async def test_stats_group_by_type(vault, acme_config) -> None:
    await vault.store(
        acme_config.id, CredentialType.API_TOKEN, "a", expires_at=utcnow() - timedelta(days=1)
    )
    await vault.store(acme_config.id, CredentialType.API_KEY, "b")

    stats = {entry.credential_type: entry for entry in await vault.stats()}

    assert stats["api_token"].health_status is HealthStatus.CRITICAL
    assert stats["api_token"].expired == 1
    assert stats["api_key"].health_status is HealthStatus.HEALTHY
    assert stats["api_key"].health_percentage == 100.0


@pytest.mark.asyncio
async def test_usage_analytics_flags_unused_credentials(vault, acme_config) -> None:
    await vault.store(acme_config.id, CredentialType.API_TOKEN, "a")
    await vault.store(acme_config.id, CredentialType.API_KEY, "b")
    for _ in range(3):
        await vault.get_decrypted(acme_config.id, CredentialType.API_TOKEN)

    usage = {entry.credential_type: entry for entry in await vault.usage_analytics(acme_config.id)}

    token = usage["api_token"]
    assert token.usage_count == 3
    assert token.days_since_last_use == 0
    assert token.average_uses_per_day == 3.0
    assert token.pattern is UsagePattern.ACTIVE
    assert token.recommended_action is RecommendedAction.NO_ACTION

    key = usage["api_key"]
    assert key.is_unused
    assert key.pattern is UsagePattern.UNUSED
    assert key.recommended_action is RecommendedAction.MONITOR


@pytest.mark.asyncio
async def test_store_requires_existing_connector(vault) -> None:
    unknown = uuid.uuid4()

    with pytest.raises(ConnectorConfigNotFoundError):
        await vault.store(unknown, CredentialType.API_TOKEN, "secret")

    assert _stored_rows(unknown) == []
