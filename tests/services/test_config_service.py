"""Tests for connector configuration management."""

from datetime import timedelta

import pytest

from knowledge_ingestor.exceptions import (
    ConfigurationError,
    ConnectorConfigExistsError,
    ConnectorConfigNotFoundError,
)
from knowledge_ingestor.models.base import utcnow
from knowledge_ingestor.schemas.credentials import CredentialType


@pytest.mark.asyncio
async def test_create_uses_payload_polling_interval(config_service, acme_config) -> None:
    loaded = await config_service.get_by_type_and_name("github", "acme")

    assert loaded.id == acme_config.id
    assert loaded.enabled is True
    assert loaded.polling_interval_minutes == 30
    assert loaded.last_sync_time is None
    assert loaded.consecutive_error_count == 0


@pytest.mark.asyncio
async def test_default_polling_interval_applies_when_payload_omits_it(config_service) -> None:
    config = await config_service.create_configuration(
        "github", "defaults", {"base_url": "https://api.github.com", "organization": "acme"}
    )

    assert config.polling_interval_minutes == 30
    assert config.enabled is False


@pytest.mark.asyncio
async def test_duplicate_type_and_name_is_rejected(config_service, acme_config, github_payload) -> None:
    with pytest.raises(ConnectorConfigExistsError):
        await config_service.create_configuration("github", "acme", github_payload)


@pytest.mark.asyncio
async def test_invalid_payload_is_a_configuration_error(config_service) -> None:
    with pytest.raises(ConfigurationError):
        await config_service.create_configuration(
            "github", "broken", {"polling_interval_minutes": 0}
        )


@pytest.mark.asyncio
async def test_lookup_of_unknown_config_raises(config_service) -> None:
    assert await config_service.find_by_type_and_name("github", "nobody") is None
    with pytest.raises(ConnectorConfigNotFoundError):
        await config_service.get_by_type_and_name("github", "nobody")


@pytest.mark.asyncio
async def test_enable_disable_and_list_enabled(config_service, acme_config, github_payload) -> None:
    await config_service.create_configuration("github", "other", github_payload)

    assert [c.name for c in await config_service.list_enabled()] == ["acme"]

    await config_service.set_enabled(acme_config.id, False)

    assert await config_service.list_enabled("github") == []
    assert [c.name for c in await config_service.list_by_type("github")] == ["acme", "other"]
    [counts] = await config_service.type_stats()
    assert (counts.connector_type, counts.total, counts.enabled) == ("github", 2, 0)


@pytest.mark.asyncio
async def test_update_configuration_changes_interval(config_service, acme_config, github_payload) -> None:
    payload = dict(github_payload, polling_interval_minutes=90)

    updated = await config_service.update_configuration(
        acme_config.id, configuration=payload, description="nightly"
    )

    assert updated.polling_interval_minutes == 90
    assert updated.description == "nightly"


@pytest.mark.asyncio
async def test_record_success_and_error_track_health(config_service, acme_config) -> None:
    failed_at = utcnow()
    for _ in range(4):
        await config_service.record_sync_error(acme_config.id, "boom", failed_at)

    failing = await config_service.get(acme_config.id)
    assert failing.consecutive_error_count == 4
    assert failing.is_healthy is False
    assert [c.id for c in await config_service.list_failing()] == [acme_config.id]

    synced_at = utcnow()
    recovered = await config_service.record_sync_success(acme_config.id, synced_at, "cursor-1")

    assert recovered.consecutive_error_count == 0
    assert recovered.last_error_message is None
    assert recovered.last_sync_time == synced_at
    assert recovered.last_successful_sync == synced_at
    assert recovered.last_sync_cursor == "cursor-1"
    assert recovered.is_healthy


@pytest.mark.asyncio
async def test_due_configs_follow_polling_interval(config_service, acme_config) -> None:
    now = utcnow()
    assert [c.id for c in await config_service.list_due_for_scheduled_sync(now)] == [acme_config.id]

    await config_service.record_sync_success(acme_config.id, now, None)

    assert await config_service.list_due_for_scheduled_sync(now + timedelta(minutes=10)) == []
    due_later = await config_service.list_due_for_scheduled_sync(now + timedelta(minutes=31))
    assert [c.id for c in due_later] == [acme_config.id]


@pytest.mark.asyncio
async def test_delete_refused_while_credentials_are_active(config_service, vault, acme_config) -> None:
    credential = await vault.store(acme_config.id, CredentialType.API_TOKEN, "ghp_secret")

    with pytest.raises(ConfigurationError):
        await config_service.delete_configuration(acme_config.id)

    await vault.deactivate(credential.id)
    await config_service.delete_configuration(acme_config.id)

    assert await config_service.find_by_type_and_name("github", "acme") is None
