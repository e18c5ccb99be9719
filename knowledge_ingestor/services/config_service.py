"""Connector configuration management and persisted sync state."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy.exc import IntegrityError

from ..exceptions import (
    ConfigurationError,
    ConnectorConfigExistsError,
    ConnectorConfigNotFoundError,
)
from ..models.base import session_scope, utcnow
from ..models.connector_config import ConnectorConfig
from ..models.repository import (
    ApiCredentialRepository,
    ConnectorConfigCreate,
    ConnectorConfigRepository,
    ConnectorTypeCount,
)
from ..schemas.connector import parse_connector_settings
from ..utils.audit import AuditAction, AuditLogger, get_audit_logger
from ..utils.config import get_settings
from ..utils.logging import setup_logger
from .base import ThreadedService

logger = setup_logger(__name__)


class ConnectorConfigService(ThreadedService):
    """CRUD for connector configurations plus the sync-state bookkeeping the orchestrator uses."""

    def __init__(
        self,
        *,
        default_polling_interval_minutes: int | None = None,
        audit: AuditLogger | None = None,
    ) -> None:
        self._default_interval = (
            default_polling_interval_minutes or get_settings().default_polling_interval_minutes
        )
        self._audit = audit or get_audit_logger()

    async def create_configuration(
        self,
        connector_type: str,
        name: str,
        configuration: dict[str, Any],
        *,
        enabled: bool = False,
        description: str | None = None,
        created_by: str | None = None,
    ) -> ConnectorConfig:
        settings = parse_connector_settings(configuration)
        data = ConnectorConfigCreate(
            connector_type=connector_type,
            name=name,
            configuration=configuration,
            enabled=enabled,
            description=description,
            polling_interval_minutes=settings.polling_interval_minutes,
            created_by=created_by,
        )
        config = await self._run_in_thread(self._create, data)
        self._audit.log_config_change(
            AuditAction.CONFIG_CREATED,
            connector_type=connector_type,
            name=name,
            actor=created_by or "system",
            enabled=enabled,
        )
        logger.info(
            "Created connector configuration",
            extra={"connector_type": connector_type, "connector_name": name},
        )
        return config

    def _create(self, data: ConnectorConfigCreate) -> ConnectorConfig:
        try:
            with session_scope() as session:
                repository = ConnectorConfigRepository(session)
                if repository.find_by_type_and_name(data.connector_type, data.name) is not None:
                    raise ConnectorConfigExistsError(data.connector_type, data.name)
                return repository.create(data, default_interval=self._default_interval)
        except IntegrityError:
            raise ConnectorConfigExistsError(data.connector_type, data.name) from None

    async def update_configuration(
        self,
        config_id: uuid.UUID,
        *,
        configuration: dict[str, Any] | None = None,
        description: str | None = None,
    ) -> ConnectorConfig:
        settings = parse_connector_settings(configuration) if configuration is not None else None

        def _update() -> ConnectorConfig:
            with session_scope() as session:
                config = self._require(ConnectorConfigRepository(session), config_id)
                if configuration is not None:
                    config.configuration = dict(configuration)
                    if settings is not None and settings.polling_interval_minutes:
                        config.polling_interval_minutes = settings.polling_interval_minutes
                if description is not None:
                    config.description = description
                session.flush()
                return config

        config = await self._run_in_thread(_update)
        self._audit.log_config_change(
            AuditAction.CONFIG_UPDATED, connector_type=config.connector_type, name=config.name
        )
        return config

    async def set_enabled(self, config_id: uuid.UUID, enabled: bool) -> ConnectorConfig:
        def _set() -> ConnectorConfig:
            with session_scope() as session:
                config = self._require(ConnectorConfigRepository(session), config_id)
                config.enabled = enabled
                session.flush()
                return config

        config = await self._run_in_thread(_set)
        self._audit.log_config_change(
            AuditAction.CONFIG_ENABLED if enabled else AuditAction.CONFIG_DISABLED,
            connector_type=config.connector_type,
            name=config.name,
        )
        return config

    async def get(self, config_id: uuid.UUID) -> ConnectorConfig:
        def _get() -> ConnectorConfig:
            with session_scope() as session:
                return self._require(ConnectorConfigRepository(session), config_id)

        return await self._run_in_thread(_get)

    async def find_by_type_and_name(self, connector_type: str, name: str) -> ConnectorConfig | None:
        def _find() -> ConnectorConfig | None:
            with session_scope() as session:
                return ConnectorConfigRepository(session).find_by_type_and_name(connector_type, name)

        return await self._run_in_thread(_find)

    async def get_by_type_and_name(self, connector_type: str, name: str) -> ConnectorConfig:
        config = await self.find_by_type_and_name(connector_type, name)
        if config is None:
            raise ConnectorConfigNotFoundError(connector_type, name)
        return config

    async def list_all(self) -> list[ConnectorConfig]:
        return await self._in_session(lambda repo: repo.list_all())

    async def list_enabled(self, connector_type: str | None = None) -> list[ConnectorConfig]:
        return await self._in_session(lambda repo: repo.list_enabled(connector_type))

    async def list_by_type(self, connector_type: str) -> list[ConnectorConfig]:
        return await self._in_session(lambda repo: repo.list_by_type(connector_type))

    async def list_due_for_scheduled_sync(self, now: datetime | None = None) -> list[ConnectorConfig]:
        current = now or utcnow()
        return await self._in_session(lambda repo: repo.list_due_for_scheduled_sync(current))

    async def list_failing(self) -> list[ConnectorConfig]:
        return await self._in_session(lambda repo: repo.list_failing())

    async def type_stats(self) -> list[ConnectorTypeCount]:
        return await self._in_session(lambda repo: repo.count_by_type())

    async def delete_configuration(self, config_id: uuid.UUID) -> None:
        """Delete a configuration; refused while it still has active credentials."""

        def _delete() -> ConnectorConfig:
            with session_scope() as session:
                repository = ConnectorConfigRepository(session)
                config = self._require(repository, config_id)
                active = ApiCredentialRepository(session).count_active_for_connector(config_id)
                if active:
                    raise ConfigurationError(
                        f"Connector configuration '{config.full_name}' still has {active} "
                        "active credential(s); deactivate them before deleting"
                    )
                repository.delete(config)
                return config

        config = await self._run_in_thread(_delete)
        self._audit.log_config_change(
            AuditAction.CONFIG_DELETED, connector_type=config.connector_type, name=config.name
        )

    async def record_sync_success(
        self,
        config_id: uuid.UUID,
        sync_time: datetime,
        cursor: str | None,
    ) -> ConnectorConfig:
        def _record() -> ConnectorConfig:
            with session_scope() as session:
                config = self._require(ConnectorConfigRepository(session), config_id)
                config.record_sync_success(sync_time, cursor)
                session.flush()
                return config

        return await self._run_in_thread(_record)

    async def record_sync_error(
        self,
        config_id: uuid.UUID,
        message: str,
        error_time: datetime | None = None,
    ) -> ConnectorConfig:
        def _record() -> ConnectorConfig:
            with session_scope() as session:
                config = self._require(ConnectorConfigRepository(session), config_id)
                config.record_sync_error(message, error_time or utcnow())
                session.flush()
                return config

        return await self._run_in_thread(_record)

    async def _in_session(self, query: Any) -> Any:
        def _run() -> Any:
            with session_scope() as session:
                return query(ConnectorConfigRepository(session))

        return await self._run_in_thread(_run)

    @staticmethod
    def _require(repository: ConnectorConfigRepository, config_id: uuid.UUID) -> ConnectorConfig:
        config = repository.get(config_id)
        if config is None:
            raise ConnectorConfigNotFoundError(str(config_id))
        return config
