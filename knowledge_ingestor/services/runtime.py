"""Wiring of the service graph used by the CLI and the Celery workers."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from ..connectors import build_connectors
from ..connectors.base import DataConnector, KnowledgeSink
from ..utils.config import get_settings
from .config_service import ConnectorConfigService
from .credential_vault import CredentialVault
from .job_service import IngestionJobService
from .orchestrator import SyncOrchestrator
from .scheduler import IngestionScheduler


@dataclass(slots=True)
class IngestionServices:
    config_service: ConnectorConfigService
    job_service: IngestionJobService
    vault: CredentialVault
    orchestrator: SyncOrchestrator
    scheduler: IngestionScheduler


def build_services(
    *,
    connectors: Mapping[str, DataConnector] | None = None,
    vault: CredentialVault | None = None,
    sink: KnowledgeSink | None = None,
) -> IngestionServices:
    """Build every service from the current settings.

    Connectors default to one instance of each registered connector type,
    sharing the credential vault.
    """

    settings = get_settings()
    vault = vault or CredentialVault()
    config_service = ConnectorConfigService(
        default_polling_interval_minutes=settings.default_polling_interval_minutes
    )
    job_service = IngestionJobService()
    orchestrator = SyncOrchestrator(
        connectors if connectors is not None else build_connectors(vault),
        config_service,
        job_service,
        sink=sink,
        max_concurrent_jobs=settings.max_concurrent_jobs,
        recent_jobs_limit=settings.recent_jobs_limit,
    )
    scheduler = IngestionScheduler(
        orchestrator, config_service, job_service, vault, settings=settings.scheduler
    )
    return IngestionServices(
        config_service=config_service,
        job_service=job_service,
        vault=vault,
        orchestrator=orchestrator,
        scheduler=scheduler,
    )
