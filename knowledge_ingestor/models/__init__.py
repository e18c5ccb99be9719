"""Persistence models and session helpers."""
from .api_credential import ApiCredential
from .base import Base, get_engine, reset_engine, session_scope
from .connector_config import ConnectorConfig
from .ingestion_job import IngestionJob

__all__ = [
    "ApiCredential",
    "Base",
    "ConnectorConfig",
    "IngestionJob",
    "get_engine",
    "reset_engine",
    "session_scope",
]
