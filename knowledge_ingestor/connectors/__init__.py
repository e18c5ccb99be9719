"""Connector registry for managing available source connectors."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..exceptions import UnknownConnectorTypeError
from .base import DataConnector
from .github import GitHubConnector

if TYPE_CHECKING:
    from ..services.credential_vault import CredentialVault

# Connector registry - register new connectors here
_CONNECTOR_REGISTRY: dict[str, type[DataConnector]] = {}


def register_connector(connector_type: str, connector_class: type[DataConnector]) -> None:
    """
    Register a new connector class.

    Args:
        connector_type: Unique identifier for the connector
        connector_class: Connector class to register
    """
    _CONNECTOR_REGISTRY[connector_type] = connector_class


def get_connector_class(connector_type: str) -> type[DataConnector]:
    """
    Get a connector class by type.

    Raises:
        UnknownConnectorTypeError: If the connector type is not registered
    """
    if connector_type not in _CONNECTOR_REGISTRY:
        available = sorted(_CONNECTOR_REGISTRY.keys())
        available_display = ", ".join(available) if available else "none"
        raise UnknownConnectorTypeError(
            f"Connector '{connector_type}' is not registered. "
            f"Available connectors: {available_display}."
        )
    return _CONNECTOR_REGISTRY[connector_type]


def list_connectors() -> list[str]:
    """Return list of registered connector types."""
    return sorted(_CONNECTOR_REGISTRY.keys())


def build_connectors(credentials: CredentialVault | None = None) -> dict[str, DataConnector]:
    """Instantiate every registered connector, sharing one credential vault."""
    return {
        connector_type: connector_class(credentials=credentials)
        for connector_type, connector_class in _CONNECTOR_REGISTRY.items()
    }


register_connector(GitHubConnector.connector_type, GitHubConnector)
