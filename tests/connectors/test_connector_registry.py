"""Tests for the connector registry."""

import pytest

from knowledge_ingestor.connectors import (
    build_connectors,
    get_connector_class,
    list_connectors,
    register_connector,
)
from knowledge_ingestor.connectors import _CONNECTOR_REGISTRY
from knowledge_ingestor.connectors.github import GitHubConnector
from knowledge_ingestor.exceptions import UnknownConnectorTypeError


@pytest.fixture
def restore_registry():
    snapshot = dict(_CONNECTOR_REGISTRY)
    yield
    _CONNECTOR_REGISTRY.clear()
    _CONNECTOR_REGISTRY.update(snapshot)


def test_github_connector_is_registered() -> None:
    assert "github" in list_connectors()
    assert get_connector_class("github") is GitHubConnector


def test_unknown_connector_lists_available_types() -> None:
    with pytest.raises(UnknownConnectorTypeError) as excinfo:
        get_connector_class("jira")

    assert "Available connectors: github" in str(excinfo.value)
    assert excinfo.value.kind == "unknown_connector_type"


def test_register_and_build_share_vault(restore_registry, fake_connector_cls, vault) -> None:
    register_connector("fake", fake_connector_cls)

    connectors = build_connectors(vault)

    assert list_connectors() == ["fake", "github"]
    assert isinstance(connectors["github"], GitHubConnector)
    assert connectors["github"].credentials is vault
    assert connectors["fake"].get_type() == "fake"
