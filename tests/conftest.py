"""Pytest configuration - no path manipulation, rely on proper package installation."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import httpx
import pytest
import pytest_asyncio

from knowledge_ingestor.connectors.base import DataConnector, FetchedRecord
from knowledge_ingestor.models.base import reset_engine
from knowledge_ingestor.models.connector_config import ConnectorConfig
from knowledge_ingestor.schemas.knowledge import KnowledgeItem, RateLimitStatus
from knowledge_ingestor.schemas.sync import SyncContext
from knowledge_ingestor.security.cipher import CredentialCipher
from knowledge_ingestor.services.config_service import ConnectorConfigService
from knowledge_ingestor.services.credential_vault import CredentialVault
from knowledge_ingestor.services.job_service import IngestionJobService
from knowledge_ingestor.utils.config import get_settings

TEST_ENCRYPTION_KEY = "00112233445566778899aabbccddeeff" * 2


@pytest.fixture(autouse=True)
def _isolated_runtime(monkeypatch: pytest.MonkeyPatch, tmp_path):
    """Point every test at its own SQLite database and a fixed encryption key."""

    db_path = tmp_path / "ingestion.sqlite"
    monkeypatch.setenv("INGESTOR_DATABASE_URL", f"sqlite:///{db_path}")
    monkeypatch.setenv("INGESTOR_ENCRYPTION_KEY", TEST_ENCRYPTION_KEY)
    monkeypatch.delenv("INGESTOR_MAX_CONCURRENT_JOBS", raising=False)
    monkeypatch.delenv("INGESTOR_SECRETS_MANAGER__ENABLED", raising=False)

    reset_engine()
    get_settings(reload=True)
    yield
    reset_engine()
    get_settings(reload=True)


class FakeConnector(DataConnector):
    """In-memory connector yielding a scripted record sequence."""

    connector_type = "fake"

    def __init__(
        self,
        records: list[FetchedRecord] | None = None,
        *,
        credentials: CredentialVault | None = None,
        connector_type: str | None = None,
        error: Exception | None = None,
        validate_error: Exception | None = None,
        connected: bool = True,
        gate: asyncio.Event | None = None,
    ) -> None:
        if connector_type is not None:
            self.connector_type = connector_type
        super().__init__(credentials)
        self.records = list(records or [])
        self.error = error
        self.validate_error = validate_error
        self.connected = connected
        self.gate = gate
        self.contexts: list[SyncContext] = []
        self.started = asyncio.Event()

    def validate_config(self, config: ConnectorConfig) -> None:
        if self.validate_error is not None:
            raise self.validate_error

    async def fetch_data(
        self, config: ConnectorConfig, context: SyncContext
    ) -> AsyncIterator[FetchedRecord]:
        self.contexts.append(context)
        self.started.set()
        for record in self.records:
            yield record
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error

    async def test_connection(self, config: ConnectorConfig) -> bool:
        return self.connected

    async def get_rate_limit_status(self, config: ConnectorConfig) -> RateLimitStatus:
        return RateLimitStatus(limit=5000, remaining=4999, scope="core")


def make_item(index: int, **overrides: Any) -> KnowledgeItem:
    fields: dict[str, Any] = {
        "title": f"Item {index}",
        "content": f"content {index}",
        "source_type": "fake_record",
        "source_reference": f"fake/{index}",
    }
    fields.update(overrides)
    return KnowledgeItem(**fields)


@pytest.fixture
def fake_connector_cls() -> type[FakeConnector]:
    return FakeConnector


@pytest.fixture
def item_factory():
    return make_item


@pytest.fixture
def config_service() -> ConnectorConfigService:
    return ConnectorConfigService(default_polling_interval_minutes=30)


@pytest.fixture
def job_service() -> IngestionJobService:
    return IngestionJobService()


@pytest.fixture
def vault() -> CredentialVault:
    return CredentialVault(CredentialCipher(TEST_ENCRYPTION_KEY))


@pytest.fixture
def github_payload() -> dict[str, Any]:
    return {
        "base_url": "https://api.github.com",
        "organization": "acme",
        "polling_interval_minutes": 30,
    }


@pytest_asyncio.fixture
async def acme_config(
    config_service: ConnectorConfigService, github_payload: dict[str, Any]
) -> ConnectorConfig:
    """Enabled ``github/acme`` configuration that has never synced."""

    return await config_service.create_configuration(
        "github", "acme", github_payload, enabled=True, created_by="tests"
    )


@pytest.fixture
def encryption_key() -> str:
    return TEST_ENCRYPTION_KEY


RATE_LIMIT_HEADERS = {
    "X-RateLimit-Limit": "5000",
    "X-RateLimit-Remaining": "4990",
    "X-RateLimit-Reset": "1790000000",
    "X-RateLimit-Resource": "core",
}


@pytest.fixture
def github_routes() -> dict[str, Any]:
    """Canned GitHub API responses for the ``acme`` organization, keyed by path."""

    return {
        "/orgs/acme/repos": [
            {"full_name": "acme/api"},
            {"full_name": "acme/api-fork", "fork": True},
            {"full_name": "acme/legacy", "archived": True},
        ],
        "/repos/acme/api/commits": [
            {
                "sha": "abcdef1234567890",
                "html_url": "https://github.com/acme/api/commit/abcdef1234567890",
                "commit": {
                    "message": "Fix retry loop\n\nThe backoff never reset.",
                    "author": {"name": "Ada", "date": "2026-10-01T10:00:00Z"},
                },
            }
        ],
        "/repos/acme/api/issues": [
            {
                "number": 7,
                "title": "Crash on empty payload",
                "body": "Steps to reproduce",
                "state": "open",
                "user": {"login": "grace"},
                "labels": [{"name": "bug"}],
                "created_at": "2026-10-02T09:00:00Z",
                "updated_at": "2026-10-03T09:00:00Z",
            },
            {"number": 8, "title": "PR listed as issue", "pull_request": {}},
        ],
        "/repos/acme/api/pulls": [
            {"number": 9, "state": "open", "updated_at": "2026-10-04T09:00:00Z"},
        ],
    }


@pytest.fixture
def github_api():
    """Return a builder for an ``httpx.MockTransport`` serving ``routes``."""

    def _build(
        routes: dict[str, Any],
        *,
        requests: list[httpx.Request] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.MockTransport:
        response_headers = dict(RATE_LIMIT_HEADERS)
        response_headers.update(headers or {})

        def handler(request: httpx.Request) -> httpx.Response:
            if requests is not None:
                requests.append(request)
            route = routes.get(request.url.path)
            if route is None:
                return httpx.Response(404, json={"message": "Not Found"}, headers=response_headers)
            status, payload = route if isinstance(route, tuple) else (200, route)
            return httpx.Response(status, json=payload, headers=response_headers)

        return httpx.MockTransport(handler)

    return _build
