"""Reference connector that pulls commits, issues, pull requests and READMEs from GitHub."""

from __future__ import annotations

import base64
import binascii
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from uuid import UUID

import httpx
from cachetools import TTLCache

from ..exceptions import (
    AuthenticationError,
    ConfigurationError,
    ConnectorConnectionError,
    CredentialNotFoundError,
    KnowledgeIngestorError,
    RateLimitError,
)
from ..models.base import utcnow
from ..models.connector_config import ConnectorConfig
from ..schemas.connector import ConnectorSettings, parse_connector_settings
from ..schemas.credentials import CredentialType
from ..schemas.knowledge import ItemFailure, KnowledgeItem, RateLimitStatus, SyncCheckpoint
from ..schemas.sync import SyncContext, SyncStrategy
from ..utils.config import get_settings
from ..utils.logging import setup_logger
from ..utils.retry import execute_with_retry
from .base import DataConnector, FetchedRecord

if TYPE_CHECKING:
    from ..services.credential_vault import CredentialVault

DEFAULT_BASE_URL = "https://api.github.com"
RATE_LIMIT_CACHE_TTL_SECONDS = 60.0

_STATUS_ERRORS = (httpx.HTTPStatusError, ValueError)
_PROBE_ERRORS = (KnowledgeIngestorError, httpx.HTTPError, KeyError, TypeError, ValueError)


def _parse_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _isoformat(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _login(user: Any) -> str:
    if isinstance(user, dict) and user.get("login"):
        return str(user["login"])
    return "Unknown"


def _reset_time(headers: httpx.Headers) -> datetime | None:
    raw = headers.get("x-ratelimit-reset")
    if raw is None or not raw.strip().isdigit():
        return None
    return datetime.fromtimestamp(int(raw), tz=timezone.utc)


class GitHubConnector(DataConnector):
    """Connector for github.com and GitHub Enterprise REST APIs.

    Configuration keys (see :class:`ConnectorSettings`): ``base_url`` plus
    either ``organization`` or ``repositories``; ``data_types`` restricts the
    categories fetched (``commits``, ``issues``, ``pull_requests``, ``readme``).
    The API token is read from the credential vault as ``api_token``.
    """

    connector_type = "github"
    logger = setup_logger(__name__, context={"connector_type": "github"})

    def __init__(
        self,
        credentials: CredentialVault | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__(credentials)
        self._transport = transport
        self._timeout = timeout if timeout is not None else get_settings().http_timeout_seconds
        self._rate_limits: TTLCache[UUID, RateLimitStatus] = TTLCache(
            maxsize=256, ttl=RATE_LIMIT_CACHE_TTL_SECONDS
        )

    def validate_config(self, config: ConnectorConfig) -> None:
        settings = parse_connector_settings(config.configuration)
        if not settings.base_url:
            raise ConfigurationError("GitHub base_url is required")
        if not settings.organization and not settings.repositories:
            raise ConfigurationError("Either organization or repositories must be specified")
        for repository in settings.repositories:
            owner, _, name = repository.partition("/")
            if not owner or not name or "/" in name:
                raise ConfigurationError(
                    f"Repository '{repository}' must be given as 'owner/name'"
                )

    async def fetch_data(
        self, config: ConnectorConfig, context: SyncContext
    ) -> AsyncIterator[FetchedRecord]:
        settings = parse_connector_settings(config.configuration)
        token = await self._resolve_token(config)
        since = self._resolve_since(context)
        fetch_started = utcnow()

        async with self._client(settings, token) as client:
            repositories = await self._resolve_repositories(client, config, settings)
            self.logger.info(
                "Fetching %d repositories (strategy=%s)",
                len(repositories),
                context.strategy.value,
                extra={"connector_name": config.name},
            )
            for repository in repositories:
                try:
                    async for record in self._fetch_repository(
                        client, config, settings, repository, since
                    ):
                        yield record
                except _STATUS_ERRORS as exc:
                    yield ItemFailure(
                        reference=repository, error=f"Failed to fetch repository data: {exc}"
                    )

        yield SyncCheckpoint(cursor=fetch_started.isoformat())

    async def test_connection(self, config: ConnectorConfig) -> bool:
        try:
            settings = parse_connector_settings(config.configuration)
            token = await self._resolve_token(config)
            async with self._client(settings, token) as client:
                response = await self._get(client, config, settings, "/user")
        except _PROBE_ERRORS as exc:
            self.logger.error("GitHub connection test failed: %s", exc)
            return False
        return response.status_code == 200

    async def get_rate_limit_status(self, config: ConnectorConfig) -> RateLimitStatus:
        cached = self._rate_limits.get(config.id)
        if cached is not None:
            return cached
        try:
            settings = parse_connector_settings(config.configuration)
            token = await self._resolve_token(config)
            async with self._client(settings, token) as client:
                response = await self._get(client, config, settings, "/rate_limit")
                response.raise_for_status()
                core = response.json()["resources"]["core"]
            status = RateLimitStatus(
                limit=int(core["limit"]),
                remaining=int(core["remaining"]),
                reset_time=datetime.fromtimestamp(int(core["reset"]), tz=timezone.utc),
                scope="core",
            )
        except _PROBE_ERRORS as exc:
            self.logger.error("Failed to get GitHub rate limit status: %s", exc)
            return RateLimitStatus.unknown()
        self._rate_limits[config.id] = status
        return status

    async def _resolve_token(self, config: ConnectorConfig) -> str:
        if self.credentials is None:
            raise AuthenticationError("GitHub connector was built without a credential vault")
        try:
            return await self.credentials.get_decrypted(config.id, CredentialType.API_TOKEN)
        except CredentialNotFoundError as exc:
            raise AuthenticationError(
                f"No usable GitHub API token stored for '{config.full_name}'"
            ) from exc

    def _resolve_since(self, context: SyncContext) -> datetime | None:
        strategy = context.strategy
        if strategy is SyncStrategy.CURSOR_BASED:
            try:
                return _parse_timestamp(context.cursor)
            except ValueError:
                self.logger.warning(
                    "Invalid sync cursor %r, falling back to last sync time", context.cursor
                )
                return context.last_sync_time
        if strategy is SyncStrategy.TIME_BASED:
            return context.last_sync_time
        return None

    @asynccontextmanager
    async def _client(
        self, settings: ConnectorSettings, token: str
    ) -> AsyncIterator[httpx.AsyncClient]:
        client_kwargs: dict[str, Any] = {
            "base_url": settings.base_url or DEFAULT_BASE_URL,
            "timeout": self._timeout,
            "headers": {
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
            },
        }
        if self._transport is not None:
            client_kwargs["transport"] = self._transport
        async with httpx.AsyncClient(**client_kwargs) as client:
            yield client

    async def _get(
        self,
        client: httpx.AsyncClient,
        config: ConnectorConfig,
        settings: ConnectorSettings,
        url: str,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        async def _send() -> httpx.Response:
            return await client.get(url, params=params)

        try:
            response = await execute_with_retry(
                _send, retry_config=settings.retry, log=self.logger
            )
        except httpx.TransportError as exc:
            raise ConnectorConnectionError(f"GitHub request to {url} failed: {exc}") from exc

        self._remember_rate_limit(config.id, response.headers)
        if response.status_code == 401:
            raise AuthenticationError("GitHub rejected the API token")
        if (
            response.status_code in (403, 429)
            and response.headers.get("x-ratelimit-remaining") == "0"
        ):
            raise RateLimitError(
                "GitHub API rate limit exhausted", reset_at=_reset_time(response.headers)
            )
        return response

    def _remember_rate_limit(self, config_id: UUID, headers: httpx.Headers) -> None:
        limit = headers.get("x-ratelimit-limit")
        remaining = headers.get("x-ratelimit-remaining")
        if limit is None or remaining is None:
            return
        if headers.get("x-ratelimit-resource", "core") != "core":
            return
        try:
            status = RateLimitStatus(
                limit=int(limit),
                remaining=int(remaining),
                reset_time=_reset_time(headers),
                scope="core",
            )
        except ValueError:
            return
        self._rate_limits[config_id] = status

    async def _paginate(
        self,
        client: httpx.AsyncClient,
        config: ConnectorConfig,
        settings: ConnectorSettings,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        url = path
        query: dict[str, Any] | None = {"per_page": settings.per_page, **(params or {})}
        for _ in range(settings.max_pages):
            response = await self._get(client, config, settings, url, query)
            response.raise_for_status()
            payload = response.json()
            if not isinstance(payload, list):
                raise ValueError(f"Expected a JSON array from {path}")
            for entry in payload:
                if isinstance(entry, dict):
                    yield entry
            next_link = response.links.get("next", {}).get("url")
            if not next_link:
                return
            url, query = next_link, None

    async def _resolve_repositories(
        self,
        client: httpx.AsyncClient,
        config: ConnectorConfig,
        settings: ConnectorSettings,
    ) -> list[str]:
        if settings.repositories:
            return list(settings.repositories)

        names: list[str] = []
        try:
            async for repository in self._paginate(
                client, config, settings, f"/orgs/{settings.organization}/repos", {"type": "all"}
            ):
                if repository.get("fork") and not settings.include_forks:
                    continue
                if repository.get("archived") and not settings.include_archived:
                    continue
                if repository.get("full_name"):
                    names.append(str(repository["full_name"]))
        except _STATUS_ERRORS as exc:
            raise ConnectorConnectionError(
                f"Failed to list repositories for organization '{settings.organization}': {exc}"
            ) from exc
        return names

    async def _fetch_repository(
        self,
        client: httpx.AsyncClient,
        config: ConnectorConfig,
        settings: ConnectorSettings,
        repository: str,
        since: datetime | None,
    ) -> AsyncIterator[FetchedRecord]:
        if settings.includes("commits"):
            params = {"since": _isoformat(since)} if since else {}
            async for raw in self._paginate(
                client, config, settings, f"/repos/{repository}/commits", params
            ):
                yield _convert(repository, "commit", raw, _commit_item)

        if settings.includes("issues"):
            params = {"state": "all", "sort": "updated", "direction": "desc"}
            if since:
                params["since"] = _isoformat(since)
            async for raw in self._paginate(
                client, config, settings, f"/repos/{repository}/issues", params
            ):
                # The issues endpoint also lists pull requests.
                if "pull_request" in raw:
                    continue
                yield _convert(repository, "issues", raw, _issue_item)

        if settings.includes("pull_requests"):
            params = {"state": "all", "sort": "updated", "direction": "desc"}
            async for raw in self._paginate(
                client, config, settings, f"/repos/{repository}/pulls", params
            ):
                if since is not None and _updated_before(raw, since):
                    break
                yield _convert(repository, "pull", raw, _pull_request_item)

        if settings.includes("readme") and since is None:
            readme = await self._fetch_readme(client, config, settings, repository)
            if readme is not None:
                yield readme

    async def _fetch_readme(
        self,
        client: httpx.AsyncClient,
        config: ConnectorConfig,
        settings: ConnectorSettings,
        repository: str,
    ) -> FetchedRecord | None:
        response = await self._get(client, config, settings, f"/repos/{repository}/readme")
        if response.status_code == 404:
            self.logger.debug("No README found for repository: %s", repository)
            return None
        response.raise_for_status()
        return _convert(repository, "readme", response.json(), _readme_item)


def _updated_before(raw: dict[str, Any], since: datetime) -> bool:
    try:
        updated = _parse_timestamp(raw.get("updated_at"))
    except ValueError:
        return False
    return updated is not None and updated < since


def _convert(
    repository: str,
    kind: str,
    raw: dict[str, Any],
    builder: Callable[[str, dict[str, Any]], KnowledgeItem],
) -> FetchedRecord:
    try:
        return builder(repository, raw)
    except (KeyError, TypeError, ValueError, binascii.Error) as exc:
        identifier = raw.get("sha") or raw.get("number") or raw.get("path") or "unknown"
        return ItemFailure(
            reference=f"{repository}/{kind}/{identifier}",
            error=f"Malformed {kind} payload: {exc!r}",
        )


def _commit_item(repository: str, raw: dict[str, Any]) -> KnowledgeItem:
    sha = str(raw["sha"])
    commit = raw["commit"]
    message = str(commit["message"])
    author = commit.get("author") or {}
    summary = message.splitlines()[0] if message else ""
    return KnowledgeItem(
        title=f"Commit: {sha[:8]} - {summary}",
        content=message,
        source_type="github_commit",
        source_reference=f"{repository}/commit/{sha}",
        author=author.get("name") or "Unknown",
        created_at=_parse_timestamp(author.get("date")),
        metadata={"repository": repository, "sha": sha, "url": raw.get("html_url")},
    )


def _issue_item(repository: str, raw: dict[str, Any]) -> KnowledgeItem:
    number = int(raw["number"])
    labels = [label["name"] for label in raw.get("labels") or [] if isinstance(label, dict)]
    return KnowledgeItem(
        title=f"Issue #{number}: {raw['title']}",
        content=raw.get("body") or "",
        source_type="github_issue",
        source_reference=f"{repository}/issues/{number}",
        author=_login(raw.get("user")),
        created_at=_parse_timestamp(raw.get("created_at")),
        updated_at=_parse_timestamp(raw.get("updated_at")),
        metadata={
            "repository": repository,
            "issue_number": number,
            "state": raw.get("state"),
            "url": raw.get("html_url"),
            "labels": labels,
            "comments_count": raw.get("comments", 0),
        },
    )


def _pull_request_item(repository: str, raw: dict[str, Any]) -> KnowledgeItem:
    number = int(raw["number"])
    return KnowledgeItem(
        title=f"PR #{number}: {raw['title']}",
        content=raw.get("body") or "",
        source_type="github_pull_request",
        source_reference=f"{repository}/pull/{number}",
        author=_login(raw.get("user")),
        created_at=_parse_timestamp(raw.get("created_at")),
        updated_at=_parse_timestamp(raw.get("updated_at")),
        metadata={
            "repository": repository,
            "pr_number": number,
            "state": raw.get("state"),
            "url": raw.get("html_url"),
            "draft": bool(raw.get("draft", False)),
            "merged_at": raw.get("merged_at"),
        },
    )


def _readme_item(repository: str, raw: dict[str, Any]) -> KnowledgeItem:
    name = str(raw["name"])
    encoded = str(raw["content"])
    if raw.get("encoding", "base64") == "base64":
        content = base64.b64decode(encoded).decode("utf-8", errors="replace")
    else:
        content = encoded
    return KnowledgeItem(
        title=f"README - {repository}",
        content=content,
        source_type="github_readme",
        source_reference=f"{repository}/blob/HEAD/{raw.get('path') or name}",
        author="Repository",
        created_at=utcnow(),
        metadata={
            "repository": repository,
            "file_name": name,
            "url": raw.get("html_url"),
            "size": raw.get("size"),
        },
    )
