"""Validated view of the per-connector configuration payload."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from ..exceptions import ConfigurationError
from ..utils.retry import RetryConfig


class ConnectorSettings(BaseModel):
    """Common fields understood by connectors; unknown keys are preserved."""

    model_config = ConfigDict(extra="allow")

    base_url: str | None = None
    organization: str | None = None
    repositories: list[str] = Field(default_factory=list)
    data_types: list[str] | None = Field(
        default=None, description="Allow-list of data categories; absent means everything"
    )
    polling_interval_minutes: int | None = Field(default=None, ge=1)
    include_forks: bool = False
    include_archived: bool = False
    per_page: int = Field(default=100, ge=1, le=100)
    max_pages: int = Field(default=10, ge=1)
    retry: RetryConfig = Field(default_factory=RetryConfig)

    @field_validator("base_url")
    @classmethod
    def _strip_base_url(cls, value: str | None) -> str | None:
        if value is None:
            return None
        trimmed = value.strip().rstrip("/")
        return trimmed or None

    @field_validator("repositories", mode="before")
    @classmethod
    def _coerce_repositories(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        return [str(item).strip() for item in value if str(item).strip()]

    @field_validator("data_types", mode="before")
    @classmethod
    def _normalize_data_types(cls, value: Any) -> list[str] | None:
        if value is None:
            return None
        if isinstance(value, str):
            value = value.split(",")
        return [str(item).strip().lower() for item in value if str(item).strip()]

    def includes(self, data_type: str) -> bool:
        """Return True when ``data_type`` is enabled by the allow-list."""

        if self.data_types is None:
            return True
        return data_type.lower() in self.data_types


def parse_connector_settings(configuration: dict[str, Any] | None) -> ConnectorSettings:
    """Validate a connector payload, wrapping pydantic errors in ``ConfigurationError``."""

    try:
        return ConnectorSettings.model_validate(configuration or {})
    except PydanticValidationError as exc:
        raise ConfigurationError(f"Invalid connector configuration: {exc}") from exc
