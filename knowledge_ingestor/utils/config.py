"""Configuration loader and settings helpers for knowledge_ingestor."""

from __future__ import annotations

import base64
import json
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from boto3.session import Session
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "INGESTOR_"
REQUIRED_ENV = ("INGESTOR_DATABASE_URL", "INGESTOR_ENCRYPTION_KEY")


def load_yaml_config(config_path: str | Path) -> dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Configuration dictionary

    Raises:
        ConfigurationError: If file not found or invalid YAML
    """
    try:
        with open(config_path) as f:
            config = yaml.safe_load(f)
            return config if config else {}
    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file not found: {config_path}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}")


class AWSSettings(BaseModel):
    """AWS-specific configuration options derived from global settings."""

    model_config = ConfigDict(extra="forbid")

    region: str | None = None


class DatabasePoolSettings(BaseModel):
    """Connection pooling configuration for the SQLAlchemy engine."""

    model_config = ConfigDict(extra="forbid")

    pool_size: int = Field(default=5, ge=1)
    max_overflow: int = Field(default=10, ge=0)
    timeout: float = Field(default=30.0, gt=0)
    recycle_seconds: int = Field(default=1800, ge=0)
    pre_ping: bool = True


class SecretsManagerSettings(BaseModel):
    """AWS Secrets Manager integration settings."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = False
    secret_name: str | None = None
    region: str | None = None
    profile: str | None = None
    endpoint_url: str | None = None
    overwrite_env: bool = False


class SchedulerSettings(BaseModel):
    """Cadences and thresholds for the periodic maintenance tasks."""

    model_config = ConfigDict(extra="forbid")

    ingestion_interval_seconds: int = Field(default=300, ge=1)
    cleanup_enabled: bool = True
    retention_days: int = Field(default=30, ge=1)
    cleanup_hour: int = Field(default=2, ge=0, le=23)
    credential_check_enabled: bool = True
    expiration_warning_days: int = Field(default=7, ge=1)
    credential_check_day_of_week: str = "mon"
    credential_check_hour: int = Field(default=8, ge=0, le=23)
    long_running_threshold_minutes: int = Field(default=60, ge=1)
    long_running_check_interval_seconds: int = Field(default=900, ge=1)

    @field_validator("credential_check_day_of_week")
    @classmethod
    def _normalize_day(cls, value: str) -> str:
        return value.strip().lower()


class GlobalSettings(BaseSettings):
    """Global application settings sourced from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_nested_delimiter="__",
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = "development"
    log_level: str = "INFO"
    redis_url: str | None = None
    database_url: str | None = None
    database: DatabasePoolSettings = DatabasePoolSettings()
    encryption_key: str | None = None
    aws: AWSSettings = AWSSettings()
    secrets_manager: SecretsManagerSettings = SecretsManagerSettings()
    scheduler: SchedulerSettings = SchedulerSettings()
    max_concurrent_jobs: int = Field(default=5, ge=1)
    default_polling_interval_minutes: int = Field(default=30, ge=1)
    job_progress_flush_every: int = Field(default=100, ge=0)
    recent_jobs_limit: int = Field(default=10, ge=1)
    http_timeout_seconds: float = Field(default=30.0, gt=0)

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        """Ensure log level values are uppercase for logging config."""

        return value.upper()

    @field_validator("environment")
    @classmethod
    def _normalize_environment(cls, value: str) -> str:
        return value.lower()

    @field_validator("encryption_key", mode="before")
    @classmethod
    def _validate_encryption_key(cls, value: Any) -> Any:
        """Accept a 32-byte key expressed as 64 hexadecimal characters."""

        if value is None:
            return value
        if not isinstance(value, str):
            raise ValueError("encryption_key must be a hex string")
        trimmed = value.strip()
        if trimmed == "":
            return None
        try:
            raw = bytes.fromhex(trimmed)
        except ValueError as exc:
            raise ValueError("encryption_key must be hex encoded") from exc
        if len(raw) != 32:
            raise ValueError("encryption_key must decode to 32 bytes (64 hex characters)")
        return trimmed


def _fetch_secrets_from_manager(
    *,
    secret_name: str,
    region: str | None,
    profile: str | None,
    endpoint_url: str | None,
) -> dict[str, str]:
    """Retrieve secrets from AWS Secrets Manager."""

    session_kwargs: dict[str, Any] = {}
    if region:
        session_kwargs["region_name"] = region
    if profile:
        session_kwargs["profile_name"] = profile

    session = Session(**session_kwargs)
    client = session.client("secretsmanager", endpoint_url=endpoint_url)

    try:
        response = client.get_secret_value(SecretId=secret_name)
    except (BotoCoreError, ClientError) as exc:  # pragma: no cover - dependency errors
        raise ConfigurationError(
            f"Unable to retrieve secret '{secret_name}' from AWS Secrets Manager: {exc}"
        ) from exc

    secret_string = response.get("SecretString")
    if secret_string is None:
        secret_binary = response.get("SecretBinary")
        if secret_binary is None:
            return {}
        secret_string = base64.b64decode(secret_binary).decode("utf-8")

    try:
        payload = json.loads(secret_string)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(
            "Secrets Manager payload must be valid JSON mapping of environment variables"
        ) from exc

    if not isinstance(payload, dict):
        raise ConfigurationError("Secrets Manager payload must be a JSON object of key/value pairs")

    return {
        str(key): str(value)
        for key, value in payload.items()
        if isinstance(key, str) and value is not None
    }


def _inject_secrets_into_environment(secrets: dict[str, str], *, overwrite: bool) -> int:
    """Inject prefixed secrets into os.environ, returning how many were applied."""

    applied = 0
    for key, value in secrets.items():
        env_key = key.upper()
        if not env_key.startswith(ENV_PREFIX):
            logger.debug("Ignoring secret '%s' because it does not use %s prefix", env_key, ENV_PREFIX)
            continue
        if not overwrite and env_key in os.environ:
            continue
        os.environ[env_key] = value
        applied += 1
    return applied


def load_runtime_secrets(settings: GlobalSettings) -> dict[str, str]:
    """Load secrets from AWS Secrets Manager when enabled and inject them into the environment."""

    secrets_cfg = settings.secrets_manager
    if not secrets_cfg.enabled:
        return {}

    if not secrets_cfg.secret_name:
        raise ConfigurationError("Secrets Manager integration enabled but no secret_name configured")

    secrets = _fetch_secrets_from_manager(
        secret_name=secrets_cfg.secret_name,
        region=secrets_cfg.region or settings.aws.region,
        profile=secrets_cfg.profile,
        endpoint_url=secrets_cfg.endpoint_url,
    )
    _inject_secrets_into_environment(secrets, overwrite=secrets_cfg.overwrite_env)
    return secrets


def ensure_runtime_configuration(settings: GlobalSettings | None = None) -> GlobalSettings:
    """Load secrets and ensure the environment variables required at runtime are present."""

    settings = settings or get_settings()

    secrets = load_runtime_secrets(settings)
    if secrets:
        logger.info("Loaded %d secrets from AWS Secrets Manager", len(secrets))
        settings = get_settings(reload=True)

    missing = sorted(var for var in REQUIRED_ENV if not os.environ.get(var))
    if missing:
        joined = ", ".join(missing)
        raise ConfigurationError(
            "Missing required environment variables: "
            f"{joined}. Configure them via Secrets Manager or .env files."
        )

    return settings


@lru_cache(maxsize=1)
def _get_settings_cached() -> GlobalSettings:
    return GlobalSettings()


def get_settings(*, reload: bool = False) -> GlobalSettings:
    """Return cached settings, optionally forcing a reload."""

    if reload:
        _get_settings_cached.cache_clear()
    return _get_settings_cached()
