"""Utilities package initialization."""
from .config import (
    GlobalSettings,
    SchedulerSettings,
    ensure_runtime_configuration,
    get_settings,
    load_runtime_secrets,
    load_yaml_config,
)
from .logging import log_sync_outcome, setup_logger

__all__ = [
    "GlobalSettings",
    "SchedulerSettings",
    "ensure_runtime_configuration",
    "get_settings",
    "load_runtime_secrets",
    "load_yaml_config",
    "log_sync_outcome",
    "setup_logger",
]
