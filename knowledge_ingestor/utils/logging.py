"""Logging configuration for knowledge_ingestor."""

from __future__ import annotations

import logging
import sys
from threading import Lock
from typing import Any, Final

from .config import get_settings

# Define log format with structured context placeholders.
LOG_FORMAT: Final[str] = (
    "%(asctime)s | %(levelname)s | %(name)s | "
    "connector=%(connector_type)s/%(connector_name)s | job_id=%(job_id)s | "
    "sync_type=%(sync_type)s | status=%(status)s | "
    "duration_ms=%(duration_ms)s | %(message)s"
)

DEFAULT_CONTEXT: Final[dict[str, str]] = {
    "connector_type": "-",
    "connector_name": "-",
    "job_id": "-",
    "sync_type": "-",
    "status": "-",
    "duration_ms": "-",
}

_LOG_CONFIGURED = False
_CONFIG_LOCK: Final = Lock()


class ContextualFormatter(logging.Formatter):
    """Formatter that injects default structured context fields when absent."""

    def __init__(self, fmt: str, defaults: dict[str, str] | None = None) -> None:
        super().__init__(fmt)
        self._defaults = defaults or {}

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        for key, value in self._defaults.items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return super().format(record)


def _configure_root_logger() -> None:
    """Configure the root logger exactly once based on global settings."""

    global _LOG_CONFIGURED
    with _CONFIG_LOCK:
        if _LOG_CONFIGURED:
            return

        settings = get_settings()
        resolved_level = getattr(logging, settings.log_level.upper(), logging.INFO)

        root_logger = logging.getLogger()
        root_logger.setLevel(resolved_level)

        formatter = ContextualFormatter(LOG_FORMAT, DEFAULT_CONTEXT)

        if not root_logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setLevel(resolved_level)
            handler.setFormatter(formatter)
            root_logger.addHandler(handler)
        else:
            for handler in root_logger.handlers:
                handler.setFormatter(formatter)

        _LOG_CONFIGURED = True


class StructuredLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that lets per-call extras override defaults."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:  # type: ignore[override]
        extra = dict(self.extra or {})
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs

    def bind(self, **context: Any) -> StructuredLoggerAdapter:
        """Return a child adapter carrying additional default context."""

        merged = dict(self.extra or {})
        merged.update({key: value for key, value in context.items() if value is not None})
        return StructuredLoggerAdapter(self.logger, merged)


def setup_logger(
    name: str,
    *,
    level: str | None = None,
    context: dict[str, Any] | None = None,
) -> StructuredLoggerAdapter:
    """Return a logger configured with the global logging defaults.

    Args:
        name: Logger name to retrieve.
        level: Optional log level override (primarily for tests).
        context: Optional default structured context to include with every entry.

    Returns:
        LoggerAdapter injecting structured defaults for consistent formatting.
    """

    _configure_root_logger()
    logger = logging.getLogger(name)

    if level is not None:
        logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    adapter_context: dict[str, Any] = dict(DEFAULT_CONTEXT)
    if context:
        adapter_context.update(context)

    return StructuredLoggerAdapter(logger, adapter_context)


def log_sync_outcome(
    logger: logging.Logger | logging.LoggerAdapter,
    *,
    connector_type: str,
    connector_name: str,
    job_id: Any,
    sync_type: str,
    status: str,
    duration_ms: int,
    processed: int,
    failed: int,
    **extra_context: Any,
) -> None:
    """
    Log the terminal outcome of a sync job with structured context.

    Args:
        logger: Logger instance
        connector_type: Registry key of the connector
        connector_name: Configuration name
        job_id: Identifier of the finished job
        sync_type: Full, incremental or real-time
        status: Terminal job status
        duration_ms: Wall-clock duration in milliseconds
        processed: Items processed successfully
        failed: Items that failed
        **extra_context: Additional context to log
    """
    structured_context: dict[str, Any] = {
        "connector_type": connector_type,
        "connector_name": connector_name,
        "job_id": str(job_id),
        "sync_type": sync_type,
        "status": status,
        "duration_ms": duration_ms,
    }
    structured_context.update(
        {key: value for key, value in extra_context.items() if key not in structured_context}
    )

    message = f"Sync {status.lower()} | processed={processed} failed={failed}"
    error_message = extra_context.get("error_message")
    if error_message:
        message = f"{message} | error={error_message}"

    log_method = logger.info if status.upper() == "COMPLETED" else logger.error
    log_method(message, extra=structured_context)
