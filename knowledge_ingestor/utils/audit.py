"""Audit logging for credential and sync-control operations."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .logging import setup_logger

audit_logger = setup_logger("knowledge_ingestor.audit", context={"log_type": "audit"})


class AuditAction(str, Enum):
    """Enumeration of auditable actions."""

    CREDENTIAL_STORED = "credential.stored"
    CREDENTIAL_UPDATED = "credential.updated"
    CREDENTIAL_ROTATED = "credential.rotated"
    CREDENTIAL_DEACTIVATED = "credential.deactivated"
    CREDENTIAL_VALIDATED = "credential.validated"

    CONFIG_CREATED = "config.created"
    CONFIG_UPDATED = "config.updated"
    CONFIG_DELETED = "config.deleted"
    CONFIG_ENABLED = "config.enabled"
    CONFIG_DISABLED = "config.disabled"

    SYNC_TRIGGERED = "sync.triggered"
    SYNC_REJECTED = "sync.rejected"
    SYNC_COMPLETED = "sync.completed"
    SYNC_FAILED = "sync.failed"
    SYNC_CANCELLED = "sync.cancelled"


class AuditOutcome(str, Enum):
    """Audit event outcome."""

    SUCCESS = "success"
    FAILURE = "failure"
    DENIED = "denied"


class AuditEvent(BaseModel):
    """Structured audit event."""

    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(),
        description="ISO 8601 timestamp of the event",
    )
    action: AuditAction = Field(..., description="Action being audited")
    outcome: AuditOutcome = Field(..., description="Outcome of the action")
    actor: str = Field(default="system", description="Operator or service performing the action")
    resource: str | None = Field(default=None, description="Resource being acted upon")
    resource_type: str | None = Field(
        default=None, description="Type of resource (credential, connector_config, job)"
    )
    details: dict[str, Any] = Field(
        default_factory=dict, description="Additional context-specific details"
    )
    error_message: str | None = Field(
        default=None, description="Error message if outcome is failure/denied"
    )


class SensitiveFieldRedactor:
    """Redacts sensitive information from audit data."""

    PATTERNS = {
        "api_key": re.compile(
            r"(api[_-]?key|apikey)[\"']?\s*[:=]\s*[\"']?([a-zA-Z0-9_\-]+)",
            re.IGNORECASE,
        ),
        "password": re.compile(
            r"(password|passwd|pwd)[\"']?\s*[:=]\s*[\"']?([^\s\"']+)",
            re.IGNORECASE,
        ),
        "token": re.compile(
            r"(token|bearer)[\"']?\s*[:=]\s*[\"']?([a-zA-Z0-9_.\-]+)",
            re.IGNORECASE,
        ),
        "github_token": re.compile(r"\b(gh[pousr]_[A-Za-z0-9]{20,})\b"),
    }

    SENSITIVE_FIELD_NAMES = {
        "password",
        "secret",
        "api_key",
        "token",
        "authorization",
        "credential",
        "credentials",
        "plaintext",
        "value",
        "encrypted_value",
        "encryption_key",
        "private_key",
        "database_url",
    }

    @classmethod
    def redact_string(cls, text: str) -> str:
        """Redact sensitive patterns in a string."""
        if not isinstance(text, str):
            return text

        redacted = text
        for pattern_name, pattern in cls.PATTERNS.items():
            if pattern_name == "github_token":
                redacted = pattern.sub("***REDACTED***", redacted)
            else:
                redacted = pattern.sub(r"\1=***REDACTED***", redacted)
        return redacted

    @classmethod
    def redact_dict(cls, data: dict[str, Any], max_depth: int = 10) -> dict[str, Any]:
        """Recursively redact sensitive fields in a dictionary."""
        if max_depth <= 0:
            return data

        redacted: dict[str, Any] = {}
        for key, value in data.items():
            if key.lower() in cls.SENSITIVE_FIELD_NAMES:
                redacted[key] = "***REDACTED***"
            elif isinstance(value, dict):
                redacted[key] = cls.redact_dict(value, max_depth - 1)
            elif isinstance(value, list):
                redacted[key] = [
                    (
                        cls.redact_dict(item, max_depth - 1)
                        if isinstance(item, dict)
                        else cls.redact_string(str(item))
                    )
                    for item in value
                ]
            elif isinstance(value, str):
                redacted[key] = cls.redact_string(value)
            else:
                redacted[key] = value
        return redacted


class AuditLogger:
    """Audit logger with automatic sensitive data redaction."""

    def __init__(self, redact_sensitive: bool = True):
        self.redact_sensitive = redact_sensitive
        self.redactor = SensitiveFieldRedactor()

    def log_event(self, event: AuditEvent) -> None:
        """Log an audit event, redacting sensitive fields first."""

        event_dict = event.model_dump(mode="json", exclude_none=True)
        if self.redact_sensitive:
            event_dict = self.redactor.redact_dict(event_dict)

        audit_logger.info(
            f"AUDIT: {event.action.value}",
            extra={
                "audit_event": event_dict,
                "actor": event.actor,
                "action": event.action.value,
                "outcome": event.outcome.value,
                "resource": event.resource,
            },
        )

    def log_credential_event(
        self,
        action: AuditAction,
        outcome: AuditOutcome,
        *,
        connector_config_id: Any,
        credential_type: str,
        credential_id: Any | None = None,
        actor: str = "system",
        error_message: str | None = None,
        **details: Any,
    ) -> None:
        """Log a credential lifecycle operation. Never pass secret values here."""

        event = AuditEvent(
            action=action,
            outcome=outcome,
            actor=actor,
            resource=str(credential_id) if credential_id is not None else None,
            resource_type="credential",
            error_message=error_message,
            details={
                "connector_config_id": str(connector_config_id),
                "credential_type": credential_type,
                **details,
            },
        )
        self.log_event(event)

    def log_config_change(
        self,
        action: AuditAction,
        *,
        connector_type: str,
        name: str,
        outcome: AuditOutcome = AuditOutcome.SUCCESS,
        actor: str = "system",
        error_message: str | None = None,
        **details: Any,
    ) -> None:
        """Log a connector configuration change."""

        event = AuditEvent(
            action=action,
            outcome=outcome,
            actor=actor,
            resource=f"{connector_type}/{name}",
            resource_type="connector_config",
            error_message=error_message,
            details=details,
        )
        self.log_event(event)

    def log_sync_event(
        self,
        action: AuditAction,
        outcome: AuditOutcome,
        *,
        connector_type: str,
        name: str,
        sync_type: str,
        job_id: Any | None = None,
        actor: str = "system",
        error_message: str | None = None,
        **details: Any,
    ) -> None:
        """Log a sync trigger, rejection or terminal outcome."""

        event = AuditEvent(
            action=action,
            outcome=outcome,
            actor=actor,
            resource=f"{connector_type}/{name}",
            resource_type="ingestion_job",
            error_message=error_message,
            details={
                "sync_type": sync_type,
                "job_id": str(job_id) if job_id is not None else None,
                **details,
            },
        )
        self.log_event(event)


_audit_logger: AuditLogger | None = None


def get_audit_logger() -> AuditLogger:
    """Get or create the global audit logger instance."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger(redact_sensitive=True)
    return _audit_logger
