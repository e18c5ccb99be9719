"""Custom exceptions for knowledge_ingestor."""

from __future__ import annotations

from typing import Any
from uuid import UUID


class KnowledgeIngestorError(Exception):
    """Base exception for all knowledge_ingestor errors."""

    kind = "internal_error"

    def as_dict(self) -> dict[str, Any]:
        """Return a serializable representation for CLI output and task results."""

        return {"kind": self.kind, "message": str(self)}


class ConfigurationError(KnowledgeIngestorError):
    """Raised when configuration is invalid or missing."""

    kind = "configuration_error"


class ConnectorConfigNotFoundError(KnowledgeIngestorError):
    """Raised when no connector configuration matches the lookup."""

    kind = "not_found"

    def __init__(self, connector_type: str, name: str | None = None) -> None:
        if name is None:
            message = f"Connector configuration '{connector_type}' not found"
        else:
            message = f"Connector configuration '{connector_type}/{name}' not found"
        super().__init__(message)
        self.connector_type = connector_type
        self.name = name


class ConnectorConfigExistsError(KnowledgeIngestorError):
    """Raised when creating a configuration whose (type, name) is already taken."""

    kind = "already_exists"

    def __init__(self, connector_type: str, name: str) -> None:
        super().__init__(f"Connector configuration '{connector_type}/{name}' already exists")
        self.connector_type = connector_type
        self.name = name


class ConnectorDisabledError(KnowledgeIngestorError):
    """Raised when a sync is requested for a disabled connector configuration."""

    kind = "connector_disabled"

    def __init__(self, connector_type: str, name: str) -> None:
        super().__init__(f"Connector '{connector_type}/{name}' is disabled")
        self.connector_type = connector_type
        self.name = name


class UnknownConnectorTypeError(KnowledgeIngestorError):
    """Raised when requested connector type is not registered."""

    kind = "unknown_connector_type"


class ConcurrencyLimitExceededError(KnowledgeIngestorError):
    """Raised when the number of running jobs has reached the configured maximum."""

    kind = "concurrency_limit_exceeded"

    def __init__(self, running: int, limit: int) -> None:
        super().__init__(
            f"Maximum concurrent jobs reached ({running}/{limit}). Try again later."
        )
        self.running = running
        self.limit = limit


class ConnectorConnectionError(KnowledgeIngestorError):
    """Raised when a connector cannot reach its external source."""

    kind = "connection_error"


class AuthenticationError(KnowledgeIngestorError):
    """Raised when the external source rejects the connector's credentials."""

    kind = "auth_error"


class RateLimitError(KnowledgeIngestorError):
    """Raised when the external source refuses requests due to rate limiting."""

    kind = "rate_limited"

    def __init__(self, message: str, *, reset_at: Any | None = None) -> None:
        super().__init__(message)
        self.reset_at = reset_at


class CredentialError(KnowledgeIngestorError):
    """Base class for credential vault failures."""

    kind = "credential_error"


class CredentialNotFoundError(CredentialError):
    """Raised when no usable credential exists for the lookup."""

    kind = "credential_not_found"


class CredentialAlreadyExistsError(CredentialError):
    """Raised when an active credential of the same type already exists."""

    kind = "credential_already_exists"

    def __init__(self, connector_config_id: UUID, credential_type: str) -> None:
        super().__init__(
            f"Active credential of type '{credential_type}' already exists "
            f"for connector {connector_config_id}"
        )
        self.connector_config_id = connector_config_id
        self.credential_type = credential_type


class CredentialRotationError(CredentialError):
    """Raised when a rotation could not be committed; the previous credential stays active."""

    kind = "credential_rotation_failed"


class EncryptionError(CredentialError):
    """Raised when encrypting or decrypting a credential fails."""

    kind = "encryption_error"


class JobNotFoundError(KnowledgeIngestorError):
    """Raised when an ingestion job cannot be found."""

    kind = "job_not_found"

    def __init__(self, job_id: UUID) -> None:
        super().__init__(f"Ingestion job {job_id} not found")
        self.job_id = job_id


class InvalidJobTransitionError(KnowledgeIngestorError):
    """Raised when a job lifecycle transition is not permitted from its current status."""

    kind = "invalid_job_transition"

    def __init__(self, job_id: UUID | None, current: str, target: str) -> None:
        super().__init__(f"Job {job_id} cannot transition from {current} to {target}")
        self.job_id = job_id
        self.current = current
        self.target = target


class PersistenceError(KnowledgeIngestorError):
    """Raised when the persistence layer fails to store state required to proceed."""

    kind = "persistence_error"
