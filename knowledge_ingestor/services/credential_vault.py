"""Encrypted credential storage with rotation, expiration tracking and usage analytics."""

from __future__ import annotations

import uuid
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..exceptions import (
    ConnectorConfigNotFoundError,
    CredentialAlreadyExistsError,
    CredentialNotFoundError,
    CredentialRotationError,
    EncryptionError,
    PersistenceError,
)
from ..models.api_credential import ApiCredential
from ..models.base import session_scope, utcnow
from ..models.repository import ApiCredentialRepository, ConnectorConfigRepository
from ..monitoring.metrics import record_credential_operation
from ..schemas.credentials import (
    CredentialSummary,
    CredentialType,
    CredentialTypeStats,
    CredentialUsage,
    ExpiringCredential,
    classify_usage,
    expiration_urgency,
    recommend_action,
)
from ..security.cipher import CredentialCipher
from ..utils.audit import AuditAction, AuditLogger, AuditOutcome, get_audit_logger
from ..utils.logging import setup_logger
from .base import ThreadedService

logger = setup_logger(__name__)

T = TypeVar("T")

EXPIRING_SOON_DAYS = 7


def _type_value(credential_type: CredentialType | str) -> str:
    if isinstance(credential_type, CredentialType):
        return credential_type.value
    return CredentialType(credential_type).value


def _is_active_type_conflict(exc: IntegrityError) -> bool:
    """True when ``exc`` comes from the one-active-credential-per-type unique index."""

    message = str(exc.orig)
    return "uq_api_credentials_active_type" in message or "UNIQUE constraint failed" in message


class CredentialVault(ThreadedService):
    """Stores connector secrets encrypted and hands them back only through ``get_decrypted``.

    At most one credential per (connector, type) is active; the database enforces
    this with a partial unique index and rotation swaps records in one transaction.
    """

    def __init__(
        self,
        cipher: CredentialCipher | None = None,
        *,
        audit: AuditLogger | None = None,
    ) -> None:
        self._cipher = cipher or CredentialCipher.from_settings()
        self._audit = audit or get_audit_logger()

    async def store(
        self,
        connector_config_id: uuid.UUID,
        credential_type: CredentialType | str,
        plaintext: str,
        *,
        expires_at: datetime | None = None,
        description: str | None = None,
    ) -> CredentialSummary:
        """
        Encrypt and persist a new active credential.

        Raises:
            ConnectorConfigNotFoundError: If the connector configuration does not exist.
            CredentialAlreadyExistsError: If an active credential of this type exists.
            EncryptionError: If the value cannot be encrypted.
        """
        type_value = _type_value(credential_type)
        encrypted = self._cipher.encrypt(plaintext)

        def _store() -> ApiCredential:
            with session_scope() as session:
                if ConnectorConfigRepository(session).get(connector_config_id) is None:
                    raise ConnectorConfigNotFoundError(str(connector_config_id))
                repo = ApiCredentialRepository(session)
                if repo.find_active(connector_config_id, type_value) is not None:
                    raise CredentialAlreadyExistsError(connector_config_id, type_value)
                return repo.add(
                    ApiCredential(
                        connector_config_id=connector_config_id,
                        credential_type=type_value,
                        encrypted_value=encrypted,
                        expires_at=expires_at,
                        description=description,
                        is_active=True,
                        usage_count=0,
                    )
                )

        try:
            credential = await self._run_in_thread(_store)
        except IntegrityError as exc:
            record_credential_operation("store", "failure")
            if _is_active_type_conflict(exc):
                raise CredentialAlreadyExistsError(connector_config_id, type_value) from None
            raise PersistenceError(f"Failed to store credential: {exc.orig}") from None
        except (CredentialAlreadyExistsError, ConnectorConfigNotFoundError):
            record_credential_operation("store", "failure")
            raise

        record_credential_operation("store", "success")
        self._audit.log_credential_event(
            AuditAction.CREDENTIAL_STORED,
            AuditOutcome.SUCCESS,
            connector_config_id=connector_config_id,
            credential_type=type_value,
            credential_id=credential.id,
            expires_at=expires_at.isoformat() if expires_at else None,
        )
        return CredentialSummary.model_validate(credential)

    async def get_decrypted(
        self,
        connector_config_id: uuid.UUID,
        credential_type: CredentialType | str,
    ) -> str:
        """
        Return the plaintext of the active, unexpired credential and record the use.

        Raises:
            CredentialNotFoundError: If no active unexpired credential exists.
            EncryptionError: If the stored value cannot be decrypted.
        """
        type_value = _type_value(credential_type)

        def _read(repo: ApiCredentialRepository) -> str:
            credential = repo.find_active(connector_config_id, type_value)
            now = utcnow()
            if credential is None or credential.is_expired(now):
                raise CredentialNotFoundError(
                    f"No active credential of type '{type_value}' "
                    f"for connector {connector_config_id}"
                )
            plaintext = self._cipher.decrypt(credential.encrypted_value)
            credential.mark_as_used(now)
            return plaintext

        try:
            plaintext = await self._with_repository(_read)
        except (CredentialNotFoundError, EncryptionError):
            record_credential_operation("read", "failure")
            raise
        record_credential_operation("read", "success")
        return plaintext

    async def update(
        self,
        credential_id: uuid.UUID,
        *,
        plaintext: str | None = None,
        expires_at: datetime | None = None,
        description: str | None = None,
    ) -> CredentialSummary:
        encrypted = self._cipher.encrypt(plaintext) if plaintext is not None else None

        def _update(repo: ApiCredentialRepository) -> ApiCredential:
            credential = self._require(repo, credential_id)
            if encrypted is not None:
                credential.encrypted_value = encrypted
            if expires_at is not None:
                credential.expires_at = expires_at
            if description is not None:
                credential.description = description
            return credential

        credential = await self._with_repository(_update)
        record_credential_operation("update", "success")
        self._audit.log_credential_event(
            AuditAction.CREDENTIAL_UPDATED,
            AuditOutcome.SUCCESS,
            connector_config_id=credential.connector_config_id,
            credential_type=credential.credential_type,
            credential_id=credential.id,
            value_changed=encrypted is not None,
        )
        return CredentialSummary.model_validate(credential)

    async def deactivate(self, credential_id: uuid.UUID) -> CredentialSummary:
        """Soft-delete a credential; the record is retained for audit."""

        def _deactivate(repo: ApiCredentialRepository) -> ApiCredential:
            credential = self._require(repo, credential_id)
            credential.is_active = False
            return credential

        credential = await self._with_repository(_deactivate)
        record_credential_operation("deactivate", "success")
        self._audit.log_credential_event(
            AuditAction.CREDENTIAL_DEACTIVATED,
            AuditOutcome.SUCCESS,
            connector_config_id=credential.connector_config_id,
            credential_type=credential.credential_type,
            credential_id=credential.id,
        )
        return CredentialSummary.model_validate(credential)

    async def deactivate_all_for_connector(self, connector_config_id: uuid.UUID) -> int:
        count = await self._with_repository(
            lambda repo: repo.deactivate_all_for_connector(connector_config_id)
        )
        logger.info("Deactivated %d credentials for connector %s", count, connector_config_id)
        return count

    async def rotate(
        self,
        connector_config_id: uuid.UUID,
        credential_type: CredentialType | str,
        new_plaintext: str,
        *,
        expires_at: datetime | None = None,
        description: str | None = None,
    ) -> CredentialSummary:
        """
        Atomically deactivate the active credential and store ``new_plaintext`` in its place.

        Raises:
            CredentialNotFoundError: If there is no active credential to rotate.
            CredentialRotationError: If the swap could not be committed; the old
                credential remains active.
        """
        type_value = _type_value(credential_type)
        encrypted = self._cipher.encrypt(new_plaintext)

        def _rotate(repo: ApiCredentialRepository) -> tuple[ApiCredential, uuid.UUID]:
            current = repo.find_active(connector_config_id, type_value)
            if current is None:
                raise CredentialNotFoundError(
                    f"No active credential of type '{type_value}' to rotate "
                    f"for connector {connector_config_id}"
                )
            current.is_active = False
            repo.flush()
            replacement = repo.add(
                ApiCredential(
                    connector_config_id=connector_config_id,
                    credential_type=type_value,
                    encrypted_value=encrypted,
                    expires_at=expires_at,
                    description=description or current.description,
                    is_active=True,
                    usage_count=0,
                )
            )
            return replacement, current.id

        try:
            replacement, previous_id = await self._with_repository(_rotate)
        except CredentialNotFoundError:
            record_credential_operation("rotate", "failure")
            raise
        except SQLAlchemyError as exc:
            record_credential_operation("rotate", "failure")
            self._audit.log_credential_event(
                AuditAction.CREDENTIAL_ROTATED,
                AuditOutcome.FAILURE,
                connector_config_id=connector_config_id,
                credential_type=type_value,
                error_message=type(exc).__name__,
            )
            raise CredentialRotationError(
                f"Rotation of '{type_value}' for connector {connector_config_id} failed; "
                "the previous credential remains active"
            ) from exc

        record_credential_operation("rotate", "success")
        self._audit.log_credential_event(
            AuditAction.CREDENTIAL_ROTATED,
            AuditOutcome.SUCCESS,
            connector_config_id=connector_config_id,
            credential_type=type_value,
            credential_id=replacement.id,
            previous_credential_id=str(previous_id),
        )
        return CredentialSummary.model_validate(replacement)

    async def validate(
        self,
        connector_config_id: uuid.UUID,
        credential_type: CredentialType | str,
    ) -> bool:
        """Return True when an active, unexpired and decryptable credential exists."""

        type_value = _type_value(credential_type)

        def _validate(repo: ApiCredentialRepository) -> bool:
            credential = repo.find_active(connector_config_id, type_value)
            if credential is None or credential.is_expired():
                return False
            try:
                self._cipher.decrypt(credential.encrypted_value)
            except EncryptionError:
                return False
            return True

        valid = await self._with_repository(_validate)
        self._audit.log_credential_event(
            AuditAction.CREDENTIAL_VALIDATED,
            AuditOutcome.SUCCESS if valid else AuditOutcome.FAILURE,
            connector_config_id=connector_config_id,
            credential_type=type_value,
        )
        return valid

    async def list_credentials(
        self, connector_config_id: uuid.UUID, *, active_only: bool = False
    ) -> list[CredentialSummary]:
        credentials = await self._with_repository(
            lambda repo: repo.list_for_connector(connector_config_id, active_only=active_only)
        )
        return [CredentialSummary.model_validate(item) for item in credentials]

    async def list_expiring_soon(self, days_threshold: int = EXPIRING_SOON_DAYS) -> list[CredentialSummary]:
        now = utcnow()
        credentials = await self._with_repository(
            lambda repo: repo.find_expiring_between(now, now + timedelta(days=days_threshold))
        )
        return [CredentialSummary.model_validate(item) for item in credentials]

    async def list_expiring_with_urgency(
        self, days_threshold: int = EXPIRING_SOON_DAYS
    ) -> list[ExpiringCredential]:
        now = utcnow()
        credentials = await self._with_repository(
            lambda repo: repo.find_expiring_between(now, now + timedelta(days=days_threshold))
        )
        report: list[ExpiringCredential] = []
        for credential in credentials:
            days_left = credential.days_until_expiration(now) or 0
            report.append(
                ExpiringCredential(
                    credential=CredentialSummary.model_validate(credential),
                    days_until_expiration=days_left,
                    urgency=expiration_urgency(days_left),
                )
            )
        return report

    async def list_expired(self) -> list[CredentialSummary]:
        now = utcnow()
        credentials = await self._with_repository(lambda repo: repo.find_expired(now))
        return [CredentialSummary.model_validate(item) for item in credentials]

    async def stats(self, expiring_soon_days: int = EXPIRING_SOON_DAYS) -> list[CredentialTypeStats]:
        """Health statistics grouped by credential type."""

        now = utcnow()
        credentials = await self._with_repository(lambda repo: repo.list_all())

        grouped: dict[str, list[ApiCredential]] = defaultdict(list)
        for credential in credentials:
            grouped[credential.credential_type].append(credential)

        return [
            CredentialTypeStats.build(
                credential_type,
                total=len(items),
                active=sum(1 for item in items if item.is_active),
                expired=sum(1 for item in items if item.is_expired(now)),
                expiring_soon=sum(
                    1
                    for item in items
                    if item.is_active and item.is_expiring_soon(expiring_soon_days, now)
                ),
            )
            for credential_type, items in sorted(grouped.items())
        ]

    async def usage_analytics(self, connector_config_id: uuid.UUID) -> list[CredentialUsage]:
        now = utcnow()
        credentials = await self._with_repository(
            lambda repo: repo.list_for_connector(connector_config_id)
        )
        report: list[CredentialUsage] = []
        for credential in credentials:
            usage_count = credential.usage_count or 0
            days_since_creation = max((now - credential.created_at).days, 0)
            days_since_last_use = (
                (now - credential.last_used).days if credential.last_used is not None else None
            )
            average = round(usage_count / max(days_since_creation, 1), 4)
            pattern = classify_usage(usage_count, days_since_last_use, average)
            report.append(
                CredentialUsage(
                    credential_id=credential.id,
                    credential_type=credential.credential_type,
                    is_active=credential.is_active,
                    usage_count=usage_count,
                    days_since_creation=days_since_creation,
                    days_since_last_use=days_since_last_use,
                    average_uses_per_day=average,
                    pattern=pattern,
                    recommended_action=recommend_action(pattern, days_since_last_use),
                )
            )
        return report

    async def _with_repository(self, operation: Callable[[ApiCredentialRepository], T]) -> T:
        def _run() -> T:
            with session_scope() as session:
                return operation(ApiCredentialRepository(session))

        return await self._run_in_thread(_run)

    @staticmethod
    def _require(repo: ApiCredentialRepository, credential_id: uuid.UUID) -> ApiCredential:
        credential = repo.get(credential_id)
        if credential is None:
            raise CredentialNotFoundError(f"Credential {credential_id} not found")
        return credential
