"""SQLAlchemy model for encrypted connector credentials."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UTCDateTime, utcnow


class ApiCredential(Base):
    """Encrypted secret used by a connector; rows are soft-deleted via ``is_active``."""

    __tablename__ = "api_credentials"
    __table_args__ = (
        Index(
            "uq_api_credentials_active_type",
            "connector_config_id",
            "credential_type",
            unique=True,
            sqlite_where=text("is_active"),
            postgresql_where=text("is_active"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    connector_config_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("connector_configs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    credential_type: Mapped[str] = mapped_column(String(32), nullable=False)
    encrypted_value: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    last_used: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) > self.expires_at

    def is_expiring_soon(self, days: int, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        current = now or utcnow()
        return current <= self.expires_at <= current + timedelta(days=days)

    def days_until_expiration(self, now: datetime | None = None) -> int | None:
        if self.expires_at is None:
            return None
        return (self.expires_at - (now or utcnow())).days

    def mark_as_used(self, now: datetime | None = None) -> None:
        self.last_used = now or utcnow()
        self.usage_count = (self.usage_count or 0) + 1

    def __repr__(self) -> str:
        """Return a developer-friendly string representation; never includes the secret."""

        return (
            f"<ApiCredential id={self.id} config={self.connector_config_id} "
            f"type={self.credential_type} active={self.is_active}>"
        )
