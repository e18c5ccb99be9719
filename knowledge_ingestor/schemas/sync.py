"""Sync context, cursor strategy and sync result value types."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class SyncType(str, Enum):
    """Kind of sync requested by a caller."""

    FULL = "FULL"
    INCREMENTAL = "INCREMENTAL"
    REAL_TIME = "REAL_TIME"


class SyncStrategy(str, Enum):
    """How a connector should resume from previous progress."""

    FULL = "FULL"
    CURSOR_BASED = "CURSOR_BASED"
    TIME_BASED = "TIME_BASED"
    FIRST_SYNC = "FIRST_SYNC"


def _has_cursor(cursor: str | None) -> bool:
    return cursor is not None and cursor.strip() != ""


@dataclass(frozen=True, slots=True)
class SyncContext:
    """Immutable resume information handed to ``DataConnector.fetch_data``.

    Build instances through the factory classmethods; a fresh context is created
    for every sync attempt.
    """

    sync_type: SyncType
    cursor: str | None = None
    last_sync_time: datetime | None = None

    @classmethod
    def for_full(cls) -> SyncContext:
        return cls(sync_type=SyncType.FULL)

    @classmethod
    def for_incremental(
        cls,
        cursor: str | None,
        last_sync_time: datetime | None = None,
    ) -> SyncContext:
        return cls(sync_type=SyncType.INCREMENTAL, cursor=cursor, last_sync_time=last_sync_time)

    @classmethod
    def for_real_time(cls, now: datetime | None = None) -> SyncContext:
        return cls(sync_type=SyncType.REAL_TIME, last_sync_time=now or datetime.now(timezone.utc))

    @property
    def is_full_resync(self) -> bool:
        return self.sync_type is SyncType.FULL

    @property
    def strategy(self) -> SyncStrategy:
        """Resume strategy; a full sync ignores any cursor or time it carries."""

        if self.is_full_resync:
            return SyncStrategy.FULL
        if _has_cursor(self.cursor):
            return SyncStrategy.CURSOR_BASED
        if self.last_sync_time is not None:
            return SyncStrategy.TIME_BASED
        return SyncStrategy.FIRST_SYNC


@dataclass(frozen=True, slots=True)
class SyncResult:
    """Outcome of one sync attempt, folded into the job record."""

    connector_type: str
    sync_type: SyncType
    start_time: datetime
    end_time: datetime
    items_processed: int = 0
    items_failed: int = 0
    next_cursor: str | None = None
    errors: tuple[str, ...] = field(default_factory=tuple)
    success: bool = True
    job_id: object | None = None
    status: str | None = None

    @property
    def duration_seconds(self) -> float:
        return max((self.end_time - self.start_time).total_seconds(), 0.0)

    @property
    def total_items(self) -> int:
        return self.items_processed + self.items_failed


class CancellationToken:
    """Cooperative cancellation signal shared between the orchestrator and a running sync."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "Cancelled by operator") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()
