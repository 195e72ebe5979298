"""Append-only record of every dispatch attempt.

Feeds the in-app inbox, the duplicate guard and debugging. A failed insert
never fails the dispatch that produced it; it flips ``degraded`` instead.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from familyhub.models.notification_log import NotificationLogEntry, NotificationStatus
from familyhub.utils.timezone import Clock, utcnow

logger = logging.getLogger(__name__)

# Entries only move forward: sent -> read -> dismissed
_ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    NotificationStatus.SENT.value: {NotificationStatus.READ.value, NotificationStatus.DISMISSED.value},
    NotificationStatus.READ.value: {NotificationStatus.DISMISSED.value},
    NotificationStatus.DISMISSED.value: set(),
    NotificationStatus.FAILED.value: set(),
}


class InvalidStatusTransition(Exception):
    pass


@dataclass
class LedgerEntry:
    owner_id: Optional[str]
    category: str
    notification_type: str
    title: str
    body: str = ""
    reference_id: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)
    status: NotificationStatus = NotificationStatus.SENT
    error_message: Optional[str] = None


class NotificationLedger:
    def __init__(self, session: AsyncSession, clock: Clock = utcnow) -> None:
        self.session = session
        self.clock = clock
        self.degraded = False

    async def append(self, entry: LedgerEntry) -> bool:
        record = NotificationLogEntry(
            user_id=entry.owner_id,
            category=entry.category,
            notification_type=entry.notification_type,
            reference_id=entry.reference_id,
            title=entry.title,
            body=entry.body,
            data=entry.data,
            status=entry.status.value,
            error_message=entry.error_message,
            created_at=self.clock(),
        )
        try:
            # Savepoint: a failed insert must not roll back the caller's claim
            async with self.session.begin_nested():
                self.session.add(record)
        except SQLAlchemyError as exc:
            self.degraded = True
            logger.warning(
                "Notification ledger append failed",
                extra={"category": entry.category, "type": entry.notification_type, "error": str(exc)},
            )
            return False
        return True

    async def was_already_sent(
        self,
        owner_id: str,
        category: str,
        notification_type: str,
        reference_id: str,
        within_hours: float = 24,
    ) -> bool:
        """Best-effort duplicate guard. Failed attempts do not count."""
        cutoff = self.clock() - timedelta(hours=within_hours)
        stmt = (
            select(NotificationLogEntry.id)
            .where(
                NotificationLogEntry.user_id == owner_id,
                NotificationLogEntry.category == category,
                NotificationLogEntry.notification_type == notification_type,
                NotificationLogEntry.reference_id == reference_id,
                NotificationLogEntry.status != NotificationStatus.FAILED.value,
                NotificationLogEntry.created_at >= cutoff,
            )
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.first() is not None

    async def list_for_owner(
        self,
        owner_id: str,
        limit: int = 20,
        category: Optional[str] = None,
        include_dismissed: bool = False,
    ) -> list[NotificationLogEntry]:
        stmt = select(NotificationLogEntry).where(NotificationLogEntry.user_id == owner_id)
        if category:
            stmt = stmt.where(NotificationLogEntry.category == category)
        if not include_dismissed:
            stmt = stmt.where(NotificationLogEntry.status != NotificationStatus.DISMISSED.value)
        stmt = stmt.order_by(NotificationLogEntry.created_at.desc()).limit(min(max(limit, 1), 100))
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def mark_status(
        self, owner_id: str, entry_id: uuid.UUID, status: NotificationStatus
    ) -> Optional[NotificationLogEntry]:
        """Returns None when the entry does not exist or belongs to someone else."""
        result = await self.session.execute(
            select(NotificationLogEntry).where(
                NotificationLogEntry.id == entry_id,
                NotificationLogEntry.user_id == owner_id,
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            return None

        if record.status == status.value:
            return record
        if status.value not in _ALLOWED_TRANSITIONS.get(record.status, set()):
            raise InvalidStatusTransition(f"Cannot move notification from {record.status} to {status.value}")

        record.status = status.value
        await self.session.commit()
        return record
