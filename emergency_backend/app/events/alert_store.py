"""
ContactAlertStore — persistence for alert-contacts batches.

One ``contact_alerts`` row per batch plus one ``notification_attempts`` row
per (contact, channel) attempt, written in a single transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from emergency_backend.app.core.errors import StorageUnavailable
from emergency_backend.app.events.tables import ContactAlertRow, NotificationAttemptRow
from emergency_backend.app.notifications.models import (
    NotificationAttempt,
    NotificationChannel,
)

logger = logging.getLogger(__name__)

_CONNECTION_ERRORS = (OperationalError, InterfaceError, OSError)


@dataclass
class ContactAlertRecord:
    alert_id: str
    message: str
    notified_count: int
    failed_contacts: List[str]
    attempts: List[NotificationAttempt] = field(default_factory=list)
    emergency_type: Optional[str] = None
    event_external_id: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "call_id": self.event_external_id,
            "emergency_type": self.emergency_type,
            "message": self.message,
            "notified_count": self.notified_count,
            "failed_contacts": list(self.failed_contacts),
            "attempts": [a.to_dict() for a in self.attempts],
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


def _to_record(row: ContactAlertRow) -> ContactAlertRecord:
    return ContactAlertRecord(
        alert_id=row.alert_id,
        message=row.message,
        notified_count=row.notified_count,
        failed_contacts=list(row.failed_contacts or []),
        attempts=[
            NotificationAttempt(
                contact_name=a.contact_name,
                channel=NotificationChannel(a.channel),
                success=a.success,
                provider_message_id=a.provider_message_id,
                error=a.error,
                duration_ms=a.duration_ms,
            )
            for a in row.attempts
        ],
        emergency_type=row.emergency_type,
        event_external_id=row.event_external_id,
        latitude=row.latitude,
        longitude=row.longitude,
        created_at=row.created_at,
    )


class ContactAlertStore:
    def __init__(self, sessions: async_sessionmaker[AsyncSession]):
        self._sessions = sessions

    async def record(self, alert: ContactAlertRecord) -> ContactAlertRecord:
        """Persist the batch and all of its attempts atomically."""
        row = ContactAlertRow(
            alert_id=alert.alert_id,
            event_external_id=alert.event_external_id,
            emergency_type=alert.emergency_type,
            message=alert.message,
            latitude=alert.latitude,
            longitude=alert.longitude,
            notified_count=alert.notified_count,
            failed_contacts=list(alert.failed_contacts),
            created_at=alert.created_at or datetime.now(timezone.utc),
            attempts=[
                NotificationAttemptRow(
                    contact_name=a.contact_name,
                    channel=a.channel.value,
                    success=a.success,
                    provider_message_id=a.provider_message_id,
                    error=a.error,
                    duration_ms=a.duration_ms,
                )
                for a in alert.attempts
            ],
        )
        try:
            async with self._sessions() as session:
                session.add(row)
                await session.commit()
        # Any database error: the batch has already been sent
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Failed to persist alert %s: %s", alert.alert_id, exc)
            raise StorageUnavailable(operation="record_alert") from exc

        alert.created_at = row.created_at
        logger.debug(
            "Alert %s stored with %d attempts",
            alert.alert_id, len(alert.attempts),
            extra={"alert_id": alert.alert_id},
        )
        return alert

    async def find_by_id(self, alert_id: str) -> Optional[ContactAlertRecord]:
        stmt = (
            select(ContactAlertRow)
            .where(ContactAlertRow.alert_id == alert_id)
            .options(selectinload(ContactAlertRow.attempts))
        )
        try:
            async with self._sessions() as session:
                row = await session.scalar(stmt)
                return _to_record(row) if row else None
        except _CONNECTION_ERRORS as exc:
            raise StorageUnavailable(operation="find_alert") from exc

    async def notified_contacts(self, event_external_ids: Iterable[str]) -> Dict[str, List[str]]:
        """Contact names successfully notified by alerts linked to each event."""
        ids = [i for i in set(event_external_ids) if i]
        if not ids:
            return {}
        stmt = (
            select(ContactAlertRow.event_external_id, NotificationAttemptRow.contact_name)
            .join(NotificationAttemptRow, NotificationAttemptRow.alert_pk == ContactAlertRow.id)
            .where(
                ContactAlertRow.event_external_id.in_(ids),
                NotificationAttemptRow.success.is_(True),
            )
            .order_by(ContactAlertRow.id, NotificationAttemptRow.id)
        )
        try:
            async with self._sessions() as session:
                rows = (await session.execute(stmt)).all()
        except _CONNECTION_ERRORS as exc:
            raise StorageUnavailable(operation="notified_contacts") from exc

        by_event: Dict[str, List[str]] = {}
        for event_id, name in rows:
            names = by_event.setdefault(event_id, [])
            if name not in names:
                names.append(name)
        return by_event
