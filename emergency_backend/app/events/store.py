"""
EventStore — durable record of emergency events.

Persistence goes through an injected ``async_sessionmaker``; the store owns
no engine and holds no module-level state, so tests can point it at a
throwaway SQLite file and production at PostgreSQL without code changes.

═══════════════════════════════════════════════════════════════════════════
UPDATE SEMANTICS
═══════════════════════════════════════════════════════════════════════════

    update(id, fields)                     last-writer-wins on named fields
    update(id, fields, expected_version)   compare-and-set on the row version;
                                           raises VersionConflict when another
                                           writer got there first

Immutable fields (id, external_id, created_at, event_type, severity) are
silently ignored in ``fields``. Every successful update bumps ``version``
and ``updated_at``.

Connection-level failures surface as ``StorageUnavailable`` — the only
failure the call path lets cross the API boundary.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

from sqlalchemy import delete as sa_delete
from sqlalchemy import func, select, text
from sqlalchemy import update as sa_update
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from emergency_backend.app.core.errors import StorageUnavailable
from emergency_backend.app.events.models import (
    EmergencyEvent,
    EventFilter,
    EventLocation,
    EventStatistics,
    EventStatus,
    EventType,
    Severity,
    SystemInfo,
)
from emergency_backend.app.events.tables import EmergencyEventRow

logger = logging.getLogger(__name__)

IMMUTABLE_FIELDS = frozenset({"id", "external_id", "created_at", "event_type", "severity"})

_CONNECTION_ERRORS = (OperationalError, InterfaceError, OSError)


class VersionConflict(Exception):
    """The row changed between read and conditional write."""

    def __init__(self, event_id: int, expected_version: int):
        super().__init__(
            f"Event {event_id} no longer at version {expected_version}"
        )
        self.event_id = event_id
        self.expected_version = expected_version


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
# Row ↔ domain conversion
# ═══════════════════════════════════════════════════════════════════════════

def _to_event(row: EmergencyEventRow) -> EmergencyEvent:
    location = None
    if row.latitude is not None and row.longitude is not None:
        location = EventLocation(
            latitude=row.latitude,
            longitude=row.longitude,
            accuracy=row.accuracy,
            address=row.address,
        )
    return EmergencyEvent(
        id=row.id,
        external_id=row.external_id,
        user_id=row.user_id,
        event_type=EventType(row.event_type),
        status=EventStatus(row.status),
        severity=Severity(row.severity),
        location=location,
        emergency_number=row.emergency_number,
        call_duration=row.call_duration,
        response_time=row.response_time,
        notes=row.notes,
        system_info=SystemInfo.from_dict(row.system_info),
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
        resolved_at=row.resolved_at,
    )


def _column_values(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Translate domain field names into column assignments."""
    values: Dict[str, Any] = {}
    for name, value in fields.items():
        if name in IMMUTABLE_FIELDS:
            logger.debug("Ignoring update of immutable field %s", name)
            continue
        if name == "location":
            if value is None:
                values.update(latitude=None, longitude=None, accuracy=None, address=None)
            else:
                values.update(
                    latitude=value.latitude,
                    longitude=value.longitude,
                    accuracy=value.accuracy,
                    address=value.address,
                )
        elif name == "status":
            values["status"] = EventStatus(value).value
        elif name == "system_info":
            info = value if isinstance(value, SystemInfo) else SystemInfo.from_dict(value)
            values["system_info"] = info.to_dict()
        elif name in (
            "address", "user_id", "emergency_number", "call_duration",
            "response_time", "notes", "resolved_at",
        ):
            values[name] = value
        else:
            raise ValueError(f"Unknown event field: {name}")
    return values


# ═══════════════════════════════════════════════════════════════════════════
# Store
# ═══════════════════════════════════════════════════════════════════════════

class EventStore:
    """CRUD + aggregate queries over ``emergency_events``."""

    def __init__(self, sessions: async_sessionmaker[AsyncSession], *, recent_days: int = 30):
        self._sessions = sessions
        self._recent_days = recent_days

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._sessions() as session:
                yield session
        except _CONNECTION_ERRORS as exc:
            logger.error("Event store %s failed: %s", operation, exc)
            raise StorageUnavailable(operation=operation) from exc

    # ── Writes ──

    async def create(self, event: EmergencyEvent) -> EmergencyEvent:
        now = _utcnow()
        loc = event.location
        row = EmergencyEventRow(
            external_id=event.external_id,
            user_id=event.user_id,
            event_type=event.event_type.value,
            status=event.status.value,
            severity=event.severity.value,
            latitude=loc.latitude if loc else None,
            longitude=loc.longitude if loc else None,
            accuracy=loc.accuracy if loc else None,
            address=loc.address if loc else None,
            emergency_number=event.emergency_number,
            call_duration=event.call_duration,
            response_time=event.response_time,
            notes=event.notes,
            system_info=event.system_info.to_dict(),
            version=1,
            created_at=now,
            updated_at=now,
            resolved_at=event.resolved_at,
        )
        async with self._session("create") as session:
            session.add(row)
            await session.commit()
            created = _to_event(row)

        logger.info(
            "Event %s created (%s, %s)",
            created.id, created.event_type.value, created.severity.value,
            extra={"event_id": created.external_id, "emergency_type": created.event_type.value},
        )
        return created

    async def update(
        self,
        event_id: int,
        fields: Mapping[str, Any],
        expected_version: Optional[int] = None,
    ) -> Optional[EmergencyEvent]:
        """Apply ``fields``; None when ``event_id`` does not exist."""
        values = _column_values(fields)
        async with self._session("update") as session:
            current = await session.scalar(
                select(EmergencyEventRow.version).where(EmergencyEventRow.id == event_id)
            )
            if current is None:
                return None
            if expected_version is not None and current != expected_version:
                raise VersionConflict(event_id, expected_version)

            values["updated_at"] = _utcnow()
            stmt = sa_update(EmergencyEventRow).where(EmergencyEventRow.id == event_id)
            if expected_version is not None:
                stmt = stmt.where(EmergencyEventRow.version == expected_version)
                values["version"] = expected_version + 1
            else:
                values["version"] = EmergencyEventRow.version + 1
            stmt = stmt.values(**values).execution_options(synchronize_session=False)
            result = await session.execute(stmt)
            if result.rowcount == 0:
                await session.rollback()
                if expected_version is not None:
                    raise VersionConflict(event_id, expected_version)
                return None
            await session.commit()

        return await self.find_by_id(event_id)

    async def delete(self, event_id: int) -> bool:
        async with self._session("delete") as session:
            result = await session.execute(
                sa_delete(EmergencyEventRow).where(EmergencyEventRow.id == event_id)
            )
            await session.commit()
        deleted = result.rowcount > 0
        if deleted:
            logger.info("Event %s deleted", event_id)
        return deleted

    # ── Reads ──

    async def find_by_id(self, event_id: int) -> Optional[EmergencyEvent]:
        async with self._session("find_by_id") as session:
            row = await session.get(EmergencyEventRow, event_id)
            return _to_event(row) if row else None

    async def find_by_external_id(self, external_id: str) -> Optional[EmergencyEvent]:
        async with self._session("find_by_external_id") as session:
            row = await session.scalar(
                select(EmergencyEventRow).where(EmergencyEventRow.external_id == external_id)
            )
            return _to_event(row) if row else None

    async def find_all(self, flt: Optional[EventFilter] = None) -> List[EmergencyEvent]:
        """Matching events, newest first (ties broken by id, newest first)."""
        flt = flt or EventFilter()
        stmt = (
            select(EmergencyEventRow)
            .where(*self._conditions(flt))
            .order_by(EmergencyEventRow.created_at.desc(), EmergencyEventRow.id.desc())
            .offset(flt.offset)
        )
        if flt.limit is not None:
            stmt = stmt.limit(flt.limit)
        async with self._session("find_all") as session:
            rows = (await session.scalars(stmt)).all()
            return [_to_event(r) for r in rows]

    async def count(self, flt: Optional[EventFilter] = None) -> int:
        flt = flt or EventFilter()
        stmt = select(func.count(EmergencyEventRow.id)).where(*self._conditions(flt))
        async with self._session("count") as session:
            return int(await session.scalar(stmt) or 0)

    async def statistics(
        self,
        owner_id: Optional[int] = None,
        *,
        now: Optional[datetime] = None,
    ) -> EventStatistics:
        owner = [EmergencyEventRow.user_id == owner_id] if owner_id is not None else []
        cutoff = (now or _utcnow()) - timedelta(days=self._recent_days)
        stats = EventStatistics()

        async with self._session("statistics") as session:
            stats.total = int(await session.scalar(
                select(func.count(EmergencyEventRow.id)).where(*owner)
            ) or 0)

            for event_type, n in await session.execute(
                select(EmergencyEventRow.event_type, func.count(EmergencyEventRow.id))
                .where(*owner)
                .group_by(EmergencyEventRow.event_type)
            ):
                stats.by_type[event_type] = int(n)

            for status, n in await session.execute(
                select(EmergencyEventRow.status, func.count(EmergencyEventRow.id))
                .where(*owner)
                .group_by(EmergencyEventRow.status)
            ):
                stats.by_status[status] = int(n)

            avg = await session.scalar(
                select(func.avg(EmergencyEventRow.response_time))
                .where(*owner, EmergencyEventRow.response_time.is_not(None))
            )
            stats.average_response_time = float(avg or 0.0)

            stats.recent_events = int(await session.scalar(
                select(func.count(EmergencyEventRow.id))
                .where(*owner, EmergencyEventRow.created_at >= cutoff)
            ) or 0)

        return stats

    async def ping(self) -> bool:
        try:
            async with self._sessions() as session:
                await session.execute(text("SELECT 1"))
            return True
        except _CONNECTION_ERRORS as exc:
            logger.warning("Event store ping failed: %s", exc)
            return False

    # ── Helpers ──

    @staticmethod
    def _conditions(flt: EventFilter) -> list:
        conds = []
        if flt.owner_id is not None:
            conds.append(EmergencyEventRow.user_id == flt.owner_id)
        if flt.event_type is not None:
            conds.append(EmergencyEventRow.event_type == EventType(flt.event_type).value)
        if flt.status is not None:
            conds.append(EmergencyEventRow.status == EventStatus(flt.status).value)
        if flt.date_from is not None:
            conds.append(EmergencyEventRow.created_at >= flt.date_from)
        if flt.date_to is not None:
            conds.append(EmergencyEventRow.created_at <= flt.date_to)
        return conds
