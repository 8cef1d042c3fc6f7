"""
audit_log.py — Append-only compliance trail for emergency actions.

═══════════════════════════════════════════════════════════════════════════
ENTRY PAYLOADS
═══════════════════════════════════════════════════════════════════════════

Every entry carries a typed ``details`` payload tagged with ``kind``:

    Action                         Payload                 Severity
    ─────────────────────────────  ──────────────────────  ────────
    emergency_call_created         CallCreatedDetails      critical
    emergency_call_initiated       CallInitiatedDetails    info
    emergency_contacts_alerted     ContactsAlertedDetails  info / warning
    emergency_event_logged         FreeformDetails         info
    emergency_event_enriched       EnrichmentDetails       info
    emergency_status_changed       StatusChangeDetails     info
    emergency_event_deleted        StatusChangeDetails     warning

ContactsAlertedDetails holds counts only: message bodies and contact
details never reach the audit trail.

═══════════════════════════════════════════════════════════════════════════
WRITE POLICY
═══════════════════════════════════════════════════════════════════════════

    • One transaction per entry: an entry is either fully written or absent.
    • Best-effort: a failed write is logged locally and swallowed. The
      caller's operation is never failed or delayed by the audit trail.
    • No update or delete API exists.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from emergency_backend.app.core.errors import AuditWriteFailure, StorageUnavailable
from emergency_backend.app.events.tables import AuditLogRow

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class AuditAction(str, Enum):
    CALL_CREATED     = "emergency_call_created"
    CALL_INITIATED   = "emergency_call_initiated"
    CONTACTS_ALERTED = "emergency_contacts_alerted"
    EVENT_LOGGED     = "emergency_event_logged"
    EVENT_ENRICHED   = "emergency_event_enriched"
    STATUS_CHANGED   = "emergency_status_changed"
    EVENT_DELETED    = "emergency_event_deleted"


class AuditSeverity(str, Enum):
    INFO     = "info"
    WARNING  = "warning"
    CRITICAL = "critical"


# ═══════════════════════════════════════════════════════════════════════════
# Payloads
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class CallCreatedDetails:
    emergency_type: str
    severity: str
    has_location: bool
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    kind: str = "call_created"


@dataclass
class CallInitiatedDetails:
    emergency_number: str
    emergency_type: str
    kind: str = "call_initiated"


@dataclass
class ContactsAlertedDetails:
    contacts_count: int
    notified_count: int
    failed_count: int
    alert_id: str
    emergency_type: Optional[str] = None
    kind: str = "contacts_alerted"


@dataclass
class EnrichmentDetails:
    address_resolved: bool
    address_skipped: bool = False
    attempts: int = 1
    kind: str = "enrichment"


@dataclass
class StatusChangeDetails:
    previous_status: str
    new_status: str
    notes: Optional[str] = None
    kind: str = "status_change"


@dataclass
class FreeformDetails:
    """Client-supplied ``log-event`` body, kept verbatim."""
    data: Dict[str, Any] = field(default_factory=dict)
    kind: str = "freeform"


AuditDetails = Union[
    CallCreatedDetails,
    CallInitiatedDetails,
    ContactsAlertedDetails,
    EnrichmentDetails,
    StatusChangeDetails,
    FreeformDetails,
]

_PAYLOAD_TYPES = {
    cls.kind: cls  # type: ignore[attr-defined]
    for cls in (
        CallCreatedDetails, CallInitiatedDetails, ContactsAlertedDetails,
        EnrichmentDetails, StatusChangeDetails, FreeformDetails,
    )
}


def details_from_dict(data: Dict[str, Any]) -> AuditDetails:
    """Rebuild a typed payload from its stored form; unknown kinds → FreeformDetails."""
    kind = data.get("kind")
    cls = _PAYLOAD_TYPES.get(kind)
    if cls is None or cls is FreeformDetails:
        return FreeformDetails(data=dict(data.get("data", data)))
    fields = {k: v for k, v in data.items() if k != "kind"}
    return cls(**fields)


# ═══════════════════════════════════════════════════════════════════════════
# Entry
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class AuditEntry:
    action: AuditAction
    details: AuditDetails
    resource: str = "emergency_event"
    resource_id: Optional[str] = None
    user_id: Optional[int] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    severity: AuditSeverity = AuditSeverity.INFO
    id: Optional[int] = None
    created_at: Optional[datetime] = None


# ═══════════════════════════════════════════════════════════════════════════
# Log
# ═══════════════════════════════════════════════════════════════════════════

class AuditLog:
    """Writes and reads ``audit_log`` rows through an injected session factory."""

    def __init__(self, sessions: async_sessionmaker[AsyncSession]):
        self._sessions = sessions

    async def append(self, entry: AuditEntry) -> bool:
        """Persist ``entry``. Returns False (and logs) on failure; never raises."""
        try:
            await self._write(entry)
        except AuditWriteFailure as exc:
            logger.error(
                "Audit write failed for %s on %s: %s",
                getattr(entry.action, "value", entry.action), entry.resource_id, exc,
                extra={"event_id": entry.resource_id},
            )
            return False
        return True

    async def _write(self, entry: AuditEntry) -> None:
        try:
            row = AuditLogRow(
                user_id=entry.user_id,
                action=entry.action.value,
                resource=entry.resource,
                resource_id=entry.resource_id,
                details=asdict(entry.details),
                ip_address=entry.ip_address,
                user_agent=entry.user_agent,
                severity=entry.severity.value,
                created_at=entry.created_at or datetime.now(timezone.utc),
            )
            async with self._sessions() as session:
                session.add(row)
                await session.commit()
        except Exception as exc:
            raise AuditWriteFailure(str(exc) or exc.__class__.__name__) from exc
        entry.id = row.id
        entry.created_at = row.created_at

    async def entries(
        self,
        resource_id: Optional[str] = None,
        action: Optional[AuditAction] = None,
        limit: int = 100,
    ) -> List[AuditEntry]:
        """Entries oldest first, optionally filtered."""
        stmt = select(AuditLogRow).order_by(AuditLogRow.id).limit(limit)
        if resource_id is not None:
            stmt = stmt.where(AuditLogRow.resource_id == resource_id)
        if action is not None:
            stmt = stmt.where(AuditLogRow.action == AuditAction(action).value)
        try:
            async with self._sessions() as session:
                rows = (await session.scalars(stmt)).all()
        except Exception as exc:
            raise StorageUnavailable(operation="audit_entries") from exc
        return [
            AuditEntry(
                id=r.id,
                action=AuditAction(r.action),
                details=details_from_dict(r.details or {}),
                resource=r.resource,
                resource_id=r.resource_id,
                user_id=r.user_id,
                ip_address=r.ip_address,
                user_agent=r.user_agent,
                severity=AuditSeverity(r.severity),
                created_at=r.created_at,
            )
            for r in rows
        ]
