"""
orchestrator.py — Emergency workflow coordination.

═══════════════════════════════════════════════════════════════════════════
CALL FLOW (latency-critical)
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │  1. Classify        │  severity from type (fixed table),
    │                     │  dialing number from policy
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  2. Persist         │  EmergencyEvent, status=active
    │                     │  (StorageUnavailable → 500 + fallback number)
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  3. Audit           │  emergency_call_created (critical),
    │                     │  emergency_call_initiated
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  4. Return receipt  │  callId + emergencyNumber
    └─────────┬───────────┘
              ┆ background
              ▼
    ┌─────────────────────┐
    │  5. Enrich          │  reverse geocode, merge diagnostics,
    │                     │  compare-and-set write, audit
    └─────────────────────┘

Nothing after step 4 can delay or fail the response.

═══════════════════════════════════════════════════════════════════════════
ALERT FLOW
═══════════════════════════════════════════════════════════════════════════

    contacts == []  → ValidationFailure (400)
    otherwise       → dispatch (never raises) → persist batch (best-effort,
                      messages are already out) → one summary audit entry
                      (counts only) → receipt with notified/failed tally
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Union

from emergency_backend.app.audit.audit_log import (
    AuditAction,
    AuditEntry,
    AuditLog,
    AuditSeverity,
    CallCreatedDetails,
    CallInitiatedDetails,
    ContactsAlertedDetails,
    EnrichmentDetails,
    FreeformDetails,
    StatusChangeDetails,
)
from emergency_backend.app.core.errors import (
    FALLBACK_INSTRUCTION,
    NotFoundError,
    StorageUnavailable,
    ValidationFailure,
)
from emergency_backend.app.emergency.background import BackgroundTaskRunner
from emergency_backend.app.emergency.ids import IdGenerator
from emergency_backend.app.emergency.policies import (
    EmergencyNumberPolicy,
    check_transition,
    determine_severity,
)
from emergency_backend.app.emergency.presentation import to_history_entry, to_statistics_view
from emergency_backend.app.events.alert_store import ContactAlertRecord, ContactAlertStore
from emergency_backend.app.events.models import (
    EmergencyEvent,
    EventFilter,
    EventLocation,
    EventStatus,
    EventType,
    SystemInfo,
)
from emergency_backend.app.events.store import EventStore, VersionConflict
from emergency_backend.app.location.enricher import EmergencyServiceLocation, LocationEnricher
from emergency_backend.app.location.geo import Coordinate, validate_coordinates
from emergency_backend.app.notifications.dispatcher import NotificationDispatcher
from emergency_backend.app.notifications.models import EmergencyContact, NotificationAttempt

logger = logging.getLogger(__name__)

CALL_FAILED_MESSAGE = f"Failed to initiate emergency call. {FALLBACK_INSTRUCTION}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
# Receipts
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class CallReceipt:
    call_id: str
    emergency_number: str
    severity: str
    timestamp: datetime
    location: Optional[EventLocation] = None


@dataclass
class AlertReceipt:
    alert_id: str
    notified_count: int
    failed_contacts: List[str]
    total_contacts: int
    timestamp: datetime
    attempts: List[NotificationAttempt] = field(default_factory=list)
    persisted: bool = True

    @property
    def summary(self) -> str:
        return (
            f"Successfully alerted {self.notified_count} of "
            f"{self.total_contacts} emergency contacts."
        )


@dataclass
class LogReceipt:
    event_id: str
    timestamp: datetime


@dataclass
class HistoryPage:
    events: List[Dict[str, Any]]
    total: int
    limit: int
    offset: int


# ═══════════════════════════════════════════════════════════════════════════
# Orchestrator
# ═══════════════════════════════════════════════════════════════════════════

class EmergencyOrchestrator:
    """
    Coordinates stores, audit trail, enrichment and dispatch.

    All collaborators are injected; the orchestrator holds no state of its
    own beyond configuration.
    """

    def __init__(
        self,
        *,
        events: EventStore,
        alerts: ContactAlertStore,
        audit: AuditLog,
        enricher: LocationEnricher,
        dispatcher: NotificationDispatcher,
        runner: BackgroundTaskRunner,
        number_policy: EmergencyNumberPolicy,
        ids: IdGenerator,
        app_version: Optional[str] = None,
        history_default_limit: int = 50,
        history_max_limit: int = 200,
        write_retries: int = 3,
    ):
        self._events = events
        self._alerts = alerts
        self._audit = audit
        self._enricher = enricher
        self._dispatcher = dispatcher
        self._runner = runner
        self._number_policy = number_policy
        self._ids = ids
        self._app_version = app_version
        self._history_default_limit = history_default_limit
        self._history_max_limit = history_max_limit
        self._write_retries = write_retries

    @property
    def default_emergency_number(self) -> str:
        return self._number_policy.default_number

    # ── Input coercion ──

    @staticmethod
    def parse_event_type(value: Union[EventType, str, None]) -> EventType:
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationFailure("Emergency type is required", field="emergencyType")
        try:
            return EventType(value)
        except ValueError:
            allowed = ", ".join(t.value for t in EventType)
            raise ValidationFailure(
                f"Invalid emergency type '{value}'. Expected one of: {allowed}",
                field="emergencyType",
            ) from None

    @staticmethod
    def _check_location(location: Optional[EventLocation]) -> Optional[EventLocation]:
        if location is None:
            return None
        try:
            validate_coordinates(location.latitude, location.longitude)
        except ValueError as e:
            raise ValidationFailure(str(e), field="location") from None
        return location

    # ── Call ──

    async def initiate_call(
        self,
        emergency_type: Union[EventType, str, None],
        location: Optional[EventLocation] = None,
        user_info: Optional[Dict[str, Any]] = None,
        *,
        user_ip: Optional[str] = None,
        client_timestamp: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> CallReceipt:
        event_type = self.parse_event_type(emergency_type)
        location = self._check_location(location)
        severity = determine_severity(event_type)
        number = self._number_policy.resolve(event_type, location)

        event = EmergencyEvent(
            external_id=self._ids.new_id(),
            event_type=event_type,
            severity=severity,
            status=EventStatus.ACTIVE,
            user_id=user_id,
            location=location,
            emergency_number=number,
            system_info=SystemInfo(
                user_info=dict(user_info or {}),
                user_ip=user_ip,
                client_timestamp=client_timestamp,
                app_version=self._app_version,
                emergency_type=event_type.value,
            ),
        )

        try:
            created = await self._events.create(event)
        except StorageUnavailable as exc:
            logger.critical(
                "Emergency call could not be recorded (%s); client told to dial %s",
                event_type.value, number,
                extra={"emergency_type": event_type.value},
            )
            raise StorageUnavailable(
                CALL_FAILED_MESSAGE,
                operation="initiate_call",
                body={"callId": "", "emergencyNumber": number},
            ) from exc

        await self._audit.append(AuditEntry(
            action=AuditAction.CALL_CREATED,
            resource_id=created.external_id,
            user_id=user_id,
            ip_address=user_ip,
            severity=AuditSeverity.CRITICAL,
            details=CallCreatedDetails(
                emergency_type=event_type.value,
                severity=severity.value,
                has_location=location is not None,
                latitude=location.latitude if location else None,
                longitude=location.longitude if location else None,
            ),
        ))
        await self._audit.append(AuditEntry(
            action=AuditAction.CALL_INITIATED,
            resource_id=created.external_id,
            user_id=user_id,
            ip_address=user_ip,
            details=CallInitiatedDetails(
                emergency_number=number,
                emergency_type=event_type.value,
            ),
        ))

        self._runner.submit(
            f"enrich:{created.external_id}",
            self.enrich_event(created.external_id, location),
        )

        logger.warning(
            "EMERGENCY %s call %s initiated → %s",
            event_type.value.upper(), created.external_id, number,
            extra={"event_id": created.external_id, "emergency_type": event_type.value},
        )
        return CallReceipt(
            call_id=created.external_id,
            emergency_number=number,
            severity=severity.value,
            timestamp=created.created_at or _utcnow(),
            location=location,
        )

    # ── Background enrichment ──

    async def enrich_event(
        self,
        external_id: str,
        location: Optional[EventLocation],
        diagnostics: Optional[SystemInfo] = None,
    ) -> None:
        """Resolve the address and merge diagnostics. Logs, never raises."""
        try:
            await self._enrich(external_id, location, diagnostics or SystemInfo())
        except Exception:
            logger.exception(
                "Enrichment of %s failed", external_id,
                extra={"event_id": external_id},
            )

    async def _enrich(
        self,
        external_id: str,
        location: Optional[EventLocation],
        diagnostics: SystemInfo,
    ) -> None:
        address = None
        if location is not None:
            address = await self._enricher.reverse_geocode(location.latitude, location.longitude)

        for attempt in range(1, self._write_retries + 1):
            event = await self._events.find_by_external_id(external_id)
            if event is None:
                logger.info("Event %s vanished before enrichment", external_id)
                return

            fields: Dict[str, Any] = {}
            skipped = False
            if address:
                current = event.location
                if (
                    current is not None and location is not None
                    and current.latitude == location.latitude
                    and current.longitude == location.longitude
                ):
                    fields["location"] = dataclasses.replace(current, address=address)
                else:
                    # Coordinates moved since the call; this address is stale
                    skipped = True

            stamp = dataclasses.replace(diagnostics, updated_at=_utcnow().isoformat())
            fields["system_info"] = event.system_info.merged(stamp)

            try:
                await self._events.update(event.id, fields, expected_version=event.version)
            except VersionConflict:
                logger.debug(
                    "Enrichment write for %s lost a race (attempt %d)", external_id, attempt,
                )
                continue
            break
        else:
            logger.warning(
                "Enrichment of %s abandoned after %d conflicting writes",
                external_id, self._write_retries,
                extra={"event_id": external_id},
            )
            return

        await self._audit.append(AuditEntry(
            action=AuditAction.EVENT_ENRICHED,
            resource_id=external_id,
            details=EnrichmentDetails(
                address_resolved=bool(address) and not skipped,
                address_skipped=skipped,
                attempts=attempt,
            ),
        ))
        logger.info("Event %s enriched", external_id, extra={"event_id": external_id})

    # ── Contacts ──

    async def alert_contacts(
        self,
        contacts: Sequence[EmergencyContact],
        message: str,
        emergency_type: Optional[str] = None,
        location: Optional[EventLocation] = None,
        *,
        call_id: Optional[str] = None,
        user_ip: Optional[str] = None,
    ) -> AlertReceipt:
        if not contacts:
            raise ValidationFailure("No emergency contacts provided", field="contacts")
        location = self._check_location(location)

        result = await self._dispatcher.dispatch(contacts, message, emergency_type, location)
        alert_id = self._ids.new_id()
        timestamp = _utcnow()

        persisted = True
        try:
            await self._alerts.record(ContactAlertRecord(
                alert_id=alert_id,
                message=message,
                notified_count=result.notified_count,
                failed_contacts=list(result.failed_contacts),
                attempts=list(result.attempts),
                emergency_type=emergency_type,
                event_external_id=call_id,
                latitude=location.latitude if location else None,
                longitude=location.longitude if location else None,
                created_at=timestamp,
            ))
        except StorageUnavailable:
            persisted = False
            logger.error(
                "Alert %s sent but not stored", alert_id,
                extra={"alert_id": alert_id},
            )

        await self._audit.append(AuditEntry(
            action=AuditAction.CONTACTS_ALERTED,
            resource="contact_alert",
            resource_id=alert_id,
            ip_address=user_ip,
            severity=AuditSeverity.WARNING if result.failed_contacts else AuditSeverity.INFO,
            details=ContactsAlertedDetails(
                contacts_count=len(contacts),
                notified_count=result.notified_count,
                failed_count=len(result.failed_contacts),
                alert_id=alert_id,
                emergency_type=emergency_type,
            ),
        ))

        return AlertReceipt(
            alert_id=alert_id,
            notified_count=result.notified_count,
            failed_contacts=list(result.failed_contacts),
            total_contacts=len(contacts),
            timestamp=timestamp,
            attempts=list(result.attempts),
            persisted=persisted,
        )

    async def get_alert(self, alert_id: str) -> ContactAlertRecord:
        record = await self._alerts.find_by_id(alert_id)
        if record is None:
            raise NotFoundError("Contact alert", alertId=alert_id)
        return record

    # ── Diagnostics ──

    async def log_event(
        self,
        payload: Dict[str, Any],
        *,
        user_ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> LogReceipt:
        event_id = self._ids.new_id()
        await self._audit.append(AuditEntry(
            action=AuditAction.EVENT_LOGGED,
            resource="system_event",
            resource_id=event_id,
            ip_address=user_ip,
            user_agent=user_agent,
            details=FreeformDetails(data=dict(payload)),
        ))
        return LogReceipt(event_id=event_id, timestamp=_utcnow())

    # ── Read projections ──

    async def history(self, flt: Optional[EventFilter] = None) -> HistoryPage:
        flt = dataclasses.replace(flt) if flt else EventFilter(limit=None)
        limit = self._history_default_limit if flt.limit is None else flt.limit
        flt.limit = max(1, min(limit, self._history_max_limit))
        flt.offset = max(0, flt.offset)

        events = await self._events.find_all(flt)
        total = await self._events.count(flt)
        notified = await self._alerts.notified_contacts(e.external_id for e in events)
        return HistoryPage(
            events=[to_history_entry(e, notified.get(e.external_id, ())) for e in events],
            total=total,
            limit=flt.limit,
            offset=flt.offset,
        )

    async def statistics(self, owner_id: Optional[int] = None) -> Dict[str, Any]:
        return to_statistics_view(await self._events.statistics(owner_id))

    # ── Administration ──

    async def change_status(
        self,
        external_id: str,
        new_status: Union[EventStatus, str],
        *,
        notes: Optional[str] = None,
        response_time: Optional[int] = None,
        call_duration: Optional[int] = None,
    ) -> EmergencyEvent:
        try:
            requested = EventStatus(new_status)
        except ValueError:
            raise ValidationFailure(f"Invalid status '{new_status}'", field="status") from None

        for _ in range(self._write_retries):
            event = await self._events.find_by_external_id(external_id)
            if event is None:
                raise NotFoundError("Emergency event", callId=external_id)
            check_transition(event.status, requested)

            fields: Dict[str, Any] = {"status": requested}
            if requested in (EventStatus.RESOLVED, EventStatus.CANCELLED):
                fields["resolved_at"] = _utcnow()
            if notes is not None:
                fields["notes"] = notes
            if response_time is not None:
                fields["response_time"] = response_time
            if call_duration is not None:
                fields["call_duration"] = call_duration

            try:
                updated = await self._events.update(event.id, fields, expected_version=event.version)
            except VersionConflict:
                continue
            if updated is None:
                raise NotFoundError("Emergency event", callId=external_id)
            break
        else:
            raise StorageUnavailable(
                "Event is being modified concurrently; try again",
                operation="change_status",
            )

        await self._audit.append(AuditEntry(
            action=AuditAction.STATUS_CHANGED,
            resource_id=external_id,
            details=StatusChangeDetails(
                previous_status=event.status.value,
                new_status=requested.value,
                notes=notes,
            ),
        ))
        logger.info(
            "Event %s: %s → %s", external_id, event.status.value, requested.value,
            extra={"event_id": external_id},
        )
        return updated

    async def delete_event(self, external_id: str) -> None:
        event = await self._events.find_by_external_id(external_id)
        if event is None or event.id is None or not await self._events.delete(event.id):
            raise NotFoundError("Emergency event", callId=external_id)
        await self._audit.append(AuditEntry(
            action=AuditAction.EVENT_DELETED,
            resource_id=external_id,
            severity=AuditSeverity.WARNING,
            details=StatusChangeDetails(
                previous_status=event.status.value,
                new_status="deleted",
            ),
        ))

    # ── Location passthrough ──

    async def find_nearby_services(
        self,
        latitude: float,
        longitude: float,
        service_type: Optional[str] = None,
        radius_m: float = 5_000.0,
    ) -> List[EmergencyServiceLocation]:
        try:
            center = Coordinate(latitude, longitude)
        except ValueError as e:
            raise ValidationFailure(str(e), field="location") from None
        if radius_m <= 0:
            raise ValidationFailure("Radius must be positive", field="radius")
        try:
            return await self._enricher.find_nearby(center, service_type, radius_m)
        except ValueError as e:
            raise ValidationFailure(str(e), field="type") from None

    async def geocode_address(self, address: str) -> Coordinate:
        address = (address or "").strip()
        if not address:
            raise ValidationFailure("Address is required", field="address")
        coords = await self._enricher.geocode_address(address)
        if coords is None:
            raise NotFoundError("Address", address=address)
        return coords

    # ── Health ──

    async def check_health(self) -> Dict[str, Any]:
        database = await self._events.ping()
        try:
            core = bool(self._ids.new_id())
        except Exception:
            logger.exception("Id generation failed during health check")
            core = False
        return {
            "healthy": database and core,
            "services": {"database": database, "core_functionality": core},
        }
