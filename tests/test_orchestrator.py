"""
test_orchestrator.py — End-to-end workflow through the service container.

Covers:
    • initiate_call: validation, persistence, audit, background enrichment
    • latency: the call returns while a hung geocoder is still pending
    • alert_contacts: partial failure, persistence, audit summary
    • history / statistics projections
    • status changes and deletion
    • storage and audit outages
"""

from __future__ import annotations

import time

import pytest
from sqlalchemy.exc import DataError

from emergency_backend.app.audit.audit_log import AuditAction, AuditLog, AuditSeverity
from emergency_backend.app.core.errors import (
    InvalidStatusTransition,
    NotFoundError,
    StorageUnavailable,
    ValidationFailure,
)
from emergency_backend.app.emergency.orchestrator import CALL_FAILED_MESSAGE, EmergencyOrchestrator
from emergency_backend.app.emergency.policies import EmergencyNumberPolicy
from emergency_backend.app.events.alert_store import ContactAlertStore
from emergency_backend.app.events.models import (
    EventFilter,
    EventLocation,
    EventStatus,
    EventType,
    Severity,
)
from emergency_backend.app.events.store import EventStore
from emergency_backend.app.location.geo import Coordinate
from emergency_backend.app.notifications.models import EmergencyContact
from tests.doubles import (
    HangingGeocoder,
    RejectingSessions,
    ScriptedProvider,
    SequentialIds,
    StaticGeocoder,
)

NYC = EventLocation(latitude=40.7128, longitude=-74.006, accuracy=10.0)


def _orchestrator_with(container, **overrides) -> EmergencyOrchestrator:
    parts = dict(
        events=container.events,
        alerts=container.alerts,
        audit=container.audit,
        enricher=container.enricher,
        dispatcher=container.dispatcher,
        runner=container.runner,
        number_policy=EmergencyNumberPolicy("911"),
        ids=SequentialIds("alt"),
    )
    parts.update(overrides)
    return EmergencyOrchestrator(**parts)


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Initiate call
# ═══════════════════════════════════════════════════════════════════════════

class TestInitiateCall:

    async def test_fire_without_location(self, container):
        receipt = await container.orchestrator.initiate_call("fire", user_ip="10.0.0.1")

        assert receipt.emergency_number == "911"
        assert receipt.location is None
        assert receipt.call_id == "id-0001"

        stored = await container.events.find_by_external_id(receipt.call_id)
        assert stored.severity == Severity.CRITICAL
        assert stored.status == EventStatus.ACTIVE
        assert stored.event_type == EventType.FIRE
        assert stored.system_info.user_ip == "10.0.0.1"

    @pytest.mark.parametrize("value", [None, "", "   "])
    async def test_missing_type_rejected(self, container, value):
        with pytest.raises(ValidationFailure, match="Emergency type is required"):
            await container.orchestrator.initiate_call(value)
        assert await container.events.count() == 0

    async def test_unknown_type_rejected(self, container):
        with pytest.raises(ValidationFailure) as exc_info:
            await container.orchestrator.initiate_call("tsunami")
        assert exc_info.value.status_code == 400

    async def test_invalid_location_rejected(self, container):
        with pytest.raises(ValidationFailure):
            await container.orchestrator.initiate_call(
                "medical", EventLocation(latitude=91.0, longitude=0.0),
            )

    async def test_audit_trail(self, container):
        receipt = await container.orchestrator.initiate_call("medical", NYC, {"name": "Jane"})
        await container.runner.drain(2.0)

        entries = await container.audit.entries(resource_id=receipt.call_id)
        actions = [e.action for e in entries]
        assert actions == [
            AuditAction.CALL_CREATED,
            AuditAction.CALL_INITIATED,
            AuditAction.EVENT_ENRICHED,
        ]
        assert entries[0].severity == AuditSeverity.CRITICAL
        assert entries[0].details.has_location is True
        assert entries[1].details.emergency_number == "911"

    async def test_returns_while_geocoder_hangs(self, make_container, settings):
        slow = settings.model_copy(update={"GEOCODE_TIMEOUT_SECONDS": 30.0})
        container = await make_container(slow, geocoder=HangingGeocoder())
        await container.orchestrator.initiate_call("general")  # warm up the connection pool
        await container.runner.drain(2.0)

        start = time.perf_counter()
        receipt = await container.orchestrator.initiate_call("medical", NYC)
        elapsed = time.perf_counter() - start

        assert elapsed < 0.2
        assert container.runner.pending == 1
        stored = await container.events.find_by_external_id(receipt.call_id)
        assert stored.location.address is None
        await container.runner.cancel_all()

    async def test_storage_outage_returns_fallback_number(self, container, broken_sessions):
        orchestrator = _orchestrator_with(container, events=EventStore(broken_sessions))
        with pytest.raises(StorageUnavailable) as exc_info:
            await orchestrator.initiate_call("police")
        err = exc_info.value
        assert err.status_code == 500
        assert err.message == CALL_FAILED_MESSAGE
        assert err.body == {"callId": "", "emergencyNumber": "911"}

    async def test_audit_outage_does_not_fail_call(self, container, broken_sessions):
        orchestrator = _orchestrator_with(container, audit=AuditLog(broken_sessions))
        receipt = await orchestrator.initiate_call("fire")
        assert receipt.emergency_number == "911"
        assert await container.events.find_by_external_id(receipt.call_id) is not None
        await container.runner.drain(2.0)


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Background enrichment
# ═══════════════════════════════════════════════════════════════════════════

class TestEnrichment:

    async def test_address_written_after_call(self, make_container):
        container = await make_container(geocoder=StaticGeocoder("350 5th Ave"))
        receipt = await container.orchestrator.initiate_call("medical", NYC)
        assert await container.runner.drain(2.0)

        stored = await container.events.find_by_external_id(receipt.call_id)
        assert stored.location.address == "350 5th Ave"
        assert stored.location.latitude == NYC.latitude
        assert stored.system_info.updated_at is not None
        assert stored.version == 2

    async def test_offline_fallback_address(self, container):
        receipt = await container.orchestrator.initiate_call("medical", NYC)
        await container.runner.drain(2.0)
        stored = await container.events.find_by_external_id(receipt.call_id)
        assert stored.location.address == "Near New York, NY"

    async def test_no_location_still_merges_diagnostics(self, container):
        receipt = await container.orchestrator.initiate_call("fire")
        await container.runner.drain(2.0)
        stored = await container.events.find_by_external_id(receipt.call_id)
        assert stored.location is None
        assert stored.system_info.updated_at is not None

    async def test_moved_coordinates_keep_stale_address_out(self, make_container):
        container = await make_container(geocoder=StaticGeocoder("Old place"))
        receipt = await container.orchestrator.initiate_call("medical")
        await container.runner.drain(2.0)

        stored = await container.events.find_by_external_id(receipt.call_id)
        await container.events.update(stored.id, {"location": EventLocation(41.0, -75.0)})

        await container.orchestrator.enrich_event(receipt.call_id, NYC)

        after = await container.events.find_by_external_id(receipt.call_id)
        assert after.location.address is None
        assert (after.location.latitude, after.location.longitude) == (41.0, -75.0)
        enriched = await container.audit.entries(
            resource_id=receipt.call_id, action=AuditAction.EVENT_ENRICHED,
        )
        assert enriched[-1].details.address_skipped is True

    async def test_enrichment_of_deleted_event_is_harmless(self, container):
        await container.orchestrator.enrich_event("never-existed", NYC)

    async def test_admin_write_during_enrichment_is_kept(self, make_container, monkeypatch):
        container = await make_container(geocoder=StaticGeocoder("350 5th Ave"))
        store = container.events
        original_update = store.update
        interleaved = []

        async def racing_update(event_id, fields, expected_version=None):
            if "system_info" in fields and not interleaved:
                interleaved.append(event_id)
                await original_update(event_id, {"status": "resolved", "notes": "admin"})
            return await original_update(event_id, fields, expected_version=expected_version)

        monkeypatch.setattr(store, "update", racing_update)
        receipt = await container.orchestrator.initiate_call("medical", NYC)
        assert await container.runner.drain(2.0)

        stored = await store.find_by_external_id(receipt.call_id)
        assert len(interleaved) == 1
        assert stored.status == EventStatus.RESOLVED
        assert stored.notes == "admin"
        assert stored.location.address == "350 5th Ave"
        assert stored.version == 3
        [enriched] = await container.audit.entries(
            resource_id=receipt.call_id, action=AuditAction.EVENT_ENRICHED,
        )
        assert enriched.details.attempts == 2

    async def test_enrichment_abandoned_after_repeated_conflicts(self, container, monkeypatch):
        receipt = await container.orchestrator.initiate_call("medical", NYC)
        await container.runner.drain(2.0)

        orchestrator = _orchestrator_with(container, write_retries=2)
        store = container.events
        original_update = store.update
        interleaved = []

        async def always_racing(event_id, fields, expected_version=None):
            if expected_version is not None:
                interleaved.append(event_id)
                await original_update(event_id, {"notes": f"admin {len(interleaved)}"})
            return await original_update(event_id, fields, expected_version=expected_version)

        monkeypatch.setattr(store, "update", always_racing)
        await orchestrator.enrich_event(receipt.call_id, NYC)

        assert len(interleaved) == 2
        stored = await store.find_by_external_id(receipt.call_id)
        assert stored.notes == "admin 2"
        enriched = await container.audit.entries(
            resource_id=receipt.call_id, action=AuditAction.EVENT_ENRICHED,
        )
        assert len(enriched) == 1


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Alert contacts
# ═══════════════════════════════════════════════════════════════════════════

class TestAlertContacts:

    async def test_mixed_channel_scenario(self, make_container):
        provider = ScriptedProvider(
            sms={"+15550000002": False, "+15550000003": True},
            email={"one@example.com": True, "three@example.com": False},
        )
        container = await make_container(provider=provider)
        contacts = [
            EmergencyContact("Email Only", email="one@example.com"),
            EmergencyContact("Phone Only", phone="+15550000002"),
            EmergencyContact("Both", phone="+15550000003", email="three@example.com"),
        ]

        receipt = await container.orchestrator.alert_contacts(contacts, "Help", "medical", NYC)

        assert receipt.notified_count == 2
        assert receipt.failed_contacts == ["Phone Only"]
        assert receipt.summary == "Successfully alerted 2 of 3 emergency contacts."
        assert receipt.persisted is True

        stored = await container.orchestrator.get_alert(receipt.alert_id)
        assert len(stored.attempts) == 4
        [audit] = await container.audit.entries(resource_id=receipt.alert_id)
        assert audit.action == AuditAction.CONTACTS_ALERTED
        assert audit.severity == AuditSeverity.WARNING
        assert audit.details.failed_count == 1

    async def test_empty_contacts_rejected(self, container):
        with pytest.raises(ValidationFailure, match="No emergency contacts provided"):
            await container.orchestrator.alert_contacts([], "Help")

    async def test_all_failures_still_a_receipt(self, make_container):
        container = await make_container(provider=ScriptedProvider(sms={"+15550000001": False}))
        receipt = await container.orchestrator.alert_contacts(
            [EmergencyContact("A", phone="+15550000001"), EmergencyContact("B")], "Help",
        )
        assert receipt.notified_count == 0
        assert receipt.failed_contacts == ["A", "B"]

    async def test_unknown_alert(self, container):
        with pytest.raises(NotFoundError):
            await container.orchestrator.get_alert("nope")

    async def test_alert_storage_outage_is_not_fatal(self, container, broken_sessions):
        orchestrator = _orchestrator_with(container, alerts=ContactAlertStore(broken_sessions))
        receipt = await orchestrator.alert_contacts(
            [EmergencyContact("A", phone="+15550000001")], "Help",
        )
        assert receipt.notified_count == 1
        assert receipt.persisted is False

    async def test_alert_database_error_after_sending_is_not_fatal(self, make_container):
        provider = ScriptedProvider()
        container = await make_container(provider=provider)
        rejecting = RejectingSessions(DataError(
            "INSERT INTO contact_alerts", {},
            Exception("value too long for type character varying(20)"),
        ))
        orchestrator = _orchestrator_with(container, alerts=ContactAlertStore(rejecting))

        receipt = await orchestrator.alert_contacts(
            [EmergencyContact("A", phone="+15550000001")], "Help", "x" * 30,
        )

        assert len(provider.sent) == 1
        assert receipt.notified_count == 1
        assert receipt.persisted is False
        [audit] = await container.audit.entries(resource_id=receipt.alert_id)
        assert audit.action == AuditAction.CONTACTS_ALERTED

    async def test_linked_alert_names_appear_in_history(self, container):
        call = await container.orchestrator.initiate_call("medical")
        await container.orchestrator.alert_contacts(
            [EmergencyContact("Ann", phone="+15550000001")], "Help", call_id=call.call_id,
        )
        page = await container.orchestrator.history()
        assert page.events[0]["contacts"] == ["Emergency Services", "Ann"]
        await container.runner.drain(2.0)


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: History, statistics, diagnostics
# ═══════════════════════════════════════════════════════════════════════════

class TestReadProjections:

    async def test_history_limit_one_returns_newest(self, container):
        await container.orchestrator.initiate_call("fire")
        second = await container.orchestrator.initiate_call("police")
        await container.runner.drain(2.0)

        page = await container.orchestrator.history(EventFilter(limit=1, offset=0))
        assert [e["callId"] for e in page.events] == [second.call_id]
        assert page.total == 2
        assert (page.limit, page.offset) == (1, 0)

    async def test_history_idempotent(self, container):
        for t in ("fire", "medical", "general"):
            await container.orchestrator.initiate_call(t)
        await container.runner.drain(2.0)

        first = await container.orchestrator.history(EventFilter(limit=10))
        second = await container.orchestrator.history(EventFilter(limit=10))
        assert first == second

    async def test_history_limit_clamped(self, container):
        page = await container.orchestrator.history(EventFilter(limit=10_000, offset=-5))
        assert page.limit == 200
        assert page.offset == 0
        default = await container.orchestrator.history()
        assert default.limit == 50

    async def test_statistics(self, container):
        o = container.orchestrator
        a = await o.initiate_call("medical")
        await o.initiate_call("fire")
        await o.initiate_call("fire")
        await container.runner.drain(2.0)
        await o.change_status(a.call_id, "resolved", response_time=120)

        stats = await o.statistics()
        assert stats["total"] == 3
        assert stats["byType"] == {"medical": 1, "fire": 2}
        assert stats["byStatus"] == {"resolved": 1, "active": 2}
        assert stats["averageResponseTime"] == "2:00"
        assert stats["recentEvents"] == 3

    async def test_log_event_audited(self, container):
        receipt = await container.orchestrator.log_event(
            {"type": "location_denied", "screen": "home"},
            user_ip="10.0.0.2", user_agent="pytest",
        )
        [entry] = await container.audit.entries(resource_id=receipt.event_id)
        assert entry.action == AuditAction.EVENT_LOGGED
        assert entry.resource == "system_event"
        assert entry.details.data == {"type": "location_denied", "screen": "home"}
        assert entry.user_agent == "pytest"

    async def test_health(self, container):
        assert await container.orchestrator.check_health() == {
            "healthy": True,
            "services": {"database": True, "core_functionality": True},
        }

    async def test_health_with_database_down(self, container, broken_sessions):
        orchestrator = _orchestrator_with(container, events=EventStore(broken_sessions))
        result = await orchestrator.check_health()
        assert result["healthy"] is False
        assert result["services"]["database"] is False


# ═══════════════════════════════════════════════════════════════════════════
# Section 5: Administration
# ═══════════════════════════════════════════════════════════════════════════

class TestAdministration:

    async def test_resolve(self, container):
        call = await container.orchestrator.initiate_call("medical")
        await container.runner.drain(2.0)

        event = await container.orchestrator.change_status(
            call.call_id, EventStatus.RESOLVED, notes="Ambulance arrived", call_duration=300,
        )
        assert event.status == EventStatus.RESOLVED
        assert event.resolved_at is not None
        assert event.notes == "Ambulance arrived"
        assert event.call_duration == 300

        [change] = await container.audit.entries(
            resource_id=call.call_id, action=AuditAction.STATUS_CHANGED,
        )
        assert (change.details.previous_status, change.details.new_status) == ("active", "resolved")

    async def test_terminal_state_is_final(self, container):
        call = await container.orchestrator.initiate_call("fire")
        await container.runner.drain(2.0)
        await container.orchestrator.change_status(call.call_id, "cancelled")
        with pytest.raises(InvalidStatusTransition):
            await container.orchestrator.change_status(call.call_id, "resolved")

    async def test_invalid_status(self, container):
        call = await container.orchestrator.initiate_call("fire")
        with pytest.raises(ValidationFailure):
            await container.orchestrator.change_status(call.call_id, "archived")
        await container.runner.drain(2.0)

    async def test_unknown_event(self, container):
        with pytest.raises(NotFoundError):
            await container.orchestrator.change_status("nope", "resolved")
        with pytest.raises(NotFoundError):
            await container.orchestrator.delete_event("nope")

    async def test_delete(self, container):
        call = await container.orchestrator.initiate_call("general")
        await container.runner.drain(2.0)
        await container.orchestrator.delete_event(call.call_id)
        assert await container.events.find_by_external_id(call.call_id) is None
        [entry] = await container.audit.entries(
            resource_id=call.call_id, action=AuditAction.EVENT_DELETED,
        )
        assert entry.severity == AuditSeverity.WARNING

    async def test_nearby_services_validation(self, container):
        with pytest.raises(ValidationFailure):
            await container.orchestrator.find_nearby_services(100.0, 0.0)
        with pytest.raises(ValidationFailure):
            await container.orchestrator.find_nearby_services(40.0, -74.0, "bakery")
        services = await container.orchestrator.find_nearby_services(40.7128, -74.006)
        assert len(services) == 3

    async def test_geocode_address(self, make_container):
        container = await make_container(
            geocoder=StaticGeocoder(coordinate=Coordinate(40.7484, -73.9857)),
        )
        coords = await container.orchestrator.geocode_address("  350 5th Ave  ")
        assert coords == Coordinate(40.7484, -73.9857)

    async def test_geocode_address_validation_and_miss(self, container):
        with pytest.raises(ValidationFailure):
            await container.orchestrator.geocode_address("   ")
        with pytest.raises(NotFoundError):
            await container.orchestrator.geocode_address("Nowhere Lane")
