"""
test_event_store.py — EventStore and ContactAlertStore against SQLite.

Covers:
    • create / find / delete round trip
    • update semantics (immutable fields, unknown fields, version bumps)
    • compare-and-set conflicts
    • ordering, pagination, filtering and counting
    • aggregate statistics
    • connection failures surfacing as StorageUnavailable
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import DataError, IntegrityError

from emergency_backend.app.core.errors import StorageUnavailable
from emergency_backend.app.events.alert_store import ContactAlertRecord, ContactAlertStore
from emergency_backend.app.events.models import (
    EmergencyEvent,
    EventFilter,
    EventLocation,
    EventStatus,
    EventType,
    Severity,
    SystemInfo,
)
from emergency_backend.app.events.store import EventStore, VersionConflict
from emergency_backend.app.notifications.models import NotificationAttempt, NotificationChannel
from tests.doubles import RejectingSessions


def _event(external_id: str, event_type=EventType.MEDICAL, user_id=None, location=None):
    return EmergencyEvent(
        external_id=external_id,
        event_type=event_type,
        severity=Severity.CRITICAL,
        user_id=user_id,
        location=location,
        emergency_number="911",
        system_info=SystemInfo(user_ip="10.0.0.1", extra={"battery": 40}),
    )


@pytest.fixture
def store(container) -> EventStore:
    return container.events


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Create & read
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateAndRead:

    async def test_create_assigns_id_version_and_timestamps(self, store):
        created = await store.create(_event("evt-1"))
        assert created.id is not None
        assert created.version == 1
        assert created.status == EventStatus.ACTIVE
        assert created.created_at is not None
        assert created.created_at.tzinfo is not None

    async def test_round_trip_preserves_fields(self, store):
        loc = EventLocation(latitude=40.7128, longitude=-74.006, accuracy=12.0)
        created = await store.create(_event("evt-1", location=loc, user_id=7))

        found = await store.find_by_external_id("evt-1")
        assert found.id == created.id
        assert found.user_id == 7
        assert found.location.latitude == 40.7128
        assert found.location.accuracy == 12.0
        assert found.location.address is None
        assert found.system_info.user_ip == "10.0.0.1"
        assert found.system_info.extra == {"battery": 40}

    async def test_missing_lookups_return_none(self, store):
        assert await store.find_by_id(12345) is None
        assert await store.find_by_external_id("nope") is None

    async def test_delete(self, store):
        created = await store.create(_event("evt-1"))
        assert await store.delete(created.id) is True
        assert await store.find_by_id(created.id) is None
        assert await store.delete(created.id) is False


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Update
# ═══════════════════════════════════════════════════════════════════════════

class TestUpdate:

    async def test_update_bumps_version(self, store):
        created = await store.create(_event("evt-1"))
        updated = await store.update(created.id, {"notes": "on scene"})
        assert updated.notes == "on scene"
        assert updated.version == 2
        assert updated.updated_at >= created.updated_at

    async def test_immutable_fields_ignored(self, store):
        created = await store.create(_event("evt-1"))
        updated = await store.update(created.id, {
            "event_type": EventType.FIRE,
            "severity": Severity.LOW,
            "external_id": "hijacked",
            "notes": "kept",
        })
        assert updated.event_type == EventType.MEDICAL
        assert updated.severity == Severity.CRITICAL
        assert updated.external_id == "evt-1"
        assert updated.notes == "kept"

    async def test_unknown_field_rejected(self, store):
        created = await store.create(_event("evt-1"))
        with pytest.raises(ValueError):
            await store.update(created.id, {"colour": "red"})

    async def test_update_missing_event_returns_none(self, store):
        assert await store.update(999, {"notes": "x"}) is None

    async def test_location_written_as_a_unit(self, store):
        created = await store.create(_event("evt-1"))
        loc = EventLocation(latitude=1.0, longitude=2.0, address="Somewhere")
        updated = await store.update(created.id, {"location": loc})
        assert (updated.location.latitude, updated.location.longitude) == (1.0, 2.0)
        assert updated.location.address == "Somewhere"


class TestCompareAndSet:

    async def test_matching_version_succeeds(self, store):
        created = await store.create(_event("evt-1"))
        updated = await store.update(created.id, {"notes": "a"}, expected_version=created.version)
        assert updated.version == created.version + 1

    async def test_stale_version_conflicts(self, store):
        created = await store.create(_event("evt-1"))
        await store.update(created.id, {"notes": "first"})
        with pytest.raises(VersionConflict) as exc_info:
            await store.update(created.id, {"notes": "second"}, expected_version=created.version)
        assert exc_info.value.expected_version == created.version
        assert (await store.find_by_id(created.id)).notes == "first"


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Queries
# ═══════════════════════════════════════════════════════════════════════════

class TestQueries:

    async def test_newest_first(self, store):
        for i in range(3):
            await store.create(_event(f"evt-{i}"))
        events = await store.find_all(EventFilter(limit=10))
        assert [e.external_id for e in events] == ["evt-2", "evt-1", "evt-0"]

    async def test_pagination(self, store):
        for i in range(5):
            await store.create(_event(f"evt-{i}"))
        page = await store.find_all(EventFilter(limit=2, offset=1))
        assert [e.external_id for e in page] == ["evt-3", "evt-2"]

    async def test_filters_and_count(self, store):
        await store.create(_event("a", EventType.FIRE, user_id=1))
        await store.create(_event("b", EventType.MEDICAL, user_id=1))
        await store.create(_event("c", EventType.FIRE, user_id=2))

        assert await store.count() == 3
        assert await store.count(EventFilter(owner_id=1)) == 2
        fires = await store.find_all(EventFilter(event_type=EventType.FIRE))
        assert {e.external_id for e in fires} == {"a", "c"}

    async def test_date_range(self, store):
        await store.create(_event("a"))
        future = datetime.now(timezone.utc) + timedelta(days=1)
        assert await store.count(EventFilter(date_from=future)) == 0
        assert await store.count(EventFilter(date_to=future)) == 1

    async def test_repeated_reads_identical(self, store):
        for i in range(4):
            await store.create(_event(f"evt-{i}"))
        flt = EventFilter(limit=3)
        first = await store.find_all(flt)
        second = await store.find_all(flt)
        assert first == second


class TestStatistics:

    async def test_counts_and_average(self, store):
        a = await store.create(_event("a", EventType.MEDICAL))
        b = await store.create(_event("b", EventType.FIRE))
        await store.create(_event("c", EventType.FIRE))
        await store.update(a.id, {"status": EventStatus.RESOLVED, "response_time": 100})
        await store.update(b.id, {"status": EventStatus.CANCELLED, "response_time": 200})

        stats = await store.statistics()
        assert stats.total == 3
        assert stats.by_type == {"medical": 1, "fire": 2}
        assert stats.by_status == {"resolved": 1, "cancelled": 1, "active": 1}
        assert stats.average_response_time == pytest.approx(150.0)
        assert stats.recent_events == 3

    async def test_recent_window(self, store):
        await store.create(_event("a"))
        later = datetime.now(timezone.utc) + timedelta(days=31)
        stats = await store.statistics(now=later)
        assert stats.recent_events == 0

    async def test_owner_scope(self, store):
        await store.create(_event("a", user_id=1))
        await store.create(_event("b", user_id=2))
        stats = await store.statistics(owner_id=2)
        assert stats.total == 1

    async def test_empty_store(self, store):
        stats = await store.statistics()
        assert stats.total == 0
        assert stats.average_response_time == 0.0


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Storage failures
# ═══════════════════════════════════════════════════════════════════════════

class TestStorageFailure:

    async def test_create_raises_storage_unavailable(self, broken_sessions):
        store = EventStore(broken_sessions)
        with pytest.raises(StorageUnavailable):
            await store.create(_event("evt-1"))

    async def test_ping_false_when_unreachable(self, broken_sessions):
        assert await EventStore(broken_sessions).ping() is False

    async def test_ping_true_when_reachable(self, store):
        assert await store.ping() is True


# ═══════════════════════════════════════════════════════════════════════════
# Section 5: Contact alerts
# ═══════════════════════════════════════════════════════════════════════════

class TestContactAlertStore:

    def _record(self, alert_id, call_id=None):
        return ContactAlertRecord(
            alert_id=alert_id,
            message="Help",
            notified_count=1,
            failed_contacts=["Bob"],
            attempts=[
                NotificationAttempt("Ann", NotificationChannel.SMS, True, "sms-1"),
                NotificationAttempt("Ann", NotificationChannel.EMAIL, True, "email-1"),
                NotificationAttempt("Bob", NotificationChannel.SMS, False, error="rejected"),
            ],
            emergency_type="medical",
            event_external_id=call_id,
        )

    async def test_record_and_fetch(self, container):
        alerts: ContactAlertStore = container.alerts
        await alerts.record(self._record("alert-1"))

        found = await alerts.find_by_id("alert-1")
        assert found.notified_count == 1
        assert found.failed_contacts == ["Bob"]
        assert [a.contact_name for a in found.attempts] == ["Ann", "Ann", "Bob"]
        assert found.attempts[2].error == "rejected"
        assert found.created_at is not None

    async def test_missing_alert(self, container):
        assert await container.alerts.find_by_id("nope") is None

    async def test_notified_contacts_per_event(self, container):
        alerts = container.alerts
        await alerts.record(self._record("alert-1", call_id="evt-1"))
        await alerts.record(self._record("alert-2", call_id="evt-2"))

        notified = await alerts.notified_contacts(["evt-1", "evt-3"])
        assert notified == {"evt-1": ["Ann"]}

    async def test_record_on_broken_storage(self, broken_sessions):
        with pytest.raises(StorageUnavailable):
            await ContactAlertStore(broken_sessions).record(self._record("alert-1"))

    @pytest.mark.parametrize("error", [
        DataError("INSERT INTO contact_alerts", {}, Exception("value too long")),
        IntegrityError("INSERT INTO contact_alerts", {}, Exception("duplicate key")),
    ])
    async def test_record_wraps_any_database_error(self, error):
        sessions = RejectingSessions(error)
        with pytest.raises(StorageUnavailable) as exc_info:
            await ContactAlertStore(sessions).record(self._record("alert-1"))
        assert exc_info.value.__cause__ is error
        assert len(sessions.added) == 1
