"""
policies.py — Business rules for emergency events.

═══════════════════════════════════════════════════════════════════════════
SEVERITY
═══════════════════════════════════════════════════════════════════════════

    Event type    Severity
    ──────────    ────────
    medical       critical
    fire          critical
    police        high
    general       high

Severity is a total function of the event type and is fixed at creation.

═══════════════════════════════════════════════════════════════════════════
STATUS LIFECYCLE
═══════════════════════════════════════════════════════════════════════════

    active ──→ resolved
       └────→ cancelled

Both end states are terminal.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Mapping, Optional, Union

from emergency_backend.app.core.errors import InvalidStatusTransition
from emergency_backend.app.events.models import EventLocation, EventStatus, EventType, Severity


SEVERITY_BY_TYPE: Dict[EventType, Severity] = {
    EventType.MEDICAL: Severity.CRITICAL,
    EventType.FIRE:    Severity.CRITICAL,
    EventType.POLICE:  Severity.HIGH,
    EventType.GENERAL: Severity.HIGH,
}


def determine_severity(event_type: Union[EventType, str]) -> Severity:
    """Severity for ``event_type``; anything unrecognised is treated as high."""
    try:
        return SEVERITY_BY_TYPE[EventType(event_type)]
    except ValueError:
        return Severity.HIGH


# ── Emergency number ──

class EmergencyNumberPolicy:
    """
    Resolves the dialing target for a new event.

    Per-type and per-jurisdiction overrides are supported; the stock
    deployment configures neither, so every event dials ``default_number``.
    """

    def __init__(
        self,
        default_number: str = "911",
        by_type: Optional[Mapping[EventType, str]] = None,
        by_jurisdiction: Optional[Mapping[str, str]] = None,
    ):
        self.default_number = default_number
        self._by_type = dict(by_type or {})
        self._by_jurisdiction = dict(by_jurisdiction or {})

    def resolve(
        self,
        event_type: EventType,
        location: Optional[EventLocation] = None,
        jurisdiction: Optional[str] = None,
    ) -> str:
        if jurisdiction and jurisdiction in self._by_jurisdiction:
            return self._by_jurisdiction[jurisdiction]
        if event_type in self._by_type:
            return self._by_type[event_type]
        return self.default_number


# ── State machine ──

ALLOWED_TRANSITIONS: Dict[EventStatus, FrozenSet[EventStatus]] = {
    EventStatus.ACTIVE:    frozenset({EventStatus.RESOLVED, EventStatus.CANCELLED}),
    EventStatus.RESOLVED:  frozenset(),
    EventStatus.CANCELLED: frozenset(),
}


def can_transition(current: EventStatus, requested: EventStatus) -> bool:
    return requested in ALLOWED_TRANSITIONS.get(current, frozenset())


def check_transition(current: EventStatus, requested: EventStatus) -> None:
    if not can_transition(current, requested):
        raise InvalidStatusTransition(current.value, requested.value)
