"""
models.py — Domain data structures for emergency events.

Defines:
    • EventType / EventStatus / Severity — closed vocabularies
    • EventLocation   — coordinates + lagging human address
    • SystemInfo      — typed diagnostic blob with a free-form remainder
    • EmergencyEvent  — one triggered emergency, from initiation to resolution
    • EventFilter     — query parameters for the event store
    • EventStatistics — aggregate counts over the store

═══════════════════════════════════════════════════════════════════════════
EVENT INVARIANTS
═══════════════════════════════════════════════════════════════════════════

    • event_type and severity are fixed together at creation and never
      change afterwards (the store ignores updates to either).
    • address may lag latitude/longitude (it is filled by background
      enrichment), but it is only ever written together with the
      coordinates it was resolved from.
    • version increments on every successful update; background work
      uses it for compare-and-set writes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class EventType(str, Enum):
    MEDICAL = "medical"
    FIRE    = "fire"
    POLICE  = "police"
    GENERAL = "general"


class EventStatus(str, Enum):
    """Lifecycle: active → resolved | cancelled (both terminal)."""
    ACTIVE    = "active"
    RESOLVED  = "resolved"
    CANCELLED = "cancelled"


class Severity(str, Enum):
    LOW      = "low"
    MEDIUM   = "medium"
    HIGH     = "high"
    CRITICAL = "critical"


# ═══════════════════════════════════════════════════════════════════════════
# Value Objects
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class EventLocation:
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    address: Optional[str] = None
    timestamp: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "latitude": self.latitude,
            "longitude": self.longitude,
        }
        if self.accuracy is not None:
            d["accuracy"] = self.accuracy
        if self.address is not None:
            d["address"] = self.address
        return d


@dataclass
class SystemInfo:
    """
    Diagnostic context captured with an event.

    Known keys are typed; anything else the client sends is kept in
    ``extra`` so that legitimately variable payloads are not rejected.
    """
    user_info: Dict[str, Any] = field(default_factory=dict)
    user_ip: Optional[str] = None
    client_timestamp: Optional[str] = None
    app_version: Optional[str] = None
    emergency_type: Optional[str] = None
    updated_at: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN = (
        "user_info", "user_ip", "client_timestamp",
        "app_version", "emergency_type", "updated_at",
    )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            key: getattr(self, key)
            for key in self._KNOWN
            if getattr(self, key) not in (None, {})
        }
        if self.extra:
            d["extra"] = dict(self.extra)
        return d

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SystemInfo":
        if not data:
            return cls()
        known = {k: data[k] for k in cls._KNOWN if k in data}
        extra = dict(data.get("extra") or {})
        for key, value in data.items():
            if key not in cls._KNOWN and key != "extra":
                extra[key] = value
        return cls(**known, extra=extra)

    def merged(self, other: "SystemInfo") -> "SystemInfo":
        """Overlay ``other`` onto this blob (non-empty values win)."""
        combined = self.to_dict()
        for key, value in other.to_dict().items():
            if key == "extra":
                combined["extra"] = {**combined.get("extra", {}), **value}
            else:
                combined[key] = value
        return SystemInfo.from_dict(combined)


# ═══════════════════════════════════════════════════════════════════════════
# Event
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class EmergencyEvent:
    """
    One triggered emergency.

    Attributes
    ----------
    id : int | None
        Store-assigned row id (None until created).
    external_id : str
        Opaque public identifier, returned to clients as ``callId``.
    event_type, severity : EventType, Severity
        Fixed at creation.
    status : EventStatus
    location : EventLocation | None
    emergency_number : str | None
        Resolved dialing target.
    call_duration, response_time : int | None
        Seconds; filled by later administrative updates.
    version : int
        Row version for conditional updates.
    """
    external_id: str
    event_type: EventType
    severity: Severity
    status: EventStatus = EventStatus.ACTIVE
    id: Optional[int] = None
    user_id: Optional[int] = None
    location: Optional[EventLocation] = None
    emergency_number: Optional[str] = None
    call_duration: Optional[int] = None
    response_time: Optional[int] = None
    notes: Optional[str] = None
    system_info: SystemInfo = field(default_factory=SystemInfo)
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None


# ═══════════════════════════════════════════════════════════════════════════
# Queries
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class EventFilter:
    owner_id: Optional[int] = None
    event_type: Optional[EventType] = None
    status: Optional[EventStatus] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    limit: Optional[int] = 50
    offset: int = 0


@dataclass
class EventStatistics:
    total: int = 0
    by_type: Dict[str, int] = field(default_factory=dict)
    by_status: Dict[str, int] = field(default_factory=dict)
    average_response_time: float = 0.0  # seconds
    recent_events: int = 0
