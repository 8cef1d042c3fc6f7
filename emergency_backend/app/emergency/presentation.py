"""
View shaping for history and statistics responses.

Raw events carry enum values and seconds; clients expect labels
("Medical Emergency"), "M:SS" response times, split date/time strings and
a map link whenever no street address has been resolved yet.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from emergency_backend.app.events.models import EmergencyEvent, EventStatistics, EventType
from emergency_backend.app.location.geo import maps_url

APP_NAME = "EmergencyGuard"
DEFAULT_CONTACTS = ("Emergency Services",)


def capitalize_first(value: str) -> str:
    return value[:1].upper() + value[1:] if value else value


def format_event_type(event_type: EventType) -> str:
    """``medical`` → ``Medical Emergency``."""
    return f"{capitalize_first(EventType(event_type).value)} Emergency"


def format_response_time(seconds: Optional[float]) -> str:
    """
    >>> format_response_time(125)
    '2:05'
    >>> format_response_time(None)
    'N/A'
    """
    if seconds is None:
        return "N/A"
    total = int(round(seconds))
    return f"{total // 60}:{total % 60:02d}"


def default_notes(event_type: EventType) -> str:
    label = capitalize_first(EventType(event_type).value)
    return f"{label} emergency call initiated via {APP_NAME} app."


def to_history_entry(
    event: EmergencyEvent,
    notified_contacts: Sequence[str] = (),
) -> Dict[str, Any]:
    loc = event.location
    latitude = loc.latitude if loc else 0.0
    longitude = loc.longitude if loc else 0.0
    if loc and loc.address:
        address = loc.address
    elif loc:
        address = maps_url(loc.latitude, loc.longitude)
    else:
        address = None

    location: Dict[str, Any] = {"latitude": latitude, "longitude": longitude}
    if address is not None:
        location["address"] = address

    contacts: List[str] = list(DEFAULT_CONTACTS)
    contacts += [name for name in notified_contacts if name not in contacts]

    created = event.created_at
    return {
        "id": event.external_id,
        "type": format_event_type(event.event_type),
        "date": created.strftime("%Y-%m-%d") if created else "",
        "time": created.strftime("%H:%M") if created else "",
        "location": location,
        "status": capitalize_first(event.status.value),
        "severity": event.severity.value,
        "responseTime": format_response_time(event.response_time),
        "contacts": contacts,
        "notes": event.notes or default_notes(event.event_type),
        "emergencyNumber": event.emergency_number,
        "callId": event.external_id,
    }


def to_statistics_view(stats: EventStatistics) -> Dict[str, Any]:
    return {
        "total": stats.total,
        "byType": dict(stats.by_type),
        "byStatus": dict(stats.by_status),
        "averageResponseTime": format_response_time(
            stats.average_response_time if stats.average_response_time else None
        ),
        "averageResponseTimeSeconds": round(stats.average_response_time, 2),
        "recentEvents": stats.recent_events,
    }
