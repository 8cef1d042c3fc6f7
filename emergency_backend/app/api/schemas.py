"""
Pydantic schemas for the emergency API.

Wire format is camelCase (``emergencyType``, ``callId``); Python attributes
stay snake_case via an alias generator. Separated from the route handlers
so tests and other entry points can build requests without FastAPI.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from emergency_backend.app.events.models import EventLocation, EventStatus
from emergency_backend.app.notifications.models import EmergencyContact


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------

class LocationInput(CamelModel):
    """Browser geolocation fix or manual entry; both are treated identically."""
    latitude: float = Field(..., ge=-90.0, le=90.0, examples=[40.7128])
    longitude: float = Field(..., ge=-180.0, le=180.0, examples=[-74.0060])
    accuracy: Optional[float] = Field(None, ge=0.0, description="Metres", examples=[12.5])

    def to_domain(self) -> EventLocation:
        return EventLocation(
            latitude=self.latitude,
            longitude=self.longitude,
            accuracy=self.accuracy,
        )


class LocationOutput(CamelModel):
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    address: Optional[str] = None


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class EmergencyCallRequest(CamelModel):
    """Body for POST /api/emergency/call. A missing type is rejected with 400."""
    emergency_type: Optional[str] = Field(None, examples=["medical"])
    location: Optional[LocationInput] = None
    user_info: Optional[Dict[str, Any]] = Field(
        None, examples=[{"name": "Jane", "phone": "+15551234567", "medicalInfo": "asthma"}],
    )
    timestamp: Optional[str] = Field(None, description="Client ISO-8601 time")
    user_id: Optional[int] = None


class ContactInput(CamelModel):
    name: str = Field(..., max_length=200, examples=["John Doe"])
    phone: Optional[str] = Field(None, examples=["+15551234567"])
    email: Optional[str] = Field(None, examples=["john@example.com"])
    relationship: str = Field("", examples=["Spouse"])

    def to_domain(self) -> EmergencyContact:
        return EmergencyContact(
            name=self.name,
            phone=self.phone or None,
            email=self.email or None,
            relationship=self.relationship,
        )


class AlertContactsRequest(CamelModel):
    """Body for POST /api/emergency/alert-contacts. Empty contacts → 400."""
    contacts: List[ContactInput] = Field(default_factory=list)
    message: str = Field("", examples=["I need help. This is an emergency."])
    emergency_type: Optional[str] = Field(None, max_length=20, examples=["medical"])
    location: Optional[LocationInput] = None
    call_id: Optional[str] = Field(
        None, max_length=64, description="Link the batch to an emergency call",
    )


class StatusChangeRequest(CamelModel):
    status: EventStatus
    notes: Optional[str] = None
    response_time: Optional[int] = Field(None, ge=0, description="Seconds")
    call_duration: Optional[int] = Field(None, ge=0, description="Seconds")


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class EmergencyCallResponse(CamelModel):
    success: bool = True
    call_id: str
    message: str
    emergency_number: str
    severity: Optional[str] = None
    location: Optional[LocationOutput] = None
    timestamp: str


class AlertContactsResponse(CamelModel):
    success: bool = True
    alert_id: str
    contacts_notified: int
    failed_contacts: List[str]
    message: str
    timestamp: str


class LogEventResponse(CamelModel):
    success: bool = True
    event_id: str
    message: str
    timestamp: str


class HistoryResponse(CamelModel):
    success: bool = True
    history: List[Dict[str, Any]]
    total: int
    limit: int
    offset: int


class StatisticsResponse(CamelModel):
    success: bool = True
    statistics: Dict[str, Any]


class ContactValidationResponse(CamelModel):
    valid: bool
    errors: List[str]
