"""
Emergency API routes.

Thin HTTP adapters around EmergencyOrchestrator: parse the camelCase body,
call one orchestrator method, shape the receipt. Validation and storage
failures propagate as EmergencyAPIError and are rendered by the shared
exception handlers.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.responses import JSONResponse

from emergency_backend.app.api.schemas import (
    AlertContactsRequest,
    AlertContactsResponse,
    ContactInput,
    ContactValidationResponse,
    EmergencyCallRequest,
    EmergencyCallResponse,
    HistoryResponse,
    LocationOutput,
    LogEventResponse,
    StatisticsResponse,
    StatusChangeRequest,
)
from emergency_backend.app.core.errors import ValidationFailure
from emergency_backend.app.core.health import uptime_seconds
from emergency_backend.app.core.middleware import client_ip
from emergency_backend.app.emergency.orchestrator import EmergencyOrchestrator
from emergency_backend.app.emergency.presentation import to_history_entry
from emergency_backend.app.events.models import EventFilter, EventStatus
from emergency_backend.app.location.enricher import EmergencyZone
from emergency_backend.app.location.geo import Coordinate
from emergency_backend.app.notifications.models import validate_contact

router = APIRouter(prefix="/api/emergency", tags=["emergency"])


def get_orchestrator(request: Request) -> EmergencyOrchestrator:
    return request.app.state.container.orchestrator


# ---------------------------------------------------------------------------
# Call & alert
# ---------------------------------------------------------------------------

@router.post(
    "/call",
    response_model=EmergencyCallResponse,
    response_model_exclude_none=True,
    summary="Initiate an emergency call",
    description=(
        "Record the emergency, resolve the number to dial and return "
        "immediately. Address lookup and diagnostics run in the background."
    ),
)
async def initiate_call(
    body: EmergencyCallRequest,
    request: Request,
    orchestrator: EmergencyOrchestrator = Depends(get_orchestrator),
):
    receipt = await orchestrator.initiate_call(
        body.emergency_type,
        body.location.to_domain() if body.location else None,
        body.user_info,
        user_ip=client_ip(request),
        client_timestamp=body.timestamp,
        user_id=body.user_id,
    )
    location = None
    if receipt.location is not None:
        location = LocationOutput(
            latitude=receipt.location.latitude,
            longitude=receipt.location.longitude,
            accuracy=receipt.location.accuracy,
        )
    return EmergencyCallResponse(
        call_id=receipt.call_id,
        message=f"Emergency call initiated. Dial {receipt.emergency_number} now.",
        emergency_number=receipt.emergency_number,
        severity=receipt.severity,
        location=location,
        timestamp=receipt.timestamp.isoformat(),
    )


@router.post(
    "/alert-contacts",
    response_model=AlertContactsResponse,
    summary="Alert emergency contacts",
    description=(
        "Fan the message out over SMS and email to every contact. Individual "
        "delivery failures are reported in failedContacts, never as errors."
    ),
)
async def alert_contacts(
    body: AlertContactsRequest,
    request: Request,
    orchestrator: EmergencyOrchestrator = Depends(get_orchestrator),
):
    receipt = await orchestrator.alert_contacts(
        [c.to_domain() for c in body.contacts],
        body.message,
        body.emergency_type,
        body.location.to_domain() if body.location else None,
        call_id=body.call_id,
        user_ip=client_ip(request),
    )
    return AlertContactsResponse(
        alert_id=receipt.alert_id,
        contacts_notified=receipt.notified_count,
        failed_contacts=receipt.failed_contacts,
        message=receipt.summary,
        timestamp=receipt.timestamp.isoformat(),
    )


@router.get("/alerts/{alert_id}", summary="Get a contact alert with its delivery attempts")
async def get_alert(
    alert_id: str,
    orchestrator: EmergencyOrchestrator = Depends(get_orchestrator),
):
    record = await orchestrator.get_alert(alert_id)
    return {"success": True, "alert": record.to_dict()}


@router.post(
    "/validate-contact",
    response_model=ContactValidationResponse,
    summary="Check a contact's phone and email format",
)
async def validate_contact_endpoint(body: ContactInput):
    errors = validate_contact(body.to_domain())
    return ContactValidationResponse(valid=not errors, errors=errors)


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------

@router.post("/log-event", response_model=LogEventResponse, summary="Log a client diagnostic event")
async def log_event(
    request: Request,
    payload: Dict[str, Any] = Body(...),
    orchestrator: EmergencyOrchestrator = Depends(get_orchestrator),
):
    receipt = await orchestrator.log_event(
        payload,
        user_ip=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return LogEventResponse(
        event_id=receipt.event_id,
        message="Emergency event logged successfully.",
        timestamp=receipt.timestamp.isoformat(),
    )


# ---------------------------------------------------------------------------
# History & statistics
# ---------------------------------------------------------------------------

@router.get("/history", response_model=HistoryResponse, summary="Emergency history, newest first")
async def history(
    user_id: Optional[int] = Query(None, alias="userId"),
    limit: Optional[int] = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    event_type: Optional[str] = Query(None, alias="type"),
    status: Optional[str] = Query(None),
    orchestrator: EmergencyOrchestrator = Depends(get_orchestrator),
):
    flt = EventFilter(
        owner_id=user_id,
        event_type=orchestrator.parse_event_type(event_type) if event_type else None,
        status=_parse_status(status) if status else None,
        limit=limit,
        offset=offset,
    )
    page = await orchestrator.history(flt)
    return HistoryResponse(
        history=page.events,
        total=page.total,
        limit=page.limit,
        offset=page.offset,
    )


@router.get("/statistics", response_model=StatisticsResponse, summary="Aggregate event statistics")
async def statistics(
    user_id: Optional[int] = Query(None, alias="userId"),
    orchestrator: EmergencyOrchestrator = Depends(get_orchestrator),
):
    return StatisticsResponse(statistics=await orchestrator.statistics(user_id))


# ---------------------------------------------------------------------------
# Event administration
# ---------------------------------------------------------------------------

@router.patch("/events/{call_id}", summary="Move an event to resolved or cancelled")
async def change_status(
    call_id: str,
    body: StatusChangeRequest,
    orchestrator: EmergencyOrchestrator = Depends(get_orchestrator),
):
    event = await orchestrator.change_status(
        call_id,
        body.status,
        notes=body.notes,
        response_time=body.response_time,
        call_duration=body.call_duration,
    )
    return {"success": True, "event": to_history_entry(event)}


@router.delete("/events/{call_id}", summary="Delete an event")
async def delete_event(
    call_id: str,
    orchestrator: EmergencyOrchestrator = Depends(get_orchestrator),
):
    await orchestrator.delete_event(call_id)
    return {"success": True, "message": f"Emergency event {call_id} deleted."}


# ---------------------------------------------------------------------------
# Location
# ---------------------------------------------------------------------------

@router.get("/nearby-services", summary="Emergency services near a point")
async def nearby_services(
    request: Request,
    latitude: float = Query(...),
    longitude: float = Query(...),
    service_type: Optional[str] = Query(None, alias="type"),
    radius: Optional[float] = Query(None, description="Metres"),
    orchestrator: EmergencyOrchestrator = Depends(get_orchestrator),
):
    settings = request.app.state.container.settings
    services = await orchestrator.find_nearby_services(
        latitude, longitude, service_type,
        radius if radius is not None else settings.NEARBY_DEFAULT_RADIUS_M,
    )
    zone: EmergencyZone = request.app.state.container.enricher.emergency_zone(
        Coordinate(latitude, longitude)
    )
    return {
        "success": True,
        "services": [s.to_dict() for s in services],
        "count": len(services),
        "zone": zone.to_dict(),
    }


@router.get("/geocode", summary="Coordinates for a street address")
async def geocode(
    address: str = Query(..., max_length=500),
    orchestrator: EmergencyOrchestrator = Depends(get_orchestrator),
):
    coords = await orchestrator.geocode_address(address)
    return {
        "success": True,
        "address": address,
        "coordinates": {"latitude": coords.latitude, "longitude": coords.longitude},
    }


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

@router.get("/health", summary="Emergency subsystem health")
async def health(orchestrator: EmergencyOrchestrator = Depends(get_orchestrator)):
    result = await orchestrator.check_health()
    content = {
        "healthy": result["healthy"],
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": result["services"],
        "uptime": round(uptime_seconds(), 1),
    }
    return JSONResponse(status_code=200 if result["healthy"] else 503, content=content)


def _parse_status(value: str) -> EventStatus:
    try:
        return EventStatus(value.lower())
    except ValueError:
        raise ValidationFailure(f"Invalid status '{value}'", field="status") from None
