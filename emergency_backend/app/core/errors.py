"""
Centralised error handling — exception hierarchy + FastAPI handlers.

═══════════════════════════════════════════════════════════════════════════
FAILURE TAXONOMY
═══════════════════════════════════════════════════════════════════════════

    Class                  HTTP    Crosses API boundary?
    ─────────────────────  ──────  ─────────────────────────────────────
    ValidationFailure      400     yes — caller fixes the request
    StorageUnavailable     500     yes — only request-fatal class
    NotFoundError          404     yes — administrative endpoints only
    InvalidStatusTransition 409    yes — administrative endpoints only
    ProviderFailure        —       no  — recorded as a failed attempt
    EnrichmentFailure      —       no  — degrades to coordinate fallback
    AuditWriteFailure      —       no  — logged locally

Every error response keeps the success-shaped envelope the clients already
understand:

    {"success": false, "message": "...", "error": {...}, "timestamp": "..."}

Usage:
    from emergency_backend.app.core.errors import (
        StorageUnavailable,
        ValidationFailure,
        register_error_handlers,
    )

    raise ValidationFailure("No emergency contacts provided", field="contacts")
"""

from __future__ import annotations

import logging
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from emergency_backend.app.core.config import Settings

logger = logging.getLogger(__name__)

FALLBACK_INSTRUCTION = "Please call 911 directly."


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class EmergencyAPIError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}
        # Extra top-level response fields (e.g. callId, emergencyNumber)
        self.body = body or {}


class ValidationFailure(EmergencyAPIError):
    """A required field is missing or malformed (400). Never retried."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=400,
            error_code="VALIDATION_ERROR",
            details=d,
        )


class StorageUnavailable(EmergencyAPIError):
    """The event store cannot be reached (500)."""

    def __init__(
        self,
        message: str = f"Emergency service storage is unavailable. {FALLBACK_INSTRUCTION}",
        *,
        operation: Optional[str] = None,
        body: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=500,
            error_code="STORAGE_UNAVAILABLE",
            details={"operation": operation} if operation else {},
            body=body,
        )


class NotFoundError(EmergencyAPIError):
    """Resource not found (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details={"resource": resource, **identifiers},
        )


class InvalidStatusTransition(EmergencyAPIError):
    """Illegal emergency-event state change (409)."""

    def __init__(self, current: str, requested: str):
        super().__init__(
            message=f"Cannot change status from '{current}' to '{requested}'",
            status_code=409,
            error_code="INVALID_STATUS_TRANSITION",
            details={"current": current, "requested": requested},
        )


# ── Absorbed failures: raised and caught internally, never rendered ──

class ProviderFailure(Exception):
    """A single SMS/email attempt was rejected by the provider."""


class EnrichmentFailure(Exception):
    """Geocoding provider failed or returned nothing usable."""


class AuditWriteFailure(Exception):
    """An audit entry could not be persisted."""


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _build_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    body: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
    include_request: bool = False,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    content: Dict[str, Any] = {
        "success": False,
        "message": message,
        "error": {
            "code": error_code,
            "status": status_code,
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if body:
        content.update(body)

    if details:
        content["error"]["details"] = details

    if request is not None and include_request:
        content["error"]["path"] = str(request.url.path)
        content["error"]["method"] = request.method

    return JSONResponse(status_code=status_code, content=content)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI, settings: Settings) -> None:
    """Register all exception handlers on the FastAPI app."""
    include_request = not settings.is_production

    @app.exception_handler(EmergencyAPIError)
    async def handle_emergency_error(request: Request, exc: EmergencyAPIError):
        level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
        logger.log(
            level,
            "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, exc.body, request, include_request,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{loc}: {first.get('msg', 'invalid value')}" if loc else "Invalid request"
        logger.warning("Request validation failed: %s", message)
        return _build_error_response(
            400, "VALIDATION_ERROR", message,
            {"errors": [
                {"loc": [str(p) for p in e.get("loc", ())], "msg": e.get("msg")}
                for e in errors
            ]},
            request=request, include_request=include_request,
        )

    @app.exception_handler(ValueError)
    async def handle_value_error(request: Request, exc: ValueError):
        logger.warning("ValueError: %s", exc)
        return _build_error_response(
            400, "VALIDATION_ERROR", str(exc),
            request=request, include_request=include_request,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = str(exc) if settings.DEBUG else "Internal server error"
        details = (
            {"traceback": traceback.format_exc().split("\n")}
            if settings.DEBUG else None
        )
        return _build_error_response(
            500, "INTERNAL_ERROR", message, details,
            request=request, include_request=include_request,
        )
