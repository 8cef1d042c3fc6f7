"""
Request middleware — logging, timing, correlation IDs.

Provides:
    • X-Request-ID header injection (correlation ID)
    • Request/response timing (X-Process-Time header)
    • One structured log entry per request
    • Request context for downstream log enrichment (audit + dispatch logs
      carry the same request id as the HTTP access line)
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from emergency_backend.app.core.logging_config import set_request_context

logger = logging.getLogger(__name__)

# Probe endpoints hit every few seconds by load balancers
_QUIET_PREFIXES = ("/health", "/api/emergency/health")
_SKIP_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon")


def client_ip(request: Request) -> str:
    """Best-effort client address, honouring a single proxy hop."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log every request with timing, inject correlation ID.

    Request log entry includes:
        - method, path, status_code
        - duration_ms
        - client IP
        - request_id (also returned in X-Request-ID response header)
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID", uuid.uuid4().hex[:16])
        ip = client_ip(request)
        path = request.url.path

        set_request_context(
            request_id=request_id,
            client_ip=ip,
            endpoint=path,
            method=request.method,
        )

        start = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.error(
                "%s %s → 500 (%.1fms) [%s]",
                request.method, path, duration_ms, ip,
                extra={"duration_ms": duration_ms, "status_code": 500},
            )
            raise

        duration_ms = (time.perf_counter() - start) * 1000

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"

        if not path.startswith(_SKIP_PREFIXES):
            if response.status_code >= 400:
                log_level = logging.WARNING
            elif path.startswith(_QUIET_PREFIXES):
                log_level = logging.DEBUG
            else:
                log_level = logging.INFO
            logger.log(
                log_level,
                "%s %s → %d (%.1fms) [%s]",
                request.method, path, response.status_code,
                duration_ms, ip,
                extra={
                    "duration_ms": duration_ms,
                    "status_code": response.status_code,
                    "endpoint": path,
                },
            )

        set_request_context()

        return response
