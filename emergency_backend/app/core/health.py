"""
Health check aggregation — deep health probe for all subsystems.

Checks:
    • Database connectivity (event store + audit log share it)
    • Reverse-geocoding provider configuration
    • Notification provider mode
    • Geocode cache connectivity (Redis, optional)

Returns a structured health report suitable for:
    - Kubernetes liveness/readiness probes
    - Load balancer health checks
    - Monitoring dashboards

The database is the only component whose failure makes the service
unhealthy; everything else degrades.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from emergency_backend.app.core import database
from emergency_backend.app.core.cache import RedisCache
from emergency_backend.app.core.config import Settings

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    version: str
    environment: str
    status: HealthStatus = HealthStatus.HEALTHY
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


# Track application start time
_start_time = time.monotonic()


def uptime_seconds() -> float:
    return time.monotonic() - _start_time


async def check_database(engine: AsyncEngine) -> ComponentHealth:
    """Round-trip ``SELECT 1`` through the shared engine."""
    comp = ComponentHealth(name="database")
    start = time.monotonic()
    if await database.ping(engine):
        comp.status = HealthStatus.HEALTHY
        comp.message = "Connection pool available"
    else:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = "Database unreachable"
    comp.details = {"url": str(engine.url).split("@")[-1], "dialect": engine.dialect.name}
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_geocoder(settings: Settings) -> ComponentHealth:
    """Geocoding falls back to offline heuristics when no key is set."""
    comp = ComponentHealth(name="geocoder")
    if settings.GOOGLE_MAPS_API_KEY:
        comp.message = "Google Geocoding configured"
        comp.details = {"provider": "google"}
    else:
        comp.status = HealthStatus.DEGRADED
        comp.message = "No geocoding key; using offline fallback"
        comp.details = {"provider": "offline"}
    return comp


async def check_notification_provider(settings: Settings) -> ComponentHealth:
    comp = ComponentHealth(name="notification_provider")
    mode = settings.NOTIFICATION_PROVIDER
    comp.details = {
        "mode": mode,
        "max_concurrency": settings.NOTIFICATION_MAX_CONCURRENCY,
        "attempt_timeout_s": settings.NOTIFICATION_ATTEMPT_TIMEOUT_SECONDS,
    }
    if mode == "simulation":
        comp.status = (
            HealthStatus.DEGRADED if settings.is_production else HealthStatus.HEALTHY
        )
        comp.message = "Simulated delivery (no messages leave the process)"
    else:
        missing = [
            name for name, value in (
                ("TWILIO_ACCOUNT_SID", settings.TWILIO_ACCOUNT_SID),
                ("TWILIO_AUTH_TOKEN", settings.TWILIO_AUTH_TOKEN),
                ("SENDGRID_API_KEY", settings.SENDGRID_API_KEY),
            ) if not value
        ]
        if missing:
            comp.status = HealthStatus.DEGRADED
            comp.message = f"Missing credentials: {', '.join(missing)}"
        else:
            comp.message = "Twilio + SendGrid configured"
    return comp


async def check_cache(cache: Optional[RedisCache]) -> ComponentHealth:
    comp = ComponentHealth(name="geocode_cache")
    start = time.monotonic()
    if cache is None:
        comp.message = "Disabled"
    elif await cache.ping():
        comp.message = "Cache available"
    else:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Redis unreachable; geocoding uncached"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def run_health_check(
    settings: Settings,
    engine: AsyncEngine,
    cache: Optional[RedisCache] = None,
) -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=uptime_seconds(),
    )

    checks = [
        check_database(engine),
        check_geocoder(settings),
        check_notification_provider(settings),
        check_cache(cache),
    ]

    for coro in checks:
        comp = await coro
        report.components.append(comp)

    # Aggregate status
    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    if report.status != HealthStatus.HEALTHY:
        logger.warning("Health check %s", report.status.value)
    return report
