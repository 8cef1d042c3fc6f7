"""
Composition root — builds every service once and wires them together.

The FastAPI lifespan calls ``build_container`` at startup and
``container.close()`` at shutdown; tests call it directly with a temporary
database URL and scripted providers. Nothing is a module-level singleton.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from emergency_backend.app.audit.audit_log import AuditLog
from emergency_backend.app.core.cache import RedisCache
from emergency_backend.app.core.config import Settings
from emergency_backend.app.core.database import (
    build_engine,
    build_session_factory,
    close_db,
    init_db,
)
from emergency_backend.app.emergency.background import BackgroundTaskRunner
from emergency_backend.app.emergency.ids import IdGenerator, UuidIdGenerator
from emergency_backend.app.emergency.orchestrator import EmergencyOrchestrator
from emergency_backend.app.emergency.policies import EmergencyNumberPolicy
from emergency_backend.app.events.alert_store import ContactAlertStore
from emergency_backend.app.events.store import EventStore
from emergency_backend.app.location.enricher import (
    GeocodingProvider,
    GoogleGeocodingProvider,
    LocationEnricher,
)
from emergency_backend.app.notifications.dispatcher import NotificationDispatcher
from emergency_backend.app.notifications.providers import ProviderAdapter, build_provider

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    engine: AsyncEngine
    sessions: async_sessionmaker[AsyncSession]
    events: EventStore
    alerts: ContactAlertStore
    audit: AuditLog
    enricher: LocationEnricher
    provider: ProviderAdapter
    dispatcher: NotificationDispatcher
    runner: BackgroundTaskRunner
    orchestrator: EmergencyOrchestrator
    cache: Optional[RedisCache] = None

    async def close(self) -> None:
        """Drain background work, then release network and DB resources."""
        await self.runner.shutdown(self.settings.BACKGROUND_DRAIN_TIMEOUT_SECONDS)
        await self.provider.close()
        await self.enricher.close()
        await close_db(self.engine)
        logger.info("Service container closed")


def _build_geocoder(settings: Settings) -> Optional[GeocodingProvider]:
    if not settings.GOOGLE_MAPS_API_KEY:
        logger.warning("GOOGLE_MAPS_API_KEY not set; reverse geocoding uses offline fallback")
        return None
    return GoogleGeocodingProvider(
        settings.GOOGLE_MAPS_API_KEY,
        base_url=settings.GEOCODING_BASE_URL,
    )


async def build_container(
    settings: Settings,
    *,
    provider: Optional[ProviderAdapter] = None,
    geocoder: Optional[GeocodingProvider] = None,
    id_generator: Optional[IdGenerator] = None,
) -> ServiceContainer:
    engine = build_engine(settings)
    if settings.DATABASE_CREATE_TABLES:
        await init_db(engine)
    sessions = build_session_factory(engine)

    cache = (
        RedisCache(
            settings.REDIS_URL,
            prefix="geocode",
            default_ttl=settings.GEOCODE_CACHE_TTL,
        )
        if settings.GEOCODE_CACHE_ENABLED else None
    )

    events = EventStore(sessions, recent_days=settings.RECENT_EVENTS_DAYS)
    alerts = ContactAlertStore(sessions)
    audit = AuditLog(sessions)
    enricher = LocationEnricher(
        geocoder if geocoder is not None else _build_geocoder(settings),
        cache=cache,
        timeout=settings.GEOCODE_TIMEOUT_SECONDS,
        fallback_radius_m=settings.FALLBACK_GEOCODE_RADIUS_M,
    )
    provider = provider or build_provider(settings)
    dispatcher = NotificationDispatcher(
        provider,
        attempt_timeout=settings.NOTIFICATION_ATTEMPT_TIMEOUT_SECONDS,
        max_concurrency=settings.NOTIFICATION_MAX_CONCURRENCY,
    )
    runner = BackgroundTaskRunner()
    orchestrator = EmergencyOrchestrator(
        events=events,
        alerts=alerts,
        audit=audit,
        enricher=enricher,
        dispatcher=dispatcher,
        runner=runner,
        number_policy=EmergencyNumberPolicy(settings.DEFAULT_EMERGENCY_NUMBER),
        ids=id_generator or UuidIdGenerator(),
        app_version=settings.APP_VERSION,
        history_default_limit=settings.HISTORY_DEFAULT_LIMIT,
        history_max_limit=settings.HISTORY_MAX_LIMIT,
    )

    logger.info(
        "Service container ready (db=%s, provider=%s, geocoder=%s)",
        engine.dialect.name, provider.name,
        "on" if enricher.has_provider else "offline",
    )
    return ServiceContainer(
        settings=settings,
        engine=engine,
        sessions=sessions,
        events=events,
        alerts=alerts,
        audit=audit,
        enricher=enricher,
        provider=provider,
        dispatcher=dispatcher,
        runner=runner,
        orchestrator=orchestrator,
        cache=cache,
    )
