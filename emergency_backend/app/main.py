"""
FastAPI application entry point.

Run with:
    uvicorn emergency_backend.app.main:app --reload --port 8000

Or from the project root:
    python -m uvicorn emergency_backend.app.main:app --reload
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from emergency_backend.app.core.config import Settings, get_settings
from emergency_backend.app.core.logging_config import setup_logging, get_logger
from emergency_backend.app.core.errors import register_error_handlers
from emergency_backend.app.core.middleware import RequestLoggingMiddleware
from emergency_backend.app.core.health import HealthStatus, run_health_check

# ── Services ──
from emergency_backend.app.container import build_container
from emergency_backend.app.location.enricher import GeocodingProvider
from emergency_backend.app.notifications.providers import ProviderAdapter

# ── API routers ──
from emergency_backend.app.api.v1.emergency import router as emergency_router

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    *,
    provider: Optional[ProviderAdapter] = None,
    geocoder: Optional[GeocodingProvider] = None,
) -> FastAPI:
    """Build the application. Overrides are for tests and embedding."""
    settings = settings or get_settings()
    setup_logging(settings)

    # ── Application lifespan (startup / shutdown) ──

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Starting %s v%s [%s]",
            settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
        )
        container = await build_container(settings, provider=provider, geocoder=geocoder)
        app.state.container = container
        try:
            yield
        finally:
            logger.info("Shutting down %s", settings.APP_NAME)
            await container.close()

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Emergency event and alert-dispatch service. "
            "Records emergency calls, resolves the number to dial, "
            "fans alerts out to emergency contacts over SMS and email "
            "with per-channel delivery tracking, enriches events with "
            "reverse-geocoded addresses in the background, and serves "
            "history, statistics and an append-only audit trail."
        ),
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # ── Middleware stack (outermost first) ──

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    # ── Error handlers ──
    register_error_handlers(app, settings)

    # ── Register routers ──
    app.include_router(emergency_router)

    # ── Root & health endpoints ──

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "modules": [
                "emergency-call",
                "contact-alerts",
                "location-enrichment",
                "event-history",
                "audit-log",
            ],
            "docs": "/docs",
        }

    @app.get("/health", tags=["health"])
    async def health_check(request: Request):
        """Deep health probe — checks all subsystems."""
        container = request.app.state.container
        report = await run_health_check(settings, container.engine, container.cache)
        return report.to_dict()

    @app.get("/health/live", tags=["health"])
    async def liveness():
        """Kubernetes liveness probe — is the process alive?"""
        return {"status": "alive"}

    @app.get("/health/ready", tags=["health"])
    async def readiness(request: Request):
        """Kubernetes readiness probe — can we serve traffic?"""
        container = request.app.state.container
        report = await run_health_check(settings, container.engine, container.cache)
        if report.status == HealthStatus.UNHEALTHY:
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    return app


app = create_app()
