"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development.

Usage:
    from emergency_backend.app.core.config import get_settings
    settings = get_settings()
    print(settings.DATABASE_URL)
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "EmergencyGuard"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | test | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Server ──
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # ── CORS ──
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://localhost:8080",
    ]
    CORS_ALLOW_ALL: bool = True  # False in production

    # ── Database ──
    # SQLite for local development, postgresql+asyncpg in production.
    DATABASE_URL: str = "sqlite+aiosqlite:///./emergency_guard_dev.db"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10
    DATABASE_ECHO: bool = False  # log SQL queries
    DATABASE_CREATE_TABLES: bool = True  # create_all on startup (dev/test only)

    # ── Redis (reverse-geocode memoisation only) ──
    REDIS_URL: str = "redis://localhost:6379/0"
    GEOCODE_CACHE_ENABLED: bool = False
    GEOCODE_CACHE_TTL: int = 86_400  # 24 h

    # ── Geocoding ──
    GOOGLE_MAPS_API_KEY: Optional[str] = None
    GEOCODING_BASE_URL: str = "https://maps.googleapis.com/maps/api/geocode/json"
    GEOCODE_TIMEOUT_SECONDS: float = 5.0
    FALLBACK_GEOCODE_RADIUS_M: float = 500.0
    NEARBY_DEFAULT_RADIUS_M: float = 5_000.0

    # ── Notifications ──
    NOTIFICATION_PROVIDER: str = "simulation"  # simulation | http
    NOTIFICATION_ATTEMPT_TIMEOUT_SECONDS: float = 5.0
    NOTIFICATION_MAX_CONCURRENCY: int = 8
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_FROM_NUMBER: Optional[str] = None
    TWILIO_BASE_URL: str = "https://api.twilio.com/2010-04-01"
    SENDGRID_API_KEY: Optional[str] = None
    SENDGRID_BASE_URL: str = "https://api.sendgrid.com/v3"
    ALERT_FROM_EMAIL: str = "alerts@emergencyguard.app"
    ALERT_FROM_NAME: str = "EmergencyGuard Alert System"

    # ── Emergency policy ──
    DEFAULT_EMERGENCY_NUMBER: str = "911"
    HISTORY_DEFAULT_LIMIT: int = 50
    HISTORY_MAX_LIMIT: int = 200
    RECENT_EVENTS_DAYS: int = 30
    BACKGROUND_DRAIN_TIMEOUT_SECONDS: float = 10.0

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings for the process entry point."""
    return Settings()
