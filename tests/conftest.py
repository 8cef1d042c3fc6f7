"""
Shared fixtures. Every container is built against a throwaway SQLite file
under tmp_path with scripted providers and sequential ids.
"""

from __future__ import annotations

from typing import Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from emergency_backend.app.container import build_container
from emergency_backend.app.core.config import Settings
from emergency_backend.app.core.database import build_session_factory
from tests.doubles import ScriptedProvider, SequentialIds


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        ENVIRONMENT="test",
        DEBUG=False,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'events.db'}",
        DATABASE_CREATE_TABLES=True,
        GOOGLE_MAPS_API_KEY=None,
        GEOCODE_CACHE_ENABLED=False,
        GEOCODE_TIMEOUT_SECONDS=0.2,
        NOTIFICATION_PROVIDER="simulation",
        NOTIFICATION_ATTEMPT_TIMEOUT_SECONDS=0.5,
        BACKGROUND_DRAIN_TIMEOUT_SECONDS=2.0,
    )


@pytest.fixture
def broken_sessions(tmp_path):
    """Session factory whose database file can never be opened."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'dir' / 'events.db'}"
    )
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def make_container(settings):
    built = []

    async def factory(custom_settings: Optional[Settings] = None, **overrides):
        overrides.setdefault("provider", ScriptedProvider())
        overrides.setdefault("id_generator", SequentialIds())
        container = await build_container(custom_settings or settings, **overrides)
        built.append(container)
        return container

    yield factory
    for container in built:
        await container.close()


@pytest_asyncio.fixture
async def container(make_container):
    return await make_container()
