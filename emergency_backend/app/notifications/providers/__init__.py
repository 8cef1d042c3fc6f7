"""
providers — Delivery backends behind the ProviderAdapter contract.

    base        — abstract ProviderAdapter
    simulation  — log-only, always succeeds (development default)
    http        — Twilio SMS + SendGrid email over httpx
"""

from __future__ import annotations

import logging

from emergency_backend.app.core.config import Settings
from emergency_backend.app.notifications.providers.base import ProviderAdapter
from emergency_backend.app.notifications.providers.http import HttpProviderAdapter
from emergency_backend.app.notifications.providers.simulation import SimulationProvider

logger = logging.getLogger(__name__)

__all__ = [
    "ProviderAdapter",
    "SimulationProvider",
    "HttpProviderAdapter",
    "build_provider",
]


def build_provider(settings: Settings) -> ProviderAdapter:
    """Select the adapter named by ``NOTIFICATION_PROVIDER``."""
    mode = settings.NOTIFICATION_PROVIDER.lower()
    if mode == "http":
        logger.info("Notification provider: Twilio + SendGrid")
        return HttpProviderAdapter(settings)
    if mode != "simulation":
        raise ValueError(f"Unknown NOTIFICATION_PROVIDER: {settings.NOTIFICATION_PROVIDER}")
    logger.info("Notification provider: simulation")
    return SimulationProvider()
