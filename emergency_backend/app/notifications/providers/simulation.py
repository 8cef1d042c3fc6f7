"""
Simulation provider — logs every message and reports success.

Default for development: nothing leaves the process. Message ids are a
per-instance counter so runs are reproducible.
"""

from __future__ import annotations

import itertools
import logging
from typing import Optional

from emergency_backend.app.notifications.models import ProviderResult
from emergency_backend.app.notifications.providers.base import ProviderAdapter

logger = logging.getLogger(__name__)


class SimulationProvider(ProviderAdapter):
    name = "simulation"

    def __init__(self) -> None:
        self._counter = itertools.count(1)

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}_sim_{next(self._counter):06d}"

    async def send_sms(self, phone: str, body: str) -> ProviderResult:
        logger.info(
            "[SMS] → %s: %d chars → '%s'",
            phone, len(body),
            body[:80] + ("..." if len(body) > 80 else ""),
            extra={"channel": "sms"},
        )
        return ProviderResult(success=True, message_id=self._next_id("sms"))

    async def send_email(
        self,
        address: str,
        subject: str,
        body: str,
        html_body: Optional[str] = None,
    ) -> ProviderResult:
        logger.info(
            "[EMAIL] → %s: subject='%s' (%d chars%s)",
            address, subject, len(body), ", html" if html_body else "",
            extra={"channel": "email"},
        )
        return ProviderResult(success=True, message_id=self._next_id("email"))
