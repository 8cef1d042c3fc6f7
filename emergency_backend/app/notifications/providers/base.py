"""
ProviderAdapter — the seam between dispatch logic and a delivery vendor.

Adapters report outcomes as ``ProviderResult``; they may also raise or
hang; the dispatcher turns both into failed attempts.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from emergency_backend.app.notifications.models import ProviderResult


class ProviderAdapter(ABC):
    name: str = "provider"

    @abstractmethod
    async def send_sms(self, phone: str, body: str) -> ProviderResult:
        ...

    @abstractmethod
    async def send_email(
        self,
        address: str,
        subject: str,
        body: str,
        html_body: Optional[str] = None,
    ) -> ProviderResult:
        ...

    async def close(self) -> None:
        """Release network resources (no-op by default)."""
        return None
