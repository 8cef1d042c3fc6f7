"""
Test doubles shared across the suite.

    ScriptedProvider   — per-recipient success / failure / exception / hang
    StaticGeocoder     — returns a fixed address and counts calls
    HangingGeocoder    — never answers within any sane timeout
    SequentialIds      — id-0001, id-0002, …
"""

from __future__ import annotations

import asyncio
import itertools
from typing import Any, Dict, List, Optional, Tuple

from emergency_backend.app.location.enricher import GeocodingProvider
from emergency_backend.app.location.geo import Coordinate
from emergency_backend.app.notifications.models import ProviderResult
from emergency_backend.app.notifications.providers.base import ProviderAdapter

HANG = "hang"


class ScriptedProvider(ProviderAdapter):
    """
    Outcome per recipient (phone or email address):

        True / missing key  → success
        False               → provider rejection
        Exception instance  → raised from the send call
        HANG                → never returns
    """

    name = "scripted"

    def __init__(
        self,
        sms: Optional[Dict[str, Any]] = None,
        email: Optional[Dict[str, Any]] = None,
        delay: float = 0.0,
    ):
        self.sms_outcomes = dict(sms or {})
        self.email_outcomes = dict(email or {})
        self.delay = delay
        self.sent: List[Tuple[str, str, str]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def _send(self, channel: str, recipient: str, body: str, outcomes: Dict[str, Any]):
        self.sent.append((channel, recipient, body))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            outcome = outcomes.get(recipient, True)
            if outcome == HANG:
                await asyncio.Event().wait()
            if isinstance(outcome, Exception):
                raise outcome
            if outcome:
                return ProviderResult(success=True, message_id=f"{channel}-{len(self.sent)}")
            return ProviderResult(success=False, error=f"{channel} rejected")
        finally:
            self.in_flight -= 1

    async def send_sms(self, phone, body):
        return await self._send("sms", phone, body, self.sms_outcomes)

    async def send_email(self, address, subject, body, html_body=None):
        return await self._send("email", address, body, self.email_outcomes)

    async def close(self):
        self.closed = True


class StaticGeocoder(GeocodingProvider):
    def __init__(
        self,
        address: Optional[str] = "350 5th Ave, New York, NY 10118, USA",
        coordinate: Optional[Coordinate] = None,
    ):
        self.address = address
        self.coordinate = coordinate
        self.calls = 0

    async def reverse(self, latitude, longitude):
        self.calls += 1
        return self.address

    async def forward(self, address):
        return self.coordinate


class HangingGeocoder(GeocodingProvider):
    async def reverse(self, latitude, longitude):
        await asyncio.sleep(10)
        return "too late"


class SequentialIds:
    def __init__(self, prefix: str = "id"):
        self._prefix = prefix
        self._counter = itertools.count(1)

    def new_id(self) -> str:
        return f"{self._prefix}-{next(self._counter):04d}"


class RejectingSessions:
    """Session factory whose commit fails with ``error``; nothing reaches a database."""

    def __init__(self, error: Exception):
        self.error = error
        self.added: List[Any] = []

    def __call__(self) -> "RejectingSessions":
        return self

    async def __aenter__(self) -> "RejectingSessions":
        return self

    async def __aexit__(self, *exc_info) -> bool:
        return False

    def add(self, row: Any) -> None:
        self.added.append(row)

    async def commit(self) -> None:
        raise self.error
