"""
dispatcher.py — Fan-out of one alert message to many emergency contacts.

═══════════════════════════════════════════════════════════════════════════
DISPATCH FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │  1. Render          │  SMS body, email subject/text/HTML, once per
    │     templates       │  batch (pure, deterministic)
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  2. Plan attempts   │  one (contact, channel) pair per populated
    │                     │  phone/email field
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  3. Send            │  all pairs concurrently, at most
    │     concurrently    │  ``max_concurrency`` in flight, each bounded
    │                     │  by ``attempt_timeout`` seconds
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  4. Roll up         │  contact notified ⇔ any attempt succeeded;
    │                     │  failed_contacts in input order
    └─────────────────────┘

═══════════════════════════════════════════════════════════════════════════
FAILURE ISOLATION
═══════════════════════════════════════════════════════════════════════════

    • A provider exception or rejection fails only that attempt.
    • A hung provider call is cut off at the timeout and recorded as
      "timed out after N s".
    • dispatch() itself never raises: for any input, every contact is
      either counted in notified_count or listed in failed_contacts.
    • No retries inside a batch; a failed attempt is final.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence

from emergency_backend.app.core.errors import ProviderFailure
from emergency_backend.app.notifications.models import (
    ContactDeliveryRecord,
    DispatchResult,
    EmergencyContact,
    NotificationAttempt,
    NotificationChannel,
)
from emergency_backend.app.notifications.providers.base import ProviderAdapter
from emergency_backend.app.notifications.templates import (
    HasCoordinates,
    render_email_html,
    render_email_subject,
    render_email_text,
    render_sms,
)

logger = logging.getLogger(__name__)

DEFAULT_ATTEMPT_TIMEOUT_SECONDS = 5.0
DEFAULT_MAX_CONCURRENCY = 8


@dataclass(frozen=True)
class _RenderedMessage:
    sms: str
    email_subject: str
    email_text: str
    email_html: str


class NotificationDispatcher:
    """
    Sends one rendered message to every channel of every contact.

    Parameters
    ----------
    provider : ProviderAdapter
        Delivery backend.
    attempt_timeout : float
        Seconds allowed per (contact, channel) attempt.
    max_concurrency : int
        Upper bound on in-flight provider calls for one dispatch.
    """

    def __init__(
        self,
        provider: ProviderAdapter,
        *,
        attempt_timeout: float = DEFAULT_ATTEMPT_TIMEOUT_SECONDS,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ):
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")
        self._provider = provider
        self._attempt_timeout = attempt_timeout
        self._max_concurrency = max_concurrency

    @property
    def provider(self) -> ProviderAdapter:
        return self._provider

    async def dispatch(
        self,
        contacts: Sequence[EmergencyContact],
        message: str,
        emergency_type: Optional[str] = None,
        location: Optional[HasCoordinates] = None,
    ) -> DispatchResult:
        rendered = _RenderedMessage(
            sms=render_sms(message, emergency_type, location),
            email_subject=render_email_subject(emergency_type),
            email_text=render_email_text(message, emergency_type, location),
            email_html=render_email_html(message, emergency_type, location),
        )

        records = [ContactDeliveryRecord(contact=c) for c in contacts]
        plan = [
            (record, channel)
            for record in records
            for channel in record.contact.channels
        ]

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def bounded(contact: EmergencyContact, channel: NotificationChannel):
            async with semaphore:
                return await self._attempt(contact, channel, rendered)

        attempts: List[NotificationAttempt] = await asyncio.gather(
            *(bounded(record.contact, channel) for record, channel in plan)
        )
        for (record, _), attempt in zip(plan, attempts):
            record.attempts.append(attempt)

        result = DispatchResult(attempts=list(attempts), records=records)
        for record in records:
            if record.is_notified:
                result.notified_count += 1
            else:
                if not record.attempts:
                    logger.warning(
                        "Contact %s has no phone or email; nothing to send",
                        record.contact.name,
                        extra={"contact": record.contact.name},
                    )
                result.failed_contacts.append(record.contact.name)

        logger.info(
            "Dispatch complete: %d/%d contacts notified (%d attempts)",
            result.notified_count, len(records), len(attempts),
            extra={"emergency_type": emergency_type, "attempt_count": len(attempts)},
        )
        return result

    async def _attempt(
        self,
        contact: EmergencyContact,
        channel: NotificationChannel,
        rendered: _RenderedMessage,
    ) -> NotificationAttempt:
        """One provider call; every outcome becomes a NotificationAttempt."""
        start = time.perf_counter()
        attempt = NotificationAttempt(
            contact_name=contact.name,
            channel=channel,
            success=False,
        )
        try:
            if channel == NotificationChannel.SMS:
                call = self._provider.send_sms(contact.phone, rendered.sms)
            else:
                call = self._provider.send_email(
                    contact.email,
                    rendered.email_subject,
                    rendered.email_text,
                    rendered.email_html,
                )
            result = await asyncio.wait_for(call, timeout=self._attempt_timeout)
            if not result.success:
                raise ProviderFailure(result.error or "Provider reported failure")
            attempt.success = True
            attempt.provider_message_id = result.message_id
        except asyncio.TimeoutError:
            attempt.error = f"timed out after {self._attempt_timeout:g} s"
        except ProviderFailure as exc:
            attempt.error = str(exc)
        except Exception as exc:
            attempt.error = str(exc) or exc.__class__.__name__

        attempt.duration_ms = (time.perf_counter() - start) * 1000
        if not attempt.success:
            logger.warning(
                "%s to %s failed: %s",
                channel.value.upper(), contact.name, attempt.error,
                extra={
                    "contact": contact.name,
                    "channel": channel.value,
                    "duration_ms": attempt.duration_ms,
                },
            )
        return attempt
