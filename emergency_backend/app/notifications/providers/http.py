"""
HTTP provider — Twilio Messages (SMS) + SendGrid v3 Mail Send (email).

    SMS:    POST {TWILIO_BASE_URL}/Accounts/{SID}/Messages.json
            form: To, From, Body           auth: basic (SID, token)
    Email:  POST {SENDGRID_BASE_URL}/mail/send
            json: personalizations/from/subject/content
            auth: bearer API key

Both share one lazily created ``httpx.AsyncClient``. Non-2xx responses and
transport errors come back as failed ``ProviderResult``s; timeouts are
enforced by the dispatcher, not here.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from emergency_backend.app.core.config import Settings
from emergency_backend.app.notifications.models import ProviderResult
from emergency_backend.app.notifications.providers.base import ProviderAdapter

logger = logging.getLogger(__name__)


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    message = data.get("message") if isinstance(data, dict) else None
    if not message and isinstance(data, dict) and data.get("errors"):
        message = data["errors"][0].get("message")
    return f"HTTP {response.status_code}: {message}" if message else f"HTTP {response.status_code}"


def _message_sid(response: httpx.Response) -> Optional[str]:
    """Twilio message SID, or None when the accepted response has no JSON body."""
    try:
        data = response.json()
    except ValueError:
        return None
    return data.get("sid") if isinstance(data, dict) else None


class HttpProviderAdapter(ProviderAdapter):
    name = "http"

    def __init__(self, settings: Settings, *, client: Optional[httpx.AsyncClient] = None):
        self._settings = settings
        self._http_client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=30.0)
        return self._http_client

    async def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    # ── SMS ──

    async def send_sms(self, phone: str, body: str) -> ProviderResult:
        s = self._settings
        if not (s.TWILIO_ACCOUNT_SID and s.TWILIO_AUTH_TOKEN and s.TWILIO_FROM_NUMBER):
            return ProviderResult(success=False, error="Twilio credentials not configured")

        url = f"{s.TWILIO_BASE_URL}/Accounts/{s.TWILIO_ACCOUNT_SID}/Messages.json"
        client = await self._get_client()
        try:
            response = await client.post(
                url,
                data={"To": phone, "From": s.TWILIO_FROM_NUMBER, "Body": body},
                auth=(s.TWILIO_ACCOUNT_SID, s.TWILIO_AUTH_TOKEN),
            )
        except httpx.HTTPError as e:
            logger.warning("[SMS/Twilio] Transport error for %s: %s", phone, e)
            return ProviderResult(success=False, error=f"Transport error: {e}")

        if response.is_success:
            sid = _message_sid(response)
            logger.info("[SMS/Twilio] Queued %s → %s", sid, phone, extra={"channel": "sms"})
            return ProviderResult(success=True, message_id=sid)

        error = _error_detail(response)
        logger.warning("[SMS/Twilio] Rejected for %s: %s", phone, error)
        return ProviderResult(success=False, error=error)

    # ── Email ──

    async def send_email(
        self,
        address: str,
        subject: str,
        body: str,
        html_body: Optional[str] = None,
    ) -> ProviderResult:
        s = self._settings
        if not s.SENDGRID_API_KEY:
            return ProviderResult(success=False, error="SendGrid API key not configured")

        content = [{"type": "text/plain", "value": body}]
        if html_body:
            content.append({"type": "text/html", "value": html_body})
        payload: Dict[str, Any] = {
            "personalizations": [{"to": [{"email": address}]}],
            "from": {"email": s.ALERT_FROM_EMAIL, "name": s.ALERT_FROM_NAME},
            "subject": subject,
            "content": content,
        }

        client = await self._get_client()
        try:
            response = await client.post(
                f"{s.SENDGRID_BASE_URL}/mail/send",
                json=payload,
                headers={"Authorization": f"Bearer {s.SENDGRID_API_KEY}"},
            )
        except httpx.HTTPError as e:
            logger.warning("[EMAIL/SendGrid] Transport error for %s: %s", address, e)
            return ProviderResult(success=False, error=f"Transport error: {e}")

        if response.is_success:
            message_id = response.headers.get("X-Message-Id")
            logger.info("[EMAIL/SendGrid] Accepted → %s", address, extra={"channel": "email"})
            return ProviderResult(success=True, message_id=message_id)

        error = _error_detail(response)
        logger.warning("[EMAIL/SendGrid] Rejected for %s: %s", address, error)
        return ProviderResult(success=False, error=error)
