"""
models.py — Shared data structures for emergency-contact notification.

Defines:
    • NotificationChannel   — delivery channel enum (sms, email)
    • EmergencyContact      — a person to notify, with optional phone/email
    • ProviderResult        — what a provider adapter reports for one send
    • NotificationAttempt   — one (contact, channel) delivery attempt
    • ContactDeliveryRecord — rollup of attempts for one contact
    • DispatchResult        — summary of one alert-contacts batch

═══════════════════════════════════════════════════════════════════════════
CHANNEL SELECTION
═══════════════════════════════════════════════════════════════════════════

Channels come from the contact's populated fields, never from a priority
table:

    Contact fields        Channels attempted
    ──────────────────    ──────────────────
    phone                 sms
    email                 email
    phone + email         sms + email (both always attempted)
    neither               none → contact counted as failed

A contact is notified when at least one of its attempts succeeded.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class NotificationChannel(str, Enum):
    SMS   = "sms"
    EMAIL = "email"


# ═══════════════════════════════════════════════════════════════════════════
# Contact
# ═══════════════════════════════════════════════════════════════════════════

_PHONE_RE = re.compile(r"^\+?[\d\s\-()]{10,}$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


@dataclass
class EmergencyContact:
    """
    A person to alert.

    Attributes
    ----------
    name : str
        Display name; reported back in ``failed_contacts``.
    phone : str | None
        Any dialable format; E.164 preferred.
    email : str | None
    relationship : str
        Free text ("Spouse", "Neighbour", …).
    """
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    relationship: str = ""

    @property
    def channels(self) -> List[NotificationChannel]:
        chans: List[NotificationChannel] = []
        if self.phone:
            chans.append(NotificationChannel.SMS)
        if self.email:
            chans.append(NotificationChannel.EMAIL)
        return chans


def validate_contact(contact: EmergencyContact) -> List[str]:
    """Return human-readable problems with ``contact`` (empty when valid)."""
    errors: List[str] = []
    if not contact.name or not contact.name.strip():
        errors.append("Contact name is required")
    if not contact.phone and not contact.email:
        errors.append("Either phone number or email is required")
    if contact.phone and not _PHONE_RE.match(contact.phone):
        errors.append("Invalid phone number format")
    if contact.email and not _EMAIL_RE.match(contact.email):
        errors.append("Invalid email format")
    return errors


# ═══════════════════════════════════════════════════════════════════════════
# Delivery Records
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class ProviderResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class NotificationAttempt:
    """One send of one message to one contact over one channel."""
    contact_name: str
    channel: NotificationChannel
    success: bool
    provider_message_id: Optional[str] = None
    error: Optional[str] = None
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "contact": self.contact_name,
            "channel": self.channel.value,
            "success": self.success,
            "duration_ms": round(self.duration_ms, 1),
        }
        if self.provider_message_id:
            d["message_id"] = self.provider_message_id
        if self.error:
            d["error"] = self.error
        return d


@dataclass
class ContactDeliveryRecord:
    """Aggregated delivery status for one contact across its channels."""
    contact: EmergencyContact
    attempts: List[NotificationAttempt] = field(default_factory=list)

    @property
    def is_notified(self) -> bool:
        """True if at least one channel succeeded."""
        return any(a.success for a in self.attempts)


@dataclass
class DispatchResult:
    """Summary of one dispatch; ``failed_contacts`` keeps input order."""
    notified_count: int = 0
    failed_contacts: List[str] = field(default_factory=list)
    attempts: List[NotificationAttempt] = field(default_factory=list)
    records: List[ContactDeliveryRecord] = field(default_factory=list)
