"""
templates.py — Message rendering for emergency-contact alerts.

All renderers are pure: same inputs → byte-identical output. No clock, no
randomness, no I/O. The send timestamp belongs to the provider's delivery
record, not to the message body.

═══════════════════════════════════════════════════════════════════════════
MESSAGE FORMATS
═══════════════════════════════════════════════════════════════════════════

    SMS:
        "🚨 EMERGENCY ALERT 🚨\\n\\n{message}\\nLocation: {maps url}\\n\\n
         This is an automated emergency notification from EmergencyGuard."

    Email subject:
        "🚨 EMERGENCY ALERT - MEDICAL - Immediate Response Required"

    Email body (text + HTML): message, location link, an "Important" notice
    and a "What to do" checklist for the recipient.
"""

from __future__ import annotations

from html import escape
from typing import Optional, Protocol

from emergency_backend.app.location.geo import maps_url

APP_SIGNATURE = "EmergencyGuard"

WHAT_TO_DO = (
    "Try to contact the person immediately",
    "If you cannot reach them, consider calling emergency services",
    "Check the location provided above if available",
)

IMPORTANT_NOTICE = (
    "This is an automated emergency notification. "
    "Please respond immediately if possible."
)


class HasCoordinates(Protocol):
    latitude: float
    longitude: float


def _type_suffix(emergency_type: Optional[str]) -> str:
    return f" - {emergency_type.upper()}" if emergency_type else ""


def render_sms(
    message: str,
    emergency_type: Optional[str] = None,
    location: Optional[HasCoordinates] = None,
) -> str:
    """SMS body; ``emergency_type`` is accepted for symmetry but not shown."""
    location_text = (
        f"\nLocation: {maps_url(location.latitude, location.longitude)}"
        if location is not None else ""
    )
    return (
        f"🚨 EMERGENCY ALERT 🚨\n\n{message}{location_text}\n\n"
        f"This is an automated emergency notification from {APP_SIGNATURE}."
    )


def render_email_subject(emergency_type: Optional[str] = None) -> str:
    return f"🚨 EMERGENCY ALERT{_type_suffix(emergency_type)} - Immediate Response Required"


def render_email_text(
    message: str,
    emergency_type: Optional[str] = None,
    location: Optional[HasCoordinates] = None,
) -> str:
    lines = [f"🚨 EMERGENCY ALERT{_type_suffix(emergency_type)} 🚨", "", message, ""]
    if location is not None:
        lines += [f"Location: {maps_url(location.latitude, location.longitude)}", ""]
    lines += [f"⚠️ IMPORTANT: {IMPORTANT_NOTICE}", "", "What to do:"]
    lines += [f"- {item}" for item in WHAT_TO_DO]
    lines += [
        "",
        f"This message was sent automatically by the {APP_SIGNATURE} emergency response system.",
        "If this is a false alarm, please contact the sender directly.",
    ]
    return "\n".join(lines)


def render_email_html(
    message: str,
    emergency_type: Optional[str] = None,
    location: Optional[HasCoordinates] = None,
) -> str:
    location_html = ""
    if location is not None:
        url = escape(maps_url(location.latitude, location.longitude))
        location_html = (
            f'<p><strong>Location:</strong> <a href="{url}" target="_blank" '
            f'rel="noopener noreferrer">View on Google Maps</a></p>'
        )
    items = "".join(f"<li>{escape(item)}</li>" for item in WHAT_TO_DO)
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        '<div style="background: #ef4444; color: white; padding: 20px; text-align: center;">'
        f'<h1 style="margin: 0; font-size: 24px;">🚨 EMERGENCY ALERT'
        f'{escape(_type_suffix(emergency_type))} 🚨</h1>'
        '</div>'
        '<div style="padding: 20px; background: #f9fafb; border: 1px solid #e5e7eb;">'
        '<h2 style="color: #1f2937; margin-top: 0;">Emergency Notification</h2>'
        '<p style="font-size: 16px; background: white; padding: 15px; '
        f'border-left: 4px solid #ef4444;">{escape(message)}</p>'
        f'{location_html}'
        '<div style="margin: 20px 0; padding: 15px; background: #fef3c7;">'
        f'<p style="margin: 0;"><strong>⚠️ Important:</strong> {escape(IMPORTANT_NOTICE)}</p>'
        '</div>'
        '<div style="margin: 20px 0; padding: 15px; background: #eff6ff;">'
        '<p style="margin: 0;"><strong>What to do:</strong></p>'
        f'<ul>{items}</ul>'
        '</div>'
        '<p style="color: #6b7280; font-size: 14px;">'
        f'This message was sent automatically by the {APP_SIGNATURE} emergency response system.<br>'
        'If this is a false alarm, please contact the sender directly.'
        '</p>'
        '</div>'
        '</div>'
    )
