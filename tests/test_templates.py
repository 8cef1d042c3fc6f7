"""
test_templates.py — Alert message rendering.

Renderers are pure functions: identical inputs must give byte-identical
output, and user text must never be injected into the HTML body unescaped.
"""

from __future__ import annotations

from emergency_backend.app.events.models import EventLocation
from emergency_backend.app.location.geo import Coordinate
from emergency_backend.app.notifications.templates import (
    IMPORTANT_NOTICE,
    WHAT_TO_DO,
    render_email_html,
    render_email_subject,
    render_email_text,
    render_sms,
)

LOCATION = EventLocation(latitude=40.7128, longitude=-74.006)
MAPS = "https://maps.google.com/maps?q=40.7128,-74.006"


class TestDeterminism:

    def test_all_renderers_repeatable(self):
        args = ("I need help.", "medical", LOCATION)
        assert render_sms(*args) == render_sms(*args)
        assert render_email_text(*args) == render_email_text(*args)
        assert render_email_html(*args) == render_email_html(*args)
        assert render_email_subject("medical") == render_email_subject("medical")

    def test_any_coordinate_carrier_accepted(self):
        assert render_sms("x", None, LOCATION) == render_sms("x", None, Coordinate(40.7128, -74.006))


class TestSms:

    def test_full_body(self):
        assert render_sms("I need help.", "fire", LOCATION) == (
            "🚨 EMERGENCY ALERT 🚨\n\nI need help.\n"
            f"Location: {MAPS}\n\n"
            "This is an automated emergency notification from EmergencyGuard."
        )

    def test_without_location(self):
        body = render_sms("I need help.")
        assert "Location:" not in body
        assert body.startswith("🚨 EMERGENCY ALERT 🚨\n\nI need help.\n\n")


class TestEmail:

    def test_subject_with_type(self):
        assert render_email_subject("medical") == (
            "🚨 EMERGENCY ALERT - MEDICAL - Immediate Response Required"
        )

    def test_subject_without_type(self):
        assert render_email_subject(None) == "🚨 EMERGENCY ALERT - Immediate Response Required"

    def test_text_body_sections(self):
        body = render_email_text("Help at home", "police", LOCATION)
        assert body.splitlines()[0] == "🚨 EMERGENCY ALERT - POLICE 🚨"
        assert f"Location: {MAPS}" in body
        assert IMPORTANT_NOTICE in body
        for item in WHAT_TO_DO:
            assert f"- {item}" in body

    def test_html_contains_link_and_checklist(self):
        html = render_email_html("Help", "general", LOCATION)
        assert f'href="{MAPS}"' in html
        assert html.count("<li>") == len(WHAT_TO_DO)

    def test_html_escapes_message(self):
        html = render_email_html("<script>alert(1)</script>")
        assert "<script>" not in html
        assert "&lt;script&gt;" in html
