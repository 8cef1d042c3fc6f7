"""
notifications — Emergency-contact alerting.

Sub-modules:
    providers/   — Delivery backends (simulation, Twilio + SendGrid)
    dispatcher   — Bounded-concurrency fan-out with per-attempt timeouts
    templates    — Pure SMS / email rendering
    models       — Data structures shared across the system
"""
