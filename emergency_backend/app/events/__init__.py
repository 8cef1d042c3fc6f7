"""
events — Durable record of emergency events and alert batches.

Sub-modules:
    models       — domain dataclasses & enums
    tables       — SQLAlchemy ORM rows
    store        — EventStore (CRUD, history queries, statistics)
    alert_store  — ContactAlertStore (alert batches + per-attempt rows)
"""
