"""
audit — Append-only trail of emergency actions.

    audit_log — AuditLog, AuditEntry, action/severity enums, typed payloads
"""
