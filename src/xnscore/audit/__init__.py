"""Audit sinks for trust-affecting actions."""

from xnscore.audit.sink import (
    AUDIT_LOG_PATH_ENV,
    AuditSink,
    AuditSinkError,
    InMemoryAuditSink,
    JsonlFileAuditSink,
    build_audit_event,
)

__all__ = [
    "AUDIT_LOG_PATH_ENV",
    "AuditSink",
    "AuditSinkError",
    "InMemoryAuditSink",
    "JsonlFileAuditSink",
    "build_audit_event",
]
