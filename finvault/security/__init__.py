"""
Security module - Audit trail for authentication outcomes.
"""

from finvault.security.audit import (
    AuditAction,
    AuditEvent,
    AuditSeverity,
    AuditSink,
    BackgroundAuditDispatcher,
    RecentAuditBuffer,
    TamperAwareAuditLog,
)

__all__ = [
    "AuditAction",
    "AuditEvent",
    "AuditSeverity",
    "AuditSink",
    "BackgroundAuditDispatcher",
    "RecentAuditBuffer",
    "TamperAwareAuditLog",
]
