"""
Observability utilities for retryguard.

Provides audit logging and secret redaction for the resilience layer.
"""

from retryguard.core.observability.audit import (
    AuditEvent,
    AuditEventType,
    AuditLogger,
    audit_log,
    get_audit_logger,
)
from retryguard.core.observability.redaction import (
    SENSITIVE_PATTERNS,
    redact_secrets,
    redact_sensitive_data,
)

__all__ = [
    # Audit
    "AuditEvent",
    "AuditEventType",
    "AuditLogger",
    "audit_log",
    "get_audit_logger",
    # Redaction
    "SENSITIVE_PATTERNS",
    "redact_secrets",
    "redact_sensitive_data",
]
