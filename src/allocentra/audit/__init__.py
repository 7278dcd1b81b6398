"""
Append-only audit log.

Every committed run and every pool capacity mutation is recorded with
before/after digests of the affected pools.
"""

from allocentra.audit.models import AuditAction, AuditEntry, digest
from allocentra.audit.recorder import AuditQuery, AuditRecorder
from allocentra.audit.repository import AuditRepository

__all__ = [
    "AuditAction",
    "AuditEntry",
    "AuditQuery",
    "AuditRecorder",
    "AuditRepository",
    "digest",
]
