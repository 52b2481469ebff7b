"""
Audit trail: append-only, filterable, exportable.
"""

from .audit_log import AuditLog, SYSTEM_ACTOR
from .models import Actor, AuditAction, AuditEntry, AuditFilters, AuditPage
from .repository import AuditRepository, InMemoryAuditRepository, JsonLinesAuditRepository

__all__ = [
    "Actor",
    "AuditAction",
    "AuditEntry",
    "AuditFilters",
    "AuditLog",
    "AuditPage",
    "AuditRepository",
    "InMemoryAuditRepository",
    "JsonLinesAuditRepository",
    "SYSTEM_ACTOR",
]
