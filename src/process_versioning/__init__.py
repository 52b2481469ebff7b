"""
process-versioning: version store, structural diff engine and audit trail for
process documents.
"""

__version__ = "0.1.0"

from .audit import Actor, AuditAction, AuditEntry, AuditFilters, AuditLog
from .core import ProcessDocument, ProcessStep
from .errors import (
    CannotDeleteLatest,
    InvalidChangeNotes,
    MalformedSnapshot,
    StoreUnavailable,
    VersioningError,
    VersionNotFound,
)
from .version import ChangeType, DiffEngine, Version, VersionDiff, VersionStore

__all__ = [
    "Actor",
    "AuditAction",
    "AuditEntry",
    "AuditFilters",
    "AuditLog",
    "CannotDeleteLatest",
    "ChangeType",
    "DiffEngine",
    "InvalidChangeNotes",
    "MalformedSnapshot",
    "ProcessDocument",
    "ProcessStep",
    "StoreUnavailable",
    "Version",
    "VersionDiff",
    "VersionNotFound",
    "VersionStore",
    "VersioningError",
]
