"""
Error taxonomy for the version store, diff engine and audit log.

Every error carries a message specific enough to show to an end user.
"""

from __future__ import annotations

from typing import Any, List, Optional


class VersioningError(Exception):
    """Base class for all process-versioning errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidChangeNotes(VersioningError):
    """Raised when a save is attempted without change notes."""

    def __init__(self, message: str = "Change notes are required to save a version"):
        super().__init__(message)


class VersionNotFound(VersioningError):
    """Raised when a version id does not exist in the store."""

    def __init__(self, version_id: str):
        super().__init__(f"Version not found: {version_id}")
        self.version_id = version_id


class CannotDeleteLatest(VersioningError):
    """Raised when deleting the version currently marked as latest."""

    def __init__(self, version_id: str):
        super().__init__(
            f"Cannot delete version {version_id}: it is the latest version of its document"
        )
        self.version_id = version_id


class StoreUnavailable(VersioningError):
    """Raised when a persistence backend cannot be read or written."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class AuditLogClosed(StoreUnavailable):
    """Raised when appending to an audit log that has been closed."""

    def __init__(self):
        super().__init__("Audit log is closed")


class MalformedSnapshot(VersioningError):
    """Raised when a document snapshot is structurally invalid."""

    def __init__(self, message: str, errors: Optional[List[Any]] = None):
        super().__init__(message)
        self.errors = errors or []
