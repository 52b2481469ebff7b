"""
Audit trail record types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union


class AuditAction(Enum):
    """Every kind of action the audit trail records."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    VIEW = "view"
    EXPORT = "export"
    IMPORT = "import"
    PUBLISH = "publish"
    ARCHIVE = "archive"
    RESTORE = "restore"
    DUPLICATE = "duplicate"
    SHARE = "share"
    COMMENT = "comment"
    ASSIGN = "assign"
    COMPLETE_TRAINING = "complete_training"
    START_TRAINING = "start_training"
    VERSION_CREATE = "version_create"
    VERSION_RESTORE = "version_restore"

    @property
    def label(self) -> str:
        """Human readable label, e.g. ``Created Version``."""
        return ACTION_LABELS[self]


ACTION_LABELS = {
    AuditAction.CREATE: "Created",
    AuditAction.UPDATE: "Updated",
    AuditAction.DELETE: "Deleted",
    AuditAction.VIEW: "Viewed",
    AuditAction.EXPORT: "Exported",
    AuditAction.IMPORT: "Imported",
    AuditAction.PUBLISH: "Published",
    AuditAction.ARCHIVE: "Archived",
    AuditAction.RESTORE: "Restored",
    AuditAction.DUPLICATE: "Duplicated",
    AuditAction.SHARE: "Shared",
    AuditAction.COMMENT: "Commented",
    AuditAction.ASSIGN: "Assigned",
    AuditAction.COMPLETE_TRAINING: "Completed Training",
    AuditAction.START_TRAINING: "Started Training",
    AuditAction.VERSION_CREATE: "Created Version",
    AuditAction.VERSION_RESTORE: "Restored Version",
}


@dataclass(frozen=True)
class Actor:
    """The user an action is attributed to."""

    user_id: str
    user_name: str
    user_email: Optional[str] = None
    user_role: Optional[str] = None


@dataclass
class AuditEntry:
    """A single audit trail record. Never updated after it is appended."""

    id: str
    action: AuditAction
    description: str
    resource_type: str
    resource_id: str
    resource_name: str
    user_id: str
    user_name: str
    timestamp: datetime
    action_label: str = ""
    document_id: Optional[str] = None
    document_name: Optional[str] = None
    step_id: Optional[str] = None
    step_name: Optional[str] = None
    version_id: Optional[str] = None
    version: Optional[str] = None
    user_email: Optional[str] = None
    user_role: Optional[str] = None
    success: bool = True
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    def __post_init__(self):
        if not self.action_label:
            self.action_label = self.action.label

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "action": self.action.value,
            "action_label": self.action_label,
            "description": self.description,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "resource_name": self.resource_name,
            "document_id": self.document_id,
            "document_name": self.document_name,
            "step_id": self.step_id,
            "step_name": self.step_name,
            "version_id": self.version_id,
            "version": self.version,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "user_email": self.user_email,
            "user_role": self.user_role,
            "timestamp": self.timestamp.isoformat(),
            "success": self.success,
            "error_message": self.error_message,
            "metadata": dict(self.metadata),
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AuditEntry:
        """Create from dictionary."""
        return cls(
            id=data["id"],
            action=AuditAction(data["action"]),
            action_label=data.get("action_label", ""),
            description=data["description"],
            resource_type=data["resource_type"],
            resource_id=data["resource_id"],
            resource_name=data["resource_name"],
            document_id=data.get("document_id"),
            document_name=data.get("document_name"),
            step_id=data.get("step_id"),
            step_name=data.get("step_name"),
            version_id=data.get("version_id"),
            version=data.get("version"),
            user_id=data["user_id"],
            user_name=data["user_name"],
            user_email=data.get("user_email"),
            user_role=data.get("user_role"),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            success=data.get("success", True),
            error_message=data.get("error_message"),
            metadata=dict(data.get("metadata") or {}),
            ip_address=data.get("ip_address"),
            user_agent=data.get("user_agent"),
        )


def _aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


@dataclass
class AuditFilters:
    """
    Filters applied to an audit query before pagination.

    Date bounds are inclusive. ``search_query`` matches description, resource
    name and user name case-insensitively.
    """

    action_types: Optional[Sequence[Union[AuditAction, str]]] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    user_ids: Optional[Sequence[str]] = None
    resource_types: Optional[Sequence[str]] = None
    search_query: Optional[str] = None

    def matches(self, entry: AuditEntry) -> bool:
        if self.action_types:
            actions = {AuditAction(a) for a in self.action_types}
            if entry.action not in actions:
                return False
        if self.date_from and _aware(entry.timestamp) < _aware(self.date_from):
            return False
        if self.date_to and _aware(entry.timestamp) > _aware(self.date_to):
            return False
        if self.user_ids and entry.user_id not in self.user_ids:
            return False
        if self.resource_types and entry.resource_type not in self.resource_types:
            return False
        if self.search_query:
            needle = self.search_query.lower()
            haystack = (entry.description, entry.resource_name, entry.user_name)
            if not any(needle in value.lower() for value in haystack):
                return False
        return True


@dataclass
class AuditPage:
    """One page of query results plus the total number of matches."""

    entries: List[AuditEntry]
    total: int
    limit: Optional[int] = None
    offset: int = 0
