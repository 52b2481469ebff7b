"""
Version records and change log types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from ..core.document_model import ProcessDocument
from .diff_engine import VersionDiff


class ChangeType(Enum):
    """Kind of change a saved version represents."""
    MAJOR = "major"      # restructure, breaking changes
    MINOR = "minor"      # new steps, significant additions
    PATCH = "patch"      # small fixes, typos, clarifications
    DRAFT = "draft"      # work in progress
    RESTORE = "restore"  # restored from a previous version


@dataclass(frozen=True)
class Version:
    """
    An immutable, committed version of a process document.

    ``snapshot`` is a private deep copy of the document at save time. Records
    returned from a repository are fresh copies, so mutating one never reaches
    the stored history.
    """

    id: str
    document_id: str
    version: str
    version_number: int
    snapshot: ProcessDocument
    change_notes: str
    change_type: ChangeType
    created_by: str
    created_at: datetime
    change_summary: str = ""
    created_by_email: Optional[str] = None
    is_latest: bool = True
    is_draft: bool = False
    diff_from_previous: Optional[VersionDiff] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "document_id": self.document_id,
            "version": self.version,
            "version_number": self.version_number,
            "snapshot": self.snapshot.to_dict(),
            "change_notes": self.change_notes,
            "change_summary": self.change_summary,
            "change_type": self.change_type.value,
            "created_by": self.created_by,
            "created_by_email": self.created_by_email,
            "created_at": self.created_at.isoformat(),
            "is_latest": self.is_latest,
            "is_draft": self.is_draft,
            "diff_from_previous": self.diff_from_previous.to_dict() if self.diff_from_previous else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Version:
        """Create from dictionary."""
        diff = data.get("diff_from_previous")
        return cls(
            id=data["id"],
            document_id=data["document_id"],
            version=data["version"],
            version_number=data["version_number"],
            snapshot=ProcessDocument.from_dict(data["snapshot"]),
            change_notes=data["change_notes"],
            change_summary=data.get("change_summary", ""),
            change_type=ChangeType(data["change_type"]),
            created_by=data["created_by"],
            created_by_email=data.get("created_by_email"),
            created_at=datetime.fromisoformat(data["created_at"]),
            is_latest=data.get("is_latest", False),
            is_draft=data.get("is_draft", False),
            diff_from_previous=VersionDiff.from_dict(diff) if diff else None,
        )


@dataclass
class ChangeLogEntry:
    """Summary of one version for a change log."""

    version_id: str
    version: str
    version_number: int
    change_type: ChangeType
    change_notes: str
    change_summary: str
    created_by: str
    created_at: datetime
    highlights: List[str] = field(default_factory=list)
    steps_added: int = 0
    steps_removed: int = 0
    steps_modified: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version_id": self.version_id,
            "version": self.version,
            "version_number": self.version_number,
            "change_type": self.change_type.value,
            "change_notes": self.change_notes,
            "change_summary": self.change_summary,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat(),
            "highlights": list(self.highlights),
            "steps_added": self.steps_added,
            "steps_removed": self.steps_removed,
            "steps_modified": self.steps_modified,
        }


@dataclass
class ChangeLog:
    """Newest-first change log for a document."""

    id: str
    document_id: str
    entries: List[ChangeLogEntry]
    total_versions: int
    first_version: Optional[str]
    latest_version: Optional[str]
    generated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "entries": [e.to_dict() for e in self.entries],
            "total_versions": self.total_versions,
            "first_version": self.first_version,
            "latest_version": self.latest_version,
            "generated_at": self.generated_at.isoformat(),
        }
