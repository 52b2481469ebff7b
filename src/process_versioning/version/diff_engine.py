"""
Diff engine for comparing process document snapshots.

Produces a structural diff (steps added, removed and modified, plus document
metadata changes) with word-level sub-diffs for text fields. The engine holds
no state beyond its severity configuration and never mutates its inputs.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from ..core.document_model import Checklist, MediaItem, ProcessDocument, ProcessStep, Tool


class ChangeKind(Enum):
    """Kinds of structural change."""
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"


class Severity(Enum):
    """How much attention a change deserves from a reviewer."""
    INFO = "info"
    WARNING = "warning"
    BREAKING = "breaking"


class TextDiffType(Enum):
    UNCHANGED = "unchanged"
    ADDED = "added"
    REMOVED = "removed"


# Scalar step fields compared value by value
STEP_FIELDS = (
    "name",
    "short_description",
    "long_description",
    "why_it_matters",
    "automation_level",
)

# Document-level scalar fields
METADATA_FIELDS = (
    "name",
    "description",
    "status",
    "priority",
    "frequency",
    "estimated_duration",
    "department",
)

FIELD_LABELS = {
    "name": "Name",
    "short_description": "Short Description",
    "long_description": "Long Description",
    "why_it_matters": "Why It Matters",
    "automation_level": "Automation Level",
    "status": "Status",
    "priority": "Priority",
    "frequency": "Frequency",
    "estimated_duration": "Estimated Duration",
    "department": "Department",
    "description": "Description",
}


def humanize_field_name(field_name: str) -> str:
    """Human readable label for a field name."""
    return FIELD_LABELS.get(field_name) or field_name.replace("_", " ").title()


@dataclass
class TextDiff:
    """One token of a word-level text diff."""

    type: TextDiffType
    value: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "value": self.value}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TextDiff:
        return cls(type=TextDiffType(data["type"]), value=data["value"])


@dataclass
class DiffChange:
    """A single change between two snapshots."""

    id: str
    type: ChangeKind
    path: str
    field: str
    old_value: Optional[Any] = None
    new_value: Optional[Any] = None
    severity: Severity = Severity.INFO
    step_id: Optional[str] = None
    text_diff: Optional[List[TextDiff]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "type": self.type.value,
            "path": self.path,
            "field": self.field,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "severity": self.severity.value,
            "step_id": self.step_id,
            "text_diff": [t.to_dict() for t in self.text_diff] if self.text_diff is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DiffChange:
        """Create from dictionary."""
        text_diff = data.get("text_diff")
        return cls(
            id=data["id"],
            type=ChangeKind(data["type"]),
            path=data["path"],
            field=data["field"],
            old_value=data.get("old_value"),
            new_value=data.get("new_value"),
            severity=Severity(data.get("severity", "info")),
            step_id=data.get("step_id"),
            text_diff=[TextDiff.from_dict(t) for t in text_diff] if text_diff is not None else None,
        )


@dataclass
class StepDiff:
    """Changes to one step present in both snapshots."""

    step_id: str
    step_name: str
    changes: List[DiffChange] = field(default_factory=list)
    name_changed: bool = False
    description_changed: bool = False
    checklist_changed: bool = False
    media_changed: bool = False
    tools_changed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_id": self.step_id,
            "step_name": self.step_name,
            "changes": [c.to_dict() for c in self.changes],
            "name_changed": self.name_changed,
            "description_changed": self.description_changed,
            "checklist_changed": self.checklist_changed,
            "media_changed": self.media_changed,
            "tools_changed": self.tools_changed,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StepDiff:
        return cls(
            step_id=data["step_id"],
            step_name=data["step_name"],
            changes=[DiffChange.from_dict(c) for c in data.get("changes", [])],
            name_changed=data.get("name_changed", False),
            description_changed=data.get("description_changed", False),
            checklist_changed=data.get("checklist_changed", False),
            media_changed=data.get("media_changed", False),
            tools_changed=data.get("tools_changed", False),
        )


@dataclass
class MetadataChange:
    """Before/after pair for a document-level field."""

    field: str
    old_value: Any
    new_value: Any

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "old_value": self.old_value, "new_value": self.new_value}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> MetadataChange:
        return cls(field=data["field"], old_value=data.get("old_value"), new_value=data.get("new_value"))


@dataclass
class DiffSummary:
    """Aggregate counts for a diff."""

    total_changes: int = 0
    additions: int = 0
    deletions: int = 0
    modifications: int = 0
    steps_added: int = 0
    steps_removed: int = 0
    steps_modified: int = 0
    has_breaking_changes: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_changes": self.total_changes,
            "additions": self.additions,
            "deletions": self.deletions,
            "modifications": self.modifications,
            "steps_added": self.steps_added,
            "steps_removed": self.steps_removed,
            "steps_modified": self.steps_modified,
            "has_breaking_changes": self.has_breaking_changes,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DiffSummary:
        return cls(**{k: data[k] for k in cls().to_dict() if k in data})


@dataclass
class VersionDiff:
    """Represents the complete diff between two snapshots."""

    version_a: str
    version_b: str
    document_id: str
    summary: DiffSummary = field(default_factory=DiffSummary)
    changes: List[DiffChange] = field(default_factory=list)
    steps_added: List[ProcessStep] = field(default_factory=list)
    steps_removed: List[ProcessStep] = field(default_factory=list)
    steps_modified: List[StepDiff] = field(default_factory=list)
    metadata_changes: List[MetadataChange] = field(default_factory=list)
    generated_at: str = ""

    def get_changes_by_type(self, kind: ChangeKind) -> List[DiffChange]:
        """Get all changes of a specific kind."""
        return [c for c in self.changes if c.type == kind]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "version_a": self.version_a,
            "version_b": self.version_b,
            "document_id": self.document_id,
            "summary": self.summary.to_dict(),
            "changes": [c.to_dict() for c in self.changes],
            "steps_added": [s.model_dump(mode="json") for s in self.steps_added],
            "steps_removed": [s.model_dump(mode="json") for s in self.steps_removed],
            "steps_modified": [s.to_dict() for s in self.steps_modified],
            "metadata_changes": [m.to_dict() for m in self.metadata_changes],
            "generated_at": self.generated_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> VersionDiff:
        """Create from dictionary."""
        return cls(
            version_a=data["version_a"],
            version_b=data["version_b"],
            document_id=data.get("document_id", ""),
            summary=DiffSummary.from_dict(data.get("summary", {})),
            changes=[DiffChange.from_dict(c) for c in data.get("changes", [])],
            steps_added=[ProcessStep.model_validate(s) for s in data.get("steps_added", [])],
            steps_removed=[ProcessStep.model_validate(s) for s in data.get("steps_removed", [])],
            steps_modified=[StepDiff.from_dict(s) for s in data.get("steps_modified", [])],
            metadata_changes=[MetadataChange.from_dict(m) for m in data.get("metadata_changes", [])],
            generated_at=data.get("generated_at", ""),
        )


def render_text_diff(tokens: Sequence[TextDiff]) -> str:
    """Render a word diff as a single line: ``keep [-old-] {+new+}``."""
    parts = []
    for token in tokens:
        if token.type == TextDiffType.REMOVED:
            parts.append(f"[-{token.value}-]")
        elif token.type == TextDiffType.ADDED:
            parts.append(f"{{+{token.value}+}}")
        else:
            parts.append(token.value)
    return " ".join(parts)


class DiffEngine:
    """
    Engine for calculating structural diffs between process snapshots.

    Steps are matched by ``step_id``; reordering without content change is not
    reported. Severity of field changes follows two configurable sets: step
    fields and metadata fields that warrant a ``warning`` instead of ``info``.
    """

    def __init__(
        self,
        warning_step_fields: Iterable[str] = ("name",),
        warning_metadata_fields: Iterable[str] = ("status",),
    ):
        self.warning_step_fields = frozenset(warning_step_fields)
        self.warning_metadata_fields = frozenset(warning_metadata_fields)
        self.logger = logging.getLogger(__name__)

    def generate_diff(
        self,
        snapshot_a: Union[ProcessDocument, Mapping[str, Any]],
        snapshot_b: Union[ProcessDocument, Mapping[str, Any]],
        version_a_id: str,
        version_b_id: str,
    ) -> VersionDiff:
        """
        Calculate the structural diff between two snapshots.

        Args:
            snapshot_a: Older snapshot (source)
            snapshot_b: Newer snapshot (target)
            version_a_id: ID of the source version
            version_b_id: ID of the target version

        Returns:
            VersionDiff describing every change from A to B

        Raises:
            MalformedSnapshot: If either snapshot is not a valid document
        """
        doc_a = ProcessDocument.coerce(snapshot_a)
        doc_b = ProcessDocument.coerce(snapshot_b)

        steps_a = doc_a.step_map()
        steps_b = doc_b.step_map()

        steps_added: List[ProcessStep] = []
        steps_removed: List[ProcessStep] = []
        steps_modified: List[StepDiff] = []
        changes: List[DiffChange] = []

        for step_id, step in steps_a.items():
            if step_id not in steps_b:
                steps_removed.append(step.model_copy(deep=True))
                changes.append(DiffChange(
                    id=f"change_{step_id}_removed",
                    type=ChangeKind.REMOVED,
                    path=f"steps[{step_id}]",
                    field=f"Step: {step.name}",
                    old_value=step.name,
                    severity=Severity.WARNING,
                    step_id=step_id,
                ))

        for step_id, step_b in steps_b.items():
            step_a = steps_a.get(step_id)
            if step_a is None:
                steps_added.append(step_b.model_copy(deep=True))
                changes.append(DiffChange(
                    id=f"change_{step_id}_added",
                    type=ChangeKind.ADDED,
                    path=f"steps[{step_id}]",
                    field=f"Step: {step_b.name}",
                    new_value=step_b.name,
                    severity=Severity.INFO,
                    step_id=step_id,
                ))
                continue

            step_diff = self.compare_steps(step_a, step_b)
            if step_diff.changes:
                steps_modified.append(step_diff)
                changes.extend(step_diff.changes)

        metadata_changes = self.compare_metadata(doc_a, doc_b)
        for mc in metadata_changes:
            changes.append(DiffChange(
                id=f"change_meta_{mc.field}",
                type=ChangeKind.MODIFIED,
                path=mc.field,
                field=humanize_field_name(mc.field),
                old_value=mc.old_value,
                new_value=mc.new_value,
                severity=Severity.WARNING if mc.field in self.warning_metadata_fields else Severity.INFO,
            ))

        summary = DiffSummary(
            total_changes=len(changes),
            additions=len([c for c in changes if c.type == ChangeKind.ADDED]),
            deletions=len([c for c in changes if c.type == ChangeKind.REMOVED]),
            modifications=len([c for c in changes if c.type == ChangeKind.MODIFIED]),
            steps_added=len(steps_added),
            steps_removed=len(steps_removed),
            steps_modified=len(steps_modified),
            has_breaking_changes=bool(steps_removed) or any(
                c.severity == Severity.BREAKING for c in changes
            ),
        )

        self.logger.debug(
            f"Diff {version_a_id} -> {version_b_id}: {summary.total_changes} changes "
            f"(+{summary.steps_added} / -{summary.steps_removed} / ~{summary.steps_modified} steps)"
        )

        return VersionDiff(
            version_a=version_a_id,
            version_b=version_b_id,
            document_id=doc_a.id,
            summary=summary,
            changes=changes,
            steps_added=steps_added,
            steps_removed=steps_removed,
            steps_modified=steps_modified,
            metadata_changes=metadata_changes,
            generated_at=datetime.now(timezone.utc).isoformat(),
        )

    def compare_steps(self, step_a: ProcessStep, step_b: ProcessStep) -> StepDiff:
        """
        Compare two versions of the same step.

        Scalar fields are compared by value. Checklist, tools and media are
        compared by shape only (counts and item names), not full equality.
        """
        step_id = step_a.step_id
        changes: List[DiffChange] = []

        for field_name in STEP_FIELDS:
            value_a = getattr(step_a, field_name)
            value_b = getattr(step_b, field_name)
            if value_a == value_b:
                continue

            change = DiffChange(
                id=f"change_{step_id}_{field_name}",
                type=ChangeKind.MODIFIED,
                path=f"steps[{step_id}].{field_name}",
                field=humanize_field_name(field_name),
                old_value=value_a,
                new_value=value_b,
                severity=Severity.WARNING if field_name in self.warning_step_fields else Severity.INFO,
                step_id=step_id,
            )
            if isinstance(value_a, str) and isinstance(value_b, str):
                change.text_diff = self.generate_text_diff(value_a, value_b)
            changes.append(change)

        checklist_changed = self._checklist_changed(step_a.checklist, step_b.checklist)
        if checklist_changed:
            changes.append(DiffChange(
                id=f"change_{step_id}_checklist",
                type=ChangeKind.MODIFIED,
                path=f"steps[{step_id}].checklist",
                field="Checklist",
                old_value=len(step_a.checklist.items) if step_a.checklist else 0,
                new_value=len(step_b.checklist.items) if step_b.checklist else 0,
                step_id=step_id,
            ))

        tools_changed = self._tools_changed(step_a.tools_used, step_b.tools_used)
        if tools_changed:
            changes.append(DiffChange(
                id=f"change_{step_id}_tools",
                type=ChangeKind.MODIFIED,
                path=f"steps[{step_id}].tools_used",
                field="Tools Used",
                old_value=", ".join(t.name for t in step_a.tools_used),
                new_value=", ".join(t.name for t in step_b.tools_used),
                step_id=step_id,
            ))

        videos_changed = self._media_changed(step_a.videos, step_b.videos)
        if videos_changed:
            changes.append(DiffChange(
                id=f"change_{step_id}_videos",
                type=ChangeKind.MODIFIED,
                path=f"steps[{step_id}].videos",
                field="Videos",
                old_value=len(step_a.videos),
                new_value=len(step_b.videos),
                step_id=step_id,
            ))

        screenshots_changed = self._media_changed(step_a.screenshots, step_b.screenshots)
        if screenshots_changed:
            changes.append(DiffChange(
                id=f"change_{step_id}_screenshots",
                type=ChangeKind.MODIFIED,
                path=f"steps[{step_id}].screenshots",
                field="Screenshots",
                old_value=len(step_a.screenshots),
                new_value=len(step_b.screenshots),
                step_id=step_id,
            ))

        return StepDiff(
            step_id=step_id,
            step_name=step_b.name,
            changes=changes,
            name_changed=step_a.name != step_b.name,
            description_changed=step_a.long_description != step_b.long_description,
            checklist_changed=checklist_changed,
            media_changed=videos_changed or screenshots_changed,
            tools_changed=tools_changed,
        )

    def compare_metadata(self, doc_a: ProcessDocument, doc_b: ProcessDocument) -> List[MetadataChange]:
        """Compare document-level scalar fields."""
        changes = []
        for field_name in METADATA_FIELDS:
            value_a = getattr(doc_a, field_name)
            value_b = getattr(doc_b, field_name)
            if value_a != value_b:
                changes.append(MetadataChange(field=field_name, old_value=value_a, new_value=value_b))
        return changes

    def generate_text_diff(self, text_a: str, text_b: str) -> List[TextDiff]:
        """
        Word-level diff between two strings.

        Tokens common to both sides (per the longest common subsequence) are
        emitted as unchanged; everything else is emitted greedily as removed
        from A, then added from B. The result reads well for a reviewer but is
        not a minimal edit script.
        """
        words_a = text_a.split()
        words_b = text_b.split()
        lcs = self._longest_common_subsequence(words_a, words_b)

        result: List[TextDiff] = []
        i = j = k = 0
        while i < len(words_a) or j < len(words_b):
            common = lcs[k] if k < len(lcs) else None
            if (
                common is not None
                and i < len(words_a)
                and j < len(words_b)
                and words_a[i] == common
                and words_b[j] == common
            ):
                result.append(TextDiff(TextDiffType.UNCHANGED, words_a[i]))
                i += 1
                j += 1
                k += 1
            elif i < len(words_a) and words_a[i] != common:
                result.append(TextDiff(TextDiffType.REMOVED, words_a[i]))
                i += 1
            else:
                result.append(TextDiff(TextDiffType.ADDED, words_b[j]))
                j += 1

        return result

    def summarize(self, diff: Optional[VersionDiff]) -> str:
        """
        One-line summary of a diff, e.g. ``"2 additions, 1 modification"``.

        ``None`` (no previous version) summarizes as ``"Initial version"``.
        """
        if diff is None:
            return "Initial version"

        parts = []
        for count, noun in (
            (diff.summary.additions, "addition"),
            (diff.summary.deletions, "deletion"),
            (diff.summary.modifications, "modification"),
        ):
            if count > 0:
                parts.append(f"{count} {noun}{'s' if count > 1 else ''}")

        return ", ".join(parts) or "No changes"

    def _longest_common_subsequence(self, a: Sequence[str], b: Sequence[str]) -> List[str]:
        """Classic O(n*m) dynamic programming LCS with backtracking."""
        m, n = len(a), len(b)
        dp = [[0] * (n + 1) for _ in range(m + 1)]

        for i in range(1, m + 1):
            for j in range(1, n + 1):
                if a[i - 1] == b[j - 1]:
                    dp[i][j] = dp[i - 1][j - 1] + 1
                else:
                    dp[i][j] = max(dp[i - 1][j], dp[i][j - 1])

        lcs: List[str] = []
        i, j = m, n
        while i > 0 and j > 0:
            if a[i - 1] == b[j - 1]:
                lcs.append(a[i - 1])
                i -= 1
                j -= 1
            elif dp[i - 1][j] > dp[i][j - 1]:
                i -= 1
            else:
                j -= 1

        lcs.reverse()
        return lcs

    def _checklist_changed(self, a: Optional[Checklist], b: Optional[Checklist]) -> bool:
        if a is None and b is None:
            return False
        if a is None or b is None:
            return True
        if len(a.items) != len(b.items):
            return True
        return Counter(item.text for item in a.items) != Counter(item.text for item in b.items)

    def _tools_changed(self, a: List[Tool], b: List[Tool]) -> bool:
        if len(a) != len(b):
            return True
        return Counter(tool.name for tool in a) != Counter(tool.name for tool in b)

    def _media_changed(self, a: List[MediaItem], b: List[MediaItem]) -> bool:
        return len(a) != len(b)
