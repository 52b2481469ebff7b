"""
Version store: append-only version chains for process documents.

Each save snapshots the document, diffs it against the previous latest version,
assigns the next semantic version and commits it as the new latest version.
History is never rewritten: restoring an old version appends a new one.
"""

from __future__ import annotations

import logging
import threading
import uuid
import weakref
from datetime import datetime, timezone
from typing import Any, Callable, List, Mapping, Optional, Union

from ..audit.audit_log import SYSTEM_ACTOR, AuditLog
from ..audit.models import Actor, AuditAction
from ..core.document_model import ProcessDocument
from ..errors import (
    CannotDeleteLatest,
    InvalidChangeNotes,
    StoreUnavailable,
    VersioningError,
    VersionNotFound,
)
from .diff_engine import DiffEngine, VersionDiff, humanize_field_name
from .models import ChangeLog, ChangeLogEntry, ChangeType, Version
from .repository import InMemoryVersionRepository, VersionRepository

VersionListener = Callable[[Version], None]


def calculate_semantic_version(current_version: str, change_type: Union[ChangeType, str]) -> str:
    """
    Next ``MAJOR.MINOR.PATCH`` string after ``current_version``.

    major bumps MAJOR, minor bumps MINOR, everything else bumps PATCH. The
    first version of a document is computed from ``0.0.0``.
    """
    change_type = ChangeType(change_type)
    try:
        major, minor, patch = (int(part) for part in current_version.split("."))
    except ValueError:
        raise VersioningError(f"Invalid semantic version: '{current_version}'")

    if change_type == ChangeType.MAJOR:
        return f"{major + 1}.0.0"
    if change_type == ChangeType.MINOR:
        return f"{major}.{minor + 1}.0"
    return f"{major}.{minor}.{patch + 1}"


class VersionStore:
    """
    Owns the linear version chain of every document.

    Saves against the same document are serialized by a per-document lock held
    from reading the previous latest version until the new one is committed.
    Saves against different documents share no lock.
    """

    def __init__(
        self,
        repository: Optional[VersionRepository] = None,
        diff_engine: Optional[DiffEngine] = None,
        audit_log: Optional[AuditLog] = None,
        default_actor: Optional[Actor] = None,
    ):
        self.repository = repository or InMemoryVersionRepository()
        self.diff_engine = diff_engine or DiffEngine()
        self.audit_log = audit_log
        self.default_actor = default_actor or SYSTEM_ACTOR
        self.logger = logging.getLogger(__name__)

        # Entries live only while a caller holds the lock object
        self._document_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()
        self._listeners: List[VersionListener] = []

    def _document_lock(self, document_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._document_locks.get(document_id)
            if lock is None:
                lock = self._document_locks[document_id] = threading.Lock()
            return lock

    # ------------------------------------------------------------------
    # Saving
    # ------------------------------------------------------------------

    def save(
        self,
        document: Union[ProcessDocument, Mapping[str, Any]],
        change_notes: str,
        change_type: Union[ChangeType, str] = ChangeType.PATCH,
        actor: Optional[Actor] = None,
    ) -> Version:
        """
        Commit ``document`` as the new latest version.

        Args:
            document: Complete document to snapshot
            change_notes: Human-authored description of the change
            change_type: Drives the semantic version bump
            actor: User the version is attributed to (default actor if omitted)

        Returns:
            The committed Version

        Raises:
            InvalidChangeNotes: If the notes are empty
            MalformedSnapshot: If the document is invalid
            StoreUnavailable: If the repository cannot commit
        """
        if not change_notes or not change_notes.strip():
            raise InvalidChangeNotes()
        try:
            change_type = ChangeType(change_type)
        except ValueError:
            raise VersioningError(f"Unknown change type: '{change_type}'")

        snapshot = ProcessDocument.coerce(document).clone()
        actor = actor or self.default_actor

        with self._document_lock(snapshot.id):
            previous = self.repository.get_latest_version(snapshot.id)

            version_id = f"ver_{uuid.uuid4().hex}"
            version_number = (previous.version_number if previous else 0) + 1
            semantic_version = calculate_semantic_version(
                previous.version if previous else "0.0.0", change_type
            )

            diff: Optional[VersionDiff] = None
            if previous is not None:
                diff = self.diff_engine.generate_diff(
                    previous.snapshot, snapshot, previous.id, version_id
                )

            version = Version(
                id=version_id,
                document_id=snapshot.id,
                version=semantic_version,
                version_number=version_number,
                snapshot=snapshot,
                change_notes=change_notes,
                change_summary=self.diff_engine.summarize(diff),
                change_type=change_type,
                created_by=actor.user_name,
                created_by_email=actor.user_email,
                created_at=datetime.now(timezone.utc),
                is_latest=True,
                is_draft=change_type == ChangeType.DRAFT,
                diff_from_previous=diff,
            )
            self.repository.commit(version)

        self.logger.info(
            f"Saved {snapshot.id} version {semantic_version} (#{version_number}, {change_type.value})"
        )

        self._audit(
            AuditAction.VERSION_CREATE,
            actor,
            description=f"Created version {semantic_version}: {change_notes}",
            resource_id=version.id,
            resource_name=f"Version {semantic_version}",
            document_id=snapshot.id,
            document_name=snapshot.name,
            version_id=version.id,
            version=semantic_version,
            metadata={"change_type": change_type.value, "version_number": version_number},
        )
        self._notify(version)

        return version

    def restore_version(self, version_id: str, actor: Optional[Actor] = None) -> Version:
        """
        Append a new version whose snapshot equals an older version's.

        Raises:
            VersionNotFound: If ``version_id`` does not exist
        """
        target = self._require_version(version_id)
        actor = actor or self.default_actor

        restored = self.save(
            target.snapshot,
            f"Restored from version {target.version}",
            ChangeType.RESTORE,
            actor=actor,
        )

        self.logger.info(
            f"Restored {target.document_id} version {target.version} as {restored.version}"
        )
        self._audit(
            AuditAction.VERSION_RESTORE,
            actor,
            description=f"Restored version {target.version} as {restored.version}",
            resource_id=restored.id,
            resource_name=f"Version {restored.version}",
            document_id=target.document_id,
            document_name=target.snapshot.name,
            version_id=restored.id,
            version=restored.version,
            metadata={"restored_from": target.id, "restored_version": target.version},
        )

        return restored

    def delete_version(self, version_id: str, actor: Optional[Actor] = None) -> bool:
        """
        Delete a historical version. Surrounding versions keep their numbers.

        Raises:
            VersionNotFound: If ``version_id`` does not exist
            CannotDeleteLatest: If it is the latest version of its document
        """
        version = self._require_version(version_id)

        with self._document_lock(version.document_id):
            # Re-read under the lock: a concurrent save may have changed latest
            version = self._require_version(version_id)
            if version.is_latest:
                self.logger.warning(f"Rejected delete of latest version {version_id}")
                raise CannotDeleteLatest(version_id)
            self.repository.delete_version(version_id)

        self.logger.info(f"Deleted {version.document_id} version {version.version}")
        self._audit(
            AuditAction.DELETE,
            actor or self.default_actor,
            description=f"Deleted version {version.version}",
            resource_id=version_id,
            resource_name=f"Version {version.version}",
            document_id=version.document_id,
            document_name=version.snapshot.name,
            version_id=version_id,
            version=version.version,
        )
        return True

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def get_versions(self, document_id: str) -> List[Version]:
        """All versions of a document, newest first."""
        return self.repository.list_versions(document_id)

    def get_version(self, version_id: str) -> Optional[Version]:
        """A single version, or None if unknown."""
        return self.repository.get_version(version_id)

    def get_latest_version(self, document_id: str) -> Optional[Version]:
        """The latest version of a document, or None if it has no versions."""
        return self.repository.get_latest_version(document_id)

    def compare_versions(self, version_a_id: str, version_b_id: str) -> VersionDiff:
        """
        Diff any two stored versions.

        Raises:
            VersionNotFound: If either version does not exist
        """
        version_a = self._require_version(version_a_id)
        version_b = self._require_version(version_b_id)
        return self.diff_engine.generate_diff(
            version_a.snapshot, version_b.snapshot, version_a.id, version_b.id
        )

    def detect_unsaved_changes(self, document: Union[ProcessDocument, Mapping[str, Any]]) -> List[str]:
        """
        Labels of what differs between a draft and its latest saved version.

        Returns an empty list when the draft matches the latest snapshot.
        """
        draft = ProcessDocument.coerce(document)
        latest = self.get_latest_version(draft.id)
        if latest is None:
            return ["Unsaved document"]

        changed = [
            humanize_field_name(mc.field)
            for mc in self.diff_engine.compare_metadata(latest.snapshot, draft)
        ]

        saved_steps = latest.snapshot.step_map()
        draft_steps = draft.step_map()
        for step_id, step in draft_steps.items():
            saved = saved_steps.get(step_id)
            if saved is None:
                changed.append(f"Step added: {step.name}")
            elif saved.model_dump() != step.model_dump():
                changed.append(f"Step: {step.name}")
        for step_id, step in saved_steps.items():
            if step_id not in draft_steps:
                changed.append(f"Step removed: {step.name}")

        return changed

    def generate_change_log(self, document_id: str) -> ChangeLog:
        """Newest-first change log with highlights for every version."""
        versions = self.get_versions(document_id)

        entries = []
        for v in versions:
            summary = v.diff_from_previous.summary if v.diff_from_previous else None
            entries.append(ChangeLogEntry(
                version_id=v.id,
                version=v.version,
                version_number=v.version_number,
                change_type=v.change_type,
                change_notes=v.change_notes,
                change_summary=v.change_summary,
                created_by=v.created_by,
                created_at=v.created_at,
                highlights=self._extract_highlights(v),
                steps_added=summary.steps_added if summary else 0,
                steps_removed=summary.steps_removed if summary else 0,
                steps_modified=summary.steps_modified if summary else 0,
            ))

        return ChangeLog(
            id=f"changelog_{document_id}",
            document_id=document_id,
            entries=entries,
            total_versions=len(versions),
            first_version=versions[-1].version if versions else None,
            latest_version=versions[0].version if versions else None,
            generated_at=datetime.now(timezone.utc),
        )

    # ------------------------------------------------------------------
    # Version-created events
    # ------------------------------------------------------------------

    def subscribe(self, listener: VersionListener) -> None:
        """Call ``listener`` with every version committed from now on."""
        with self._locks_guard:
            self._listeners.append(listener)

    def unsubscribe(self, listener: VersionListener) -> None:
        with self._locks_guard:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _notify(self, version: Version) -> None:
        with self._locks_guard:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(version)
            except Exception as e:
                self.logger.warning(
                    f"Version listener {listener!r} failed for {version.id}: {e}", exc_info=True
                )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_version(self, version_id: str) -> Version:
        version = self.repository.get_version(version_id)
        if version is None:
            raise VersionNotFound(version_id)
        return version

    def _audit(self, action: AuditAction, actor: Actor, **fields: Any) -> None:
        """Record an audit entry. Failures are logged, never rolled into the caller."""
        if self.audit_log is None:
            return
        try:
            self.audit_log.record(action, resource_type="version", actor=actor, **fields)
        except StoreUnavailable as e:
            self.logger.warning(f"Audit entry for {action.value} not recorded: {e}")

    def _extract_highlights(self, version: Version) -> List[str]:
        diff = version.diff_from_previous
        if diff is None:
            return ["Initial version created"]

        highlights = []
        if diff.steps_added:
            highlights.append(f"Added {len(diff.steps_added)} new step(s)")
        if diff.steps_removed:
            highlights.append(f"Removed {len(diff.steps_removed)} step(s)")
        if diff.steps_modified:
            highlights.append(f"Modified {len(diff.steps_modified)} step(s)")
        return highlights
