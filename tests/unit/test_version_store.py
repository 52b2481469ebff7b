"""Unit tests for the version store."""

import gc
import threading

import pytest

from process_versioning.audit import AuditAction, AuditLog, InMemoryAuditRepository
from process_versioning.errors import (
    CannotDeleteLatest,
    InvalidChangeNotes,
    MalformedSnapshot,
    StoreUnavailable,
    VersioningError,
    VersionNotFound,
)
from process_versioning.version import ChangeType, VersionStore, calculate_semantic_version
from tests.conftest import ALICE, BOB, make_document_dict, make_step


class FailingAuditRepository(InMemoryAuditRepository):
    def append_many(self, entries) -> None:
        raise StoreUnavailable("audit backend down")


@pytest.mark.parametrize(
    "current, change_type, expected",
    [
        ("0.0.0", ChangeType.MINOR, "0.1.0"),
        ("0.0.0", ChangeType.MAJOR, "1.0.0"),
        ("0.0.0", ChangeType.PATCH, "0.0.1"),
        ("1.4.7", ChangeType.MAJOR, "2.0.0"),
        ("1.4.7", ChangeType.MINOR, "1.5.0"),
        ("1.4.7", ChangeType.PATCH, "1.4.8"),
        ("1.4.7", ChangeType.DRAFT, "1.4.8"),
        ("1.4.7", ChangeType.RESTORE, "1.4.8"),
        ("1.4.7", "minor", "1.5.0"),
    ],
)
def test_calculate_semantic_version(current, change_type, expected) -> None:
    assert calculate_semantic_version(current, change_type) == expected


def test_calculate_semantic_version_rejects_garbage() -> None:
    with pytest.raises(VersioningError):
        calculate_semantic_version("1.x", ChangeType.PATCH)


def test_save_edit_restore_scenario(store, document_dict) -> None:
    v1 = store.save(document_dict, "initial", ChangeType.MINOR)
    assert (v1.version, v1.version_number) == ("0.1.0", 1)
    assert v1.diff_from_previous is None
    assert v1.change_summary == "Initial version"
    assert v1.created_by == "Alice"
    assert v1.created_by_email == "alice@example.com"

    edited = make_document_dict()
    edited["steps"][0]["name"] = "Send signed offer letter"
    v2 = store.save(edited, "clarify step", ChangeType.PATCH)
    assert (v2.version, v2.version_number) == ("0.1.1", 2)
    assert v2.diff_from_previous.version_a == v1.id
    assert v2.diff_from_previous.version_b == v2.id
    assert v2.diff_from_previous.summary.steps_modified == 1

    v3 = store.restore_version(v1.id)
    assert (v3.version, v3.version_number) == ("0.1.2", 3)
    assert v3.change_type == ChangeType.RESTORE
    assert v3.change_notes == "Restored from version 0.1.0"
    assert v3.snapshot == v1.snapshot
    assert v3.diff_from_previous.summary.steps_modified == 1

    assert [v.version for v in store.get_versions("P1")] == ["0.1.2", "0.1.1", "0.1.0"]


def test_exactly_one_latest_version(store, document_dict) -> None:
    for notes in ("one", "two", "three"):
        store.save(document_dict, notes)

    versions = store.get_versions("P1")
    latest = [v for v in versions if v.is_latest]
    assert len(latest) == 1
    assert latest[0].version_number == 3
    assert store.get_latest_version("P1").id == latest[0].id


@pytest.mark.parametrize("notes", ["", "   ", "\n\t"])
def test_empty_change_notes_are_rejected(store, document_dict, notes) -> None:
    with pytest.raises(InvalidChangeNotes):
        store.save(document_dict, notes)

    assert store.get_versions("P1") == []


def test_unknown_change_type_is_rejected(store, document_dict) -> None:
    with pytest.raises(VersioningError):
        store.save(document_dict, "notes", "huge")


def test_draft_versions_are_flagged(store, document_dict) -> None:
    v1 = store.save(document_dict, "wip", ChangeType.DRAFT)

    assert v1.is_draft
    assert v1.version == "0.0.1"


def test_edited_document_instance_is_revalidated(store, document) -> None:
    v1 = store.save(document, "initial", ChangeType.MINOR)

    document.steps.append(document.steps[0].model_copy())
    with pytest.raises(MalformedSnapshot):
        store.save(document, "duplicate step")

    document.steps.pop()
    document.name = None
    with pytest.raises(MalformedSnapshot):
        store.save(document, "no name")

    assert [v.id for v in store.get_versions("P1")] == [v1.id]
    v2 = store.save(make_document_dict(), "valid again")
    assert v2.version_number == 2


def test_snapshots_are_isolated(store, document) -> None:
    v1 = store.save(document, "initial", ChangeType.MINOR)

    document.steps[0].name = "Mutated after save"
    v1.snapshot.steps[1].name = "Mutated returned copy"

    stored = store.get_version(v1.id)
    assert stored.snapshot.steps[0].name == "Send offer letter"
    assert stored.snapshot.steps[1].name == "Create accounts"


def test_delete_latest_is_rejected(store, document_dict) -> None:
    v1 = store.save(document_dict, "initial")

    with pytest.raises(CannotDeleteLatest):
        store.delete_version(v1.id)

    assert store.get_version(v1.id) is not None


def test_delete_keeps_numbering(store, document_dict) -> None:
    v1 = store.save(document_dict, "one")
    v2 = store.save(document_dict, "two")
    v3 = store.save(document_dict, "three")

    assert store.delete_version(v2.id) is True

    versions = store.get_versions("P1")
    assert [v.id for v in versions] == [v3.id, v1.id]
    assert [v.version_number for v in versions] == [3, 1]
    assert store.get_version(v2.id) is None

    v4 = store.save(document_dict, "four")
    assert v4.version_number == 4


def test_unknown_version_ids(store) -> None:
    assert store.get_version("ver_missing") is None
    with pytest.raises(VersionNotFound):
        store.delete_version("ver_missing")
    with pytest.raises(VersionNotFound):
        store.restore_version("ver_missing")
    with pytest.raises(VersionNotFound):
        store.compare_versions("ver_missing", "ver_missing")


def test_documents_have_independent_chains(store) -> None:
    store.save(make_document_dict("P1"), "first")
    other = store.save(make_document_dict("P2"), "first", ChangeType.MAJOR)

    assert other.version == "1.0.0"
    assert other.version_number == 1
    assert len(store.get_versions("P1")) == 1
    assert store.get_latest_version("P3") is None


def test_compare_versions(store, document_dict) -> None:
    v1 = store.save(document_dict, "one")
    changed = make_document_dict()
    changed["steps"].append(make_step("S4", "Book equipment"))
    store.save(changed, "two")
    v3 = store.save(changed, "three")

    diff = store.compare_versions(v1.id, v3.id)

    assert diff.version_a == v1.id
    assert diff.version_b == v3.id
    assert diff.summary.steps_added == 1


def test_detect_unsaved_changes(store, document_dict) -> None:
    assert store.detect_unsaved_changes(document_dict) == ["Unsaved document"]

    store.save(document_dict, "initial")
    assert store.detect_unsaved_changes(document_dict) == []

    draft = make_document_dict(status="archived")
    draft["steps"][0]["name"] = "Send offer"
    draft["steps"].pop(1)
    draft["steps"].append(make_step("S4", "Book equipment"))

    assert store.detect_unsaved_changes(draft) == [
        "Status",
        "Step: Send offer",
        "Step added: Book equipment",
        "Step removed: Create accounts",
    ]


def test_change_log(store, document_dict) -> None:
    store.save(document_dict, "initial", ChangeType.MINOR)
    changed = make_document_dict()
    changed["steps"].pop(2)
    changed["steps"].append(make_step("S4", "Book equipment"))
    store.save(changed, "rework", ChangeType.MAJOR)

    log = store.generate_change_log("P1")

    assert log.total_versions == 2
    assert log.first_version == "0.1.0"
    assert log.latest_version == "1.0.0"
    newest, oldest = log.entries
    assert oldest.highlights == ["Initial version created"]
    assert newest.highlights == ["Added 1 new step(s)", "Removed 1 step(s)"]
    assert (newest.steps_added, newest.steps_removed) == (1, 1)


def test_change_log_for_unknown_document(store) -> None:
    log = store.generate_change_log("nope")

    assert log.entries == []
    assert log.first_version is None
    assert log.latest_version is None


def test_audit_entries_are_recorded(store, audit_log, document_dict) -> None:
    v1 = store.save(document_dict, "initial", ChangeType.MINOR)
    store.save(document_dict, "again", actor=BOB)
    restored = store.restore_version(v1.id)
    store.delete_version(v1.id)

    entries = audit_log.query("P1").entries
    assert [e.action for e in entries] == [
        AuditAction.DELETE,
        AuditAction.VERSION_RESTORE,
        AuditAction.VERSION_CREATE,
        AuditAction.VERSION_CREATE,
        AuditAction.VERSION_CREATE,
    ]
    assert entries[1].version_id == restored.id
    assert entries[1].metadata["restored_from"] == v1.id
    assert entries[3].user_name == "Bob"
    assert entries[4].user_id == ALICE.user_id
    assert entries[4].description == "Created version 0.1.0: initial"
    assert all(e.resource_type == "version" for e in entries)


def test_audit_failure_does_not_roll_back_save(document_dict) -> None:
    audit_log = AuditLog(FailingAuditRepository(), async_writes=False)
    store = VersionStore(audit_log=audit_log)

    version = store.save(document_dict, "initial")

    assert store.get_latest_version("P1").id == version.id
    assert version.created_by == "System"


def test_concurrent_saves_are_serialized(store, document_dict) -> None:
    errors = []

    def worker(n: int) -> None:
        try:
            store.save(document_dict, f"save {n}")
        except Exception as e:  # pragma: no cover
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    versions = store.get_versions("P1")
    assert sorted(v.version_number for v in versions) == list(range(1, 21))
    assert len({v.version for v in versions}) == 20
    assert [v.is_latest for v in versions].count(True) == 1
    assert versions[0].version_number == 20


def test_listeners_are_notified(store, document_dict) -> None:
    seen = []

    def broken(version) -> None:
        raise RuntimeError("listener bug")

    store.subscribe(broken)
    store.subscribe(seen.append)
    v1 = store.save(document_dict, "one")
    store.unsubscribe(seen.append)
    store.save(document_dict, "two")

    assert [v.id for v in seen] == [v1.id]


def test_document_locks_are_released(store) -> None:
    for n in range(5):
        store.save(make_document_dict(f"P{n}"), "first")
    gc.collect()

    assert len(store._document_locks) == 0
    assert store.save(make_document_dict("P0"), "second").version_number == 2
