"""Unit tests for the audit log."""

import csv
import io
import threading
from datetime import datetime, timedelta, timezone

import pytest

from process_versioning.audit import (
    AuditAction,
    AuditEntry,
    AuditFilters,
    AuditLog,
    InMemoryAuditRepository,
)
from process_versioning.errors import AuditLogClosed, StoreUnavailable
from tests.conftest import ALICE, BOB

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class FlakyAuditRepository(InMemoryAuditRepository):
    """In-memory repository that fails while ``down`` is set."""

    def __init__(self):
        super().__init__()
        self.down = False

    def append_many(self, entries) -> None:
        if self.down:
            raise StoreUnavailable("audit backend down")
        super().append_many(entries)


def make_entry(n: int, action=AuditAction.UPDATE, actor=ALICE, document_id="P1", **fields) -> AuditEntry:
    values = dict(
        id=f"audit_{n}",
        action=action,
        description=f"Edit number {n}",
        resource_type="process",
        resource_id=document_id,
        resource_name="Employee onboarding",
        user_id=actor.user_id,
        user_name=actor.user_name,
        user_email=actor.user_email,
        timestamp=T0 + timedelta(hours=n),
        document_id=document_id,
    )
    values.update(fields)
    return AuditEntry(**values)


@pytest.fixture
def populated_log(audit_log):
    audit_log.append(make_entry(0, AuditAction.CREATE))
    audit_log.append(make_entry(1, AuditAction.UPDATE, actor=BOB))
    audit_log.append(make_entry(2, AuditAction.VERSION_CREATE, resource_type="version", version="0.1.0"))
    audit_log.append(make_entry(3, AuditAction.UPDATE, document_id="P2"))
    audit_log.append(make_entry(4, AuditAction.PUBLISH, description="Published to the handbook"))
    return audit_log


def test_query_is_scoped_to_document_and_newest_first(populated_log) -> None:
    page = populated_log.query("P1")

    assert [e.id for e in page.entries] == ["audit_4", "audit_2", "audit_1", "audit_0"]
    assert page.total == 4


def test_filter_by_action(populated_log) -> None:
    page = populated_log.query("P1", AuditFilters(action_types=[AuditAction.UPDATE, "publish"]))

    assert [e.id for e in page.entries] == ["audit_4", "audit_1"]


def test_filter_by_user_and_resource_type(populated_log) -> None:
    assert [e.id for e in populated_log.query("P1", AuditFilters(user_ids=["u_bob"])).entries] == ["audit_1"]
    assert [
        e.id for e in populated_log.query("P1", AuditFilters(resource_types=["version"])).entries
    ] == ["audit_2"]


def test_date_bounds_are_inclusive(populated_log) -> None:
    filters = AuditFilters(date_from=T0 + timedelta(hours=1), date_to=T0 + timedelta(hours=2))

    assert [e.id for e in populated_log.query("P1", filters).entries] == ["audit_2", "audit_1"]


def test_naive_date_bounds_are_treated_as_utc(populated_log) -> None:
    filters = AuditFilters(date_from=datetime(2024, 3, 1, 13, 0))

    assert [e.id for e in populated_log.query("P1", filters).entries] == ["audit_4"]


def test_search_is_case_insensitive(populated_log) -> None:
    assert [e.id for e in populated_log.query("P1", AuditFilters(search_query="HANDBOOK")).entries] == [
        "audit_4"
    ]
    assert populated_log.query("P1", AuditFilters(search_query="bob")).total == 1


def test_pagination_counts_all_matches(populated_log) -> None:
    page = populated_log.query("P1", limit=2, offset=1)

    assert [e.id for e in page.entries] == ["audit_2", "audit_1"]
    assert page.total == 4
    assert (page.limit, page.offset) == (2, 1)

    assert populated_log.query("P1", limit=2, offset=10).entries == []


def test_record_fills_actor_and_label(audit_log) -> None:
    entry = audit_log.record(
        AuditAction.VERSION_RESTORE,
        "Restored version 0.1.0 as 0.1.2",
        "version",
        "ver_3",
        "Version 0.1.2",
        actor=BOB,
        document_id="P1",
    )

    assert entry.id.startswith("audit_")
    assert entry.action_label == "Restored Version"
    assert entry.user_role == "Viewer"
    assert entry.timestamp.tzinfo is not None
    assert audit_log.query("P1").entries == [entry]


def test_record_uses_default_actor() -> None:
    with AuditLog(async_writes=False) as log:
        entry = log.record(AuditAction.VIEW, "Viewed", "process", "P1", "Onboarding")

    assert (entry.user_id, entry.user_name) == ("system", "System")


def test_export_csv(populated_log) -> None:
    populated_log.append(make_entry(
        5,
        AuditAction.UPDATE,
        description='Renamed "Intro", then fixed\ntypo',
        success=False,
        error_message="validation",
    ))

    data = populated_log.export_csv("P1")
    rows = list(csv.reader(io.StringIO(data.decode("utf-8"))))

    assert rows[0] == [
        "Timestamp",
        "Action",
        "Description",
        "Resource Type",
        "Resource Name",
        "User",
        "User Email",
        "Version",
        "Success",
    ]
    assert len(rows) == 6
    assert rows[1][2] == 'Renamed "Intro", then fixed\ntypo'
    assert rows[1][1] == "Updated"
    assert rows[1][8] == "No"
    assert rows[1][0] == (T0 + timedelta(hours=5)).isoformat()
    version_row = next(r for r in rows if r[1] == "Created Version")
    assert version_row[7] == "0.1.0"
    assert version_row[8] == "Yes"


def test_export_csv_respects_filters(populated_log) -> None:
    data = populated_log.export_csv("P1", AuditFilters(user_ids=["u_bob"]))
    rows = list(csv.reader(io.StringIO(data.decode("utf-8"))))

    assert len(rows) == 2
    assert rows[1][5] == "Bob"


def test_async_writes_preserve_order() -> None:
    repo = InMemoryAuditRepository()
    with AuditLog(repo, batch_size=7, flush_interval=0.05) as log:
        for n in range(40):
            log.append(make_entry(n))
        log.flush()

        assert [e.id for e in repo.entries()] == [f"audit_{n}" for n in range(40)]


def test_close_flushes_pending_entries() -> None:
    repo = InMemoryAuditRepository()
    log = AuditLog(repo, flush_interval=0.05)
    for n in range(10):
        log.append(make_entry(n))

    log.close()

    assert len(repo.entries()) == 10


def test_async_failure_is_held_and_reported() -> None:
    repo = FlakyAuditRepository()
    log = AuditLog(repo, flush_interval=0.05)
    repo.down = True

    log.append(make_entry(0))
    with pytest.raises(StoreUnavailable):
        log.flush()
    assert log.pending_failures == 1
    with pytest.raises(StoreUnavailable):
        log.append(make_entry(1))

    repo.down = False
    log.append(make_entry(2))
    log.flush()

    assert log.pending_failures == 0
    assert [e.id for e in repo.entries()] == ["audit_0", "audit_2"]
    log.close()


def test_sync_failure_raises_immediately() -> None:
    repo = FlakyAuditRepository()
    repo.down = True
    log = AuditLog(repo, async_writes=False)

    with pytest.raises(StoreUnavailable):
        log.append(make_entry(0))

    repo.down = False
    log.append(make_entry(1))
    assert [e.id for e in repo.entries()] == ["audit_0", "audit_1"]
    log.close()


def test_append_after_close_is_rejected() -> None:
    log = AuditLog(flush_interval=0.05)
    log.close()

    with pytest.raises(AuditLogClosed):
        log.append(make_entry(0))
    with pytest.raises(StoreUnavailable):
        log.record(AuditAction.VIEW, "Viewed", "process", "P1", "Onboarding")

    log.close()


def test_record_accepts_action_value(audit_log) -> None:
    entry = audit_log.record("view", "Viewed", "process", "P1", "Onboarding", document_id="P1")

    assert entry.action == AuditAction.VIEW
    assert entry.action_label == "Viewed"
    with pytest.raises(ValueError):
        audit_log.record("teleport", "Nope", "process", "P1", "Onboarding")


def test_close_during_appends_loses_nothing() -> None:
    repo = InMemoryAuditRepository(max_entries=10_000)
    log = AuditLog(repo, batch_size=5, flush_interval=0.01)
    accepted = []
    accepted_lock = threading.Lock()
    start = threading.Event()

    def writer(worker: int) -> None:
        start.wait()
        for n in range(500):
            entry = make_entry(worker * 1000 + n)
            try:
                log.append(entry)
            except AuditLogClosed:
                return
            with accepted_lock:
                accepted.append(entry.id)

    threads = [threading.Thread(target=writer, args=(w,)) for w in range(4)]
    for t in threads:
        t.start()
    start.set()
    log.close()
    for t in threads:
        t.join()

    assert sorted(e.id for e in repo.entries()) == sorted(accepted)
