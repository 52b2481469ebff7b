"""Shared pytest fixtures."""

from typing import Any, Dict, List

import pytest

from process_versioning.audit import Actor, AuditLog, InMemoryAuditRepository
from process_versioning.core import ProcessDocument
from process_versioning.version import DiffEngine, VersionStore

ALICE = Actor(user_id="u_alice", user_name="Alice", user_email="alice@example.com", user_role="Editor")
BOB = Actor(user_id="u_bob", user_name="Bob", user_email="bob@example.com", user_role="Viewer")


def make_step(step_id: str, name: str, **fields: Any) -> Dict[str, Any]:
    return {"stepId": step_id, "name": name, **fields}


def make_document_dict(doc_id: str = "P1", steps: List[Dict[str, Any]] = None, **fields: Any) -> Dict[str, Any]:
    data = {
        "id": doc_id,
        "name": "Employee onboarding",
        "description": "Bring a new hire from offer to first day",
        "status": "active",
        "priority": "high",
        "department": "HR",
        "frequency": "per hire",
        "estimatedDuration": "2 weeks",
        "steps": steps if steps is not None else [
            make_step(
                "S1",
                "Send offer letter",
                shortDescription="Email the signed offer",
                longDescription="Send the signed offer letter to the candidate by email",
                automationLevel="partial",
                checklist={
                    "id": "C1",
                    "title": "Offer",
                    "items": [
                        {"id": "i1", "text": "Attach contract"},
                        {"id": "i2", "text": "CC hiring manager"},
                    ],
                },
                toolsUsed=[{"id": "t1", "name": "Gmail"}, {"id": "t2", "name": "DocuSign"}],
            ),
            make_step("S2", "Create accounts", longDescription="Create email and chat accounts"),
            make_step("S3", "First day welcome", videos=[{"id": "v1", "title": "Welcome"}]),
        ],
    }
    data.update(fields)
    return data


@pytest.fixture
def document_dict() -> Dict[str, Any]:
    return make_document_dict()


@pytest.fixture
def document(document_dict) -> ProcessDocument:
    return ProcessDocument.from_dict(document_dict)


@pytest.fixture
def diff_engine() -> DiffEngine:
    return DiffEngine()


@pytest.fixture
def audit_log():
    log = AuditLog(InMemoryAuditRepository(), async_writes=False)
    yield log
    log.close()


@pytest.fixture
def store(audit_log) -> VersionStore:
    return VersionStore(audit_log=audit_log, default_actor=ALICE)
