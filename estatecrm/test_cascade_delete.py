"""
Cascade delete and ownership tests.

Deleting a section removes its tasks and their comments in one transaction;
a failure part-way leaves everything in place.

Run: pytest estatecrm/test_cascade_delete.py -v
"""

import pytest

from estatecrm.db import SessionLocal
from estatecrm.errors import PermissionDenied
from estatecrm.handlers import MutationHandler
from estatecrm.models import (
    Client,
    Feedback,
    FeedbackComment,
    RolePermissionOverride,
    Section,
    Task,
    TaskComment,
)
from estatecrm.registry import EntityKind
from estatecrm.tenant import TenantScopedAccessor


@pytest.fixture
def board(db, seed):
    """Section s1 (two tasks, three comments) and section s2 (one task), all owned by u1."""
    db.add_all([
        Section(id="s1", organization_id="org-a", owner_id="u1", title="To do"),
        Section(id="s2", organization_id="org-a", owner_id="u1", title="Done"),
    ])
    db.flush()
    db.add_all([
        Task(id="t1", organization_id="org-a", owner_id="u1", section_id="s1", title="Call seller", watchers=[]),
        Task(id="t2", organization_id="org-a", owner_id="u1", section_id="s1", title="Book viewing", watchers=[]),
        Task(id="t3", organization_id="org-a", owner_id="u1", section_id="s2", title="Send contract", watchers=[]),
    ])
    db.flush()
    db.add_all([
        TaskComment(id="k1", organization_id="org-a", task_id="t1", author_id="u1", body="No answer"),
        TaskComment(id="k2", organization_id="org-a", task_id="t1", author_id="u2", body="Try tomorrow"),
        TaskComment(id="k3", organization_id="org-a", task_id="t2", author_id="u1", body="Saturday"),
        TaskComment(id="k4", organization_id="org-a", task_id="t3", author_id="u1", body="Signed"),
    ])
    db.commit()


def counts():
    session = SessionLocal()
    try:
        return {
            "sections": session.query(Section).count(),
            "tasks": session.query(Task).count(),
            "comments": session.query(TaskComment).count(),
        }
    finally:
        session.close()


def test_section_delete_cascades_to_tasks_and_comments(db, board, principal):
    result = MutationHandler(db, principal("u1")).delete(EntityKind.SECTION, "s1")

    assert result.dependents_deleted == 5
    assert counts() == {"sections": 1, "tasks": 1, "comments": 1}
    assert db.query(Task).filter(Task.id == "t3").count() == 1


def test_failure_mid_cascade_deletes_nothing(db, board, principal, monkeypatch):
    def broken_delete(self, row):
        raise RuntimeError("storage failure")

    monkeypatch.setattr(TenantScopedAccessor, "delete", broken_delete)

    with pytest.raises(RuntimeError):
        MutationHandler(db, principal("u1")).delete(EntityKind.SECTION, "s1")

    assert counts() == {"sections": 2, "tasks": 3, "comments": 4}


def test_non_owner_cannot_delete_section(db, board, principal):
    with pytest.raises(PermissionDenied) as exc:
        MutationHandler(db, principal("u2")).delete(EntityKind.SECTION, "s1")

    assert exc.value.reason == "not_owner"
    assert counts() == {"sections": 2, "tasks": 3, "comments": 4}


def test_admin_may_delete_any_section(db, board, principal):
    MutationHandler(db, principal("u0")).delete(EntityKind.SECTION, "s2")
    assert counts() == {"sections": 1, "tasks": 2, "comments": 3}


def test_member_cannot_delete_someone_elses_task(db, board, principal):
    with pytest.raises(PermissionDenied) as exc:
        MutationHandler(db, principal("u2")).delete(EntityKind.TASK, "t1")

    assert exc.value.reason in ("not_owner", "missing_permission")
    assert counts()["tasks"] == 3


def test_revoked_task_delete_reports_missing_permission(db, board, principal):
    db.add(RolePermissionOverride(organization_id="org-a", role="member", permissions={"task:delete": False}))
    db.commit()

    with pytest.raises(PermissionDenied) as exc:
        MutationHandler(db, principal("u2")).delete(EntityKind.TASK, "t1")

    assert exc.value.reason == "missing_permission"
    assert counts()["tasks"] == 3


def test_client_delete_unlinks_tasks_of_other_members(db, board, principal):
    db.add(Client(id="c1", organization_id="org-a", owner_id="u1", name="Nikos", watchers=[]))
    db.flush()
    db.add(Task(id="t9", organization_id="org-a", owner_id="u2", section_id="s2", client_id="c1",
                title="Valuation visit", watchers=["u2"]))
    db.query(Task).filter(Task.id == "t1").update({"client_id": "c1"})
    db.commit()

    # u1 may not delete u2's task directly...
    with pytest.raises(PermissionDenied):
        MutationHandler(db, principal("u1")).delete(EntityKind.TASK, "t9")

    # ...and deleting u1's own client does not delete it either
    result = MutationHandler(db, principal("u1")).delete(EntityKind.CLIENT, "c1")

    assert result.dependents_deleted == 0
    assert counts() == {"sections": 2, "tasks": 4, "comments": 4}
    db.expire_all()
    assert db.query(Task).filter(Task.client_id.isnot(None)).count() == 0
    assert db.query(Task).filter(Task.id == "t9").one().owner_id == "u2"


def test_feedback_delete_removes_comments(db, seed, principal):
    db.add(Feedback(id="f1", organization_id="org-a", owner_id="u2", title="Export fails", watchers=[]))
    db.flush()
    db.add(FeedbackComment(organization_id="org-a", feedback_id="f1", author_id="u0", body="Looking into it"))
    db.commit()

    MutationHandler(db, principal("u2")).delete(EntityKind.FEEDBACK, "f1")

    assert db.query(Feedback).count() == 0
    assert db.query(FeedbackComment).count() == 0


def test_section_delete_over_http(client, auth, board):
    resp = client.delete("/api/sections/s1", headers=auth("u1"))
    assert resp.status_code == 200
    assert resp.json() == {"id": "s1", "deleted": True, "dependents_deleted": 5}

    denied = client.delete("/api/sections/s2", headers=auth("u2"))
    assert denied.status_code == 403
    assert denied.json()["reason"] == "not_owner"
    assert counts() == {"sections": 1, "tasks": 1, "comments": 1}
