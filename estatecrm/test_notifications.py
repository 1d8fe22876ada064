"""
Watcher Notification Dispatcher and inbox tests.

A failing notification sink must never fail or revert the mutation that
triggered it.

Run: pytest estatecrm/test_notifications.py -v
"""

import pytest

from estatecrm.db import SessionLocal
from estatecrm.handlers import MutationHandler
from estatecrm.models import Client, Notification, User
from estatecrm.notifications import NotificationPayload, WatcherNotificationDispatcher
from estatecrm.registry import EntityKind


class BrokenSink:
    def __init__(self):
        self.calls = 0

    def create_many(self, recipient_ids, payload):
        self.calls += 1
        raise ConnectionError("notification backend down")


class RecordingSink:
    def __init__(self):
        self.sent = []

    def create_many(self, recipient_ids, payload: NotificationPayload):
        self.sent.append((list(recipient_ids), payload))
        return len(recipient_ids)


@pytest.fixture
def watched_client(db, seed):
    db.add(Client(id="c1", organization_id="org-a", owner_id="u1", name="Giorgos", watchers=["u1", "u2", "u3"]))
    db.commit()


def test_sink_failure_does_not_fail_or_revert_mutation(db, watched_client, principal):
    sink = BrokenSink()
    handler = MutationHandler(db, principal("u1"), dispatcher=WatcherNotificationDispatcher(sink=sink))

    result = handler.update(EntityKind.CLIENT, "c1", {"name": "Giorgos K."})

    assert result.changed
    assert sink.calls == 1
    session = SessionLocal()
    try:
        assert session.query(Client).filter(Client.id == "c1").one().name == "Giorgos K."
    finally:
        session.close()


def test_sink_failure_on_delete_still_deletes(db, watched_client, principal):
    handler = MutationHandler(db, principal("u1"), dispatcher=WatcherNotificationDispatcher(sink=BrokenSink()))
    handler.delete(EntityKind.CLIENT, "c1")
    assert db.query(Client).count() == 0


def test_watcher_lookup_failure_is_absorbed(watched_client):
    def broken_session_factory():
        raise RuntimeError("pool exhausted")

    dispatcher = WatcherNotificationDispatcher(session_factory=broken_session_factory, sink=RecordingSink())
    dispatcher.notify(EntityKind.CLIENT, "c1", "org-a", "CLIENT_UPDATED", title="Giorgos", message="client.update")
    assert dispatcher.sink.sent == []


def test_actor_is_excluded_and_recipients_are_distinct(watched_client):
    sink = RecordingSink()
    dispatcher = WatcherNotificationDispatcher(sink=sink)

    dispatcher.notify(
        EntityKind.CLIENT, "c1", "org-a", "CLIENT_UPDATED",
        title="Giorgos", message="client.update", actor_id="u2",
    )
    dispatcher.notify_users(
        ["u3", None, "u3", "u1"], "org-a", "TASK_COMMENT_ADDED",
        title="Call", message="task_comment_added", actor_id="u1",
    )

    assert sink.sent[0][0] == ["u1", "u3"]
    assert sink.sent[0][1].entity_type == "client"
    assert sink.sent[1][0] == ["u3"]


def test_no_watchers_means_no_delivery(db, seed):
    db.add(Client(id="lonely", organization_id="org-a", owner_id="u1", name="Nobody", watchers=[]))
    db.commit()
    sink = RecordingSink()

    WatcherNotificationDispatcher(sink=sink).notify(
        EntityKind.CLIENT, "lonely", "org-a", "CLIENT_UPDATED", title="Nobody", message="client.update",
    )
    assert sink.sent == []


def test_notifications_stay_in_their_organization(db, seed):
    WatcherNotificationDispatcher().notify_users(
        ["u2"], "org-a", "CONNECTION_REQUEST", title="u1@example.com", message="connection_request",
    )
    db.expire_all()
    row = db.query(Notification).one()
    assert row.organization_id == "org-a"
    assert row.recipient_user_id == "u2"


# ============================================================================
# Inbox over HTTP
# ============================================================================

def test_inbox_lists_and_marks_read(client, auth, db, watched_client):
    client.put("/api/clients/c1", json={"phone": "+30 69 0000"}, headers=auth("u1"))
    client.put("/api/clients/c1/status", json={"status": "ACTIVE"}, headers=auth("u1"))

    inbox = client.get("/api/notifications", headers=auth("u2")).json()
    assert inbox["unread"] == 2
    assert {n["type"] for n in inbox["items"]} == {"CLIENT_UPDATED", "CLIENT_STATUS_CHANGED"}

    first_id = inbox["items"][0]["id"]
    marked = client.post(f"/api/notifications/{first_id}/read", headers=auth("u2"))
    assert marked.status_code == 200
    assert marked.json()["read_at"] is not None

    # Someone else's notification is not found
    assert client.post(f"/api/notifications/{first_id}/read", headers=auth("u3")).status_code == 404

    assert client.post("/api/notifications/read-all", headers=auth("u2")).json() == {"updated": 1}
    assert client.get("/api/notifications?unread=true", headers=auth("u2")).json()["items"] == []

    # The actor is not notified of their own change
    assert client.get("/api/notifications", headers=auth("u1")).json()["items"] == []


# ============================================================================
# Organization announcements + linked watchers
# ============================================================================

def sent_by_type(db, notification_type):
    db.expire_all()
    rows = db.query(Notification).filter(Notification.type == notification_type).all()
    return sorted(n.recipient_user_id for n in rows)


def test_new_client_and_listing_are_announced_to_the_organization(client, auth, db, seed):
    created = client.post("/api/clients", json={"name": "Anna Vlachou"}, headers=auth("u1"))
    assert created.status_code == 201

    # Everyone in org-a except the creator; nobody in org-b
    assert sent_by_type(db, "CLIENT_CREATED") == ["owner-a", "u0", "u2", "u3"]
    row = db.query(Notification).filter(Notification.type == "CLIENT_CREATED").first()
    assert row.entity_type == "client"
    assert row.entity_id == created.json()["id"]

    client.post("/api/estate-files", json={"name": "Marousi loft"}, headers=auth("u0"))
    assert sent_by_type(db, "PROPERTY_CREATED") == ["owner-a", "u1", "u2", "u3"]


def test_client_watchers_hear_about_linked_tasks(client, auth, db, watched_client):
    task = client.post("/api/tasks", json={"title": "Send offer", "client_id": "c1"}, headers=auth("u1"))
    assert task.status_code == 201
    assert sent_by_type(db, "ACCOUNT_TASK_CREATED") == ["u2", "u3"]

    client.put(f"/api/tasks/{task.json()['id']}/status", json={"status": "DONE"}, headers=auth("u1"))
    assert sent_by_type(db, "ACCOUNT_TASK_UPDATED") == ["u2", "u3"]

    row = db.query(Notification).filter(Notification.type == "ACCOUNT_TASK_UPDATED").first()
    assert row.entity_type == "client"
    assert row.entity_id == "c1"
    assert row.metadata_json["task_id"] == task.json()["id"]


def test_task_without_client_notifies_no_client_watchers(client, auth, db, watched_client):
    client.post("/api/tasks", json={"title": "Tidy office"}, headers=auth("u1"))
    assert sent_by_type(db, "ACCOUNT_TASK_CREATED") == []


def test_inactive_users_receive_nothing(client, auth, db, watched_client):
    db.query(User).filter(User.id == "u3").update({"status": "INACTIVE"})
    db.commit()

    client.put("/api/clients/c1", json={"phone": "+30 21 0000"}, headers=auth("u1"))
    assert sent_by_type(db, "CLIENT_UPDATED") == ["u2"]

    client.post("/api/clients", json={"name": "Petros"}, headers=auth("u1"))
    assert "u3" not in sent_by_type(db, "CLIENT_CREATED")


def test_recipients_outside_the_organization_are_dropped(seed):
    sink = RecordingSink()
    WatcherNotificationDispatcher(sink=sink).notify_users(
        ["ub", "u2"], "org-a", "TASK_COMMENT_ADDED", title="Call", message="task_comment_added",
    )
    assert sink.sent[0][0] == ["u2"]
