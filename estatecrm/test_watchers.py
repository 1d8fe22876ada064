"""
Watch/unwatch and watcher notification tests.

Run: pytest estatecrm/test_watchers.py -v
"""

import pytest

from estatecrm.handlers import MutationHandler
from estatecrm.models import Client, EstateFile, Notification
from estatecrm.registry import EntityKind


@pytest.fixture
def c1(db, seed):
    row = Client(id="c1", organization_id="org-a", owner_id="u1", name="Maria Papadopoulou", watchers=["u1"])
    db.add(row)
    db.commit()
    return row


def notifications(db):
    db.expire_all()
    return db.query(Notification).order_by(Notification.recipient_user_id).all()


def test_watch_scenario_delete_notifies_remaining_watcher(db, c1, principal):
    """c1 watched by u1; u2 watches; u1 unwatches; deleting c1 notifies only u2."""
    result = MutationHandler(db, principal("u2")).watch(EntityKind.CLIENT, "c1")
    assert result.changed
    assert result.entity.watchers == ["u1", "u2"]

    result = MutationHandler(db, principal("u1")).unwatch(EntityKind.CLIENT, "c1")
    assert result.changed
    assert result.entity.watchers == ["u2"]

    MutationHandler(db, principal("u0")).delete(EntityKind.CLIENT, "c1")

    sent = notifications(db)
    assert len(sent) == 1
    assert sent[0].recipient_user_id == "u2"
    assert sent[0].type == "CLIENT_DELETED"
    assert sent[0].entity_id == "c1"
    assert sent[0].actor_id == "u0"
    assert db.query(Client).filter(Client.id == "c1").count() == 0


def test_double_watch_keeps_single_entry(db, c1, principal):
    handler = MutationHandler(db, principal("u2"))
    first = handler.watch(EntityKind.CLIENT, "c1")
    second = handler.watch(EntityKind.CLIENT, "c1")

    assert first.changed is True
    assert second.changed is False
    db.expire_all()
    assert db.query(Client).filter(Client.id == "c1").one().watchers == ["u1", "u2"]


def test_unwatch_of_non_watcher_is_noop_success(db, c1, principal):
    result = MutationHandler(db, principal("u2")).unwatch(EntityKind.CLIENT, "c1")
    assert result.changed is False
    assert result.entity.watchers == ["u1"]


def test_read_only_user_may_watch(db, c1, principal):
    result = MutationHandler(db, principal("u3")).watch(EntityKind.CLIENT, "c1")
    assert "u3" in result.entity.watchers


def test_update_notifies_watchers_except_actor(db, c1, principal):
    MutationHandler(db, principal("u2")).watch(EntityKind.CLIENT, "c1")

    result = MutationHandler(db, principal("u1")).update(EntityKind.CLIENT, "c1", {"phone": "+30 210 000"})
    assert result.changed

    sent = notifications(db)
    assert [n.recipient_user_id for n in sent] == ["u2"]
    assert sent[0].type == "CLIENT_UPDATED"
    assert sent[0].metadata_json == {"changed_fields": ["phone"]}


def test_update_without_changes_sends_nothing(db, c1, principal):
    MutationHandler(db, principal("u2")).watch(EntityKind.CLIENT, "c1")
    result = MutationHandler(db, principal("u1")).update(EntityKind.CLIENT, "c1", {"name": "Maria Papadopoulou"})

    assert result.changed is False
    assert notifications(db) == []


def test_status_change_notifies_watchers(db, c1, principal):
    MutationHandler(db, principal("u2")).watch(EntityKind.CLIENT, "c1")
    MutationHandler(db, principal("u1")).set_status(EntityKind.CLIENT, "c1", "ACTIVE")

    sent = notifications(db)
    assert len(sent) == 1
    assert sent[0].type == "CLIENT_STATUS_CHANGED"
    assert sent[0].metadata_json == {"from": "LEAD", "to": "ACTIVE"}


def test_estate_file_watch_over_http(client, auth, db, seed):
    db.add(EstateFile(id="ef1", organization_id="org-a", owner_id="u1", name="Kifisia villa", watchers=[]))
    db.commit()

    resp = client.post("/api/estate-files/ef1/watch", headers=auth("u2"))
    assert resp.status_code == 200
    assert resp.json() == {"id": "ef1", "watchers": ["u2"], "changed": True}

    again = client.post("/api/estate-files/ef1/watch", headers=auth("u2"))
    assert again.json()["changed"] is False

    client.put("/api/estate-files/ef1/status", json={"status": "ACTIVE"}, headers=auth("u1"))
    sent = notifications(db)
    assert [(n.recipient_user_id, n.type) for n in sent] == [("u2", "PROPERTY_STATUS_CHANGED")]

    resp = client.post("/api/estate-files/ef1/unwatch", headers=auth("u2"))
    assert resp.json() == {"id": "ef1", "watchers": [], "changed": True}
