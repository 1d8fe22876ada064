"""
Admin user management and role permission tests.

Run: pytest estatecrm/test_admin_users.py -v
"""

import pytest

from estatecrm.identity import ProviderProfile
from estatecrm.main import app
from estatecrm.models import OutboundEmail, User, UserStatus
from estatecrm.routes_admin import get_identity_client


@pytest.fixture
def extra_users(db, seed):
    db.add_all([
        User(id="u9", organization_id="org-a", provider_user_id="idp_u9", email="u9@example.com",
             name="U9", role="member", status=UserStatus.ACTIVE.value),
        User(id="p1", organization_id="org-a", provider_user_id="idp_p1", email="p1@example.com",
             name="P1", role="member", status=UserStatus.PENDING.value),
    ])
    db.commit()


def emails_for(db, user_id):
    db.expire_all()
    return db.query(OutboundEmail).filter(OutboundEmail.recipient_user_id == user_id).all()


def user_status(db, user_id):
    db.expire_all()
    return db.query(User).filter(User.id == user_id).one().status


# ============================================================================
# Activation / deactivation
# ============================================================================

def test_activating_active_user_is_accepted_without_email(client, auth, db, extra_users):
    resp = client.post("/api/admin/users/u9/activate", headers=auth("u0"))

    assert resp.status_code == 200
    assert resp.json()["changed"] is False
    assert resp.json()["user"]["status"] == "ACTIVE"
    assert emails_for(db, "u9") == []


def test_activation_queues_exactly_one_email(client, auth, db, extra_users):
    first = client.post("/api/admin/users/p1/activate", headers=auth("u0"))
    second = client.post("/api/admin/users/p1/activate", headers=auth("u0"))

    assert first.json()["changed"] is True
    assert second.json()["changed"] is False
    sent = emails_for(db, "p1")
    assert len(sent) == 1
    assert sent[0].template == "account_activated"
    assert sent[0].to_address == "p1@example.com"
    assert user_status(db, "p1") == "ACTIVE"


def test_deactivation_is_idempotent_and_blocks_login(client, auth, db, extra_users):
    headers_u9 = auth("u9")
    assert client.get("/api/me", headers=headers_u9).status_code == 200

    first = client.post("/api/admin/users/u9/deactivate", headers=auth("u0"))
    second = client.post("/api/admin/users/u9/deactivate", headers=auth("u0"))
    assert first.json()["changed"] is True
    assert second.json()["changed"] is False
    assert [e.template for e in emails_for(db, "u9")] == ["account_deactivated"]

    blocked = client.get("/api/me", headers=headers_u9)
    assert blocked.status_code == 403
    assert blocked.json()["reason"] == "account_inactive"


def test_admin_cannot_deactivate_self(client, auth, seed):
    resp = client.post("/api/admin/users/u0/deactivate", headers=auth("u0"))
    assert resp.status_code == 409
    assert resp.json()["reason"] == "cannot_deactivate_self"


def test_admin_cannot_manage_owner(client, auth, db, seed):
    resp = client.post("/api/admin/users/owner-a/deactivate", headers=auth("u0"))
    assert resp.status_code == 403
    assert resp.json()["reason"] == "role_hierarchy"
    assert user_status(db, "owner-a") == "ACTIVE"


def test_pending_user_can_authenticate(client, auth, extra_users):
    resp = client.get("/api/me", headers=auth("p1"))
    assert resp.status_code == 200
    assert resp.json()["user_id"] == "p1"


# ============================================================================
# Admin-only routes
# ============================================================================

@pytest.mark.parametrize(
    "method,path,body",
    [
        ("post", "/api/admin/users/u2/activate", None),
        ("post", "/api/admin/users/u2/deactivate", None),
        ("put", "/api/admin/users/u2/role", {"role": "admin"}),
        ("put", "/api/admin/users/u2/role", {"role": "emperor"}),
        ("put", "/api/admin/users/u2/role", {"unexpected": 42}),
        ("post", "/api/admin/users/sync", {}),
        ("put", "/api/admin/permissions/member", {"permissions": "not-a-map"}),
        ("get", "/api/admin/users", None),
        ("put", "/api/admin/users/u2/role", b"{not json"),
        ("post", "/api/admin/users/sync", b"{not json"),
    ],
)
def test_non_admin_gets_403_regardless_of_payload(client, auth, seed, method, path, body):
    kwargs = {"headers": auth("u1")}
    if isinstance(body, bytes):
        kwargs["content"] = body
        kwargs["headers"]["Content-Type"] = "application/json"
    elif body is not None:
        kwargs["json"] = body
    resp = getattr(client, method)(path, **kwargs)

    assert resp.status_code == 403
    assert resp.json()["error"] == "forbidden"


def test_admin_route_validates_payload_for_admins(client, auth, seed):
    resp = client.put("/api/admin/users/u2/role", json={"role": "emperor"}, headers=auth("u0"))
    assert resp.status_code == 400
    assert resp.json()["fields"][0]["field"] == "role"


# ============================================================================
# Roles
# ============================================================================

def test_admin_changes_member_role(client, auth, db, seed):
    resp = client.put("/api/admin/users/u2/role", json={"role": "read_only"}, headers=auth("u0"))
    assert resp.status_code == 200
    assert resp.json()["user"]["role"] == "read_only"

    me = client.get("/api/me", headers=auth("u2")).json()
    assert "client:create" not in me["permissions"]


def test_admin_cannot_grant_owner(client, auth, seed):
    resp = client.put("/api/admin/users/u2/role", json={"role": "owner"}, headers=auth("u0"))
    assert resp.status_code == 403
    assert resp.json()["reason"] == "role_hierarchy"


def test_user_cannot_change_own_role(client, auth, seed):
    resp = client.put("/api/admin/users/owner-a/role", json={"role": "admin"}, headers=auth("owner-a"))
    assert resp.status_code == 409


# ============================================================================
# Role permission overrides
# ============================================================================

def test_permission_revoke_applies_on_next_request(client, auth, seed):
    assert client.post("/api/clients", json={"name": "Before"}, headers=auth("u1")).status_code == 201

    resp = client.put(
        "/api/admin/permissions/member",
        json={"permissions": {"client:create": False}},
        headers=auth("u0"),
    )
    assert resp.status_code == 200
    assert resp.json()["overrides"] == {"client:create": False}
    assert "client:create" not in resp.json()["effective"]

    denied = client.post("/api/clients", json={"name": "After"}, headers=auth("u1"))
    assert denied.status_code == 403
    assert denied.json()["reason"] == "missing_permission"

    fetched = client.get("/api/admin/permissions/member", headers=auth("u0")).json()
    assert fetched["overrides"] == {"client:create": False}


def test_owner_permissions_are_immutable(client, auth, seed):
    resp = client.put("/api/admin/permissions/owner", json={"permissions": {}}, headers=auth("u0"))
    assert resp.status_code == 409
    assert resp.json()["reason"] == "owner_role_immutable"


def test_unknown_actions_are_rejected(client, auth, seed):
    resp = client.put(
        "/api/admin/permissions/member",
        json={"permissions": {"client:teleport": True, "user:manage": True}},
        headers=auth("u0"),
    )
    assert resp.status_code == 400
    reasons = {f["field"]: f["reason"] for f in resp.json()["fields"]}
    assert reasons == {
        "permissions.client:teleport": "unknown_action",
        "permissions.user:manage": "admin_only_action",
    }


# ============================================================================
# Identity provider sync
# ============================================================================

class FakeIdentityClient:
    def __init__(self, profile):
        self.profile = profile

    def fetch_profile(self, provider_user_id):
        return self.profile


def test_sync_creates_pending_member(client, auth, db, seed):
    profile = ProviderProfile(provider_user_id="idp_new", email="eleni@example.com", first_name="Eleni")
    app.dependency_overrides[get_identity_client] = lambda: FakeIdentityClient(profile)
    try:
        resp = client.post("/api/admin/users/sync", json={"provider_user_id": "idp_new"}, headers=auth("u0"))
    finally:
        app.dependency_overrides.pop(get_identity_client, None)

    assert resp.status_code == 200
    user = resp.json()["user"]
    assert user["name"] == "Eleni"
    assert user["status"] == "PENDING"
    assert user["role"] == "member"

    db.expire_all()
    assert db.query(User).filter(User.provider_user_id == "idp_new").one().organization_id == "org-a"


def test_sync_refuses_identity_of_other_organization(client, auth, seed):
    profile = ProviderProfile(provider_user_id="idp_ub", email="ub@example.com")
    app.dependency_overrides[get_identity_client] = lambda: FakeIdentityClient(profile)
    try:
        resp = client.post("/api/admin/users/sync", json={"provider_user_id": "idp_ub"}, headers=auth("u0"))
    finally:
        app.dependency_overrides.pop(get_identity_client, None)

    assert resp.status_code == 409
    assert resp.json()["reason"] == "identity_in_use"
