"""
Shared pytest fixtures.

The database URL and token secret are set before the package is imported, so the
engine and the app bind to a throwaway SQLite file.
"""

import os
import tempfile

_TEST_DIR = tempfile.mkdtemp(prefix="estatecrm-test-")
os.environ["ENV"] = "dev"
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DIR, 'test.db')}"
os.environ["IDP_JWT_SECRET"] = "test-identity-secret"
os.environ.pop("IDP_ISSUER", None)
os.environ.pop("IDP_AUDIENCE", None)

from datetime import datetime, timedelta  # noqa: E402

import jwt  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from estatecrm.auth_context import build_principal  # noqa: E402
from estatecrm.db import Base, SessionLocal, engine  # noqa: E402
from estatecrm.main import app  # noqa: E402
from estatecrm.models import Organization, User, UserStatus  # noqa: E402

ORG_A = "org-a"
ORG_B = "org-b"

# id -> (organization, role, status)
SEED_USERS = {
    "u0": (ORG_A, "admin", UserStatus.ACTIVE.value),
    "u1": (ORG_A, "member", UserStatus.ACTIVE.value),
    "u2": (ORG_A, "member", UserStatus.ACTIVE.value),
    "u3": (ORG_A, "read_only", UserStatus.ACTIVE.value),
    "owner-a": (ORG_A, "owner", UserStatus.ACTIVE.value),
    "ub": (ORG_B, "member", UserStatus.ACTIVE.value),
    "admin-b": (ORG_B, "admin", UserStatus.ACTIVE.value),
}


@pytest.fixture(autouse=True)
def fresh_schema():
    """Every test starts from an empty schema."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seed(db):
    """Two organizations and their users (ids from SEED_USERS)."""
    db.add_all([
        Organization(id=ORG_A, name="Agency A"),
        Organization(id=ORG_B, name="Agency B"),
    ])
    db.flush()
    for user_id, (org_id, role, status) in SEED_USERS.items():
        db.add(User(
            id=user_id,
            organization_id=org_id,
            provider_user_id=f"idp_{user_id}",
            email=f"{user_id}@example.com",
            name=user_id.upper(),
            role=role,
            status=status,
        ))
    db.commit()
    return SEED_USERS


@pytest.fixture
def principal(db, seed):
    """principal("u1") -> Principal computed from the stored user."""
    def _principal(user_id: str):
        return build_principal(db, db.query(User).filter(User.id == user_id).one())
    return _principal


def make_token(provider_user_id: str, expires_in: timedelta = timedelta(minutes=10)) -> str:
    payload = {"sub": provider_user_id, "exp": datetime.utcnow() + expires_in}
    return jwt.encode(payload, os.environ["IDP_JWT_SECRET"], algorithm="HS256")


@pytest.fixture
def auth(seed):
    """auth("u1") -> Authorization header for the seeded user."""
    def _auth(user_id: str):
        return {"Authorization": f"Bearer {make_token(f'idp_{user_id}')}"}
    return _auth


@pytest.fixture
def client():
    return TestClient(app)
