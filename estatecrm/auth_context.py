"""
estatecrm/auth_context.py

Identity Resolver: maps the inbound session credential to a Principal.

Contains:
- Principal: immutable per-request identity + authorization context
- verify_session_token: hosted identity provider JWT verification
- resolve_principal: token -> local user -> Principal (permissions merged per request)
- require_principal / require_admin: FastAPI dependencies
- IdentityFirstRoute / AdminRoute: route classes that resolve the Principal before
  the request body is read

The Principal is passed explicitly into every handler call. The only other place it
lives is request.state, from the route class to require_principal in one request.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Coroutine, Dict, Optional, Set

import jwt
from fastapi import Depends, Request, Response
from fastapi.routing import APIRoute
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from estatecrm.config import IDP_AUDIENCE, IDP_ISSUER, IDP_JWT_ALGORITHM, IDP_JWT_SECRET
from estatecrm.db import SessionLocal, get_db
from estatecrm.errors import PermissionDenied, Unauthenticated
from estatecrm.models import RolePermissionOverride, User, UserStatus
from estatecrm.permissions import ADMIN_ROLES, effective_permissions

logger = logging.getLogger(__name__)

# Missing credentials are reported by require_principal as 401, not by the scheme
security = HTTPBearer(auto_error=False)


# ---------------------------------------------------------
# Principal
# ---------------------------------------------------------
class Principal(BaseModel):
    """
    Resolved identity for one request.

    This is the ONLY source of truth for user_id and organization_id in
    protected endpoints. Never trust organization ids from request bodies.
    """
    user_id: str
    organization_id: str
    role: str
    email: str
    is_admin: bool = False
    permissions: Set[str] = set()

    class Config:
        frozen = True


# ---------------------------------------------------------
# Session token verification
# ---------------------------------------------------------
def verify_session_token(token: str) -> dict:
    """
    Verify a session JWT issued by the hosted identity provider.

    Raises:
        Unauthenticated: expired, malformed or wrongly signed token
    """
    options = {"require": ["sub"]}
    kwargs = {}
    if IDP_AUDIENCE:
        kwargs["audience"] = IDP_AUDIENCE
    else:
        options["verify_aud"] = False
    if IDP_ISSUER:
        kwargs["issuer"] = IDP_ISSUER

    try:
        return jwt.decode(token, IDP_JWT_SECRET, algorithms=[IDP_JWT_ALGORITHM], options=options, **kwargs)
    except jwt.ExpiredSignatureError:
        raise Unauthenticated("Session expired")
    except jwt.InvalidTokenError:
        raise Unauthenticated("Invalid session")


def load_role_overrides(db: Session, organization_id: str, role: str) -> Optional[Dict[str, bool]]:
    """Custom per-organization permissions for a role, if any."""
    record = (
        db.query(RolePermissionOverride)
        .filter(
            RolePermissionOverride.organization_id == organization_id,
            RolePermissionOverride.role == role,
        )
        .first()
    )
    return dict(record.permissions or {}) if record else None


def build_principal(db: Session, user: User) -> Principal:
    """Compute the Principal for a local user record."""
    role = user.role or "member"
    overrides = load_role_overrides(db, user.organization_id, role)
    return Principal(
        user_id=user.id,
        organization_id=user.organization_id,
        role=role,
        email=user.email,
        is_admin=role in ADMIN_ROLES,
        permissions=effective_permissions(role, overrides),
    )


def resolve_principal(db: Session, token: Optional[str]) -> Principal:
    """
    Resolve a session credential into a Principal.

    Process:
    1. Verify JWT signature/expiry (hosted identity provider)
    2. Map the provider user id (sub) to the local user record
    3. Reject inactive users
    4. Merge role defaults with organization overrides (fresh every call)

    Raises:
        Unauthenticated: no/invalid credential or unknown user
        PermissionDenied("account_inactive"): user was deactivated
    """
    if not token:
        raise Unauthenticated("Authentication required")

    payload = verify_session_token(token)
    provider_user_id = payload.get("sub")
    if not provider_user_id:
        logger.info("[AUTH] Missing sub in session payload")
        raise Unauthenticated("Invalid session payload")

    user = db.query(User).filter(User.provider_user_id == provider_user_id).first()
    if user is None:
        logger.info("[AUTH] No local user for provider identity")
        raise Unauthenticated("User not found")

    if user.status == UserStatus.INACTIVE.value:
        logger.info(f"[AUTH] Inactive user attempted access: user_id={user.id}")
        raise PermissionDenied("account_inactive", "Account inactive")

    principal = build_principal(db, user)
    logger.debug(
        f"[AUTH] Authenticated: user_id={principal.user_id}, organization_id={principal.organization_id}, "
        f"role={principal.role}, permissions={len(principal.permissions)}"
    )
    return principal


# ---------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------
def require_principal(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> Principal:
    """
    Auth dependency for every protected route.

    Reuses the Principal already resolved by IdentityFirstRoute for this request.

    Usage:
        @router.get("/protected")
        def protected_route(principal: Principal = Depends(require_principal)):
            ...
    """
    resolved = getattr(request.state, "principal", None)
    if resolved is not None:
        return resolved
    token = credentials.credentials if credentials else None
    return resolve_principal(db, token)


def ensure_admin(principal: Principal) -> None:
    if not principal.is_admin:
        logger.info(f"[AUTHZ] Admin route denied: user_id={principal.user_id}, role={principal.role}")
        raise PermissionDenied("admin_required", "Administrator access required")


def require_admin(principal: Principal = Depends(require_principal)) -> Principal:
    """Admin-only routes: 403 for everyone else, before the payload is looked at."""
    ensure_admin(principal)
    return principal


# ---------------------------------------------------------
# Route classes
# ---------------------------------------------------------
def _resolve_with_own_session(token: Optional[str]) -> Principal:
    db = SessionLocal()
    try:
        return resolve_principal(db, token)
    finally:
        db.close()


class IdentityFirstRoute(APIRoute):
    """
    Resolves the Principal from the Authorization header before FastAPI decodes
    the request body, so a caller without a valid identity gets 401/403 even when
    the body is not valid JSON.

    Usage:
        router = APIRouter(prefix="/api/clients", route_class=IdentityFirstRoute)
    """
    admin_only = False

    def get_route_handler(self) -> Callable[[Request], Coroutine[Any, Any, Response]]:
        route_handler = super().get_route_handler()
        admin_only = self.admin_only

        async def identity_first_handler(request: Request) -> Response:
            credentials = await security(request)
            token = credentials.credentials if credentials else None
            principal = await run_in_threadpool(_resolve_with_own_session, token)
            if admin_only:
                ensure_admin(principal)
            request.state.principal = principal
            return await route_handler(request)

        return identity_first_handler


class AdminRoute(IdentityFirstRoute):
    """IdentityFirstRoute that also refuses non-admins before the body is read."""
    admin_only = True
