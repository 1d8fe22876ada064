"""
estatecrm/routes_admin.py

Organization administration: users and role permission overrides.

Every endpoint is admin-only through the router dependency. The check runs before
the request body is validated, so a non-admin gets 403 whatever they send.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from estatecrm.auth_context import AdminRoute, Principal, load_role_overrides, require_admin
from estatecrm.dependencies import get_accessor, get_handler
from estatecrm.errors import ValidationFailed
from estatecrm.handlers import MutationHandler, MutationResult
from estatecrm.identity import IdentityProviderClient
from estatecrm.models import User
from estatecrm.permissions import ROLE_PERMISSIONS, effective_permissions
from estatecrm.schemas import (
    RolePermissionsRequest,
    RolePermissionsResponse,
    UserResponse,
    UserRoleRequest,
    UserSyncRequest,
)
from estatecrm.tenant import TenantScopedAccessor

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
    route_class=AdminRoute,
)


def get_identity_client() -> IdentityProviderClient:
    return IdentityProviderClient()


def user_result(result: MutationResult) -> dict:
    return {"user": UserResponse.from_row(result.entity), "changed": result.changed}


# ========================================================================
# USERS
# ========================================================================

@router.get("/users")
def list_users(
    status: Optional[str] = Query(None),
    role: Optional[str] = Query(None),
    accessor: TenantScopedAccessor = Depends(get_accessor),
):
    filters = {name: value for name, value in (("status", status), ("role", role)) if value}
    users = accessor.list(User, order_by=User.created_at, **filters)
    return {"items": [UserResponse.from_row(u) for u in users], "total": len(users)}


@router.post("/users/sync")
def sync_user_from_provider(
    payload: UserSyncRequest,
    handler: MutationHandler = Depends(get_handler),
    client: IdentityProviderClient = Depends(get_identity_client),
):
    """Create or refresh a local user from the identity provider profile."""
    return user_result(handler.sync_user(payload, client=client))


@router.post("/users/{user_id}/activate")
def activate_user(
    user_id: str,
    handler: MutationHandler = Depends(get_handler),
):
    """Idempotent: activating an ACTIVE user returns changed=false and sends nothing."""
    return user_result(handler.activate_user(user_id))


@router.post("/users/{user_id}/deactivate")
def deactivate_user(
    user_id: str,
    handler: MutationHandler = Depends(get_handler),
):
    return user_result(handler.deactivate_user(user_id))


@router.put("/users/{user_id}/role")
def update_user_role(
    user_id: str,
    payload: UserRoleRequest,
    handler: MutationHandler = Depends(get_handler),
):
    return user_result(handler.update_user_role(user_id, payload))


# ========================================================================
# ROLE PERMISSIONS
# ========================================================================

def _permissions_response(role: str, overrides: Optional[dict]) -> RolePermissionsResponse:
    return RolePermissionsResponse(
        role=role,
        overrides=dict(overrides or {}),
        effective=sorted(effective_permissions(role, overrides)),
    )


@router.get("/permissions/{role}", response_model=RolePermissionsResponse)
def get_role_permissions(
    role: str,
    principal: Principal = Depends(require_admin),
    accessor: TenantScopedAccessor = Depends(get_accessor),
) -> RolePermissionsResponse:
    if role not in ROLE_PERMISSIONS:
        raise ValidationFailed("role", "unknown_role")
    return _permissions_response(role, load_role_overrides(accessor.db, principal.organization_id, role))


@router.put("/permissions/{role}", response_model=RolePermissionsResponse)
def set_role_permissions(
    role: str,
    payload: RolePermissionsRequest,
    handler: MutationHandler = Depends(get_handler),
) -> RolePermissionsResponse:
    """Replace the overrides for a role; applies from the next request on."""
    record = handler.set_role_permissions(role, payload).entity
    return _permissions_response(role, record.permissions)
