"""
estatecrm/permissions.py

Permission Guard: action-level authorization for tenant users.

Each action follows the pattern "module:action". A role carries a default set of
actions; an organization may grant or revoke individual actions per role
(RolePermissionOverride), merged on every request.

Decision rules, evaluated in order:
    1. admins (owner/admin role) are allowed unconditionally
    2. an action missing from the principal's permissions is denied ("missing_permission")
    3. an ownership-scoped action on someone else's resource is denied ("not_owner")
    4. otherwise allowed

Pure Python logic - no FastAPI imports, no database access.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Mapping, Optional, Set

from estatecrm.errors import PermissionDenied

if TYPE_CHECKING:
    from estatecrm.auth_context import Principal

logger = logging.getLogger(__name__)


# ============================================================================
# Action Tags
# ============================================================================

class Action:
    """Action tag constants."""

    # Clients (CRM)
    CLIENT_READ = "client:read"
    CLIENT_CREATE = "client:create"
    CLIENT_UPDATE = "client:update"
    CLIENT_DELETE = "client:delete"
    CLIENT_WATCH = "client:watch"

    # Estate files (MLS)
    ESTATE_FILE_READ = "estate_file:read"
    ESTATE_FILE_CREATE = "estate_file:create"
    ESTATE_FILE_UPDATE = "estate_file:update"
    ESTATE_FILE_DELETE = "estate_file:delete"
    ESTATE_FILE_WATCH = "estate_file:watch"

    # Task board
    SECTION_CREATE = "section:create"
    SECTION_DELETE = "section:delete"
    TASK_READ = "task:read"
    TASK_CREATE = "task:create"
    TASK_UPDATE = "task:update"
    TASK_DELETE = "task:delete"
    TASK_WATCH = "task:watch"
    TASK_COMMENT = "task:add_comment"

    # Feedback
    FEEDBACK_READ = "feedback:read"
    FEEDBACK_CREATE = "feedback:create"
    FEEDBACK_UPDATE = "feedback:update"
    FEEDBACK_DELETE = "feedback:delete"
    FEEDBACK_WATCH = "feedback:watch"
    FEEDBACK_COMMENT = "feedback:comment"

    # Social
    CONNECTION_MANAGE = "connection:manage"

    # Administration (satisfied only by admins)
    USER_MANAGE = "user:manage"
    PERMISSION_MANAGE = "permission:manage"


ALL_ACTIONS: Set[str] = {
    value for name, value in vars(Action).items() if name.isupper() and isinstance(value, str)
}

ADMIN_ONLY_ACTIONS: Set[str] = {
    Action.USER_MANAGE,
    Action.PERMISSION_MANAGE,
}

# Actions that a non-admin may only perform on resources they own
OWNERSHIP_SCOPED_ACTIONS: Set[str] = {
    Action.CLIENT_DELETE,
    Action.ESTATE_FILE_DELETE,
    Action.SECTION_DELETE,
    Action.TASK_UPDATE,
    Action.TASK_DELETE,
    Action.FEEDBACK_UPDATE,
    Action.FEEDBACK_DELETE,
}


# ============================================================================
# Role Definitions
# ============================================================================

class Role:
    """Role constants."""
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    READ_ONLY = "read_only"


ADMIN_ROLES: Set[str] = {Role.OWNER, Role.ADMIN}

ROLE_PERMISSIONS: Dict[str, Set[str]] = {
    "owner": set(ALL_ACTIONS),
    "admin": set(ALL_ACTIONS),
    "member": {
        Action.CLIENT_READ,
        Action.CLIENT_CREATE,
        Action.CLIENT_UPDATE,
        Action.CLIENT_DELETE,
        Action.CLIENT_WATCH,
        Action.ESTATE_FILE_READ,
        Action.ESTATE_FILE_CREATE,
        Action.ESTATE_FILE_UPDATE,
        Action.ESTATE_FILE_DELETE,
        Action.ESTATE_FILE_WATCH,
        Action.SECTION_CREATE,
        Action.SECTION_DELETE,
        Action.TASK_READ,
        Action.TASK_CREATE,
        Action.TASK_UPDATE,
        Action.TASK_DELETE,
        Action.TASK_WATCH,
        Action.TASK_COMMENT,
        Action.FEEDBACK_READ,
        Action.FEEDBACK_CREATE,
        Action.FEEDBACK_UPDATE,
        Action.FEEDBACK_DELETE,
        Action.FEEDBACK_WATCH,
        Action.FEEDBACK_COMMENT,
        Action.CONNECTION_MANAGE,
    },
    "read_only": {
        # Viewing and subscribing only, no create/update/delete on CRM data
        Action.CLIENT_READ,
        Action.CLIENT_WATCH,
        Action.ESTATE_FILE_READ,
        Action.ESTATE_FILE_WATCH,
        Action.TASK_READ,
        Action.TASK_WATCH,
        Action.FEEDBACK_READ,
        Action.FEEDBACK_CREATE,
        Action.FEEDBACK_WATCH,
        Action.FEEDBACK_COMMENT,
        Action.CONNECTION_MANAGE,
    },
}


def effective_permissions(role: str, overrides: Optional[Mapping[str, bool]] = None) -> Set[str]:
    """
    Merge a role's default actions with an organization's overrides.

    Overrides map action -> granted. Unknown actions are ignored and admin-only
    actions can never be granted to a non-admin role.

    Returns an empty set for unknown roles.
    """
    role_lower = role.lower() if role else ""
    permissions = set(ROLE_PERMISSIONS.get(role_lower, set()))

    for action, granted in (overrides or {}).items():
        if action not in ALL_ACTIONS:
            continue
        if granted:
            if action in ADMIN_ONLY_ACTIONS and role_lower not in ADMIN_ROLES:
                continue
            permissions.add(action)
        else:
            permissions.discard(action)

    return permissions


# ============================================================================
# Role Hierarchy Helpers
# ============================================================================

ROLE_HIERARCHY = {
    "owner": 4,
    "admin": 3,
    "member": 2,
    "read_only": 1,
}


def role_level(role: str) -> int:
    """Numeric level for a role (higher = more privileged), 0 if unknown."""
    return ROLE_HIERARCHY.get(role.lower() if role else "", 0)


def role_at_least(user_role: str, required_role: str) -> bool:
    """
    Check if user_role meets or exceeds required_role in hierarchy.

    Example:
        role_at_least("admin", "member") -> True
        role_at_least("member", "admin") -> False
    """
    return role_level(user_role) >= role_level(required_role)


def can_manage_role(actor_role: str, target_role: str) -> bool:
    """Users may only manage users of a strictly lower role, never an owner."""
    if target_role == Role.OWNER:
        return False
    return role_level(actor_role) > role_level(target_role)


# ============================================================================
# Guard
# ============================================================================

@dataclass(frozen=True)
class ResourceRef:
    """Ownership facts about the resource an action targets."""
    owner_id: Optional[str]
    organization_id: str


@dataclass(frozen=True)
class PermissionDecision:
    allowed: bool
    reason: Optional[str] = None


ALLOW = PermissionDecision(allowed=True)


def check(principal: "Principal", action: str, resource: Optional[ResourceRef] = None) -> PermissionDecision:
    """
    Decide whether the principal may perform action (on resource, if given).

    Recomputed on every call, nothing is cached between requests.
    """
    if principal.is_admin:
        return ALLOW

    if action not in principal.permissions:
        return PermissionDecision(allowed=False, reason="missing_permission")

    if action in OWNERSHIP_SCOPED_ACTIONS and resource is not None:
        if resource.owner_id != principal.user_id:
            return PermissionDecision(allowed=False, reason="not_owner")

    return ALLOW


def require(principal: "Principal", action: str, resource: Optional[ResourceRef] = None) -> None:
    """
    Enforce check(); raises PermissionDenied carrying the decision's reason.
    """
    decision = check(principal, action, resource)
    if not decision.allowed:
        logger.info(
            f"[AUTHZ] Denied: action={action}, user_id={principal.user_id}, "
            f"role={principal.role}, reason={decision.reason}"
        )
        raise PermissionDenied(decision.reason or "forbidden")
    logger.debug(f"[AUTHZ] Granted: action={action}, user_id={principal.user_id}, role={principal.role}")
