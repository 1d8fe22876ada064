"""
estatecrm/dependencies.py

Reusable FastAPI dependencies for authorization and per-request services.
"""

from __future__ import annotations

import logging
from typing import Callable

from fastapi import BackgroundTasks, Depends
from sqlalchemy.orm import Session

from estatecrm.auth_context import Principal, require_principal
from estatecrm.db import get_db
from estatecrm.handlers import MutationHandler
from estatecrm.permissions import require
from estatecrm.tenant import TenantScopedAccessor

logger = logging.getLogger(__name__)


def require_action(action: str) -> Callable:
    """
    FastAPI dependency factory for action authorization (no resource ownership).

    Ownership-scoped checks need the target row and run inside the handler.

    Usage in routes:
        @router.get("", dependencies=[Depends(require_action(Action.CLIENT_READ))])
        def list_clients(principal: Principal = Depends(require_principal)):
            ...

    Raises:
        PermissionDenied("missing_permission"): action not in the principal's permissions
    """
    def _check_action(principal: Principal = Depends(require_principal)) -> Principal:
        require(principal, action)
        return principal

    return _check_action


def get_accessor(
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> TenantScopedAccessor:
    """Tenant-scoped accessor bound to the principal's organization."""
    return TenantScopedAccessor.for_principal(db, principal)


def get_handler(
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> MutationHandler:
    """Mutation handler whose notification jobs run after the response is sent."""
    return MutationHandler(db, principal, schedule=background_tasks.add_task)
