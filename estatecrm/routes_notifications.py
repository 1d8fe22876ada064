"""
estatecrm/routes_notifications.py

Notification inbox of the authenticated user.
"""

from fastapi import APIRouter, Depends, Query

from estatecrm.auth_context import IdentityFirstRoute, Principal, require_principal
from estatecrm.db import transaction
from estatecrm.dependencies import get_accessor
from estatecrm.notifications import count_unread, list_notifications, mark_all_read, mark_read
from estatecrm.schemas import NotificationResponse
from estatecrm.tenant import TenantScopedAccessor

router = APIRouter(
    prefix="/api/notifications",
    tags=["notifications"],
    route_class=IdentityFirstRoute,
)


@router.get("")
def get_notifications(
    unread: bool = Query(False, description="Only unread notifications"),
    limit: int = Query(50, ge=1, le=200),
    principal: Principal = Depends(require_principal),
    accessor: TenantScopedAccessor = Depends(get_accessor),
):
    rows = list_notifications(accessor, principal.user_id, unread_only=unread, limit=limit)
    return {
        "items": [NotificationResponse.from_row(row) for row in rows],
        "unread": count_unread(accessor, principal.user_id),
    }


@router.post("/read-all")
def read_all_notifications(
    principal: Principal = Depends(require_principal),
    accessor: TenantScopedAccessor = Depends(get_accessor),
):
    with transaction(accessor.db):
        updated = mark_all_read(accessor, principal.user_id)
    return {"updated": updated}


@router.post("/{notification_id}/read", response_model=NotificationResponse)
def read_notification(
    notification_id: str,
    principal: Principal = Depends(require_principal),
    accessor: TenantScopedAccessor = Depends(get_accessor),
):
    with transaction(accessor.db):
        notification = mark_read(accessor, principal.user_id, notification_id)
    return NotificationResponse.from_row(notification)
