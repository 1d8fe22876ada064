"""
estatecrm/routes_connections.py

Connections between users of the same organization.

- Requests go from the follower to the following user
- Only the following (requested) user may accept or reject, and only once
- A rejected pair may be requested again
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import or_

from estatecrm.auth_context import IdentityFirstRoute, Principal
from estatecrm.dependencies import get_accessor, get_handler, require_action
from estatecrm.handlers import MutationHandler
from estatecrm.models import Connection, ConnectionStatus
from estatecrm.permissions import Action
from estatecrm.schemas import ConnectionCreateRequest, ConnectionResponse
from estatecrm.tenant import TenantScopedAccessor

router = APIRouter(
    prefix="/api/connections",
    tags=["connections"],
    route_class=IdentityFirstRoute,
)


@router.get("")
def list_connections(
    status: Optional[ConnectionStatus] = Query(None),
    principal: Principal = Depends(require_action(Action.CONNECTION_MANAGE)),
    accessor: TenantScopedAccessor = Depends(get_accessor),
):
    """Connections the principal takes part in, newest first."""
    query = accessor.query(Connection).filter(
        or_(Connection.follower_id == principal.user_id, Connection.following_id == principal.user_id)
    )
    if status is not None:
        query = query.filter(Connection.status == status.value)
    rows = query.order_by(Connection.created_at.desc()).all()
    return {"items": [ConnectionResponse.from_row(row) for row in rows], "total": len(rows)}


@router.post("", response_model=ConnectionResponse, status_code=201)
def request_connection(
    payload: ConnectionCreateRequest,
    handler: MutationHandler = Depends(get_handler),
):
    return ConnectionResponse.from_row(handler.request_connection(payload).entity)


@router.post("/{connection_id}/accept", response_model=ConnectionResponse)
def accept_connection(
    connection_id: str,
    handler: MutationHandler = Depends(get_handler),
):
    return ConnectionResponse.from_row(handler.respond_connection(connection_id, accept=True).entity)


@router.post("/{connection_id}/reject", response_model=ConnectionResponse)
def reject_connection(
    connection_id: str,
    handler: MutationHandler = Depends(get_handler),
):
    return ConnectionResponse.from_row(handler.respond_connection(connection_id, accept=False).entity)


@router.delete("/{connection_id}")
def remove_connection(
    connection_id: str,
    handler: MutationHandler = Depends(get_handler),
):
    handler.remove_connection(connection_id)
    return {"id": connection_id, "deleted": True}
