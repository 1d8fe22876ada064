"""
estatecrm/routes_clients.py

Client (CRM contact) endpoints: CRUD, watch/unwatch and status changes.

Deleting a client keeps the tasks linked to it; they are unlinked in the same transaction.
"""

from fastapi import APIRouter

from estatecrm.auth_context import IdentityFirstRoute
from estatecrm.registry import EntityKind
from estatecrm.routes_common import add_entity_routes

router = APIRouter(
    prefix="/api/clients",
    tags=["clients"],
    route_class=IdentityFirstRoute,
)

add_entity_routes(router, EntityKind.CLIENT)
