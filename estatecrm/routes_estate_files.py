"""
estatecrm/routes_estate_files.py

Estate file (MLS property listing) endpoints: CRUD, watch/unwatch and status changes.
"""

from fastapi import APIRouter

from estatecrm.auth_context import IdentityFirstRoute
from estatecrm.registry import EntityKind
from estatecrm.routes_common import add_entity_routes

router = APIRouter(
    prefix="/api/estate-files",
    tags=["estate-files"],
    route_class=IdentityFirstRoute,
)

add_entity_routes(router, EntityKind.ESTATE_FILE)
