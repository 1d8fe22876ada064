"""
estatecrm/routes_common.py

Generic CRUD + watch + status endpoints for a registry entity kind.

Security guarantees (every kind):
- All endpoints require authentication (require_principal)
- Reads require the kind's read action; mutations go through MutationHandler,
  which applies the Permission Guard including ownership-scoped rules
- All queries are filtered by the principal's organization (TenantScopedAccessor)
- No client-provided organization_id, owner_id or watchers accepted
"""

import logging

from fastapi import APIRouter, Depends, Query, Request

from estatecrm.auth_context import Principal
from estatecrm.dependencies import get_accessor, get_handler, require_action
from estatecrm.handlers import MutationHandler, MutationResult
from estatecrm.registry import EntityKind, Operation, get_spec
from estatecrm.schemas import DeleteResponse, WatchResponse
from estatecrm.tenant import TenantScopedAccessor

logger = logging.getLogger(__name__)


def watch_response(result: MutationResult) -> WatchResponse:
    return WatchResponse(id=result.entity.id, watchers=list(result.entity.watchers or []), changed=result.changed)


def add_entity_routes(router: APIRouter, kind: EntityKind) -> APIRouter:
    """Register the operations the registry declares for `kind` on `router`."""
    spec = get_spec(kind)
    label = spec.kind.value
    order_column = spec.model.position if hasattr(spec.model, "position") else spec.model.created_at.desc()

    @router.get("", summary=f"List {label}")
    def list_entities(
        request: Request,
        limit: int = Query(50, ge=1, le=200),
        offset: int = Query(0, ge=0),
        principal: Principal = Depends(require_action(spec.read_action)),
        accessor: TenantScopedAccessor = Depends(get_accessor),
    ):
        """Filters: any of the kind's list_filters as exact-match query parameters."""
        filters = {name: request.query_params[name] for name in spec.list_filters if request.query_params.get(name)}
        rows = accessor.list(spec.model, order_by=order_column, limit=limit, offset=offset, **filters)
        return {
            "items": [spec.response.from_row(row) for row in rows],
            "total": accessor.count(spec.model, **filters),
        }

    @router.get("/{entity_id}", response_model=spec.response, summary=f"Get {label}")
    def get_entity(
        entity_id: str,
        principal: Principal = Depends(require_action(spec.read_action)),
        accessor: TenantScopedAccessor = Depends(get_accessor),
    ):
        return spec.response.from_row(accessor.require(spec.model, entity_id))

    if spec.supports(Operation.CREATE):
        @router.post("", response_model=spec.response, status_code=201, summary=f"Create {label}")
        def create_entity(
            payload: spec.create_schema,
            handler: MutationHandler = Depends(get_handler),
        ):
            return spec.response.from_row(handler.create(kind, payload).entity)

    if spec.supports(Operation.UPDATE):
        @router.put("/{entity_id}", response_model=spec.response, summary=f"Update {label}")
        def update_entity(
            entity_id: str,
            payload: spec.update_schema,
            handler: MutationHandler = Depends(get_handler),
        ):
            return spec.response.from_row(handler.update(kind, entity_id, payload).entity)

    if spec.supports(Operation.DELETE):
        @router.delete("/{entity_id}", response_model=DeleteResponse, summary=f"Delete {label}")
        def delete_entity(
            entity_id: str,
            handler: MutationHandler = Depends(get_handler),
        ) -> DeleteResponse:
            result = handler.delete(kind, entity_id)
            return DeleteResponse(id=entity_id, deleted=True, dependents_deleted=result.dependents_deleted)

    if spec.supports(Operation.WATCH):
        @router.post("/{entity_id}/watch", response_model=WatchResponse, summary=f"Watch {label}")
        def watch_entity(
            entity_id: str,
            handler: MutationHandler = Depends(get_handler),
        ) -> WatchResponse:
            return watch_response(handler.watch(kind, entity_id))

        @router.post("/{entity_id}/unwatch", response_model=WatchResponse, summary=f"Unwatch {label}")
        def unwatch_entity(
            entity_id: str,
            handler: MutationHandler = Depends(get_handler),
        ) -> WatchResponse:
            return watch_response(handler.unwatch(kind, entity_id))

    if spec.supports(Operation.SET_STATUS):
        @router.put("/{entity_id}/status", response_model=spec.response, summary=f"Change {label} status")
        def set_entity_status(
            entity_id: str,
            payload: spec.status_schema,
            handler: MutationHandler = Depends(get_handler),
        ):
            return spec.response.from_row(handler.set_status(kind, entity_id, payload).entity)

    return router
