"""
estatecrm/routes_tasks.py

Task board endpoints: sections (board columns) and tasks with comments.

- Deleting a section deletes its tasks and their comments in one transaction
- Commenting on a task notifies its owner, assignee and watchers (not the author)
"""

from fastapi import APIRouter, Depends

from estatecrm.auth_context import IdentityFirstRoute, Principal
from estatecrm.dependencies import get_accessor, get_handler, require_action
from estatecrm.handlers import MutationHandler
from estatecrm.models import Task, TaskComment
from estatecrm.permissions import Action
from estatecrm.registry import EntityKind
from estatecrm.routes_common import add_entity_routes
from estatecrm.schemas import CommentCreateRequest, TaskCommentResponse
from estatecrm.tenant import TenantScopedAccessor

sections_router = APIRouter(
    prefix="/api/sections",
    tags=["tasks"],
    route_class=IdentityFirstRoute,
)

router = APIRouter(
    prefix="/api/tasks",
    tags=["tasks"],
    route_class=IdentityFirstRoute,
)


@router.get("/{task_id}/comments")
def list_task_comments(
    task_id: str,
    principal: Principal = Depends(require_action(Action.TASK_READ)),
    accessor: TenantScopedAccessor = Depends(get_accessor),
):
    """Comments of a task, oldest first."""
    task = accessor.require(Task, task_id)
    comments = accessor.list(TaskComment, order_by=TaskComment.created_at, task_id=task.id)
    return {"items": [TaskCommentResponse.from_row(c) for c in comments], "total": len(comments)}


@router.post("/{task_id}/comments", response_model=TaskCommentResponse, status_code=201)
def add_task_comment(
    task_id: str,
    payload: CommentCreateRequest,
    handler: MutationHandler = Depends(get_handler),
):
    return TaskCommentResponse.from_row(handler.add_task_comment(task_id, payload).entity)


add_entity_routes(sections_router, EntityKind.SECTION)
add_entity_routes(router, EntityKind.TASK)
