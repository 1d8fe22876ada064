"""
estatecrm/routes_feedback.py

Feedback endpoints: CRUD, watch/unwatch, status changes and the comment thread.
"""

from fastapi import APIRouter, Depends

from estatecrm.auth_context import IdentityFirstRoute, Principal
from estatecrm.dependencies import get_accessor, get_handler, require_action
from estatecrm.handlers import MutationHandler
from estatecrm.models import Feedback, FeedbackComment
from estatecrm.permissions import Action
from estatecrm.registry import EntityKind
from estatecrm.routes_common import add_entity_routes
from estatecrm.schemas import CommentCreateRequest, FeedbackCommentResponse
from estatecrm.tenant import TenantScopedAccessor

router = APIRouter(
    prefix="/api/feedback",
    tags=["feedback"],
    route_class=IdentityFirstRoute,
)


@router.get("/{feedback_id}/comments")
def list_feedback_comments(
    feedback_id: str,
    principal: Principal = Depends(require_action(Action.FEEDBACK_READ)),
    accessor: TenantScopedAccessor = Depends(get_accessor),
):
    feedback = accessor.require(Feedback, feedback_id)
    comments = accessor.list(FeedbackComment, order_by=FeedbackComment.created_at, feedback_id=feedback.id)
    return {"items": [FeedbackCommentResponse.from_row(c) for c in comments], "total": len(comments)}


@router.post("/{feedback_id}/comments", response_model=FeedbackCommentResponse, status_code=201)
def add_feedback_comment(
    feedback_id: str,
    payload: CommentCreateRequest,
    handler: MutationHandler = Depends(get_handler),
):
    return FeedbackCommentResponse.from_row(handler.add_feedback_comment(feedback_id, payload).entity)


add_entity_routes(router, EntityKind.FEEDBACK)
