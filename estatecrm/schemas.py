"""
estatecrm/schemas.py

Pydantic schemas for the CRM pipeline.

Request schemas forbid unknown fields: organization_id, owner_id and watchers are
never accepted from a client, they come from the Principal and the watch endpoints.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, validator

from estatecrm.models import (
    ClientIntent,
    ClientStatus,
    EstateFileStatus,
    FeedbackStatus,
    FeedbackType,
    PropertyType,
    TaskPriority,
    TaskStatus,
    UserRole,
)


def _trim(v):
    if isinstance(v, str):
        return v.strip()
    return v


def _not_blank(v, field_name: str):
    if v is None:
        raise ValueError(f"{field_name} must not be null")
    if not v:
        raise ValueError(f"{field_name} must not be empty")
    return v


class RequestModel(BaseModel):
    """Base for request bodies."""

    class Config:
        extra = "forbid"
        use_enum_values = True


class ResponseModel(BaseModel):
    """Base for responses built from ORM rows."""

    class Config:
        extra = "ignore"

    @classmethod
    def from_row(cls, row: Any, **extra):
        data = {name: getattr(row, name, None) for name in cls.__fields__ if name not in extra}
        data.update(extra)
        return cls(**data)


# ========================================================================
# CLIENTS
# ========================================================================

class ClientCreateRequest(RequestModel):
    name: str = Field(..., min_length=1, max_length=200, description="Client name (required)")
    email: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    status: ClientStatus = Field(ClientStatus.LEAD)
    intent: Optional[ClientIntent] = None
    description: Optional[str] = Field(None, max_length=5000)

    @validator("name", pre=True)
    def trim_name(cls, v):
        return _trim(v)


class ClientUpdateRequest(RequestModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    email: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    intent: Optional[ClientIntent] = None
    description: Optional[str] = Field(None, max_length=5000)

    @validator("name", pre=True)
    def name_not_blank(cls, v):
        return _not_blank(_trim(v), "name")


class ClientStatusRequest(RequestModel):
    status: ClientStatus


class ClientResponse(ResponseModel):
    id: str
    owner_id: Optional[str] = None
    watchers: List[str] = Field(default_factory=list)
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    status: str
    intent: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ========================================================================
# ESTATE FILES
# ========================================================================

class EstateFileCreateRequest(RequestModel):
    name: str = Field(..., min_length=1, max_length=200, description="Listing name (required)")
    address: Optional[str] = Field(None, max_length=300)
    city: Optional[str] = Field(None, max_length=100)
    price: Optional[float] = Field(None, ge=0)
    property_type: PropertyType = Field(PropertyType.OTHER)
    status: EstateFileStatus = Field(EstateFileStatus.DRAFT)

    @validator("name", pre=True)
    def trim_name(cls, v):
        return _trim(v)


class EstateFileUpdateRequest(RequestModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    address: Optional[str] = Field(None, max_length=300)
    city: Optional[str] = Field(None, max_length=100)
    price: Optional[float] = Field(None, ge=0)
    property_type: Optional[PropertyType] = None

    @validator("name", pre=True)
    def name_not_blank(cls, v):
        return _not_blank(_trim(v), "name")

    @validator("property_type", pre=True)
    def property_type_not_null(cls, v):
        return _not_blank(v, "property_type")


class EstateFileStatusRequest(RequestModel):
    status: EstateFileStatus


class EstateFileResponse(ResponseModel):
    id: str
    owner_id: Optional[str] = None
    watchers: List[str] = Field(default_factory=list)
    name: str
    address: Optional[str] = None
    city: Optional[str] = None
    price: Optional[float] = None
    property_type: str
    status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ========================================================================
# SECTIONS / TASKS
# ========================================================================

class SectionCreateRequest(RequestModel):
    title: str = Field(..., min_length=1, max_length=200)
    position: int = Field(0, ge=0)

    @validator("title", pre=True)
    def trim_title(cls, v):
        return _trim(v)


class SectionResponse(ResponseModel):
    id: str
    owner_id: Optional[str] = None
    title: str
    position: int = 0
    created_at: Optional[datetime] = None


class TaskCreateRequest(RequestModel):
    title: str = Field(..., min_length=1, max_length=200)
    content: Optional[str] = Field(None, max_length=10000)
    section_id: Optional[str] = None
    client_id: Optional[str] = None
    assignee_id: Optional[str] = None
    priority: TaskPriority = Field(TaskPriority.NORMAL)
    status: TaskStatus = Field(TaskStatus.OPEN)
    due_at: Optional[datetime] = None

    @validator("title", pre=True)
    def trim_title(cls, v):
        return _trim(v)


class TaskUpdateRequest(RequestModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    content: Optional[str] = Field(None, max_length=10000)
    section_id: Optional[str] = None
    client_id: Optional[str] = None
    assignee_id: Optional[str] = None
    priority: Optional[TaskPriority] = None
    due_at: Optional[datetime] = None

    @validator("title", pre=True)
    def title_not_blank(cls, v):
        return _not_blank(_trim(v), "title")

    @validator("priority", pre=True)
    def priority_not_null(cls, v):
        return _not_blank(v, "priority")


class TaskStatusRequest(RequestModel):
    status: TaskStatus


class TaskResponse(ResponseModel):
    id: str
    owner_id: Optional[str] = None
    watchers: List[str] = Field(default_factory=list)
    section_id: Optional[str] = None
    client_id: Optional[str] = None
    assignee_id: Optional[str] = None
    title: str
    content: Optional[str] = None
    priority: str
    status: str
    due_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CommentCreateRequest(RequestModel):
    body: str = Field(..., min_length=1, max_length=5000)

    @validator("body", pre=True)
    def trim_body(cls, v):
        return _trim(v)


class TaskCommentResponse(ResponseModel):
    id: str
    task_id: str
    author_id: Optional[str] = None
    body: str
    created_at: Optional[datetime] = None


# ========================================================================
# FEEDBACK
# ========================================================================

class FeedbackCreateRequest(RequestModel):
    feedback_type: FeedbackType = Field(FeedbackType.OTHER)
    title: str = Field(..., min_length=1, max_length=200)
    body: Optional[str] = Field(None, max_length=10000)

    @validator("title", pre=True)
    def trim_title(cls, v):
        return _trim(v)


class FeedbackUpdateRequest(RequestModel):
    feedback_type: Optional[FeedbackType] = None
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    body: Optional[str] = Field(None, max_length=10000)

    @validator("title", pre=True)
    def title_not_blank(cls, v):
        return _not_blank(_trim(v), "title")

    @validator("feedback_type", pre=True)
    def type_not_null(cls, v):
        return _not_blank(v, "feedback_type")


class FeedbackStatusRequest(RequestModel):
    status: FeedbackStatus


class FeedbackResponse(ResponseModel):
    id: str
    owner_id: Optional[str] = None
    watchers: List[str] = Field(default_factory=list)
    feedback_type: str
    status: str
    title: str
    body: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class FeedbackCommentResponse(ResponseModel):
    id: str
    feedback_id: str
    author_id: Optional[str] = None
    body: str
    created_at: Optional[datetime] = None


# ========================================================================
# WATCH / GENERIC
# ========================================================================

class WatchResponse(BaseModel):
    """Result of watch/unwatch; changed is False for an idempotent no-op."""
    id: str
    watchers: List[str] = Field(default_factory=list)
    changed: bool


class DeleteResponse(BaseModel):
    id: str
    deleted: bool = True
    dependents_deleted: int = 0


# ========================================================================
# CONNECTIONS
# ========================================================================

class ConnectionCreateRequest(RequestModel):
    target_user_id: str = Field(..., min_length=1, max_length=36)


class ConnectionResponse(ResponseModel):
    id: str
    follower_id: str
    following_id: str
    status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ========================================================================
# NOTIFICATIONS
# ========================================================================

class NotificationResponse(ResponseModel):
    id: str
    type: str
    title: str
    message: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    actor_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Any, **extra):
        return super().from_row(row, metadata=dict(row.metadata_json or {}), **extra)


# ========================================================================
# USERS / ADMIN
# ========================================================================

class UserResponse(ResponseModel):
    id: str
    email: str
    name: Optional[str] = None
    role: str
    status: str
    created_at: Optional[datetime] = None


class UserRoleRequest(RequestModel):
    role: UserRole


class UserSyncRequest(RequestModel):
    provider_user_id: str = Field(..., min_length=1, max_length=255)


class RolePermissionsRequest(RequestModel):
    """Per-action grants (True) and revocations (False) for a role."""
    permissions: Dict[str, bool] = Field(default_factory=dict)


class RolePermissionsResponse(BaseModel):
    role: str
    overrides: Dict[str, bool] = Field(default_factory=dict)
    effective: List[str] = Field(default_factory=list)


class PrincipalResponse(BaseModel):
    user_id: str
    organization_id: str
    role: str
    email: str
    is_admin: bool
    permissions: List[str] = Field(default_factory=list)
