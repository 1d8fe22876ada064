"""
estatecrm/registry.py

Dispatch table for the Entity Mutation Handler.

Every entity kind declares, once, what its generic operations need: the ORM model,
the request schemas, the action tag checked per operation, the notification types
emitted to watchers, referenced rows that must exist in the same organization, and
the dependent rows removed (or unlinked) together with it on delete.

A CREATE notification type is announced to the whole organization, since a new
row has no watchers yet. `linked_watchers` forwards changes to the watchers of a
referenced row (a client hears about the tasks linked to it).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple, Type

from pydantic import BaseModel

from estatecrm import schemas
from estatecrm.models import (
    Client,
    EstateFile,
    Feedback,
    FeedbackComment,
    Section,
    Task,
    TaskComment,
    User,
)
from estatecrm.permissions import Action


class EntityKind(str, Enum):
    CLIENT = "client"
    ESTATE_FILE = "estate_file"
    TASK = "task"
    FEEDBACK = "feedback"
    SECTION = "section"


class Operation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    WATCH = "watch"
    UNWATCH = "unwatch"
    SET_STATUS = "set_status"


@dataclass(frozen=True)
class Dependent:
    """
    Rows of `model` whose `foreign_key` points at the parent, plus their own dependents.

    With `detach`, the rows survive the parent and only their `foreign_key` is cleared.
    """
    model: type
    foreign_key: str
    children: Tuple["Dependent", ...] = ()
    detach: bool = False


@dataclass(frozen=True)
class LinkedWatchers:
    """Watchers of the row that `foreign_key` points at also hear about this entity."""
    foreign_key: str
    kind: EntityKind
    notification_types: Dict[Operation, str]


@dataclass(frozen=True)
class EntitySpec:
    kind: EntityKind
    model: type
    response: Type[BaseModel]
    display_field: str
    actions: Dict[Operation, str]
    read_action: Optional[str] = None
    list_filters: Tuple[str, ...] = ("status",)
    create_schema: Optional[Type[BaseModel]] = None
    update_schema: Optional[Type[BaseModel]] = None
    status_schema: Optional[Type[BaseModel]] = None
    notification_types: Dict[Operation, str] = field(default_factory=dict)
    references: Dict[str, type] = field(default_factory=dict)
    dependents: Tuple[Dependent, ...] = ()
    linked_watchers: Tuple[LinkedWatchers, ...] = ()

    def supports(self, op: Operation) -> bool:
        return op in self.actions

    def action_for(self, op: Operation) -> str:
        return self.actions[op]


TASK_COMMENTS = Dependent(TaskComment, "task_id")


REGISTRY: Dict[EntityKind, EntitySpec] = {
    EntityKind.CLIENT: EntitySpec(
        kind=EntityKind.CLIENT,
        model=Client,
        response=schemas.ClientResponse,
        display_field="name",
        create_schema=schemas.ClientCreateRequest,
        read_action=Action.CLIENT_READ,
        update_schema=schemas.ClientUpdateRequest,
        status_schema=schemas.ClientStatusRequest,
        actions={
            Operation.CREATE: Action.CLIENT_CREATE,
            Operation.UPDATE: Action.CLIENT_UPDATE,
            Operation.DELETE: Action.CLIENT_DELETE,
            Operation.WATCH: Action.CLIENT_WATCH,
            Operation.UNWATCH: Action.CLIENT_WATCH,
            Operation.SET_STATUS: Action.CLIENT_UPDATE,
        },
        notification_types={
            Operation.CREATE: "CLIENT_CREATED",
            Operation.UPDATE: "CLIENT_UPDATED",
            Operation.DELETE: "CLIENT_DELETED",
            Operation.SET_STATUS: "CLIENT_STATUS_CHANGED",
        },
        # Linked tasks may belong to other users; they outlive the client
        dependents=(Dependent(Task, "client_id", detach=True),),
    ),
    EntityKind.ESTATE_FILE: EntitySpec(
        kind=EntityKind.ESTATE_FILE,
        model=EstateFile,
        response=schemas.EstateFileResponse,
        display_field="name",
        create_schema=schemas.EstateFileCreateRequest,
        read_action=Action.ESTATE_FILE_READ,
        list_filters=("status", "property_type", "city"),
        update_schema=schemas.EstateFileUpdateRequest,
        status_schema=schemas.EstateFileStatusRequest,
        actions={
            Operation.CREATE: Action.ESTATE_FILE_CREATE,
            Operation.UPDATE: Action.ESTATE_FILE_UPDATE,
            Operation.DELETE: Action.ESTATE_FILE_DELETE,
            Operation.WATCH: Action.ESTATE_FILE_WATCH,
            Operation.UNWATCH: Action.ESTATE_FILE_WATCH,
            Operation.SET_STATUS: Action.ESTATE_FILE_UPDATE,
        },
        notification_types={
            Operation.CREATE: "PROPERTY_CREATED",
            Operation.UPDATE: "PROPERTY_UPDATED",
            Operation.DELETE: "PROPERTY_DELETED",
            Operation.SET_STATUS: "PROPERTY_STATUS_CHANGED",
        },
    ),
    EntityKind.TASK: EntitySpec(
        kind=EntityKind.TASK,
        model=Task,
        response=schemas.TaskResponse,
        display_field="title",
        create_schema=schemas.TaskCreateRequest,
        read_action=Action.TASK_READ,
        list_filters=("status", "priority", "section_id", "client_id", "assignee_id"),
        update_schema=schemas.TaskUpdateRequest,
        status_schema=schemas.TaskStatusRequest,
        actions={
            Operation.CREATE: Action.TASK_CREATE,
            Operation.UPDATE: Action.TASK_UPDATE,
            Operation.DELETE: Action.TASK_DELETE,
            Operation.WATCH: Action.TASK_WATCH,
            Operation.UNWATCH: Action.TASK_WATCH,
            Operation.SET_STATUS: Action.TASK_UPDATE,
        },
        notification_types={
            Operation.UPDATE: "TASK_UPDATED",
            Operation.DELETE: "TASK_DELETED",
            Operation.SET_STATUS: "TASK_STATUS_CHANGED",
        },
        references={"section_id": Section, "client_id": Client, "assignee_id": User},
        dependents=(TASK_COMMENTS,),
        linked_watchers=(
            LinkedWatchers(
                foreign_key="client_id",
                kind=EntityKind.CLIENT,
                notification_types={
                    Operation.CREATE: "ACCOUNT_TASK_CREATED",
                    Operation.UPDATE: "ACCOUNT_TASK_UPDATED",
                    Operation.SET_STATUS: "ACCOUNT_TASK_UPDATED",
                },
            ),
        ),
    ),
    EntityKind.FEEDBACK: EntitySpec(
        kind=EntityKind.FEEDBACK,
        model=Feedback,
        response=schemas.FeedbackResponse,
        display_field="title",
        create_schema=schemas.FeedbackCreateRequest,
        read_action=Action.FEEDBACK_READ,
        list_filters=("status", "feedback_type"),
        update_schema=schemas.FeedbackUpdateRequest,
        status_schema=schemas.FeedbackStatusRequest,
        actions={
            Operation.CREATE: Action.FEEDBACK_CREATE,
            Operation.UPDATE: Action.FEEDBACK_UPDATE,
            Operation.DELETE: Action.FEEDBACK_DELETE,
            Operation.WATCH: Action.FEEDBACK_WATCH,
            Operation.UNWATCH: Action.FEEDBACK_WATCH,
            Operation.SET_STATUS: Action.FEEDBACK_UPDATE,
        },
        notification_types={
            Operation.UPDATE: "FEEDBACK_UPDATED",
            Operation.DELETE: "FEEDBACK_DELETED",
            Operation.SET_STATUS: "FEEDBACK_STATUS_CHANGED",
        },
        dependents=(Dependent(FeedbackComment, "feedback_id"),),
    ),
    EntityKind.SECTION: EntitySpec(
        kind=EntityKind.SECTION,
        model=Section,
        response=schemas.SectionResponse,
        display_field="title",
        create_schema=schemas.SectionCreateRequest,
        read_action=Action.TASK_READ,
        list_filters=(),
        actions={
            Operation.CREATE: Action.SECTION_CREATE,
            Operation.DELETE: Action.SECTION_DELETE,
        },
        dependents=(Dependent(Task, "section_id", children=(TASK_COMMENTS,)),),
    ),
}


def get_spec(kind: EntityKind) -> EntitySpec:
    return REGISTRY[EntityKind(kind)]
