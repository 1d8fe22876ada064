"""
estatecrm/handlers.py

Entity Mutation Handler.

Every mutation runs through the same states:

    REQUESTED -> VALIDATED -> PERSISTED -> NOTIFY_PENDING -> DONE
         \\            \\
          `-> REJECTED  `-> REJECTED

- REQUESTED -> VALIDATED: payload checked against the kind's pydantic schema
- VALIDATED -> PERSISTED: Permission Guard, then the change inside one transaction
- PERSISTED -> NOTIFY_PENDING -> DONE: notification jobs handed to the scheduler
  after commit (FastAPI BackgroundTasks in routes); their failures never reach here

The Principal is passed in explicitly; the handler never looks up a current user.
Generic operations (create/update/delete/watch/unwatch/set_status) are driven by
the registry; comments, connections, user administration and role permissions
have their own methods.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Type

from pydantic import BaseModel, ValidationError
from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from estatecrm.auth_context import Principal
from estatecrm.db import transaction
from estatecrm.errors import (
    Conflict,
    CRMError,
    PermissionDenied,
    ValidationFailed,
    fields_from_errors,
)
from estatecrm.identity import IdentityProviderClient, sync_user
from estatecrm.mailer import ACCOUNT_ACTIVATED, ACCOUNT_DEACTIVATED, queue_account_email
from estatecrm.models import (
    Connection,
    ConnectionStatus,
    Feedback,
    FeedbackComment,
    RolePermissionOverride,
    Task,
    TaskComment,
    User,
    UserStatus,
)
from estatecrm.notifications import WatcherNotificationDispatcher
from estatecrm.permissions import (
    ADMIN_ONLY_ACTIONS,
    ADMIN_ROLES,
    ALL_ACTIONS,
    ROLE_PERMISSIONS,
    Action,
    ResourceRef,
    Role,
    can_manage_role,
    require,
    role_at_least,
)
from estatecrm.registry import Dependent, EntityKind, EntitySpec, Operation, get_spec
from estatecrm.schemas import (
    CommentCreateRequest,
    ConnectionCreateRequest,
    RolePermissionsRequest,
    UserRoleRequest,
    UserSyncRequest,
)
from estatecrm.tenant import TenantScopedAccessor

logger = logging.getLogger(__name__)

Scheduler = Callable[..., Any]


class MutationState(str, Enum):
    REQUESTED = "REQUESTED"
    VALIDATED = "VALIDATED"
    PERSISTED = "PERSISTED"
    NOTIFY_PENDING = "NOTIFY_PENDING"
    DONE = "DONE"
    REJECTED = "REJECTED"


@dataclass
class MutationResult:
    entity: Any
    state: MutationState = MutationState.DONE
    changed: bool = True
    dependents_deleted: int = 0


def run_now(func: Callable[..., Any], *args, **kwargs) -> None:
    """Default scheduler: run the job inline (scripts and direct handler use)."""
    func(*args, **kwargs)


def validate_payload(schema: Type[BaseModel], payload: Any) -> Dict[str, Any]:
    """
    REQUESTED -> VALIDATED: parse the payload and return only the fields it set.

    Raises:
        ValidationFailed: naming every offending field
    """
    if isinstance(payload, schema):
        model = payload
    else:
        if isinstance(payload, BaseModel):
            payload = payload.dict(exclude_unset=True)
        if payload is None:
            payload = {}
        if not isinstance(payload, Mapping):
            raise ValidationFailed("body", "invalid_type")
        try:
            model = schema(**payload)
        except ValidationError as e:
            raise ValidationFailed.from_fields(fields_from_errors(e.errors()))
    return {key: _plain(value) for key, value in model.dict(exclude_unset=True).items()}


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class MutationHandler:
    """
    Per-request mutation entry point.

    Usage:
        handler = MutationHandler(db, principal, schedule=background_tasks.add_task)
        result = handler.update(EntityKind.CLIENT, client_id, {"name": "New"})
    """

    def __init__(
        self,
        db: Session,
        principal: Principal,
        dispatcher: Optional[WatcherNotificationDispatcher] = None,
        schedule: Optional[Scheduler] = None,
    ):
        self.db = db
        self.principal = principal
        self.accessor = TenantScopedAccessor.for_principal(db, principal)
        self.dispatcher = dispatcher or WatcherNotificationDispatcher()
        self.schedule = schedule or run_now

    # ------------------------------------------------------------------
    # State tracking
    # ------------------------------------------------------------------
    def _advance(self, label: str, state: MutationState) -> MutationState:
        logger.debug(f"[MUTATION] {label}: {state.value} (user_id={self.principal.user_id})")
        return state

    def _run(self, label: str, fn: Callable[[], MutationResult]) -> MutationResult:
        self._advance(label, MutationState.REQUESTED)
        try:
            result = fn()
        except CRMError as e:
            logger.info(f"[MUTATION] {label}: REJECTED ({type(e).__name__}: {getattr(e, 'reason', e.code)})")
            raise
        result.state = self._advance(label, MutationState.DONE)
        return result

    def _enqueue(self, label: str, func: Callable[..., Any], *args, **kwargs) -> None:
        """PERSISTED -> NOTIFY_PENDING: hand a notification job to the scheduler."""
        self._advance(label, MutationState.NOTIFY_PENDING)
        try:
            self.schedule(func, *args, **kwargs)
        except Exception:
            logger.exception(f"[MUTATION] {label}: failed to schedule notification")

    def _notify_watchers(self, spec: EntitySpec, op: Operation, row: Any, metadata=None, watchers=None) -> None:
        notification_type = spec.notification_types.get(op)
        if not notification_type:
            return
        self._enqueue(
            f"{spec.kind.value}.{op.value}",
            self.dispatcher.notify,
            spec.kind,
            row.id,
            self.principal.organization_id,
            notification_type,
            title=str(getattr(row, spec.display_field, "") or ""),
            message=f"{spec.kind.value}.{op.value}",
            metadata=metadata or {},
            actor_id=self.principal.user_id,
            watchers=watchers,
        )

    def _announce_created(self, spec: EntitySpec, row: Any) -> None:
        notification_type = spec.notification_types.get(Operation.CREATE)
        if not notification_type:
            return
        self._enqueue(
            f"{spec.kind.value}.create",
            self.dispatcher.notify_organization,
            self.principal.organization_id,
            notification_type,
            title=str(getattr(row, spec.display_field, "") or ""),
            message=f"{spec.kind.value}.create",
            entity_type=spec.kind.value,
            entity_id=row.id,
            actor_id=self.principal.user_id,
        )

    def _notify_linked(self, spec: EntitySpec, op: Operation, row: Any, metadata=None) -> None:
        """Forward the change to the watchers of rows this one references."""
        for link in spec.linked_watchers:
            notification_type = link.notification_types.get(op)
            parent_id = getattr(row, link.foreign_key, None)
            if not notification_type or not parent_id:
                continue
            self._enqueue(
                f"{spec.kind.value}.{op.value}",
                self.dispatcher.notify,
                link.kind,
                parent_id,
                self.principal.organization_id,
                notification_type,
                title=str(getattr(row, spec.display_field, "") or ""),
                message=f"{spec.kind.value}.{op.value}",
                metadata=dict(metadata or {}, **{f"{spec.kind.value}_id": row.id}),
                actor_id=self.principal.user_id,
            )

    def _notify_users(self, user_ids: Sequence[Optional[str]], notification_type: str, title: str,
                      entity_type: str, entity_id: str, metadata=None) -> None:
        self._enqueue(
            f"{entity_type}.{notification_type}",
            self.dispatcher.notify_users,
            list(user_ids),
            self.principal.organization_id,
            notification_type,
            title=title,
            message=notification_type.lower(),
            entity_type=entity_type,
            entity_id=entity_id,
            metadata=metadata or {},
            actor_id=self.principal.user_id,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _spec(self, kind: EntityKind, op: Operation) -> EntitySpec:
        spec = get_spec(kind)
        if not spec.supports(op):
            raise ValidationFailed("operation", "unsupported_operation", f"{op.value} is not supported for {spec.kind.value}")
        return spec

    def _resource(self, row: Any) -> ResourceRef:
        return ResourceRef(owner_id=getattr(row, "owner_id", None), organization_id=row.organization_id)

    def _check_references(self, spec: EntitySpec, data: Dict[str, Any]) -> None:
        """Referenced rows must exist in the principal's organization."""
        missing = [
            {"field": field_name, "reason": "unknown_reference"}
            for field_name, model in spec.references.items()
            if data.get(field_name) and self.accessor.get(model, data[field_name]) is None
        ]
        if missing:
            raise ValidationFailed.from_fields(missing)

    def _delete_dependents(self, dependents: Sequence[Dependent], parent_ids: List[str]) -> int:
        """Depth-first removal of dependent rows; caller holds the transaction."""
        removed = 0
        for dependent in dependents:
            if dependent.detach:
                detached = self.accessor.update_where(
                    dependent.model, dependent.foreign_key, parent_ids, **{dependent.foreign_key: None}
                )
                logger.info(f"[MUTATION] Detached {detached} {dependent.model.__tablename__} row(s)")
                continue
            if dependent.children:
                child_ids = [
                    row_id
                    for (row_id,) in self.accessor.query(dependent.model)
                    .filter(getattr(dependent.model, dependent.foreign_key).in_(parent_ids))
                    .with_entities(dependent.model.id)
                    .all()
                ]
                if child_ids:
                    removed += self._delete_dependents(dependent.children, child_ids)
            removed += self.accessor.delete_where(dependent.model, dependent.foreign_key, parent_ids)
        return removed

    # ------------------------------------------------------------------
    # Generic operations
    # ------------------------------------------------------------------
    def create(self, kind: EntityKind, payload: Any) -> MutationResult:
        spec = self._spec(kind, Operation.CREATE)
        label = f"{spec.kind.value}.create"

        def _create() -> MutationResult:
            data = validate_payload(spec.create_schema, payload)
            self._advance(label, MutationState.VALIDATED)

            require(self.principal, spec.action_for(Operation.CREATE))
            self._check_references(spec, data)
            fields = dict(data, owner_id=self.principal.user_id)
            if hasattr(spec.model, "watchers"):
                fields["watchers"] = []
            with transaction(self.db):
                row = self.accessor.create(spec.model, **fields)
            self._advance(label, MutationState.PERSISTED)
            logger.info(f"[MUTATION] Created {spec.kind.value}: id={row.id}, organization_id={row.organization_id}")

            self._announce_created(spec, row)
            self._notify_linked(spec, Operation.CREATE, row)
            if spec.kind == EntityKind.TASK and row.assignee_id:
                self._notify_users([row.assignee_id], "TASK_ASSIGNED", row.title, "task", row.id)
            return MutationResult(entity=row)

        return self._run(label, _create)

    def update(self, kind: EntityKind, entity_id: str, payload: Any) -> MutationResult:
        spec = self._spec(kind, Operation.UPDATE)
        label = f"{spec.kind.value}.update"

        def _update() -> MutationResult:
            data = validate_payload(spec.update_schema, payload)
            self._advance(label, MutationState.VALIDATED)

            with transaction(self.db):
                row = self.accessor.lock(spec.model, entity_id)
                require(self.principal, spec.action_for(Operation.UPDATE), self._resource(row))
                self._check_references(spec, data)
                changed = {key: value for key, value in data.items() if getattr(row, key) != value}
                previous_assignee = getattr(row, "assignee_id", None)
                if changed:
                    self.accessor.update(row, **changed)
            self._advance(label, MutationState.PERSISTED)

            if changed:
                self._notify_watchers(spec, Operation.UPDATE, row, metadata={"changed_fields": sorted(changed)})
                self._notify_linked(spec, Operation.UPDATE, row, metadata={"changed_fields": sorted(changed)})
                if spec.kind == EntityKind.TASK and row.assignee_id and row.assignee_id != previous_assignee:
                    self._notify_users([row.assignee_id], "TASK_ASSIGNED", row.title, "task", row.id)
            return MutationResult(entity=row, changed=bool(changed))

        return self._run(label, _update)

    def set_status(self, kind: EntityKind, entity_id: str, status: Any) -> MutationResult:
        spec = self._spec(kind, Operation.SET_STATUS)
        label = f"{spec.kind.value}.set_status"

        def _set_status() -> MutationResult:
            payload = status if isinstance(status, (BaseModel, Mapping)) else {"status": status}
            new_status = validate_payload(spec.status_schema, payload)["status"]
            self._advance(label, MutationState.VALIDATED)

            with transaction(self.db):
                row = self.accessor.lock(spec.model, entity_id)
                require(self.principal, spec.action_for(Operation.SET_STATUS), self._resource(row))
                old_status = row.status
                if old_status != new_status:
                    self.accessor.update(row, status=new_status)
            self._advance(label, MutationState.PERSISTED)

            if old_status == new_status:
                return MutationResult(entity=row, changed=False)
            self._notify_watchers(spec, Operation.SET_STATUS, row, metadata={"from": old_status, "to": new_status})
            self._notify_linked(spec, Operation.SET_STATUS, row, metadata={"from": old_status, "to": new_status})
            return MutationResult(entity=row)

        return self._run(label, _set_status)

    def delete(self, kind: EntityKind, entity_id: str) -> MutationResult:
        """
        Delete an entity and its dependents atomically.

        Watchers are captured inside the deleting transaction and handed to the
        dispatcher, since the row is gone by the time it runs.
        """
        spec = self._spec(kind, Operation.DELETE)
        label = f"{spec.kind.value}.delete"

        def _delete() -> MutationResult:
            self._advance(label, MutationState.VALIDATED)
            with transaction(self.db):
                row = self.accessor.lock(spec.model, entity_id)
                require(self.principal, spec.action_for(Operation.DELETE), self._resource(row))
                watchers = list(getattr(row, "watchers", None) or [])
                removed = self._delete_dependents(spec.dependents, [row.id])
                self.accessor.delete(row)
            self._advance(label, MutationState.PERSISTED)
            logger.info(f"[MUTATION] Deleted {spec.kind.value}: id={entity_id}, dependents={removed}")

            self._notify_watchers(spec, Operation.DELETE, row, metadata={"dependents_deleted": removed}, watchers=watchers)
            return MutationResult(entity=row, dependents_deleted=removed)

        return self._run(label, _delete)

    def watch(self, kind: EntityKind, entity_id: str) -> MutationResult:
        """Add the principal to the watchers; already watching is a no-op success."""
        return self._set_watching(kind, entity_id, Operation.WATCH)

    def unwatch(self, kind: EntityKind, entity_id: str) -> MutationResult:
        """Remove the principal from the watchers; not watching is a no-op success."""
        return self._set_watching(kind, entity_id, Operation.UNWATCH)

    def _set_watching(self, kind: EntityKind, entity_id: str, op: Operation) -> MutationResult:
        spec = self._spec(kind, op)
        label = f"{spec.kind.value}.{op.value}"
        user_id = self.principal.user_id

        def _watching() -> MutationResult:
            self._advance(label, MutationState.VALIDATED)
            require(self.principal, spec.action_for(op))
            with transaction(self.db):
                row = self.accessor.lock(spec.model, entity_id)
                watchers = list(row.watchers or [])
                if op == Operation.WATCH:
                    changed = user_id not in watchers
                    new_watchers = watchers + [user_id] if changed else watchers
                else:
                    changed = user_id in watchers
                    new_watchers = [w for w in watchers if w != user_id]
                if changed:
                    self.accessor.update(row, watchers=new_watchers)
            self._advance(label, MutationState.PERSISTED)
            return MutationResult(entity=row, changed=changed)

        return self._run(label, _watching)

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------
    def add_task_comment(self, task_id: str, payload: Any) -> MutationResult:
        label = "task.add_comment"

        def _comment() -> MutationResult:
            data = validate_payload(CommentCreateRequest, payload)
            self._advance(label, MutationState.VALIDATED)
            require(self.principal, Action.TASK_COMMENT)
            with transaction(self.db):
                task = self.accessor.require(Task, task_id)
                comment = self.accessor.create(
                    TaskComment, task_id=task.id, author_id=self.principal.user_id, body=data["body"]
                )
                recipients = [task.owner_id, task.assignee_id] + list(task.watchers or [])
            self._advance(label, MutationState.PERSISTED)

            self._notify_users(
                recipients, "TASK_COMMENT_ADDED", task.title, "task", task.id, metadata={"comment_id": comment.id}
            )
            return MutationResult(entity=comment)

        return self._run(label, _comment)

    def add_feedback_comment(self, feedback_id: str, payload: Any) -> MutationResult:
        label = "feedback.add_comment"

        def _comment() -> MutationResult:
            data = validate_payload(CommentCreateRequest, payload)
            self._advance(label, MutationState.VALIDATED)
            require(self.principal, Action.FEEDBACK_COMMENT)
            with transaction(self.db):
                feedback = self.accessor.require(Feedback, feedback_id)
                comment = self.accessor.create(
                    FeedbackComment, feedback_id=feedback.id, author_id=self.principal.user_id, body=data["body"]
                )
                recipients = [feedback.owner_id] + list(feedback.watchers or [])
            self._advance(label, MutationState.PERSISTED)

            self._notify_users(
                recipients, "FEEDBACK_RESPONSE", feedback.title, "feedback", feedback.id,
                metadata={"comment_id": comment.id},
            )
            return MutationResult(entity=comment)

        return self._run(label, _comment)

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------
    def request_connection(self, payload: Any) -> MutationResult:
        """
        Ask another user of the organization to connect.

        A rejected pair (either direction) is re-opened as a new pending request
        from the principal.
        """
        label = "connection.request"
        user_id = self.principal.user_id

        def _request() -> MutationResult:
            data = validate_payload(ConnectionCreateRequest, payload)
            target_id = data["target_user_id"]
            if target_id == user_id:
                raise ValidationFailed("target_user_id", "self_connection", "You cannot connect with yourself")
            self._advance(label, MutationState.VALIDATED)

            require(self.principal, Action.CONNECTION_MANAGE)
            with transaction(self.db):
                self.accessor.require(User, target_id)
                existing = (
                    self.accessor.query(Connection)
                    .filter(
                        or_(
                            and_(Connection.follower_id == user_id, Connection.following_id == target_id),
                            and_(Connection.follower_id == target_id, Connection.following_id == user_id),
                        )
                    )
                    .first()
                )
                if existing is not None and existing.status == ConnectionStatus.ACCEPTED.value:
                    raise Conflict("already_connected", "You are already connected with this user")
                if existing is not None and existing.status == ConnectionStatus.PENDING.value:
                    raise Conflict("request_pending", "A connection request already exists")

                if existing is not None:
                    connection = self.accessor.update(
                        existing,
                        follower_id=user_id,
                        following_id=target_id,
                        status=ConnectionStatus.PENDING.value,
                    )
                else:
                    connection = self.accessor.create(
                        Connection,
                        follower_id=user_id,
                        following_id=target_id,
                        status=ConnectionStatus.PENDING.value,
                    )
            self._advance(label, MutationState.PERSISTED)

            self._notify_users([target_id], "CONNECTION_REQUEST", self.principal.email, "connection", connection.id)
            return MutationResult(entity=connection)

        return self._run(label, _request)

    def respond_connection(self, connection_id: str, accept: bool) -> MutationResult:
        """Only the requested user may respond, and only once."""
        label = "connection.respond"

        def _respond() -> MutationResult:
            self._advance(label, MutationState.VALIDATED)
            require(self.principal, Action.CONNECTION_MANAGE)
            with transaction(self.db):
                connection = self.accessor.lock(Connection, connection_id)
                if connection.following_id != self.principal.user_id:
                    raise PermissionDenied("not_owner", "You are not authorized to respond to this request")
                if connection.status != ConnectionStatus.PENDING.value:
                    raise Conflict("already_processed", "This request has already been processed")
                new_status = ConnectionStatus.ACCEPTED if accept else ConnectionStatus.REJECTED
                self.accessor.update(connection, status=new_status.value)
            self._advance(label, MutationState.PERSISTED)

            if accept:
                self._notify_users(
                    [connection.follower_id], "CONNECTION_ACCEPTED", self.principal.email, "connection", connection.id
                )
            return MutationResult(entity=connection)

        return self._run(label, _respond)

    def remove_connection(self, connection_id: str) -> MutationResult:
        label = "connection.remove"

        def _remove() -> MutationResult:
            self._advance(label, MutationState.VALIDATED)
            require(self.principal, Action.CONNECTION_MANAGE)
            with transaction(self.db):
                connection = self.accessor.lock(Connection, connection_id)
                if self.principal.user_id not in (connection.follower_id, connection.following_id):
                    raise PermissionDenied("not_participant", "You are not part of this connection")
                self.accessor.delete(connection)
            self._advance(label, MutationState.PERSISTED)
            return MutationResult(entity=connection)

        return self._run(label, _remove)

    # ------------------------------------------------------------------
    # User administration
    # ------------------------------------------------------------------
    def _managed_user(self, user_id: str) -> User:
        """Lock a target user the principal is allowed to manage (caller holds the transaction)."""
        target = self.accessor.lock(User, user_id)
        if not can_manage_role(self.principal.role, target.role):
            logger.info(
                f"[ADMIN] Role hierarchy denied: actor_role={self.principal.role}, target_role={target.role}"
            )
            raise PermissionDenied("role_hierarchy", "You cannot manage a user with an equal or higher role")
        return target

    def activate_user(self, user_id: str) -> MutationResult:
        """
        Set a user ACTIVE. Already ACTIVE is accepted as a no-op and queues no e-mail.
        """
        label = "user.activate"

        def _activate() -> MutationResult:
            require(self.principal, Action.USER_MANAGE)
            self._advance(label, MutationState.VALIDATED)
            with transaction(self.db):
                target = self._managed_user(user_id)
                if target.status == UserStatus.ACTIVE.value:
                    logger.info(f"[ADMIN] User already active: user_id={target.id}")
                    return MutationResult(entity=target, changed=False)
                self.accessor.update(target, status=UserStatus.ACTIVE.value)
                queue_account_email(self.accessor, target, ACCOUNT_ACTIVATED)
            self._advance(label, MutationState.PERSISTED)
            logger.info(f"[ADMIN] User activated: user_id={target.id}, by={self.principal.user_id}")
            return MutationResult(entity=target)

        return self._run(label, _activate)

    def deactivate_user(self, user_id: str) -> MutationResult:
        """
        Set a user INACTIVE. Already INACTIVE is a no-op; deactivating oneself is a Conflict.
        """
        label = "user.deactivate"

        def _deactivate() -> MutationResult:
            require(self.principal, Action.USER_MANAGE)
            if user_id == self.principal.user_id:
                raise Conflict("cannot_deactivate_self", "You cannot deactivate your own account")
            self._advance(label, MutationState.VALIDATED)
            with transaction(self.db):
                target = self._managed_user(user_id)
                if target.status == UserStatus.INACTIVE.value:
                    logger.info(f"[ADMIN] User already inactive: user_id={target.id}")
                    return MutationResult(entity=target, changed=False)
                self.accessor.update(target, status=UserStatus.INACTIVE.value)
                queue_account_email(self.accessor, target, ACCOUNT_DEACTIVATED)
            self._advance(label, MutationState.PERSISTED)
            logger.info(f"[ADMIN] User deactivated: user_id={target.id}, by={self.principal.user_id}")
            return MutationResult(entity=target)

        return self._run(label, _deactivate)

    def update_user_role(self, user_id: str, payload: Any) -> MutationResult:
        label = "user.update_role"

        def _update_role() -> MutationResult:
            require(self.principal, Action.USER_MANAGE)
            new_role = validate_payload(UserRoleRequest, payload)["role"]
            if user_id == self.principal.user_id:
                raise Conflict("cannot_change_own_role", "You cannot change your own role")
            if not role_at_least(self.principal.role, new_role):
                raise PermissionDenied("role_hierarchy", "You cannot grant a role above your own")
            self._advance(label, MutationState.VALIDATED)

            with transaction(self.db):
                target = self._managed_user(user_id)
                old_role = target.role
                if old_role != new_role:
                    self.accessor.update(target, role=new_role)
            self._advance(label, MutationState.PERSISTED)

            if old_role == new_role:
                return MutationResult(entity=target, changed=False)
            logger.info(f"[ADMIN] Role changed: user_id={target.id}, {old_role} -> {new_role}")
            self._notify_users(
                [target.id], "ACCOUNT_UPDATED", target.name or target.email, "user", target.id,
                metadata={"from": old_role, "to": new_role},
            )
            return MutationResult(entity=target)

        return self._run(label, _update_role)

    def sync_user(self, payload: Any, client: Optional[IdentityProviderClient] = None) -> MutationResult:
        """Create/update a local user from the identity provider profile."""
        label = "user.sync"

        def _sync() -> MutationResult:
            require(self.principal, Action.USER_MANAGE)
            data = validate_payload(UserSyncRequest, payload)
            self._advance(label, MutationState.VALIDATED)

            profile = (client or IdentityProviderClient()).fetch_profile(data["provider_user_id"])
            with transaction(self.db):
                user = sync_user(self.db, self.principal.organization_id, profile)
            self._advance(label, MutationState.PERSISTED)
            return MutationResult(entity=user)

        return self._run(label, _sync)

    # ------------------------------------------------------------------
    # Role permission overrides
    # ------------------------------------------------------------------
    def set_role_permissions(self, role: str, payload: Any) -> MutationResult:
        """
        Replace the organization's overrides for a role.

        The owner role always holds every action and cannot be customized.
        Takes effect on the next request of any user holding the role.
        """
        label = "role_permissions.set"

        def _set() -> MutationResult:
            require(self.principal, Action.PERMISSION_MANAGE)
            if role not in ROLE_PERMISSIONS:
                raise ValidationFailed("role", "unknown_role")
            if role == Role.OWNER:
                raise Conflict("owner_role_immutable", "Owner permissions cannot be changed")
            permissions = validate_payload(RolePermissionsRequest, payload).get("permissions", {})
            invalid = [
                {"field": f"permissions.{action}", "reason": "unknown_action"}
                for action in permissions
                if action not in ALL_ACTIONS
            ] + [
                {"field": f"permissions.{action}", "reason": "admin_only_action"}
                for action, granted in permissions.items()
                if granted and action in ADMIN_ONLY_ACTIONS and role not in ADMIN_ROLES
            ]
            if invalid:
                raise ValidationFailed.from_fields(invalid)
            self._advance(label, MutationState.VALIDATED)

            with transaction(self.db):
                record = self.accessor.query(RolePermissionOverride, role=role).first()
                if record is None:
                    record = self.accessor.create(RolePermissionOverride, role=role, permissions=dict(permissions))
                else:
                    self.accessor.update(record, permissions=dict(permissions))
            self._advance(label, MutationState.PERSISTED)
            logger.info(f"[ADMIN] Role permissions updated: role={role}, overrides={len(permissions)}")
            return MutationResult(entity=record)

        return self._run(label, _set)
