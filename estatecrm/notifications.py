"""
estatecrm/notifications.py

Watcher Notification Dispatcher and notification inbox.

Notifications are a best-effort side effect of a committed mutation:
- the dispatcher runs after the mutation's transaction has committed
- it uses its own database session, never the request's
- every failure is logged and absorbed; nothing here raises to the caller
- deactivated users and users outside the organization never receive anything

Delivery goes through a NotificationSink (`create_many(recipient_ids, payload)`).
The default sink stores one Notification row per recipient.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol

from sqlalchemy.orm import Session

from estatecrm.db import SessionLocal, transaction
from estatecrm.errors import NotFound
from estatecrm.models import Notification, User, UserStatus
from estatecrm.registry import EntityKind, get_spec
from estatecrm.tenant import TenantScopedAccessor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationPayload:
    organization_id: str
    type: str
    title: str
    message: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    actor_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class NotificationSink(Protocol):
    def create_many(self, recipient_ids: List[str], payload: NotificationPayload) -> int:
        ...


class DatabaseNotificationSink:
    """Stores notifications in the notifications table, one row per recipient."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self._session_factory = session_factory

    def create_many(self, recipient_ids: List[str], payload: NotificationPayload) -> int:
        db = self._session_factory()
        try:
            with transaction(db):
                accessor = TenantScopedAccessor(db, payload.organization_id)
                for recipient_id in recipient_ids:
                    accessor.create(
                        Notification,
                        recipient_user_id=recipient_id,
                        type=payload.type,
                        title=payload.title,
                        message=payload.message,
                        entity_type=payload.entity_type,
                        entity_id=payload.entity_id,
                        actor_id=payload.actor_id,
                        metadata_json=dict(payload.metadata),
                    )
            return len(recipient_ids)
        finally:
            db.close()


def _recipients(user_ids: Iterable[Optional[str]], actor_id: Optional[str]) -> List[str]:
    """Distinct, order-preserving, without the actor."""
    seen = set()
    recipients = []
    for user_id in user_ids:
        if not user_id or user_id == actor_id or user_id in seen:
            continue
        seen.add(user_id)
        recipients.append(user_id)
    return recipients


class WatcherNotificationDispatcher:
    """
    Fans a notification out to the watchers of an entity.

    Usage (after commit):
        dispatcher.notify(EntityKind.CLIENT, client.id, org_id, "CLIENT_UPDATED",
                          title=client.name, message="client.updated", actor_id=user_id)
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        sink: Optional[NotificationSink] = None,
    ):
        self._session_factory = session_factory
        self.sink = sink or DatabaseNotificationSink(session_factory)

    def resolve_watchers(self, kind: EntityKind, entity_id: str, organization_id: str) -> List[str]:
        """Current watcher set of the entity; empty if it no longer exists."""
        spec = get_spec(kind)
        db = self._session_factory()
        try:
            row = TenantScopedAccessor(db, organization_id).get(spec.model, entity_id)
            return list(getattr(row, "watchers", None) or []) if row is not None else []
        finally:
            db.close()

    def notify(
        self,
        kind: EntityKind,
        entity_id: str,
        organization_id: str,
        type: str,
        title: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        actor_id: Optional[str] = None,
        watchers: Optional[List[str]] = None,
    ) -> None:
        """
        Notify the entity's watchers (excluding the actor). Never raises.

        `watchers` is the snapshot taken by the caller when the entity is gone
        (deletes); otherwise the set is resolved now.
        """
        try:
            if watchers is None:
                watchers = self.resolve_watchers(kind, entity_id, organization_id)
            payload = NotificationPayload(
                organization_id=organization_id,
                type=type,
                title=title,
                message=message,
                entity_type=EntityKind(kind).value,
                entity_id=entity_id,
                actor_id=actor_id,
                metadata=dict(metadata or {}),
            )
            self._deliver(watchers, payload)
        except Exception:
            logger.exception(f"[NOTIFY] Watcher notification failed: type={type}, entity_id={entity_id}")

    def notify_users(
        self,
        user_ids: Iterable[Optional[str]],
        organization_id: str,
        type: str,
        title: str,
        message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        actor_id: Optional[str] = None,
    ) -> None:
        """Notify explicit recipients (excluding the actor). Never raises."""
        try:
            payload = NotificationPayload(
                organization_id=organization_id,
                type=type,
                title=title,
                message=message,
                entity_type=entity_type,
                entity_id=entity_id,
                actor_id=actor_id,
                metadata=dict(metadata or {}),
            )
            self._deliver(user_ids, payload)
        except Exception:
            logger.exception(f"[NOTIFY] Direct notification failed: type={type}, entity_id={entity_id}")

    def notify_organization(
        self,
        organization_id: str,
        type: str,
        title: str,
        message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        actor_id: Optional[str] = None,
    ) -> None:
        """Notify every active member of the organization (excluding the actor). Never raises."""
        try:
            db = self._session_factory()
            try:
                members = [
                    user_id
                    for (user_id,) in TenantScopedAccessor(db, organization_id)
                    .query(User)
                    .filter(User.status != UserStatus.INACTIVE.value)
                    .order_by(User.created_at)
                    .with_entities(User.id)
                    .all()
                ]
            finally:
                db.close()
            self.notify_users(
                members, organization_id, type, title, message,
                entity_type=entity_type, entity_id=entity_id, metadata=metadata, actor_id=actor_id,
            )
        except Exception:
            logger.exception(f"[NOTIFY] Organization notification failed: type={type}, entity_id={entity_id}")

    def active_recipients(self, organization_id: str, user_ids: List[str]) -> List[str]:
        """Keep the users that belong to the organization and are not INACTIVE, in order."""
        if not user_ids:
            return []
        db = self._session_factory()
        try:
            active = {
                user_id
                for (user_id,) in TenantScopedAccessor(db, organization_id)
                .query(User)
                .filter(User.id.in_(user_ids), User.status != UserStatus.INACTIVE.value)
                .with_entities(User.id)
                .all()
            }
        finally:
            db.close()
        return [user_id for user_id in user_ids if user_id in active]

    def _deliver(self, user_ids: Iterable[Optional[str]], payload: NotificationPayload) -> None:
        recipients = self.active_recipients(payload.organization_id, _recipients(user_ids, payload.actor_id))
        if not recipients:
            logger.debug(f"[NOTIFY] No recipients: type={payload.type}, entity_id={payload.entity_id}")
            return
        created = self.sink.create_many(recipients, payload)
        logger.info(f"[NOTIFY] Sent {created} notification(s): type={payload.type}, entity_id={payload.entity_id}")


# ============================================================================
# Inbox
# ============================================================================

def list_notifications(
    accessor: TenantScopedAccessor,
    user_id: str,
    unread_only: bool = False,
    limit: int = 50,
) -> List[Notification]:
    query = accessor.query(Notification, recipient_user_id=user_id)
    if unread_only:
        query = query.filter(Notification.read_at.is_(None))
    return query.order_by(Notification.created_at.desc()).limit(limit).all()


def count_unread(accessor: TenantScopedAccessor, user_id: str) -> int:
    return accessor.query(Notification, recipient_user_id=user_id).filter(Notification.read_at.is_(None)).count()


def mark_read(accessor: TenantScopedAccessor, user_id: str, notification_id: str) -> Notification:
    """Mark one of the user's notifications read; other users' rows are not found."""
    notification = accessor.require(Notification, notification_id)
    if notification.recipient_user_id != user_id:
        raise NotFound("Notification not found")
    if notification.read_at is None:
        accessor.update(notification, read_at=datetime.utcnow())
    return notification


def mark_all_read(accessor: TenantScopedAccessor, user_id: str) -> int:
    updated = (
        accessor.query(Notification, recipient_user_id=user_id)
        .filter(Notification.read_at.is_(None))
        .update({Notification.read_at: datetime.utcnow()}, synchronize_session=False)
    )
    accessor.db.flush()
    return updated
