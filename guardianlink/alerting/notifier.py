"""
Notification Service.

Turns domain events into stored notification documents (one per recipient),
lists a recipient's unread notifications and marks them read. Notifications
are append-only apart from the ``read`` flag.
"""

from typing import Optional

import structlog

from guardianlink.alerting.fanout import FanOutPolicy
from guardianlink.alerting.schemas import DomainEvent, Notification
from guardianlink.auth.rbac import Actor, Role
from guardianlink.config import settings
from guardianlink.exceptions import DataNotFoundError, PermissionDeniedError
from guardianlink.store.base import DocumentStore
from guardianlink.store.paths import join_path

logger = structlog.get_logger(__name__)


def _identity_of(notification: Notification) -> Optional[str]:
    if notification.recipient_role == Role.STUDENT:
        return notification.student_email
    if notification.recipient_role == Role.PARENT:
        return notification.parent_email
    return notification.mentor_id


def is_recipient(notification: Notification, role: Role, identity: str) -> bool:
    """Check whether (role, identity) is the addressee of a notification."""
    if notification.recipient_role != role:
        return False
    target = _identity_of(notification)
    if target is None:
        return False
    if role == Role.MENTOR:
        return target == identity
    return target.lower() == identity.lower()


class NotificationService:
    """Append-only notification delivery over the document store."""

    def __init__(
        self,
        store: DocumentStore,
        policy: Optional[FanOutPolicy] = None,
        collection: Optional[str] = None,
    ):
        self._store = store
        self._policy = policy or FanOutPolicy()
        self._collection = collection or settings.notifications_collection

    async def dispatch(self, event: DomainEvent) -> list[Notification]:
        """Fan an event out and append one notification per intent."""
        notifications: list[Notification] = []
        for intent in self._policy.fan_out(event):
            notification = Notification(
                type=intent.type,
                recipient_role=intent.recipient_role,
                # The student email rides along on every doc as context.
                student_email=event.student_email,
                parent_email=intent.recipient if intent.recipient_role == Role.PARENT else None,
                mentor_id=intent.recipient if intent.recipient_role == Role.MENTOR else None,
                student_id=intent.student_id,
                note_id=intent.note_id,
                message=intent.message,
            )
            await self._store.set(
                join_path(self._collection, notification.id),
                notification.model_dump(mode="json"),
            )
            notifications.append(notification)
            logger.info(
                "notification_appended",
                notification_id=notification.id,
                type=notification.type.value,
                recipient_role=notification.recipient_role.value,
                student_id=notification.student_id,
            )
        return notifications

    async def unread_for(self, role: Role, identity: str) -> list[Notification]:
        """
        Unread notifications addressed to a recipient, newest first.

        ``identity`` is the email for students and parents, the user id for
        mentors.
        """
        docs = await self._store.list(self._collection)
        unread = [
            notification
            for notification in (Notification.model_validate(data) for _, data in docs)
            if not notification.read and is_recipient(notification, role, identity)
        ]
        unread.sort(key=lambda n: n.created_at, reverse=True)
        return unread

    async def mark_read(self, notification_id: str, reader: Actor) -> Notification:
        path = join_path(self._collection, notification_id)
        data = await self._store.get(path)
        if data is None:
            raise DataNotFoundError(
                f"Notification {notification_id} not found",
                resource_type="notification",
                resource_id=notification_id,
            )
        notification = Notification.model_validate(data)
        identity = reader.user_id if reader.role == Role.MENTOR else (reader.email or "")
        if not is_recipient(notification, reader.role, identity):
            logger.warning(
                "notification_read_denied",
                notification_id=notification_id,
                user_id=reader.user_id,
            )
            raise PermissionDeniedError(
                "Only the recipient may mark a notification read",
                role=reader.role.value,
                capability="notifications:read",
            )
        if notification.read:
            return notification
        await self._store.set(path, {"read": True}, merge=True)
        return notification.model_copy(update={"read": True})
