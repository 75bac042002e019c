import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from taskhub.models import Notification
from taskhub.services.notification_rules import derive_notifications
from taskhub.services.notification_service import NotificationService
from taskhub.websocket.manager import ConnectionManager, connection_manager

logger = logging.getLogger(__name__)


def push_payload(notification: Notification) -> dict[str, Any]:
    """Shape of a notification as pushed over the socket."""
    return {
        "id": notification.id,
        "type": notification.type.value,
        "message": notification.message,
        "taskId": notification.task_id,
        "metadata": notification.details,
        "timestamp": notification.created_at.isoformat(),
    }


class NotificationDispatcher:
    """Derive, persist and push the notifications for one domain event."""

    def __init__(self, session_factory=None, manager: ConnectionManager | None = None):
        if session_factory is None:
            from taskhub.database import async_session as session_factory
        self.session_factory = session_factory
        self.manager = manager or connection_manager

    async def process_event(self, routing_key: str, body: dict[str, Any]) -> list[Notification]:
        payloads = derive_notifications(routing_key, body)
        if not payloads:
            logger.info(f"No recipients for {routing_key}")
            return []

        created = []
        for payload in payloads:
            try:
                async with self.session_factory() as db:
                    notification = await NotificationService.create_notification(payload, db)
            except SQLAlchemyError as e:
                logger.error(
                    f"Failed to store notification for user {payload.user_id}: {e}"
                )
                continue
            created.append(notification)

            if self.manager.is_user_connected(payload.user_id):
                await self.manager.send_to_user(
                    payload.user_id, "notification", push_payload(notification)
                )
            logger.info(
                f"Notification {notification.id} ({payload.type.value}) "
                f"created for user {payload.user_id}"
            )

        return created
