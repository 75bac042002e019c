import logging
from datetime import datetime, timezone

from sqlalchemy import update
from sqlmodel import func, select
from sqlmodel.ext.asyncio.session import AsyncSession

from taskhub.models import Notification, NotificationPayload

logger = logging.getLogger(__name__)


class NotificationService:
    @staticmethod
    async def create_notification(payload: NotificationPayload, db: AsyncSession):
        logger.info(
            f"Creating notification {payload.type.value} for user {payload.user_id}"
        )
        notification = Notification(
            type=payload.type,
            message=payload.message,
            user_id=payload.user_id,
            task_id=payload.task_id,
            details=payload.metadata,
            read=False,
        )
        db.add(notification)
        await db.commit()
        await db.refresh(notification)
        return notification

    @staticmethod
    async def get_user_notifications(
        user_id: int, db: AsyncSession, unread_only: bool = False
    ):
        query = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            query = query.where(Notification.read == False)  # noqa: E712
        query = query.order_by(Notification.created_at.desc(), Notification.id.desc())

        result = await db.exec(query)
        return result.all()

    @staticmethod
    async def get_unread_count(user_id: int, db: AsyncSession) -> int:
        query = select(func.count(Notification.id)).where(
            Notification.user_id == user_id, Notification.read == False  # noqa: E712
        )
        result = await db.exec(query)
        return result.one()

    @staticmethod
    async def mark_as_read(notification_id: int, user_id: int, db: AsyncSession):
        """Returns None when the notification does not exist or is not the user's."""
        notification = await db.get(Notification, notification_id)
        if not notification or notification.user_id != user_id:
            return None

        if not notification.read:
            notification.read = True
            notification.updated_at = datetime.now(timezone.utc)
            await db.commit()
            await db.refresh(notification)
        return notification

    @staticmethod
    async def mark_all_as_read(user_id: int, db: AsyncSession) -> int:
        statement = (
            update(Notification)
            .where(Notification.user_id == user_id, Notification.read == False)  # noqa: E712
            .values(read=True, updated_at=datetime.now(timezone.utc))
        )
        result = await db.execute(statement)
        await db.commit()
        return result.rowcount
