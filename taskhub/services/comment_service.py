import logging

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from taskhub.events import schemas
from taskhub.events.publisher import event_publisher
from taskhub.models import Comment, CommentCreate, Task, TaskHistoryAction
from taskhub.services.task_service import record_history

logger = logging.getLogger(__name__)


class CommentService:
    @staticmethod
    async def create_comment(
        task_id: int, comment_data: CommentCreate, user_id: int, db: AsyncSession
    ):
        task = await db.get(Task, task_id)
        if not task:
            return None

        comment = Comment(task_id=task_id, author_id=user_id, text=comment_data.text)
        db.add(comment)
        await db.flush()
        await record_history(
            db,
            task_id,
            TaskHistoryAction.COMMENTED,
            user_id,
            {"commentId": comment.id, "text": comment.text},
        )
        await db.commit()
        await db.refresh(comment)

        await event_publisher.publish(
            schemas.COMMENT_CREATED,
            schemas.CommentCreatedEvent(
                comment_id=comment.id,
                task_id=task_id,
                task_title=task.title,
                task_created_by=task.created_by,
                assignees=list(task.assignees or []),
                author_id=user_id,
                text=comment.text,
                created_at=comment.created_at,
            ),
        )
        logger.info(f"Comment {comment.id} created on task {task_id} by user {user_id}")
        return comment

    @staticmethod
    async def get_comments(task_id: int, db: AsyncSession):
        if not await db.get(Task, task_id):
            return None
        query = (
            select(Comment)
            .where(Comment.task_id == task_id)
            .order_by(Comment.created_at.desc(), Comment.id.desc())
        )
        result = await db.exec(query)
        return result.all()
