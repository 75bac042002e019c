from datetime import datetime, timezone
from enum import Enum
import logging

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from taskhub.cache.decorators import async_cached, async_cached_expire
from taskhub.events import schemas
from taskhub.events.publisher import event_publisher
from taskhub.models import (
    Task,
    TaskCreate,
    TaskHistory,
    TaskHistoryAction,
    TaskPriority,
    TaskStatus,
    TaskUpdate,
)

logger = logging.getLogger(__name__)


def _jsonable(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, list):
        return list(value)
    return value


def _same_instant(old, new) -> bool:
    # SQLite hands back naive datetimes for timezone-aware columns
    if isinstance(old, datetime) and isinstance(new, datetime):
        if old.tzinfo is None:
            old = old.replace(tzinfo=timezone.utc)
        if new.tzinfo is None:
            new = new.replace(tzinfo=timezone.utc)
    return old == new


def diff_task(task: Task, update_data: dict) -> dict[str, schemas.FieldChange]:
    """Per-field old/new values for the fields the update really changes."""
    changes = {}
    for field, new in update_data.items():
        old = getattr(task, field)
        if _same_instant(old, new):
            continue
        changes[field] = schemas.FieldChange(old=_jsonable(old), new=_jsonable(new))
    return changes


async def record_history(
    db: AsyncSession,
    task_id: int,
    action: TaskHistoryAction,
    user_id: int | None,
    details: dict | None = None,
):
    entry = TaskHistory(task_id=task_id, action=action, user_id=user_id, details=details)
    db.add(entry)
    logger.info(f"History recorded: {action.value} on task {task_id} by user {user_id}")
    return entry


class TaskService:
    @staticmethod
    async def create_task(task_data: TaskCreate, user_id: int, db: AsyncSession):
        task = Task.model_validate(task_data, update={"created_by": user_id})
        db.add(task)
        await db.flush()
        await record_history(db, task.id, TaskHistoryAction.CREATED, user_id)
        await db.commit()
        await db.refresh(task)

        await event_publisher.publish(
            schemas.TASK_CREATED,
            schemas.TaskCreatedEvent(
                task_id=task.id,
                title=task.title,
                created_by=task.created_by,
                assignees=task.assignees,
                priority=task.priority.value,
                status=task.status.value,
                due_date=task.due_date,
            ),
        )
        return task

    @staticmethod
    async def get_all_tasks(
        db: AsyncSession,
        skip: int,
        limit: int,
        status: TaskStatus | None = None,
        priority: TaskPriority | None = None,
        assignee: int | None = None,
    ):
        query = select(Task)
        if status is not None:
            query = query.where(Task.status == status)
        if priority is not None:
            query = query.where(Task.priority == priority)
        query = query.order_by(Task.created_at.desc(), Task.id.desc())

        result = await db.exec(query)
        tasks = result.all()
        # assignees is a JSON column, filter portably in Python
        if assignee is not None:
            tasks = [t for t in tasks if assignee in (t.assignees or [])]
        return tasks[skip : skip + limit]

    @staticmethod
    @async_cached(lambda task_id, *_, **__: f"task:{task_id}", l2_ttl=120)
    async def get_task(task_id: int, db: AsyncSession):
        task = await db.get(Task, task_id)
        return task

    @staticmethod
    @async_cached_expire(lambda task_id, *_, **__: f"task:{task_id}")
    async def update_task(
        task_id: int, task_data: TaskUpdate, user_id: int, db: AsyncSession
    ):
        task = await db.get(Task, task_id)
        if not task:
            return None

        # only due_date may be cleared with an explicit null
        update_data = {
            k: v
            for k, v in task_data.model_dump(exclude_unset=True).items()
            if v is not None or k == "due_date"
        }
        changes = diff_task(task, update_data)
        if not changes:
            return task

        previous_assignees = list(task.assignees or [])
        task.sqlmodel_update(update_data)
        task.updated_at = datetime.now(timezone.utc)
        await record_history(
            db,
            task.id,
            TaskHistoryAction.UPDATED,
            user_id,
            {"changes": {k: v.model_dump() for k, v in changes.items()}},
        )
        await db.commit()
        await db.refresh(task)

        await event_publisher.publish(
            schemas.TASK_UPDATED,
            schemas.TaskUpdatedEvent(
                task_id=task.id,
                title=task.title,
                updated_by=user_id,
                created_by=task.created_by,
                assignees=task.assignees,
                previous_assignees=previous_assignees,
                changes=changes,
            ),
        )
        return task

    @staticmethod
    @async_cached_expire(lambda task_id, *_, **__: f"task:{task_id}")
    async def delete_task(task_id: int, user_id: int, db: AsyncSession):
        task = await db.get(Task, task_id)
        if not task:
            return False

        event = schemas.TaskDeletedEvent(
            task_id=task.id,
            title=task.title,
            deleted_by=user_id,
            created_by=task.created_by,
            assignees=list(task.assignees or []),
        )
        await db.delete(task)
        await db.commit()

        await event_publisher.publish(schemas.TASK_DELETED, event)
        return True

    @staticmethod
    async def get_history(task_id: int, db: AsyncSession):
        if not await db.get(Task, task_id):
            return None
        query = (
            select(TaskHistory)
            .where(TaskHistory.task_id == task_id)
            .order_by(TaskHistory.timestamp.desc(), TaskHistory.id.desc())
        )
        result = await db.exec(query)
        return result.all()
