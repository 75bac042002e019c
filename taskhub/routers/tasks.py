from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlmodel.ext.asyncio.session import AsyncSession

from taskhub.clients.auth_client import AuthClient, get_auth_client
from taskhub.core.security import CurrentUserDep
from taskhub.database import get_db
from taskhub.models import (
    CommentCreate,
    CommentResponse,
    TaskCreate,
    TaskHistoryResponse,
    TaskPriority,
    TaskResponse,
    TaskStatus,
    TaskUpdate,
)
from taskhub.services.comment_service import CommentService
from taskhub.services.task_service import TaskService

router = APIRouter(prefix="/tasks", tags=["tasks"])


def _not_found(task_id: int) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Task with id {task_id} not found",
    )


def _dump(task) -> dict:
    if isinstance(task, dict):
        return task
    return TaskResponse.model_validate(task).model_dump()


@router.post("/", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    task_data: TaskCreate,
    user: CurrentUserDep,
    db: AsyncSession = Depends(get_db),
    auth: AuthClient = Depends(get_auth_client),
):
    """Create a new task"""
    task = await TaskService.create_task(task_data, user.id, db)
    [enriched] = await auth.enrich_tasks([_dump(task)])
    return enriched


@router.get("/", response_model=list[TaskResponse])
async def get_tasks(
    user: CurrentUserDep,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=100),
    status: TaskStatus | None = None,
    priority: TaskPriority | None = None,
    assignee: int | None = None,
    db: AsyncSession = Depends(get_db),
    auth: AuthClient = Depends(get_auth_client),
):
    tasks = await TaskService.get_all_tasks(db, skip, limit, status, priority, assignee)
    return await auth.enrich_tasks([_dump(t) for t in tasks])


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(
    task_id: int,
    user: CurrentUserDep,
    db: AsyncSession = Depends(get_db),
    auth: AuthClient = Depends(get_auth_client),
):
    """Get a specific task by ID"""
    task = await TaskService.get_task(task_id, db)
    if not task:
        raise _not_found(task_id)
    [enriched] = await auth.enrich_tasks([_dump(task)])
    return enriched


@router.patch("/{task_id}", response_model=TaskResponse)
async def update_task(
    task_id: int,
    task_data: TaskUpdate,
    user: CurrentUserDep,
    db: AsyncSession = Depends(get_db),
    auth: AuthClient = Depends(get_auth_client),
):
    task = await TaskService.update_task(task_id, task_data, user.id, db)
    if not task:
        raise _not_found(task_id)
    [enriched] = await auth.enrich_tasks([_dump(task)])
    return enriched


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(task_id: int, user: CurrentUserDep, db: AsyncSession = Depends(get_db)):
    """Delete a task"""
    result = await TaskService.delete_task(task_id, user.id, db)
    if not result:
        raise _not_found(task_id)


@router.get("/{task_id}/history", response_model=list[TaskHistoryResponse])
async def get_task_history(task_id: int, user: CurrentUserDep, db: AsyncSession = Depends(get_db)):
    entries = await TaskService.get_history(task_id, db)
    if entries is None:
        raise _not_found(task_id)
    return [TaskHistoryResponse.from_entity(e) for e in entries]


@router.post(
    "/{task_id}/comments",
    response_model=CommentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_comment(
    task_id: int,
    comment_data: CommentCreate,
    user: CurrentUserDep,
    db: AsyncSession = Depends(get_db),
    auth: AuthClient = Depends(get_auth_client),
):
    comment = await CommentService.create_comment(task_id, comment_data, user.id, db)
    if not comment:
        raise _not_found(task_id)
    [enriched] = await auth.enrich_comments(
        [CommentResponse.model_validate(comment).model_dump()]
    )
    return enriched


@router.get("/{task_id}/comments", response_model=list[CommentResponse])
async def get_comments(
    task_id: int,
    user: CurrentUserDep,
    db: AsyncSession = Depends(get_db),
    auth: AuthClient = Depends(get_auth_client),
):
    comments = await CommentService.get_comments(task_id, db)
    if comments is None:
        raise _not_found(task_id)
    return await auth.enrich_comments(
        [CommentResponse.model_validate(c).model_dump() for c in comments]
    )
