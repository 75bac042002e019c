from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, field_validator
from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, Text
from sqlmodel import Column, Field, SQLModel


def get_utc_now():
    """Helper function to get current UTC time with timezone"""
    return datetime.now(timezone.utc)


def unique_ids(ids) -> list[int]:
    """Drop duplicates, keeping the first occurrence of each id."""
    return list(dict.fromkeys(int(i) for i in ids or []))


class TaskPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class TaskStatus(str, Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    REVIEW = "REVIEW"
    DONE = "DONE"


class TaskHistoryAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    COMMENTED = "commented"


class NotificationType(str, Enum):
    TASK_CREATED = "task.created"
    TASK_UPDATED = "task.updated"
    TASK_DELETED = "task.deleted"
    TASK_ASSIGNED = "task.assigned"
    TASK_STATUS_CHANGED = "task.status_changed"
    COMMENT_CREATED = "task.comment.created"


# ---------------------------------------------------------------- tasks


class TaskBase(SQLModel):
    """Base model with shared fields"""

    title: str = Field(min_length=1, max_length=200, index=True)
    description: str = Field(default="")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM)
    status: TaskStatus = Field(default=TaskStatus.TODO)


class Task(TaskBase, table=True):
    """Database model"""

    __tablename__ = "tasks"

    id: int | None = Field(default=None, primary_key=True)
    due_date: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    assignees: list[int] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )
    created_by: int = Field(index=True)
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )


class TaskCreate(TaskBase):
    """Schema for creating a task"""

    due_date: datetime | None = None
    assignees: list[int] = Field(default_factory=list)

    @field_validator("assignees")
    @classmethod
    def _dedupe_assignees(cls, v):
        return unique_ids(v)


class TaskUpdate(SQLModel):
    """Schema for updating a task - all fields optional"""

    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    priority: TaskPriority | None = None
    status: TaskStatus | None = None
    due_date: datetime | None = None
    assignees: list[int] | None = None

    @field_validator("assignees")
    @classmethod
    def _dedupe_assignees(cls, v):
        return None if v is None else unique_ids(v)


class TaskResponse(TaskBase):
    """Schema for task responses"""

    id: int
    due_date: datetime | None = None
    assignees: list[int]
    created_by: int
    created_by_username: str | None = None
    created_at: datetime
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


# ------------------------------------------------------------- comments


class Comment(SQLModel, table=True):
    __tablename__ = "comments"

    id: int | None = Field(default=None, primary_key=True)
    task_id: int = Field(
        sa_column=Column(
            Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False
        )
    )
    author_id: int
    text: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class CommentCreate(SQLModel):
    text: str = Field(min_length=1, max_length=5000)


class CommentResponse(SQLModel):
    id: int
    task_id: int
    author_id: int
    author_name: str | None = None
    text: str
    created_at: datetime

    model_config = {"from_attributes": True}


# -------------------------------------------------------------- history


class TaskHistory(SQLModel, table=True):
    __tablename__ = "task_history"

    id: int | None = Field(default=None, primary_key=True)
    task_id: int = Field(
        sa_column=Column(
            Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False
        )
    )
    action: TaskHistoryAction
    user_id: int | None = None
    # "metadata" is reserved on declarative classes
    details: dict[str, Any] | None = Field(
        default=None, sa_column=Column("metadata", JSON, nullable=True)
    )
    timestamp: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class TaskHistoryResponse(BaseModel):
    id: int
    task_id: int
    action: TaskHistoryAction
    user_id: int | None = None
    metadata: dict[str, Any] | None = None
    timestamp: datetime

    @classmethod
    def from_entity(cls, entry: TaskHistory) -> "TaskHistoryResponse":
        return cls(
            id=entry.id,
            task_id=entry.task_id,
            action=entry.action,
            user_id=entry.user_id,
            metadata=entry.details,
            timestamp=entry.timestamp,
        )


# -------------------------------------------------------- notifications


class Notification(SQLModel, table=True):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_id_read", "user_id", "read"),
        Index("ix_notifications_user_id_created_at", "user_id", "created_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    type: NotificationType
    message: str = Field(sa_column=Column(Text, nullable=False))
    user_id: int
    task_id: int
    read: bool = Field(default=False)
    details: dict[str, Any] | None = Field(
        default=None, sa_column=Column("metadata", JSON, nullable=True)
    )
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class NotificationPayload(BaseModel):
    """A notification derived from a domain event, before it is stored."""

    type: NotificationType
    user_id: int
    task_id: int
    message: str
    metadata: dict[str, Any] | None = None


class NotificationResponse(BaseModel):
    id: int
    type: NotificationType
    message: str
    user_id: int
    task_id: int
    read: bool
    metadata: dict[str, Any] | None = None
    created_at: datetime

    @classmethod
    def from_entity(cls, notification: Notification) -> "NotificationResponse":
        return cls(
            id=notification.id,
            type=notification.type,
            message=notification.message,
            user_id=notification.user_id,
            task_id=notification.task_id,
            read=notification.read,
            metadata=notification.details,
            created_at=notification.created_at,
        )


class UnreadCountResponse(BaseModel):
    count: int
