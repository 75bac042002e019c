"""Domain events exchanged between the tasks and notifications services.

On the wire every payload is a JSON object with camelCase keys; Python code
works with the snake_case attributes.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from taskhub.models import get_utc_now

TASK_CREATED = "task.created"
TASK_UPDATED = "task.updated"
TASK_DELETED = "task.deleted"
COMMENT_CREATED = "task.comment.created"

ROUTING_KEYS = (TASK_CREATED, TASK_UPDATED, TASK_DELETED, COMMENT_CREATED)


class EventModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class FieldChange(EventModel):
    old: Any = None
    new: Any = None


class TaskCreatedEvent(EventModel):
    task_id: int
    title: str
    created_by: int
    assignees: list[int] = Field(default_factory=list)
    priority: str | None = None
    status: str | None = None
    due_date: datetime | None = None
    timestamp: datetime = Field(default_factory=get_utc_now)


class TaskUpdatedEvent(EventModel):
    task_id: int
    title: str
    updated_by: int
    created_by: int
    assignees: list[int] = Field(default_factory=list)
    previous_assignees: list[int] = Field(default_factory=list)
    changes: dict[str, FieldChange] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=get_utc_now)


class TaskDeletedEvent(EventModel):
    task_id: int
    title: str
    deleted_by: int
    created_by: int
    assignees: list[int] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=get_utc_now)


class CommentCreatedEvent(EventModel):
    comment_id: int
    task_id: int
    task_title: str | None = None
    task_created_by: int
    assignees: list[int] = Field(default_factory=list)
    author_id: int
    text: str
    created_at: datetime = Field(default_factory=get_utc_now)


EVENT_MODELS: dict[str, type[EventModel]] = {
    TASK_CREATED: TaskCreatedEvent,
    TASK_UPDATED: TaskUpdatedEvent,
    TASK_DELETED: TaskDeletedEvent,
    COMMENT_CREATED: CommentCreatedEvent,
}
