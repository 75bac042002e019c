"""Turn domain events into per-user notifications.

Rules shared by every event type:

* the user who caused the event is never notified about it;
* each user gets at most one notification per event;
* recipients of each kind of notification come out in a stable order: task
  creator first, then assignees in the order the event lists them.
"""

import logging
from typing import Any, Iterable

from taskhub.events import schemas
from taskhub.models import NotificationPayload, NotificationType, unique_ids

logger = logging.getLogger(__name__)


def derive_notifications(
    routing_key: str, body: dict[str, Any]
) -> list[NotificationPayload]:
    """Map one event to the notifications it should produce.

    Raises pydantic.ValidationError for a malformed payload of a known event.
    """
    model = schemas.EVENT_MODELS.get(routing_key)
    if model is None:
        logger.warning(f"Unknown routing key: {routing_key}")
        return []

    event = model.model_validate(body)
    builder = _BUILDERS[routing_key]
    return builder(event, body)


def _recipients(ids: Iterable[int], exclude: Iterable[int] = ()) -> list[int]:
    excluded = set(exclude)
    return [uid for uid in unique_ids(ids) if uid not in excluded]


def _payloads(user_ids, type_, task_id, message, metadata):
    return [
        NotificationPayload(
            type=type_,
            user_id=uid,
            task_id=task_id,
            message=message,
            metadata=metadata,
        )
        for uid in user_ids
    ]


def _task_created(event: schemas.TaskCreatedEvent, metadata):
    assignees = _recipients(event.assignees, exclude=[event.created_by])
    return _payloads(
        assignees,
        NotificationType.TASK_ASSIGNED,
        event.task_id,
        f"You were assigned to task: {event.title}",
        metadata,
    )


def _task_updated(event: schemas.TaskUpdatedEvent, metadata):
    actor = event.updated_by
    current = unique_ids(event.assignees)
    previous = set(event.previous_assignees)

    added = _recipients([a for a in current if a not in previous], exclude=[actor])
    removed = _recipients(
        [p for p in unique_ids(event.previous_assignees) if p not in set(current)],
        exclude=[actor],
    )

    notifications = _payloads(
        added,
        NotificationType.TASK_ASSIGNED,
        event.task_id,
        f"You were assigned to task: {event.title}",
        metadata,
    )
    notifications += _payloads(
        removed,
        NotificationType.TASK_UPDATED,
        event.task_id,
        f"You were removed from task: {event.title}",
        metadata,
    )

    changed = {
        field: change
        for field, change in event.changes.items()
        if field != "assignees" and change.old != change.new
    }
    if not changed:
        return notifications

    if "status" in changed:
        status = changed["status"]
        type_ = NotificationType.TASK_STATUS_CHANGED
        message = (
            f"Task '{event.title}' status changed from {status.old} to {status.new}"
        )
    else:
        type_ = NotificationType.TASK_UPDATED
        message = f"Task '{event.title}' updated: {', '.join(sorted(changed))}"

    stakeholders = _recipients(
        [event.created_by, *current], exclude=[actor, *added, *removed]
    )
    return notifications + _payloads(
        stakeholders, type_, event.task_id, message, metadata
    )


def _task_deleted(event: schemas.TaskDeletedEvent, metadata):
    stakeholders = _recipients(
        [event.created_by, *event.assignees], exclude=[event.deleted_by]
    )
    return _payloads(
        stakeholders,
        NotificationType.TASK_DELETED,
        event.task_id,
        f"Task deleted: {event.title}",
        metadata,
    )


def _comment_created(event: schemas.CommentCreatedEvent, metadata):
    stakeholders = _recipients(
        [event.task_created_by, *event.assignees], exclude=[event.author_id]
    )
    return _payloads(
        stakeholders,
        NotificationType.COMMENT_CREATED,
        event.task_id,
        f"New comment on: {event.task_title or 'task'}",
        metadata,
    )


_BUILDERS = {
    schemas.TASK_CREATED: _task_created,
    schemas.TASK_UPDATED: _task_updated,
    schemas.TASK_DELETED: _task_deleted,
    schemas.COMMENT_CREATED: _comment_created,
}
