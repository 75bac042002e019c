"""Client-side notification store.

Notifications reach a client two ways: a REST fetch of everything the server
has, and WebSocket pushes as they happen. The two overlap (a push can land
while a fetch is in flight, a reconnect refetches what was already pushed),
so the store keys everything by server id and merges instead of appending.
"""

from datetime import datetime, timezone
from typing import Any, Iterable

from pydantic import AliasChoices, BaseModel, Field, field_validator


class ClientNotification(BaseModel):
    id: int
    type: str
    message: str
    task_id: int | None = Field(
        default=None, validation_alias=AliasChoices("task_id", "taskId")
    )
    metadata: dict[str, Any] | None = None
    timestamp: datetime = Field(
        validation_alias=AliasChoices("timestamp", "created_at", "createdAt")
    )
    read: bool = False

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, v: datetime) -> datetime:
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)


def _coerce(item) -> ClientNotification:
    if isinstance(item, ClientNotification):
        return item
    return ClientNotification.model_validate(item)


class NotificationStore:
    def __init__(self, max_entries: int = 100):
        self.max_entries = max_entries
        self._entries: dict[int, ClientNotification] = {}

    def __len__(self):
        return len(self._entries)

    def __contains__(self, notification_id: int):
        return notification_id in self._entries

    def get(self, notification_id: int) -> ClientNotification | None:
        return self._entries.get(notification_id)

    @property
    def notifications(self) -> list[ClientNotification]:
        """Newest first."""
        return sorted(
            self._entries.values(), key=lambda n: (n.timestamp, n.id), reverse=True
        )

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self._entries.values() if not n.read)

    def apply_snapshot(self, items: Iterable) -> None:
        """Merge a REST fetch into the store.

        The server copy wins, except that a read flag set locally survives a
        snapshot still saying unread: the mark-read request may not have
        landed yet. Entries only known from pushes are kept.
        """
        for item in items:
            incoming = _coerce(item)
            local = self._entries.get(incoming.id)
            if local is not None and local.read and not incoming.read:
                incoming = incoming.model_copy(update={"read": True})
            self._entries[incoming.id] = incoming
        self._trim()

    def add_push(self, item) -> bool:
        """Insert a pushed notification; False if the id is already known."""
        incoming = _coerce(item)
        if incoming.id in self._entries:
            return False
        self._entries[incoming.id] = incoming
        self._trim()
        return incoming.id in self._entries

    def mark_read(self, notification_id: int) -> bool:
        entry = self._entries.get(notification_id)
        if entry is None or entry.read:
            return False
        self._entries[notification_id] = entry.model_copy(update={"read": True})
        return True

    def mark_all_read(self) -> int:
        changed = [nid for nid, n in self._entries.items() if not n.read]
        for nid in changed:
            self._entries[nid] = self._entries[nid].model_copy(update={"read": True})
        return len(changed)

    def clear(self) -> None:
        self._entries.clear()

    def _trim(self):
        if len(self._entries) <= self.max_entries:
            return
        keep = self.notifications[: self.max_entries]
        self._entries = {n.id: n for n in keep}
