import logging
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)


def room_name(user_id: int) -> str:
    return f"user:{user_id}"


class ConnectionManager:
    """
    Tracks live WebSocket connections grouped into per-user rooms.

    A user may hold several sockets (tabs, devices); a push to the user goes
    to all of them. A socket whose send fails is dropped from its room.
    """

    def __init__(self):
        self._rooms: dict[int, set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, user_id: int, username: str | None = None):
        self._rooms.setdefault(user_id, set()).add(websocket)
        logger.info(f"Client connected to {room_name(user_id)} (username={username})")
        await websocket.send_json(
            {
                "event": "connected",
                "data": {
                    "message": "Connected to notifications server",
                    "userId": user_id,
                },
            }
        )

    def disconnect(self, websocket: WebSocket, user_id: int):
        sockets = self._rooms.get(user_id)
        if sockets is None:
            return
        sockets.discard(websocket)
        if not sockets:
            del self._rooms[user_id]
        logger.info(f"Client disconnected from {room_name(user_id)}")

    def is_user_connected(self, user_id: int) -> bool:
        return bool(self._rooms.get(user_id))

    def connected_users_count(self) -> int:
        return len(self._rooms)

    async def send_to_user(self, user_id: int, event: str, data: dict[str, Any]) -> int:
        """Send to every socket in the user's room; returns how many got it."""
        delivered = 0
        for websocket in list(self._rooms.get(user_id, ())):
            try:
                await websocket.send_json({"event": event, "data": data})
                delivered += 1
            except Exception as e:  # any transport error means the socket is gone
                logger.warning(f"Dropping socket in {room_name(user_id)}: {e}")
                self.disconnect(websocket, user_id)
        if delivered:
            logger.info(f"Sent '{event}' to {room_name(user_id)} ({delivered} socket(s))")
        return delivered


# Connection manager instance (singleton per worker)
connection_manager = ConnectionManager()
