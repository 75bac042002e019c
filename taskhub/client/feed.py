import asyncio
import json
import logging
from urllib.parse import quote

import httpx
import websockets
from websockets.exceptions import WebSocketException

from taskhub.client.store import NotificationStore

logger = logging.getLogger(__name__)


class FeedAuthError(Exception):
    """The server refused the token; reconnecting will not help."""


def websocket_url(base_url: str, token: str) -> str:
    base = base_url.rstrip("/")
    if base.startswith("http"):
        base = "ws" + base[len("http"):]
    return f"{base}/notifications/ws?token={quote(token)}"


class NotificationFeed:
    """Keeps a NotificationStore in sync with one user's notifications.

    REST is the source of truth; the socket adds pushes in between fetches.
    Every (re)connect is followed by a refresh so anything pushed while the
    socket was down still ends up in the store.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        store: NotificationStore | None = None,
        reconnection_attempts: int = 5,
        reconnection_delay: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.store = store or NotificationStore()
        self.ws_url = websocket_url(base_url, token)
        self.reconnection_attempts = reconnection_attempts
        self.reconnection_delay = reconnection_delay
        self.is_connected = False
        self._http = httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {token}"},
            transport=transport,
        )

    async def refresh(self):
        response = await self._http.get("/notifications")
        if response.status_code in (401, 403):
            raise FeedAuthError(f"Server refused the token ({response.status_code})")
        response.raise_for_status()
        self.store.apply_snapshot(response.json())
        return self.store.notifications

    async def mark_read(self, notification_id: int) -> bool:
        changed = self.store.mark_read(notification_id)
        response = await self._http.patch(f"/notifications/{notification_id}/read")
        response.raise_for_status()
        return changed

    async def mark_all_read(self) -> int:
        changed = self.store.mark_all_read()
        response = await self._http.patch("/notifications/read-all")
        response.raise_for_status()
        return changed

    def handle_frame(self, raw: str | bytes) -> str | None:
        """Apply one socket frame to the store; returns the event name."""
        try:
            frame = json.loads(raw)
        except ValueError:
            logger.warning("Ignoring non-JSON frame")
            return None

        event = frame.get("event")
        if event == "notification":
            self.store.add_push(frame.get("data") or {})
        elif event == "error":
            message = (frame.get("data") or {}).get("message", "unknown error")
            raise FeedAuthError(message)
        return event

    async def listen(self, stop: asyncio.Event | None = None):
        """Follow the socket until ``stop`` is set or the retries run out.

        A connection only counts as established once the server has sent its
        ``connected`` greeting and the follow-up refresh has succeeded; until
        then every dropped socket uses up one of the reconnection attempts.
        """
        failures = 0
        while stop is None or not stop.is_set():
            try:
                async with websockets.connect(self.ws_url) as ws:
                    async for raw in ws:
                        if self.handle_frame(raw) == "connected":
                            await self.refresh()
                            self.is_connected = True
                            failures = 0
                        if stop is not None and stop.is_set():
                            return
            except FeedAuthError:
                logger.error("Notification socket rejected the token")
                raise
            except (OSError, httpx.HTTPError, WebSocketException) as e:
                logger.warning(f"Notification socket error: {e}")
            finally:
                self.is_connected = False

            failures += 1
            if failures > self.reconnection_attempts:
                logger.error("Giving up on the notification socket")
                return
            await asyncio.sleep(self.reconnection_delay)

    async def aclose(self):
        await self._http.aclose()
