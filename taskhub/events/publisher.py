import json
import logging
from datetime import datetime, timezone
from typing import Any

from aio_pika import DeliveryMode, Message

from taskhub.events.broker import BROKER_ERRORS, BrokerClient
from taskhub.events.schemas import EventModel

logger = logging.getLogger(__name__)


class EventPublisher(BrokerClient):
    """Publishes domain events to the topic exchange.

    Publishing is fire-and-forget from the caller's point of view: the
    database write has already been committed, so a broker failure is logged
    and reported through the return value instead of raised.
    """

    async def publish(self, routing_key: str, event: EventModel | dict[str, Any]) -> bool:
        if not self.is_connected:
            logger.warning("Broker channel not available, connecting before publish")
            await self.connect()
        if not self.is_connected:
            logger.error(f"Dropping event {routing_key}: broker unavailable")
            return False

        payload = event.to_wire() if isinstance(event, EventModel) else event
        message = Message(
            json.dumps(payload, default=str).encode("utf-8"),
            content_type="application/json",
            delivery_mode=DeliveryMode.PERSISTENT,
            timestamp=datetime.now(timezone.utc),
        )

        try:
            await self._exchange.publish(message, routing_key=routing_key)
        except BROKER_ERRORS as e:
            logger.error(f"Failed to publish event {routing_key}: {e}")
            return False

        logger.info(f"Event published: {routing_key}")
        return True


# Publisher instance (singleton per worker)
event_publisher = EventPublisher()
