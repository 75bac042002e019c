import json
import logging

from aio_pika.abc import AbstractChannel, AbstractExchange, AbstractIncomingMessage

from taskhub.core.config import get_settings
from taskhub.events.broker import BrokerClient
from taskhub.events.schemas import ROUTING_KEYS

logger = logging.getLogger(__name__)


class NotificationsConsumer(BrokerClient):
    """
    Single consumer of the notifications queue.

    Delivery is at-least-once: a message is acked only after the dispatcher
    returns, and anything that blows up while handling it is nacked without
    requeue so a poison message cannot loop.
    """

    def __init__(self, dispatcher, queue_name: str | None = None, **kwargs):
        super().__init__(**kwargs)
        self.dispatcher = dispatcher
        self._queue_name = queue_name

    @property
    def queue_name(self) -> str:
        return self._queue_name or get_settings().notifications_queue

    async def _setup(self, channel: AbstractChannel, exchange: AbstractExchange):
        queue = await channel.declare_queue(self.queue_name, durable=True)
        for routing_key in ROUTING_KEYS:
            await queue.bind(exchange, routing_key=routing_key)
        await queue.consume(self.handle_message, no_ack=False)
        logger.info(
            f"Consuming '{self.queue_name}' bound to {', '.join(ROUTING_KEYS)}"
        )

    async def handle_message(self, message: AbstractIncomingMessage):
        routing_key = message.routing_key
        try:
            body = json.loads(message.body)
            logger.info(f"Event received: {routing_key}")
            await self.dispatcher.process_event(routing_key, body)
        except Exception:
            logger.exception(f"Failed to process {routing_key} message, rejecting")
            await message.nack(requeue=False)
            return
        await message.ack()
