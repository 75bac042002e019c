import asyncio
import logging

import aio_pika
from aio_pika import ExchangeType
from aio_pika.abc import AbstractChannel, AbstractConnection, AbstractExchange
from aio_pika.exceptions import AMQPError

from taskhub.core.config import get_settings

logger = logging.getLogger(__name__)

BROKER_ERRORS = (AMQPError, OSError)


class BrokerClient:
    """
    Owns one connection/channel to the broker and the topic exchange.

    A failed connect, or the connection dropping while we are not shutting
    down, schedules another attempt after a fixed delay. There is no backoff
    growth and no retry cap.
    """

    def __init__(
        self,
        url: str | None = None,
        exchange_name: str | None = None,
        reconnect_delay: float | None = None,
    ):
        self._url = url
        self._exchange_name = exchange_name
        self._reconnect_delay = reconnect_delay
        self._connection: AbstractConnection | None = None
        self._channel: AbstractChannel | None = None
        self._exchange: AbstractExchange | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._connect_lock: asyncio.Lock | None = None
        self._closing = False

    @property
    def url(self) -> str:
        return self._url or get_settings().rabbitmq_url

    @property
    def exchange_name(self) -> str:
        return self._exchange_name or get_settings().events_exchange

    @property
    def reconnect_delay(self) -> float:
        if self._reconnect_delay is not None:
            return self._reconnect_delay
        return get_settings().broker_reconnect_delay

    @property
    def is_connected(self) -> bool:
        return self._channel is not None and not self._channel.is_closed

    async def _setup(self, channel: AbstractChannel, exchange: AbstractExchange):
        """Hook for subclasses: declare queues, start consuming, etc."""

    async def start(self) -> bool:
        """Connect, keeping the reconnect timer armed until close()."""
        self._closing = False
        return await self.connect()

    async def connect(self) -> bool:
        if self._connect_lock is None:
            self._connect_lock = asyncio.Lock()

        async with self._connect_lock:
            if self.is_connected:
                return True

            connection = None
            try:
                connection = await aio_pika.connect(self.url)
                channel = await connection.channel()
                exchange = await channel.declare_exchange(
                    self.exchange_name, ExchangeType.TOPIC, durable=True
                )
                await self._setup(channel, exchange)
            except BROKER_ERRORS as e:
                logger.error(f"Failed to connect to broker: {e}")
                if connection is not None and not connection.is_closed:
                    await connection.close()
                self._schedule_reconnect()
                return False

            connection.close_callbacks.add(self._on_connection_closed)
            self._connection = connection
            self._channel = channel
            self._exchange = exchange
            logger.info(f"Connected to broker, exchange '{self.exchange_name}'")
            return True

    def _on_connection_closed(self, _sender, exc=None):
        self._connection = None
        self._channel = None
        self._exchange = None
        if self._closing:
            return
        logger.warning(f"Broker connection lost: {exc}")
        self._schedule_reconnect()

    def _schedule_reconnect(self):
        if self._closing:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        logger.info(f"Reconnecting to broker in {self.reconnect_delay}s")
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect_later()
        )

    async def _reconnect_later(self):
        await asyncio.sleep(self.reconnect_delay)
        self._reconnect_task = None
        await self.connect()

    async def close(self):
        self._closing = True
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None

        channel, connection = self._channel, self._connection
        self._channel = self._connection = self._exchange = None
        try:
            if channel is not None and not channel.is_closed:
                await channel.close()
            if connection is not None and not connection.is_closed:
                await connection.close()
        except BROKER_ERRORS as e:
            logger.error(f"Error while closing broker connection: {e}")
        logger.info("Disconnected from broker")
