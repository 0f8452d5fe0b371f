from __future__ import annotations

import asyncio
from functools import lru_cache
import logging
from typing import Any, Mapping

import aio_pika
from aio_pika.abc import (
    AbstractChannel,
    AbstractExchange,
    AbstractQueue,
    AbstractRobustConnection,
)
from aio_pika.exceptions import AMQPError, ChannelInvalidStateError
from opentelemetry import trace

from integrations_api.core.config import get_settings
from integrations_api.services.errors import BrokerUnavailableError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

BROKER_ERRORS = (AMQPError, ChannelInvalidStateError, ConnectionError, OSError, asyncio.TimeoutError)


async def declare_exchange(channel: AbstractChannel, exchange_name: str) -> AbstractExchange:
    return await channel.declare_exchange(exchange_name, aio_pika.ExchangeType.DIRECT, durable=True)


async def declare_queue(
    channel: AbstractChannel,
    queue_name: str,
    *,
    arguments: Mapping[str, Any] | None = None,
) -> AbstractQueue:
    return await channel.declare_queue(queue_name, durable=True, arguments=dict(arguments) if arguments else None)


async def bind_queue(queue: AbstractQueue, exchange: AbstractExchange, routing_key: str) -> None:
    await queue.bind(exchange, routing_key=routing_key)


async def declare_and_bind_queue(
    channel: AbstractChannel,
    exchange: AbstractExchange,
    queue_name: str,
    *,
    arguments: Mapping[str, Any] | None = None,
) -> AbstractQueue:
    queue = await declare_queue(channel, queue_name, arguments=arguments)
    await bind_queue(queue, exchange, queue_name)
    return queue


class RabbitBroker:
    """Shared RabbitMQ connection with a publishing channel and declared topology.

    Every registry queue and the results queue are bound to one direct exchange
    under their own names, so a message's routing key selects exactly one queue.
    """

    def __init__(
        self,
        *,
        url: str,
        exchange_name: str,
        registry_queues: Mapping[str, str],
        results_queue: str,
        dead_letter_queue: str | None = None,
    ) -> None:
        self.url = url
        self.exchange_name = exchange_name
        self.registry_queues = registry_queues
        self.results_queue = results_queue
        self.dead_letter_queue = dead_letter_queue
        self._connection: AbstractRobustConnection | None = None
        self._channel: AbstractChannel | None = None
        self._exchange: AbstractExchange | None = None
        self._lock = asyncio.Lock()

    async def connect(self) -> AbstractExchange:
        async with self._lock:
            if self._exchange is not None:
                return self._exchange
            try:
                self._connection = await aio_pika.connect_robust(self.url)
                self._channel = await self._connection.channel(publisher_confirms=True)
                self._exchange = await self.setup_topology(self._channel)
            except BROKER_ERRORS as exc:
                await self._reset()
                raise BrokerUnavailableError(f"failed to connect to broker: {exc}") from exc
            logger.info(
                "broker connected exchange=%s queues=%s results_queue=%s",
                self.exchange_name,
                sorted(set(self.registry_queues.values())),
                self.results_queue,
            )
            return self._exchange

    async def setup_topology(self, channel: AbstractChannel) -> AbstractExchange:
        exchange = await declare_exchange(channel, self.exchange_name)
        for queue_name in sorted(set(self.registry_queues.values())):
            await declare_and_bind_queue(channel, exchange, queue_name)
        if self.dead_letter_queue:
            await declare_queue(channel, self.dead_letter_queue)
        await declare_and_bind_queue(
            channel,
            exchange,
            self.results_queue,
            arguments=self.results_queue_arguments(),
        )
        return exchange

    def results_queue_arguments(self) -> dict[str, Any] | None:
        if not self.dead_letter_queue:
            return None
        return {
            "x-dead-letter-exchange": "",
            "x-dead-letter-routing-key": self.dead_letter_queue,
        }

    async def publish(self, *, routing_key: str, body: bytes, headers: Mapping[str, str]) -> None:
        exchange = await self.connect()
        message = aio_pika.Message(
            body=body,
            headers=dict(headers),
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
        )
        with tracer.start_as_current_span("rabbitmq.publish") as span:
            span.set_attribute("messaging.destination.name", self.exchange_name)
            span.set_attribute("messaging.rabbitmq.destination.routing_key", routing_key)
            try:
                await exchange.publish(message, routing_key=routing_key)
            except BROKER_ERRORS as exc:
                raise BrokerUnavailableError(f"failed to publish to {routing_key}: {exc}") from exc

    async def open_consumer_queue(self, *, prefetch_count: int) -> AbstractQueue:
        """Open a dedicated channel with bounded prefetch and return the results queue."""
        await self.connect()
        connection = self._connection
        if connection is None:
            raise BrokerUnavailableError("broker connection was closed before the consumer attached")
        try:
            channel = await connection.channel()
            await channel.set_qos(prefetch_count=max(1, prefetch_count))
            return await declare_queue(channel, self.results_queue, arguments=self.results_queue_arguments())
        except BROKER_ERRORS as exc:
            raise BrokerUnavailableError(f"failed to open consumer on {self.results_queue}: {exc}") from exc

    async def close(self) -> None:
        async with self._lock:
            await self._reset()

    async def _reset(self) -> None:
        connection = self._connection
        self._connection = None
        self._channel = None
        self._exchange = None
        if connection is not None and not connection.is_closed:
            await connection.close()


@lru_cache
def get_broker() -> RabbitBroker:
    settings = get_settings()
    return RabbitBroker(
        url=settings.rabbitmq_url,
        exchange_name=settings.rabbitmq_exchange_name,
        registry_queues=settings.registry_queues(),
        results_queue=settings.rabbitmq_results_queue,
        dead_letter_queue=settings.rabbitmq_dead_letter_queue,
    )
