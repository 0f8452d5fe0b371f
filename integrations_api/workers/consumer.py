from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Literal

from aio_pika.abc import AbstractIncomingMessage, AbstractQueue
from opentelemetry import trace
from pydantic import ValidationError

from integrations_api.core.telemetry import extract_trace_context
from integrations_api.schemas.jobs import JobMessage
from integrations_api.schemas.packages import PackageOutput
from integrations_api.services.broker import BROKER_ERRORS
from integrations_api.services.errors import (
    BrokerUnavailableError,
    InvalidJobMessageError,
    InvalidScrapeOutputError,
)
from integrations_api.services.storage import output_key

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

Outcome = Literal["acked", "nacked"]


def parse_job_message(body: bytes) -> JobMessage:
    try:
        return JobMessage.model_validate_json(body)
    except ValidationError as exc:
        raise InvalidJobMessageError(f"invalid job message: {exc.error_count()} error(s)") from exc


def parse_package_output(body: bytes) -> PackageOutput:
    try:
        return PackageOutput.model_validate_json(body)
    except ValidationError as exc:
        raise InvalidScrapeOutputError(f"scrape output is not a valid package: {exc.error_count()} error(s)") from exc


class JobConsumer:
    """Drains the results queue and reconciles each scrape output into Postgres.

    Every failure path nacks without requeue, so a message is never redelivered
    by the broker; with a dead-letter queue configured it is parked there.
    """

    def __init__(self, *, repository, storage, message_timeout_seconds: float | None = None) -> None:
        self.repository = repository
        self.storage = storage
        self.message_timeout_seconds = message_timeout_seconds or None
        self._queue: AbstractQueue | None = None
        self._consumer_tag: str | None = None
        self._in_flight: set[asyncio.Task[Any]] = set()
        self._stopping = asyncio.Event()

    async def handle(self, message: AbstractIncomingMessage) -> Outcome:
        task = asyncio.current_task()
        if task is not None:
            self._in_flight.add(task)
        try:
            return await self._handle(message)
        finally:
            if task is not None:
                self._in_flight.discard(task)

    async def _handle(self, message: AbstractIncomingMessage) -> Outcome:
        try:
            job_message = parse_job_message(message.body)
        except InvalidJobMessageError as exc:
            logger.warning("dropping poison message delivery_tag=%s: %s", message.delivery_tag, exc)
            await message.nack(requeue=False)
            return "nacked"

        context = extract_trace_context(message.headers)
        with tracer.start_as_current_span("consume_message", context=context) as span:
            span.set_attribute("job.id", str(job_message.job_id))
            span.set_attribute("job.package_name", job_message.package_name)
            try:
                if self.message_timeout_seconds:
                    await asyncio.wait_for(self.process(job_message), timeout=self.message_timeout_seconds)
                else:
                    await self.process(job_message)
            except asyncio.TimeoutError:
                logger.error(
                    "job processing timed out after %.1fs job_id=%s",
                    self.message_timeout_seconds,
                    job_message.job_id,
                )
                await message.nack(requeue=False)
                return "nacked"
            except Exception as exc:
                span.record_exception(exc)
                logger.exception("job processing failed job_id=%s", job_message.job_id)
                await message.nack(requeue=False)
                return "nacked"

            await message.ack()
            logger.info("job completed job_id=%s package=%s", job_message.job_id, job_message.package_name)
            return "acked"

    async def process(self, job_message: JobMessage) -> None:
        key = output_key(job_message.package_name)
        with tracer.start_as_current_span("storage.get") as span:
            span.set_attribute("storage.key", key)
            body = await self.storage.get(key)
        package = parse_package_output(body)
        await self.repository.complete_job_with_package(job_id=job_message.job_id, package=package)

    async def start(self, queue: AbstractQueue) -> None:
        try:
            consumer_tag = await queue.consume(self.handle)
        except BROKER_ERRORS as exc:
            raise BrokerUnavailableError(f"failed to consume from {queue.name}: {exc}") from exc
        self._queue = queue
        self._consumer_tag = consumer_tag
        logger.info("consumer started queue=%s", queue.name)

    async def stop(self) -> None:
        """Stop taking deliveries, then wait for the ones already being processed."""
        self._stopping.set()
        if self._queue is not None and self._consumer_tag is not None:
            try:
                await self._queue.cancel(self._consumer_tag)
            except Exception:
                logger.exception("failed to cancel consumer tag=%s", self._consumer_tag)
            self._consumer_tag = None
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)

    def request_stop(self) -> None:
        self._stopping.set()

    async def run_until_stopped(
        self,
        broker,
        *,
        prefetch_count: int,
        retry_seconds: float = 2.0,
        max_backoff_seconds: float = 30.0,
    ) -> None:
        backoff = retry_seconds
        attached = False
        while not attached and not self._stopping.is_set():
            try:
                queue = await broker.open_consumer_queue(prefetch_count=prefetch_count)
                await self.start(queue)
                attached = True
            except BrokerUnavailableError as exc:
                jitter = random.uniform(0.0, 0.5)
                sleep_for = min(backoff * (2.0 + jitter), max_backoff_seconds)
                logger.warning("consumer could not attach: %s; retry in %.1fs", exc, sleep_for)
                await self._wait_stopping(sleep_for)
                backoff = sleep_for

        if not attached:
            return

        try:
            await self._stopping.wait()
        finally:
            await self.stop()

    async def _wait_stopping(self, timeout: float) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass


def log_task_failure(task: asyncio.Task[Any]) -> None:
    """Done callback for the consumer task; a silent exit would leave the queue undrained."""
    if task.cancelled():
        logger.warning("consumer task cancelled")
        return
    exc = task.exception()
    if exc is not None:
        logger.error("consumer task exited with an error", exc_info=exc)
