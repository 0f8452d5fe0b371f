from __future__ import annotations

from functools import lru_cache
import logging
from typing import Mapping, Protocol

from opentelemetry import trace

from integrations_api.core.config import get_settings
from integrations_api.core.ids import new_job_id
from integrations_api.core.telemetry import current_trace_id, inject_trace_headers
from integrations_api.schemas.jobs import JobMessage, JobOut
from integrations_api.services.broker import get_broker
from integrations_api.services.errors import UnknownRegistryError
from integrations_api.services.repository import get_repository

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class JobPublisher(Protocol):
    async def publish(self, *, routing_key: str, body: bytes, headers: Mapping[str, str]) -> None: ...


class JobDispatcher:
    """Persists a scrape job and publishes it to its registry's queue.

    The job row is committed before the publish is attempted. A publish failure
    therefore leaves a ``processing`` job with no message; it is logged and the
    error is raised to the caller rather than retried here.
    """

    def __init__(self, *, repository, broker: JobPublisher, registry_queues: Mapping[str, str]) -> None:
        self.repository = repository
        self.broker = broker
        self.registry_queues = registry_queues

    def resolve_routing_key(self, registry: str) -> str:
        routing_key = self.registry_queues.get(registry)
        if not routing_key:
            raise UnknownRegistryError(f"registry {registry!r} is not supported")
        return routing_key

    async def submit(self, registry: str, package_name: str) -> JobOut:
        with tracer.start_as_current_span("dispatcher.submit") as span:
            span.set_attribute("job.registry", registry)
            span.set_attribute("job.package_name", package_name)

            job_id = new_job_id()
            routing_key = self.resolve_routing_key(registry)

            job = await self.repository.insert_job(
                job_id=job_id,
                registry=registry,
                package_name=package_name,
                trace_id=current_trace_id(),
            )
            span.set_attribute("job.id", job.id)

            message = JobMessage(job_id=job_id, registry=job.registry, package_name=job.package_name)
            try:
                await self.broker.publish(
                    routing_key=routing_key,
                    body=message.model_dump_json().encode("utf-8"),
                    headers=inject_trace_headers(),
                )
            except Exception:
                logger.exception(
                    "job persisted but publish failed; job left processing id=%s routing_key=%s",
                    job.id,
                    routing_key,
                )
                raise

            logger.info("job dispatched id=%s registry=%s routing_key=%s", job.id, registry, routing_key)
            return job


@lru_cache
def get_dispatcher() -> JobDispatcher:
    return JobDispatcher(
        repository=get_repository(),
        broker=get_broker(),
        registry_queues=get_settings().registry_queues(),
    )
