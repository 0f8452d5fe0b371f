from contextlib import asynccontextmanager
import asyncio
import logging
import time

from fastapi import FastAPI
from opentelemetry import trace
from starlette.requests import Request
import uvicorn

from integrations_api.api.errors import install_exception_handlers
from integrations_api.api.router import api_router
from integrations_api.core.config import get_settings
from integrations_api.core.metrics import HTTP_REQUESTS_PENDING, record_request, route_template
from integrations_api.core.telemetry import (
    configure_logging,
    extract_trace_context,
    setup_telemetry,
    shutdown_telemetry,
)
from integrations_api.services.broker import get_broker
from integrations_api.services.dispatcher import get_dispatcher
from integrations_api.services.repository import get_repository
from integrations_api.services.storage import get_storage
from integrations_api.workers.consumer import JobConsumer, log_task_failure

settings = get_settings()
logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    consumer: JobConsumer | None = None
    consumer_task: asyncio.Task[None] | None = None
    if settings.consumer_enabled:
        consumer = JobConsumer(
            repository=get_repository(),
            storage=get_storage(),
            message_timeout_seconds=settings.consumer_message_timeout_seconds,
        )
        consumer_task = asyncio.create_task(
            consumer.run_until_stopped(
                get_broker(),
                prefetch_count=settings.rabbitmq_prefetch_count,
                retry_seconds=settings.consumer_retry_seconds,
                max_backoff_seconds=settings.consumer_max_backoff_seconds,
            )
        )
        consumer_task.add_done_callback(log_task_failure)
    try:
        yield
    finally:
        # Drain in-flight deliveries before the pool and connection go away.
        # A consumer that already crashed was logged by its done callback.
        if consumer is not None and consumer_task is not None:
            consumer.request_stop()
            await asyncio.gather(consumer_task, return_exceptions=True)
        for close in (get_broker().close, get_repository().close):
            try:
                await close()
            except Exception:
                logger.exception("shutdown step failed step=%s", close.__qualname__)
        get_repository.cache_clear()
        get_broker.cache_clear()
        get_dispatcher.cache_clear()
        shutdown_telemetry(_telemetry_runtime)


configure_logging()
_telemetry_runtime = setup_telemetry(settings)
app = FastAPI(title=settings.app_name, lifespan=lifespan)
install_exception_handlers(app)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    started_at = time.perf_counter()
    endpoint = route_template(request.scope, request.app.router.routes)
    pending = HTTP_REQUESTS_PENDING.labels(request.method, endpoint)
    pending.inc()
    status_code = 500
    try:
        with tracer.start_as_current_span(
            f"{request.method} {endpoint}",
            context=extract_trace_context(request.headers),
            kind=trace.SpanKind.SERVER,
        ) as span:
            response = await call_next(request)
            status_code = response.status_code
            span.set_attribute("http.response.status_code", status_code)
    finally:
        pending.dec()
        record_request(request.method, endpoint, status_code, time.perf_counter() - started_at)
    elapsed_ms = (time.perf_counter() - started_at) * 1000.0
    logger.info(
        "http request method=%s path=%s status=%s duration_ms=%.2f",
        request.method,
        request.url.path,
        status_code,
        elapsed_ms,
    )
    return response


app.include_router(api_router)


if __name__ == "__main__":
    uvicorn.run(app, host=settings.host, port=settings.port)
