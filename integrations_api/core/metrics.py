"""Prometheus HTTP metrics, kept in a registry owned by the service.

Series are labelled by the matched route template (``/jobs/{job_id}``), not the
raw path, so ids do not explode label cardinality.
"""

from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Gauge, Histogram, generate_latest
from starlette.routing import Match
from starlette.types import Scope

REGISTRY = CollectorRegistry(auto_describe=True)

HTTP_REQUESTS_PENDING = Gauge(
    "http_requests_pending",
    "Number of HTTP requests in progress",
    ["method", "endpoint"],
    registry=REGISTRY,
)
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status"],
    registry=REGISTRY,
)
HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_requests_duration_seconds",
    "Duration of HTTP requests in seconds",
    ["method", "endpoint", "status"],
    registry=REGISTRY,
)


def route_template(scope: Scope, routes) -> str:
    for route in routes:
        match, _ = route.matches(scope)
        if match == Match.FULL:
            return getattr(route, "path", scope["path"])
    return scope["path"]


def record_request(method: str, endpoint: str, status: int, duration_seconds: float) -> None:
    HTTP_REQUESTS_TOTAL.labels(method, endpoint, str(status)).inc()
    HTTP_REQUEST_DURATION_SECONDS.labels(method, endpoint, str(status)).observe(duration_seconds)


def render_latest() -> tuple[bytes, str]:
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
