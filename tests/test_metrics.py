from __future__ import annotations

from uuid import UUID

from fastapi.testclient import TestClient

from fakes import InMemoryRepository
from integrations_api.core.metrics import REGISTRY
from integrations_api.main import app
from integrations_api.services.repository import get_repository


def _sample(name: str, **labels: str) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


def test_metrics_endpoint_exposes_prometheus_text() -> None:
    client = TestClient(app)
    client.get("/healthz")

    response = client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert "http_requests_total" in response.text
    assert "http_requests_duration_seconds_bucket" in response.text
    assert "http_requests_pending" in response.text


def test_requests_are_counted_by_route_template() -> None:
    repository = InMemoryRepository()
    app.dependency_overrides[get_repository] = lambda: repository
    labels = {"method": "GET", "endpoint": "/jobs/{job_id}", "status": "404"}
    before = _sample("http_requests_total", **labels)
    try:
        client = TestClient(app)
        client.get(f"/jobs/{UUID(int=1)}")
        client.get(f"/jobs/{UUID(int=2)}")
    finally:
        app.dependency_overrides.clear()

    assert _sample("http_requests_total", **labels) == before + 2
    assert _sample("http_requests_duration_seconds_count", **labels) >= 2
    assert _sample("http_requests_pending", method="GET", endpoint="/jobs/{job_id}") == 0.0
    assert _sample("http_requests_total", method="GET", endpoint=f"/jobs/{UUID(int=1)}", status="404") == 0.0
