from fastapi.testclient import TestClient

from integrations_api.main import app


def test_healthz() -> None:
    client = TestClient(app)
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_health_returns_no_content() -> None:
    client = TestClient(app)
    response = client.get("/health")
    assert response.status_code == 204
    assert response.content == b""


def test_unknown_route_returns_404_without_body() -> None:
    client = TestClient(app)
    response = client.get("/does-not-exist")
    assert response.status_code == 404
    assert response.content == b""


def test_error_body_is_documented() -> None:
    client = TestClient(app)

    schema = client.get("/openapi.json").json()

    responses = schema["paths"]["/jobs"]["post"]["responses"]
    assert responses["400"]["content"]["application/json"]["schema"]["$ref"].endswith("/ErrorResponse")
