from __future__ import annotations

import asyncio
from uuid import UUID

import pytest
from fastapi.testclient import TestClient

from fakes import InMemoryRepository
from integrations_api.main import app
from integrations_api.schemas.packages import PackageOutput
from integrations_api.services.repository import get_repository


@pytest.fixture
def repository() -> InMemoryRepository:
    repository = InMemoryRepository()
    for value, name in enumerate(["serde", "tokio", "rand"], start=1):
        asyncio.run(
            repository.upsert_package(
                PackageOutput(id=UUID(int=value), registry="crates.io", name=name, version="1.0.0", downloads=value)
            )
        )
    return repository


@pytest.fixture
def packages_client(repository: InMemoryRepository) -> TestClient:
    app.dependency_overrides[get_repository] = lambda: repository
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_list_packages_paginates(packages_client: TestClient) -> None:
    first = packages_client.get("/packages", params={"limit": 2}).json()
    assert [package["name"] for package in first["data"]] == ["serde", "tokio"]
    assert first["next_cursor"] == str(UUID(int=2))

    second = packages_client.get("/packages", params={"limit": 2, "after": first["next_cursor"]}).json()
    assert [package["name"] for package in second["data"]] == ["rand"]
    assert second["next_cursor"] is None


def test_list_packages_descending(packages_client: TestClient) -> None:
    body = packages_client.get("/packages", params={"order": "desc", "limit": 1}).json()

    assert [package["name"] for package in body["data"]] == ["rand"]
    assert body["next_cursor"] == str(UUID(int=3))


def test_get_package_by_id(packages_client: TestClient) -> None:
    response = packages_client.get(f"/packages/{UUID(int=2)}")

    assert response.status_code == 200
    assert response.json()["data"] == {
        "id": str(UUID(int=2)),
        "registry": "crates.io",
        "name": "tokio",
        "version": "1.0.0",
        "downloads": 2,
    }


def test_get_missing_package_returns_404(packages_client: TestClient) -> None:
    response = packages_client.get(f"/packages/{UUID(int=9)}")

    assert response.status_code == 404
    assert "not found" in response.json()["message"]


def test_list_packages_rejects_bad_limit(packages_client: TestClient) -> None:
    response = packages_client.get("/packages", params={"limit": 1000})

    assert response.status_code == 400
