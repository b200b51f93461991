"""HTTP tests for the library, stats and admin routes."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

from peek.db.database import Base, get_db
from peek.main import app

from support import sample_library

ADMIN = {"Authorization": "Bearer test-admin-key"}


@pytest.fixture
def client(tmp_path):
    path = tmp_path / "api.db"
    sync_engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(sync_engine)
    with Session(sync_engine) as session:
        session.add_all(sample_library())
        session.commit()
    sync_engine.dispose()

    # Each TestClient request runs on its own event loop, so never pool connections
    engine = create_async_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.headers["X-Correlation-ID"]


def test_library_page(client):
    response = client.post(
        "/api/v1/users/1/library/scenes",
        json={"sort": "title", "direction": "ASC", "per_page": 3},
    )
    assert response.status_code == 200
    body = response.json()
    assert [item["id"] for item in body["items"]] == ["4", "3", "1"]
    assert body["total"] == 4
    assert body["pages"] == 2
    assert body["items"][0]["performers"] == [{"id": "2", "name": "Bea"}]


def test_library_unknown_entity_type(client):
    response = client.post("/api/v1/users/1/library/widgets", json={})
    assert response.status_code == 404


def test_unfiltered_listing_requires_admin(client):
    body = {"apply_exclusions": False}
    assert client.post("/api/v1/users/1/library/tags", json=body).status_code == 403

    response = client.post("/api/v1/users/1/library/tags", json=body, headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["total"] == 4


def test_invalid_filter_is_unprocessable(client):
    response = client.post(
        "/api/v1/users/1/library/scenes",
        json={"filter": {"rating100": {"value": "lots"}}},
    )
    assert response.status_code == 422


def test_invalid_page_is_unprocessable(client):
    response = client.post("/api/v1/users/1/library/scenes", json={"page": 0})
    assert response.status_code == 422


def test_stats_empty_before_first_recompute(client):
    response = client.get("/api/v1/users/1/stats")
    assert response.status_code == 200
    assert response.json() == []


def test_admin_routes_require_key(client):
    assert client.get("/api/v1/admin/tasks").status_code == 401
    response = client.get("/api/v1/admin/tasks", headers={"Authorization": "Bearer wrong"})
    assert response.status_code == 401


def test_admin_reads_restrictions(client):
    response = client.get("/api/v1/admin/users/1/restrictions", headers=ADMIN)
    assert response.status_code == 200
    assert response.json() == []
