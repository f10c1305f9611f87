"""Health endpoint tests."""

from collections.abc import AsyncGenerator

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from edugame.database import get_session


@pytest.fixture
def ready_client(app, client: AsyncClient, store) -> AsyncClient:
    """Client whose readiness probe uses the test store."""

    async def session_override() -> AsyncGenerator[AsyncSession, None]:
        async with store.transaction() as s:
            yield s

    app.dependency_overrides[get_session] = session_override
    return client


@pytest.mark.asyncio
async def test_health(client: AsyncClient) -> None:
    """GET /health returns 200 with healthy status."""
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_readiness(ready_client: AsyncClient) -> None:
    """GET /ready checks the database; Redis is reported as disabled."""
    response = await ready_client.get("/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ready"
    assert data["checks"]["database"] == "ok"
    assert data["checks"]["redis"] == "disabled"


@pytest.mark.asyncio
async def test_version(client: AsyncClient) -> None:
    """GET /version returns version and environment."""
    response = await client.get("/version")
    assert response.status_code == 200
    data = response.json()
    assert data["version"] == "0.1.0"
    assert "environment" in data
