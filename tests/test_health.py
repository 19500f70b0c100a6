"""Health endpoint tests."""

import pytest
from httpx import AsyncClient

from famquest.redis_client import get_optional_redis, init_redis


@pytest.mark.asyncio
async def test_health(client: AsyncClient) -> None:
    """GET /health returns 200 with healthy status."""
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_readiness_without_redis(client: AsyncClient) -> None:
    """Without Redis the service stays in rotation, reported as degraded."""
    response = await client.get("/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "degraded"
    assert data["checks"]["database"] == "ok"
    assert data["checks"]["redis"] == "not configured"
    assert "pending_events" not in data["checks"]


@pytest.mark.asyncio
async def test_version(client: AsyncClient) -> None:
    """GET /version returns service, version and environment."""
    response = await client.get("/version")
    assert response.status_code == 200
    assert response.json() == {
        "service": "famquest-behavior-engine",
        "version": "0.1.0",
        "environment": "development",
    }


@pytest.mark.asyncio
async def test_empty_redis_url_leaves_redis_unconfigured() -> None:
    await init_redis("")
    assert get_optional_redis() is None
