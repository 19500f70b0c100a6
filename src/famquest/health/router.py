"""Liveness, readiness and version endpoints."""

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from famquest.config import get_settings
from famquest.database import get_session
from famquest.redis_client import get_optional_redis
from famquest.workers.event_consumer import CONSUMER_GROUP, STREAM_KINDS

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe."""
    return {"status": "healthy"}


async def _pending_events(redis: object) -> int:
    """Messages delivered to the behavior consumer group but not yet acked."""
    pending = 0
    for stream in STREAM_KINDS:
        try:
            groups = await redis.xinfo_groups(stream)  # type: ignore[attr-defined]
        except aioredis.ResponseError:
            continue  # stream not created yet
        for group in groups:
            if group.get("name") == CONSUMER_GROUP:
                pending += int(group.get("pending", 0))
    return pending


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_session),  # noqa: B008
    redis=Depends(get_optional_redis),  # noqa: B008
) -> JSONResponse:
    """Readiness probe.

    The database is required (503 without it). Redis only carries
    notifications and the event streams, so losing it degrades the service
    without taking it out of rotation.
    """
    checks: dict[str, object] = {}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as exc:
        checks["database"] = f"error: {exc}"

    if redis is None:
        checks["redis"] = "not configured"
    else:
        try:
            await redis.ping()
            checks["redis"] = "ok"
            checks["pending_events"] = await _pending_events(redis)
        except Exception as exc:
            checks["redis"] = f"error: {exc}"

    if checks["database"] != "ok":
        status, code = "unavailable", 503
    elif checks["redis"] != "ok":
        status, code = "degraded", 200
    else:
        status, code = "ready", 200
    return JSONResponse(status_code=code, content={"status": status, "checks": checks})


@router.get("/version")
async def version() -> dict[str, str]:
    settings = get_settings()
    return {
        "service": "famquest-behavior-engine",
        "version": settings.app_version,
        "environment": settings.environment,
    }
