"""Redis client shared by domain event publishing and the health checks.

Redis is optional for the HTTP app: with an empty ``FQ_REDIS_URL`` no client
is created, publishing is skipped and readiness reports "not configured".
"""

import logging

import redis.asyncio as redis

logger = logging.getLogger(__name__)

_pool: redis.Redis | None = None


async def init_redis(url: str | None) -> None:
    global _pool  # noqa: PLW0603
    if not url:
        logger.info("Redis URL not set; domain events will not be published")
        return
    _pool = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
        health_check_interval=30,
    )


async def close_redis() -> None:
    global _pool  # noqa: PLW0603
    if _pool is not None:
        await _pool.aclose()
        _pool = None


def get_optional_redis() -> redis.Redis | None:
    """FastAPI dependency: the shared client, or None when Redis is not configured."""
    return _pool
