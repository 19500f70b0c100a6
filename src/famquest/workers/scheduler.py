"""arq worker: scheduled sweeps and reports, plus the behavior event consumer.

Run with: arq famquest.workers.scheduler.WorkerSettings
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict

import redis.asyncio as aioredis
from arq import cron
from arq.connections import RedisSettings

from famquest.analytics.report_service import run_daily_reports, run_weekly_reports
from famquest.behavior.sweep import run_maintenance, run_penalty_sweep
from famquest.config import get_settings
from famquest.database import close_db, get_session_factory, init_db
from famquest.workers.event_consumer import BehaviorEventConsumer

logger = logging.getLogger(__name__)


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Open the database and Redis, start the stream consumer."""
    settings = get_settings()
    await init_db(settings.database_url)

    redis_client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
    )
    consumer = BehaviorEventConsumer(
        redis_client,
        get_session_factory(),
        consumer_name=settings.consumer_name,
    )
    ctx["redis"] = redis_client
    ctx["consumer"] = consumer
    ctx["consumer_task"] = asyncio.create_task(consumer.run())
    logger.info("Behavior worker started (consumer=%s)", settings.consumer_name)


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    consumer: BehaviorEventConsumer | None = ctx.get("consumer")
    task: asyncio.Task | None = ctx.get("consumer_task")  # type: ignore[type-arg]
    if consumer:
        consumer.stop()
    if task:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    redis_client: aioredis.Redis | None = ctx.get("redis")
    if redis_client:
        await redis_client.aclose()
    await close_db()
    logger.info("Behavior worker shut down")


async def daily_penalty_sweep(ctx: dict) -> dict:  # type: ignore[type-arg]
    """Missed quests, stale streaks and behavior flags from the previous day."""
    async with get_session_factory()() as db:
        summary = await run_penalty_sweep(db, ctx.get("redis"))
    return asdict(summary)


async def hourly_maintenance(ctx: dict) -> dict:  # type: ignore[type-arg]
    """Expire penalties past their cooldown and break stale streaks."""
    async with get_session_factory()() as db:
        summary = await run_maintenance(db, ctx.get("redis"))
    return asdict(summary)


async def daily_reports(ctx: dict) -> dict:  # type: ignore[type-arg]
    async with get_session_factory()() as db:
        summary = await run_daily_reports(db, ctx.get("redis"))
    return asdict(summary)


async def weekly_reports(ctx: dict) -> dict:  # type: ignore[type-arg]
    async with get_session_factory()() as db:
        summary = await run_weekly_reports(db, ctx.get("redis"))
    return asdict(summary)


_settings = get_settings()


class WorkerSettings:
    """arq worker settings. All cron times are UTC."""

    functions = [daily_penalty_sweep, hourly_maintenance, daily_reports, weekly_reports]
    cron_jobs = [
        cron(daily_penalty_sweep, hour=_settings.penalty_sweep_hour, minute=0),
        cron(hourly_maintenance, minute=15),
        cron(daily_reports, hour=_settings.daily_report_hour, minute=0),
        cron(
            weekly_reports,
            weekday=_settings.weekly_report_weekday,
            hour=_settings.weekly_report_hour,
            minute=0,
        ),
    ]
    redis_settings = RedisSettings.from_dsn(_settings.arq_redis_url)
    on_startup = startup
    on_shutdown = shutdown
    max_jobs = 4
    job_timeout = 1800
    allow_abort_jobs = True
