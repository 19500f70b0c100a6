"""Daily and weekly family report generation.

Reports are read-only scans of completions, redemptions and streaks over a
window of family-local days, folded by the aggregator and stored with their
insights in ``analytics_reports``.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from famquest.analytics.aggregator import aggregate_daily, aggregate_weekly
from famquest.analytics.insights import generate_insights
from famquest.behavior.family_service import (
    Actor,
    day_bounds,
    get_family_timezone,
    list_children,
    list_family_ids,
    local_day,
    require_family,
)
from famquest.behavior.notifications import REPORT_GENERATED_CHANNEL, publish
from famquest.db.models import AnalyticsReport, QuestCompletion, RewardRedemption, Streak, SystemLog
from famquest.errors import ValidationFailed

logger = logging.getLogger(__name__)

DAILY = "daily"
WEEKLY = "weekly"
REPORT_TYPES = (DAILY, WEEKLY)
WEEK_DAYS = 7


async def _completions(db: AsyncSession, family_id: int, start: datetime, end: datetime) -> list[QuestCompletion]:
    result = await db.execute(
        select(QuestCompletion)
        .where(
            QuestCompletion.family_id == family_id,
            QuestCompletion.completed_at >= start,
            QuestCompletion.completed_at < end,
        )
        .order_by(QuestCompletion.completed_at, QuestCompletion.id)
    )
    return list(result.scalars())


async def _redemptions(db: AsyncSession, family_id: int, start: datetime, end: datetime) -> list[RewardRedemption]:
    result = await db.execute(
        select(RewardRedemption)
        .where(
            RewardRedemption.family_id == family_id,
            RewardRedemption.redeemed_at >= start,
            RewardRedemption.redeemed_at < end,
        )
        .order_by(RewardRedemption.redeemed_at, RewardRedemption.id)
    )
    return list(result.scalars())


async def _streaks_started(db: AsyncSession, family_id: int, start: datetime, end: datetime) -> list[Streak]:
    result = await db.execute(
        select(Streak).where(
            Streak.family_id == family_id,
            Streak.start_date >= start,
            Streak.start_date < end,
        )
    )
    return list(result.scalars())


async def _store_report(
    db: AsyncSession,
    redis: object,
    family_id: int,
    report_type: str,
    period_start: date,
    period_end: date,
    metrics: dict,
    insights: list[dict],
    child_profiles: list[dict],
    generated_by: str,
) -> AnalyticsReport:
    report = AnalyticsReport(
        family_id=family_id,
        report_type=report_type,
        period_start=period_start,
        period_end=period_end,
        metrics=metrics,
        insights=insights,
        child_profiles=child_profiles,
        generated_by=generated_by,
        generated_at=datetime.now(timezone.utc),
    )
    db.add(report)
    await db.commit()
    logger.info("%s report %d generated for family %d", report_type.capitalize(), report.id, family_id)
    await publish(redis, REPORT_GENERATED_CHANNEL, {
        "family_id": family_id,
        "report_id": report.id,
        "report_type": report_type,
        "period_start": period_start.isoformat(),
        "period_end": period_end.isoformat(),
    })
    return report


async def generate_daily_report(
    db: AsyncSession,
    redis: object,
    family_id: int,
    day: date | None = None,
    generated_by: str = "system",
) -> AnalyticsReport | None:
    """Report for one family-local day (default: today). None for a family with no children."""
    children = await list_children(db, family_id)
    if not children:
        logger.info("No children found for family %d", family_id)
        return None
    child_profiles = [{"id": c.id, "name": c.display_name} for c in children]

    tz = await get_family_timezone(db, family_id)
    if day is None:
        day = local_day(datetime.now(timezone.utc), tz)
    start, end = day_bounds(day, tz)

    metrics = aggregate_daily(
        await _completions(db, family_id, start, end),
        await _redemptions(db, family_id, start, end),
    )
    insights = generate_insights(metrics, DAILY)
    return await _store_report(
        db, redis, family_id, DAILY, day, day,
        metrics.to_dict(), [i.to_dict() for i in insights], child_profiles, generated_by,
    )


async def generate_weekly_report(
    db: AsyncSession,
    redis: object,
    family_id: int,
    start_day: date | None = None,
    end_day: date | None = None,
    generated_by: str = "system",
) -> AnalyticsReport | None:
    """Report for the local days ``start_day``..``end_day`` inclusive (default: the last seven)."""
    children = await list_children(db, family_id)
    if not children:
        logger.info("No children found for family %d", family_id)
        return None
    child_profiles = [{"id": c.id, "name": c.display_name} for c in children]

    tz = await get_family_timezone(db, family_id)
    if end_day is None:
        end_day = local_day(datetime.now(timezone.utc), tz)
    if start_day is None:
        start_day = end_day - timedelta(days=WEEK_DAYS - 1)
    if start_day > end_day:
        raise ValidationFailed("start_date must not be after end_date")

    start, end = day_bounds(start_day, tz, days=(end_day - start_day).days + 1)
    metrics = aggregate_weekly(
        await _completions(db, family_id, start, end),
        await _redemptions(db, family_id, start, end),
        start_day,
        end_day,
        tz,
        await _streaks_started(db, family_id, start, end),
    )
    insights = generate_insights(metrics, WEEKLY)
    return await _store_report(
        db, redis, family_id, WEEKLY, start_day, end_day,
        metrics.to_dict(), [i.to_dict() for i in insights], child_profiles, generated_by,
    )


async def generate_report_for_actor(
    db: AsyncSession,
    redis: object,
    actor: Actor,
    report_type: str,
    start_day: date | None = None,
    end_day: date | None = None,
    family_id: int | None = None,
) -> AnalyticsReport | None:
    """Manual report generation for a member of the family."""
    family_id = family_id if family_id is not None else actor.family_id
    require_family(actor, family_id)
    generated_by = f"user:{actor.user_id}"
    if report_type == DAILY:
        return await generate_daily_report(db, redis, family_id, start_day, generated_by)
    if report_type == WEEKLY:
        return await generate_weekly_report(db, redis, family_id, start_day, end_day, generated_by)
    raise ValidationFailed('Invalid report type. Must be "daily" or "weekly"')


# ---------------------------------------------------------------------------
# Scheduled runs
# ---------------------------------------------------------------------------


@dataclass
class ReportRunSummary:
    families_processed: int = 0
    reports_generated: int = 0
    skipped: int = 0
    failures: int = 0


async def _run_for_families(db: AsyncSession, report_type: str, generate) -> ReportRunSummary:
    summary = ReportRunSummary()
    for family_id in await list_family_ids(db):
        summary.families_processed += 1
        try:
            report = await generate(family_id)
        except Exception:
            await db.rollback()
            summary.failures += 1
            logger.exception("%s report failed for family %d", report_type.capitalize(), family_id)
            continue
        if report is None:
            summary.skipped += 1
        else:
            summary.reports_generated += 1

    db.add(SystemLog(
        log_type=f"scheduled_{report_type}_report",
        status="partial_failure" if summary.failures else "success",
        summary=asdict(summary),
        created_at=datetime.now(timezone.utc),
    ))
    await db.commit()
    logger.info(
        "%s reports: %d generated, %d failures",
        report_type.capitalize(), summary.reports_generated, summary.failures,
    )
    return summary


async def run_daily_reports(db: AsyncSession, redis: object, now: datetime | None = None) -> ReportRunSummary:
    """Yesterday's report for every family, in each family's own timezone."""
    if now is None:
        now = datetime.now(timezone.utc)

    async def _generate(family_id: int) -> AnalyticsReport | None:
        tz = await get_family_timezone(db, family_id)
        return await generate_daily_report(db, redis, family_id, local_day(now, tz) - timedelta(days=1))

    return await _run_for_families(db, DAILY, _generate)


async def run_weekly_reports(db: AsyncSession, redis: object, now: datetime | None = None) -> ReportRunSummary:
    """The seven local days ending yesterday, for every family."""
    if now is None:
        now = datetime.now(timezone.utc)

    async def _generate(family_id: int) -> AnalyticsReport | None:
        tz = await get_family_timezone(db, family_id)
        end_day = local_day(now, tz) - timedelta(days=1)
        return await generate_weekly_report(
            db, redis, family_id, end_day - timedelta(days=WEEK_DAYS - 1), end_day,
        )

    return await _run_for_families(db, WEEKLY, _generate)
