"""Report generation against stored completions and redemptions."""

from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from famquest.analytics.report_service import (
    generate_daily_report,
    generate_report_for_actor,
    generate_weekly_report,
    run_daily_reports,
    run_weekly_reports,
)
from famquest.behavior.notifications import REPORT_GENERATED_CHANNEL
from famquest.db.models import AnalyticsReport, QuestCompletion, RewardRedemption, SystemLog
from famquest.errors import PermissionDenied, ValidationFailed

DAY = date(2026, 10, 14)


def _at(day: date, hour: int) -> datetime:
    return datetime(day.year, day.month, day.day, hour, 0, tzinfo=timezone.utc)


async def _complete(db, household, when, *, category="chores", xp=10, minutes=None):
    db.add(QuestCompletion(
        family_id=household.family_id, child_id=household.child_id, category=category,
        xp_earned=xp, time_to_complete_minutes=minutes, completed_at=when,
    ))
    await db.commit()


class TestDailyReport:
    async def test_busy_day(self, db_session, household, publisher):
        for hour in range(8, 13):
            await _complete(db_session, household, _at(DAY, hour), xp=20, minutes=15)
        await _complete(db_session, household, _at(DAY + timedelta(days=1), 9))
        db_session.add(RewardRedemption(
            family_id=household.family_id, child_id=household.child_id,
            reward_id="ice-cream", xp_cost=10, redeemed_at=_at(DAY, 19),
        ))
        await db_session.commit()

        report = await generate_daily_report(db_session, publisher, household.family_id, DAY)

        assert report.report_type == "daily"
        assert report.period_start == report.period_end == DAY
        assert report.metrics["quests_completed"] == 5
        assert report.metrics["total_xp_earned"] == 100
        assert report.metrics["total_xp_spent"] == 10
        assert report.metrics["most_active_child"] == household.child_id
        assert [i["type"] for i in report.insights] == ["high_activity", "quick_completion", "xp_accumulation"]
        assert report.child_profiles == [{"id": household.child_id, "name": "Smith kid"}]
        assert publisher.on(REPORT_GENERATED_CHANNEL)[0]["report_id"] == report.id

    async def test_quiet_day(self, db_session, household):
        report = await generate_daily_report(db_session, None, household.family_id, DAY)
        assert report.metrics["quests_completed"] == 0
        assert [i["type"] for i in report.insights] == ["low_activity"]

    async def test_family_without_children(self, db_session, seed):
        family = await seed.family("Empty nest")
        await seed.parent(family.id)
        assert await generate_daily_report(db_session, None, family.id, DAY) is None


class TestWeeklyReport:
    async def test_breakdown(self, db_session, household):
        start = DAY - timedelta(days=6)
        for offset, count in enumerate([3, 3, 3, 3, 3, 3, 3]):
            for i in range(count):
                await _complete(db_session, household, _at(start + timedelta(days=offset), 9 + i))

        report = await generate_weekly_report(db_session, None, household.family_id, start, DAY)

        breakdown = report.metrics["daily_breakdown"]
        assert len(breakdown) == 7
        assert breakdown[0]["date"] == start.isoformat()
        assert report.metrics["quests_completed"] == 21
        assert report.metrics["consistency"] == 0.0
        assert [i["type"] for i in report.insights] == ["excellent_weekly_activity"]

    async def test_reversed_range(self, db_session, household):
        with pytest.raises(ValidationFailed):
            await generate_weekly_report(db_session, None, household.family_id, DAY, DAY - timedelta(days=1))


class TestManualReports:
    async def test_member_generates_for_own_family(self, db_session, household):
        report = await generate_report_for_actor(db_session, None, household.child, "daily", DAY)
        assert report.generated_by == f"user:{household.child_id}"

    async def test_other_family_denied(self, db_session, household, other_household):
        with pytest.raises(PermissionDenied):
            await generate_report_for_actor(
                db_session, None, other_household.parent, "daily", DAY, family_id=household.family_id,
            )

    async def test_unknown_report_type(self, db_session, household):
        with pytest.raises(ValidationFailed, match="Invalid report type"):
            await generate_report_for_actor(db_session, None, household.parent, "monthly")


class TestScheduledRuns:
    async def test_daily_run_skips_childless_families(self, db_session, seed, household):
        await seed.family("Empty nest")
        await _complete(db_session, household, _at(DAY, 10))

        summary = await run_daily_reports(db_session, None, now=_at(DAY + timedelta(days=1), 3))

        assert summary.families_processed == 2
        assert summary.reports_generated == 1
        assert summary.skipped == 1
        report = (await db_session.execute(select(AnalyticsReport))).scalar_one()
        assert report.period_start == DAY
        assert report.metrics["quests_completed"] == 1
        log = (await db_session.execute(select(SystemLog))).scalar_one()
        assert log.log_type == "scheduled_daily_report"
        assert log.status == "success"

    async def test_weekly_run_covers_seven_days(self, db_session, household):
        summary = await run_weekly_reports(db_session, None, now=_at(DAY + timedelta(days=1), 4))

        assert summary.reports_generated == 1
        report = (await db_session.execute(select(AnalyticsReport))).scalar_one()
        assert (report.period_start, report.period_end) == (DAY - timedelta(days=6), DAY)
