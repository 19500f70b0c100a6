"""Daily penalty sweep and hourly maintenance."""

from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from famquest.behavior.penalty_service import apply_rule_manually, list_child_penalties
from famquest.behavior.rules import seed_default_rules
from famquest.behavior.streak_service import record_activity
from famquest.behavior.sweep import run_maintenance, run_penalty_sweep
from famquest.database import get_session_factory
from famquest.db.models import (
    AppliedPenalty,
    BehaviorFlag,
    ChildProfile,
    Quest,
    Streak,
    SystemLog,
    XPLedger,
)

NOW = datetime(2026, 10, 12, 2, 0, tzinfo=timezone.utc)
YESTERDAY_EVENING = datetime(2026, 10, 11, 18, 0, tzinfo=timezone.utc)


async def _sweep(now=NOW, job=run_penalty_sweep):
    async with get_session_factory()() as session:
        return await job(session, None, now)


async def _quest(db, family_id, child_id, difficulty="easy", due_at=YESTERDAY_EVENING) -> int:
    quest = Quest(
        family_id=family_id, assigned_to=child_id, title=f"{difficulty} chore",
        difficulty=difficulty, status="pending", due_at=due_at,
    )
    db.add(quest)
    await db.commit()
    return quest.id


async def _logs(db, log_type="daily_penalty_sweep") -> list[SystemLog]:
    result = await db.execute(
        select(SystemLog).where(SystemLog.log_type == log_type).order_by(SystemLog.id)
    )
    return list(result.scalars())


class TestMissedQuests:
    async def test_missed_easy_quest(self, db_session, household):
        await seed_default_rules(db_session, household.family_id)
        quest_id = await _quest(db_session, household.family_id, household.child_id)

        summary = await _sweep()

        assert summary.quests_missed == 1
        assert summary.penalties_applied == 1
        assert summary.failures == 0
        profile = await db_session.get(ChildProfile, household.child_id, populate_existing=True)
        assert profile.total_xp == 75
        ledger = (await db_session.execute(select(XPLedger))).scalar_one()
        assert ledger.amount == -25
        quest = await db_session.get(Quest, quest_id, populate_existing=True)
        assert quest.status == "missed"

        [log] = await _logs(db_session)
        assert log.status == "success"
        assert log.summary["penalties_applied"] == 1

    async def test_rerun_adds_nothing(self, db_session, household):
        await seed_default_rules(db_session, household.family_id)
        await _quest(db_session, household.family_id, household.child_id)

        await _sweep()
        again = await _sweep()

        assert again.quests_missed == 0
        assert again.penalties_applied == 0
        assert len(await list_child_penalties(db_session, household.child_id)) == 1
        assert len(await _logs(db_session)) == 2

    async def test_only_yesterdays_quests(self, db_session, household):
        await seed_default_rules(db_session, household.family_id)
        await _quest(db_session, household.family_id, household.child_id, due_at=NOW + timedelta(hours=5))
        await _quest(db_session, household.family_id, household.child_id, due_at=NOW - timedelta(days=3))

        summary = await _sweep()

        assert summary.quests_missed == 0

    async def test_one_failing_child_does_not_stop_the_rest(self, db_session, seed, household):
        await seed_default_rules(db_session, household.family_id)
        ghost = await seed.child(household.family_id, "Ghost", with_profile=False)
        await _quest(db_session, household.family_id, household.child_id, difficulty="medium")
        await _quest(db_session, household.family_id, ghost.id)

        summary = await _sweep()

        assert summary.children_processed == 2
        assert summary.successes == 1
        assert summary.failures == 1
        assert summary.penalties_applied == 1
        profile = await db_session.get(ChildProfile, household.child_id, populate_existing=True)
        assert profile.total_xp == 25
        [log] = await _logs(db_session)
        assert log.status == "partial_failure"

    async def test_family_without_rules_is_skipped(self, db_session, household):
        await _quest(db_session, household.family_id, household.child_id)
        summary = await _sweep()
        assert summary.rules_processed == 0
        assert summary.quests_missed == 0


class TestFlagsAndStreaks:
    async def test_flags_claimed_once(self, db_session, seed, household):
        await seed.rule(household.family_id, trigger="behavioral_issue", consequences={"xp_deduction": 15})
        db_session.add(BehaviorFlag(
            family_id=household.family_id, child_id=household.child_id,
            trigger="behavioral_issue", created_at=NOW - timedelta(hours=8),
        ))
        await db_session.commit()

        first = await _sweep()
        second = await _sweep()

        assert (first.flags_processed, first.penalties_applied) == (1, 1)
        assert (second.flags_processed, second.penalties_applied) == (0, 0)
        flag = (await db_session.execute(select(BehaviorFlag))).scalar_one()
        await db_session.refresh(flag)
        assert flag.processed is True

    async def test_stale_long_streak_is_penalized(self, db_session, household):
        await seed_default_rules(db_session, household.family_id)
        streak = Streak(
            family_id=household.family_id, child_id=household.child_id, streak_type="daily",
            current_length=8, longest_length=8, total_active_days=8,
            start_date=NOW - timedelta(days=10), last_activity_at=NOW - timedelta(days=2),
        )
        db_session.add(streak)
        await db_session.commit()
        streak_id = streak.id

        summary = await _sweep()
        again = await _sweep()

        assert summary.streaks_broken == 1
        assert again.streaks_broken == 0
        [penalty] = await list_child_penalties(db_session, household.child_id)
        assert penalty.rule_name == "Streak Break Penalty"
        assert penalty.trigger == "streak_break"
        streak = await db_session.get(Streak, streak_id, populate_existing=True)
        assert streak.broken is True


class TestMaintenance:
    async def test_expires_and_logs(self, db_session, seed, household):
        rule = await seed.rule(household.family_id, consequences={"cooldown_hours": 24})
        penalty = await apply_rule_manually(
            db_session, None, household.parent, household.child_id, rule.id, now=NOW - timedelta(hours=30),
        )
        penalty_id = penalty.id

        summary = await _sweep(job=run_maintenance)

        assert summary.penalties_expired == 1
        penalty = await db_session.get(AppliedPenalty, penalty_id, populate_existing=True)
        assert penalty.status == "expired"
        [log] = await _logs(db_session, "penalty_maintenance")
        assert log.summary["penalties_expired"] == 1

    async def _long_streak(self, db, household, last_activity_at) -> int:
        await seed_default_rules(db, household.family_id)
        streak = Streak(
            family_id=household.family_id, child_id=household.child_id, streak_type="daily",
            current_length=8, longest_length=8, total_active_days=8,
            start_date=last_activity_at - timedelta(days=7), last_activity_at=last_activity_at,
        )
        db.add(streak)
        await db.commit()
        return streak.id

    async def test_streak_active_yesterday_survives(self, db_session, household):
        monday_morning = datetime(2026, 10, 12, 8, 0, tzinfo=timezone.utc)
        await self._long_streak(db_session, household, monday_morning)

        summary = await _sweep(now=datetime(2026, 10, 13, 8, 15, tzinfo=timezone.utc), job=run_maintenance)
        update = await record_activity(
            db_session, None, household.family_id, household.child_id,
            datetime(2026, 10, 13, 18, 0, tzinfo=timezone.utc),
        )

        assert summary.streaks_broken == 0
        assert await list_child_penalties(db_session, household.child_id) == []
        assert update.streak.current_length == 9
        assert update.streak.broken is False

    async def test_streak_idle_all_of_yesterday_breaks(self, db_session, household):
        streak_id = await self._long_streak(db_session, household, datetime(2026, 10, 12, 8, 0, tzinfo=timezone.utc))

        summary = await _sweep(now=datetime(2026, 10, 14, 0, 15, tzinfo=timezone.utc), job=run_maintenance)

        assert summary.streaks_broken == 1
        [penalty] = await list_child_penalties(db_session, household.child_id)
        assert penalty.rule_name == "Streak Break Penalty"
        streak = await db_session.get(Streak, streak_id, populate_existing=True)
        assert streak.broken is True
