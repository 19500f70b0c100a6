"""Optimistic transaction retries and atomic counters."""

from datetime import date

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from famquest.analytics.counters import get_daily_counters
from famquest.db.models import ChildProfile, DailyAnalytics
from famquest.db.transactions import increment_counters, run_transaction
from famquest.errors import ConcurrencyConflict

DAY = date(2026, 10, 14)


class TestRunTransaction:
    async def test_retries_after_stale_write(self, db_session, household):
        attempts = []

        async def _txn(session):
            attempts.append(1)
            profile = await session.get(ChildProfile, household.child_id, populate_existing=True)
            profile.total_xp += 5
            if len(attempts) == 1:
                raise StaleDataError("row changed underneath")
            await session.flush()
            return profile.total_xp

        assert await run_transaction(db_session, _txn) == 105
        assert len(attempts) == 2

    async def test_exhausted_retries(self, db_session):
        async def _txn(session):
            raise IntegrityError("INSERT", {}, Exception("duplicate key"))

        with pytest.raises(ConcurrencyConflict) as excinfo:
            await run_transaction(db_session, _txn, attempts=3, label="always racing")
        assert excinfo.value.retryable is True
        assert "3 attempts" in excinfo.value.message

    async def test_other_errors_propagate(self, db_session, household):
        async def _txn(session):
            profile = await session.get(ChildProfile, household.child_id)
            profile.total_xp = 0
            await session.flush()
            raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            await run_transaction(db_session, _txn)

        profile = await db_session.get(ChildProfile, household.child_id, populate_existing=True)
        assert profile.total_xp == 100


class TestIncrementCounters:
    async def test_creates_then_adds(self, db_session, household):
        key = {"family_id": household.family_id, "day": DAY}
        await increment_counters(db_session, DailyAnalytics, key, {"quests_completed": 1, "xp_earned": 10})
        await increment_counters(db_session, DailyAnalytics, key, {"quests_completed": 1, "xp_earned": 25})
        await db_session.commit()

        row = await get_daily_counters(db_session, household.family_id, DAY)
        assert row.quests_completed == 2
        assert row.xp_earned == 35
        assert row.rewards_redeemed == 0
        assert row.updated_at is not None
