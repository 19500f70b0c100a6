"""Real-time daily counters, incremented as completions and redemptions arrive."""

from __future__ import annotations

from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from famquest.behavior.events import QuestCompletionEvent, RedemptionEvent
from famquest.behavior.family_service import get_family_timezone, local_day
from famquest.db.models import DailyAnalytics
from famquest.db.transactions import increment_counters


async def record_event_counters(
    db: AsyncSession,
    event: QuestCompletionEvent | RedemptionEvent,
) -> date:
    """Bump the family's counters for the event's local day and commit. Returns the day."""
    tz = await get_family_timezone(db, event.family_id)
    day = local_day(event.occurred_at, tz)

    if isinstance(event, QuestCompletionEvent):
        increments = {"quests_completed": 1, "xp_earned": event.xp_earned}
    else:
        increments = {"rewards_redeemed": 1, "xp_spent": event.xp_cost}

    await increment_counters(
        db,
        DailyAnalytics,
        {"family_id": event.family_id, "day": day},
        increments,
    )
    await db.commit()
    return day


async def get_daily_counters(db: AsyncSession, family_id: int, day: date) -> DailyAnalytics | None:
    result = await db.execute(
        select(DailyAnalytics).where(
            DailyAnalytics.family_id == family_id,
            DailyAnalytics.day == day,
        ).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()
