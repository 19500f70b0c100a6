"""Per child+rule offense counting for escalating consequences."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from famquest.db.models import OffenseCounter

RESET_PERIOD_ALIASES: dict[str, int] = {
    "1 day": 24,
    "1 week": 24 * 7,
    "2 weeks": 24 * 14,
    "1 month": 24 * 30,
}


def reset_period_hours(escalation: Mapping[str, Any] | None) -> float | None:
    """Reset window in hours for a rule's escalation policy, None = never resets."""
    if not escalation:
        return None
    hours = escalation.get("reset_period_hours")
    if hours is not None:
        return float(hours)
    alias = escalation.get("reset_period")
    if alias is not None:
        return float(RESET_PERIOD_ALIASES[alias])
    return None


def next_offense_count(
    count: int,
    last_offense_at: datetime | None,
    now: datetime,
    reset_hours: float | None,
) -> int:
    """Offense number the next violation will carry."""
    if count <= 0 or last_offense_at is None:
        return 1
    if reset_hours is not None and now - last_offense_at > timedelta(hours=reset_hours):
        return 1
    return count + 1


async def _get_counter(
    db: AsyncSession, child_id: int, rule_id: int, *, refresh: bool = False
) -> OffenseCounter | None:
    stmt = select(OffenseCounter).where(
        OffenseCounter.child_id == child_id,
        OffenseCounter.rule_id == rule_id,
    )
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def peek_offense_count(
    db: AsyncSession,
    child_id: int,
    rule_id: int,
    now: datetime,
    reset_hours: float | None,
) -> int:
    """Offense number a violation right now would get, without recording it."""
    counter = await _get_counter(db, child_id, rule_id)
    if counter is None:
        return 1
    return next_offense_count(counter.count, counter.last_offense_at, now, reset_hours)


async def record_offense(
    db: AsyncSession,
    child_id: int,
    rule_id: int,
    now: datetime,
    reset_hours: float | None,
) -> int:
    """Increment the counter inside the caller's transaction. Returns the new count."""
    counter = await _get_counter(db, child_id, rule_id, refresh=True)
    if counter is None:
        counter = OffenseCounter(child_id=child_id, rule_id=rule_id, count=0)
        db.add(counter)
    counter.count = next_offense_count(counter.count, counter.last_offense_at, now, reset_hours)
    counter.last_offense_at = now
    await db.flush()
    return counter.count
