"""Daily activity streaks: per-event transitions and the stale-streak sweep.

Transition on a new activity at ``t`` (day difference is counted in the
family's timezone, by calendar date):
- no record: create with length 1
- same day: touch last_activity_at only
- next day: length + 1, total active days + 1
- gap: length reset to 1, marked broken, total active days + 1

The sweep flags a streak broken once its family-local previous day passed
with no activity (and it has been idle for at least ``stale_streak_hours``).
A streak already broken is never flagged twice.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from famquest.behavior.events import StreakBreakEvent
from famquest.behavior.family_service import day_bounds, get_family_timezone, local_day
from famquest.behavior.notifications import STREAK_UPDATE_CHANNEL, publish
from famquest.config import get_settings
from famquest.db.models import Streak
from famquest.db.transactions import run_transaction

logger = logging.getLogger(__name__)

DAILY = "daily"


class StreakTransition(str, Enum):
    CREATED = "created"
    SAME_DAY = "same_day"
    CONTINUED = "continued"
    RESET = "reset"
    IGNORED = "ignored"  # activity older than the last recorded day


@dataclass(frozen=True)
class StreakState:
    current_length: int
    longest_length: int
    total_active_days: int
    start_date: datetime
    last_activity_at: datetime
    broken: bool = False
    broken_at: datetime | None = None

    @classmethod
    def from_record(cls, streak: Streak) -> StreakState:
        return cls(
            current_length=streak.current_length,
            longest_length=streak.longest_length,
            total_active_days=streak.total_active_days,
            start_date=streak.start_date,
            last_activity_at=streak.last_activity_at,
            broken=streak.broken,
            broken_at=streak.broken_at,
        )


def day_difference(t: datetime, last: datetime, tz: ZoneInfo) -> int:
    """Calendar days between two instants, as seen in ``tz``."""
    return (local_day(t, tz) - local_day(last, tz)).days


def advance_streak(
    state: StreakState | None,
    t: datetime,
    tz: ZoneInfo,
) -> tuple[StreakState, StreakTransition]:
    """Pure streak transition for one activity timestamp."""
    if t.tzinfo is None:
        t = t.replace(tzinfo=timezone.utc)

    if state is None:
        return StreakState(
            current_length=1,
            longest_length=1,
            total_active_days=1,
            start_date=t,
            last_activity_at=t,
        ), StreakTransition.CREATED

    diff = day_difference(t, state.last_activity_at, tz)

    if diff < 0:
        return state, StreakTransition.IGNORED

    if diff == 0:
        latest = max(t, state.last_activity_at)
        return replace(state, last_activity_at=latest), StreakTransition.SAME_DAY

    if diff == 1:
        length = state.current_length + 1
        return replace(
            state,
            current_length=length,
            longest_length=max(state.longest_length, length),
            total_active_days=state.total_active_days + 1,
            last_activity_at=t,
            broken=False,
        ), StreakTransition.CONTINUED

    return replace(
        state,
        current_length=1,
        total_active_days=state.total_active_days + 1,
        start_date=t,
        last_activity_at=t,
        broken=True,
        broken_at=t,
    ), StreakTransition.RESET


@dataclass(frozen=True)
class StreakUpdate:
    streak: Streak
    transition: StreakTransition
    previous_length: int
    newly_broken: bool

    def break_event(self) -> StreakBreakEvent | None:
        """Rule-evaluation event for a break first detected by this update."""
        if not self.newly_broken:
            return None
        return StreakBreakEvent(
            family_id=self.streak.family_id,
            child_id=self.streak.child_id,
            occurred_at=self.streak.broken_at or self.streak.last_activity_at,
            streak_length=self.previous_length,
            streak_type=self.streak.streak_type,
        )


async def get_streak(
    db: AsyncSession, child_id: int, streak_type: str = DAILY, *, refresh: bool = False
) -> Streak | None:
    stmt = select(Streak).where(Streak.child_id == child_id, Streak.streak_type == streak_type)
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


def _apply_state(streak: Streak, state: StreakState) -> None:
    streak.current_length = state.current_length
    streak.longest_length = state.longest_length
    streak.total_active_days = state.total_active_days
    streak.start_date = state.start_date
    streak.last_activity_at = state.last_activity_at
    streak.broken = state.broken
    streak.broken_at = state.broken_at


async def record_activity(
    db: AsyncSession,
    redis: object,
    family_id: int,
    child_id: int,
    activity_at: datetime,
    streak_type: str = DAILY,
    tz: ZoneInfo | None = None,
) -> StreakUpdate:
    """Apply one qualifying activity to the child's streak, transactionally."""
    if tz is None:
        tz = await get_family_timezone(db, family_id)

    async def _txn(session: AsyncSession) -> StreakUpdate:
        streak = await get_streak(session, child_id, streak_type, refresh=True)
        previous = StreakState.from_record(streak) if streak is not None else None
        state, transition = advance_streak(previous, activity_at, tz)

        if streak is None:
            streak = Streak(family_id=family_id, child_id=child_id, streak_type=streak_type)
            _apply_state(streak, state)
            session.add(streak)
        elif transition is not StreakTransition.IGNORED:
            _apply_state(streak, state)
        await session.flush()

        newly_broken = transition is StreakTransition.RESET and previous is not None and not previous.broken
        return StreakUpdate(
            streak=streak,
            transition=transition,
            previous_length=previous.current_length if previous else 0,
            newly_broken=newly_broken,
        )

    update = await run_transaction(db, _txn, label="streak update")

    if update.transition in (StreakTransition.CONTINUED, StreakTransition.RESET, StreakTransition.CREATED):
        await publish(redis, STREAK_UPDATE_CHANNEL, {
            "child_id": child_id,
            "family_id": family_id,
            "current_length": update.streak.current_length,
            "transition": update.transition.value,
        })
    return update


async def mark_streak_broken(
    db: AsyncSession, streak_id: int, now: datetime, stale_before: datetime
) -> StreakUpdate | None:
    """Flag one stale streak broken. None if it was refreshed or broken meanwhile."""

    async def _txn(session: AsyncSession) -> StreakUpdate | None:
        streak = await session.get(Streak, streak_id, populate_existing=True)
        if streak is None or streak.broken or streak.last_activity_at >= stale_before:
            return None
        streak.broken = True
        streak.broken_at = now
        await session.flush()
        return StreakUpdate(
            streak=streak,
            transition=StreakTransition.RESET,
            previous_length=streak.current_length,
            newly_broken=True,
        )

    return await run_transaction(db, _txn, label="stale streak")


async def stale_cutoff(db: AsyncSession, family_id: int, now: datetime) -> datetime:
    """Start of the family's previous local day. Streaks last active before it are stale."""
    tz = await get_family_timezone(db, family_id)
    start, _ = day_bounds(local_day(now, tz) - timedelta(days=1), tz)
    return start


async def sweep_stale_streaks(
    db: AsyncSession,
    redis: object,
    now: datetime | None = None,
) -> list[StreakBreakEvent]:
    """Flag streaks that missed the whole previous local day. Returns break events to evaluate.

    A streak last active yesterday can still continue today, so it is left
    alone. Staleness is measured against sweep time, not event time. Failures on
    one streak are logged and do not stop the sweep.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    idle_before = now - timedelta(hours=get_settings().stale_streak_hours)

    result = await db.execute(
        select(Streak.id, Streak.family_id).where(
            Streak.broken.is_(False),
            Streak.last_activity_at < idle_before,
        )
    )
    candidates = list(result.all())

    cutoffs: dict[int, datetime] = {}
    events: list[StreakBreakEvent] = []
    for streak_id, family_id in candidates:
        if family_id not in cutoffs:
            cutoffs[family_id] = min(idle_before, await stale_cutoff(db, family_id, now))
        try:
            update = await mark_streak_broken(db, streak_id, now, cutoffs[family_id])
        except Exception:
            logger.exception("Failed to mark streak %s broken", streak_id)
            continue
        if update is None:
            continue
        event = update.break_event()
        if event is not None:
            events.append(event)
        await publish(redis, STREAK_UPDATE_CHANNEL, {
            "child_id": update.streak.child_id,
            "family_id": update.streak.family_id,
            "current_length": update.streak.current_length,
            "transition": "stale",
        })

    if events:
        logger.info("Flagged %d stale streaks as broken", len(events))
    return events
