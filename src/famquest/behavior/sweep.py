"""Scheduled penalty sweeps.

Daily sweep, per family, over the previous local calendar day:
1. Missed quests (due in the window, never completed) for missed_quest rules
2. Unprocessed behavior flags, claimed in one bulk update
3. Streaks with no activity on the whole previous local day, flagged broken
Each child's penalties are applied and committed independently; a failure is
logged, counted and the sweep moves on. Every run writes a system log row.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from famquest.behavior.activity import (
    claim_behavior_flags,
    claim_missed_quest,
    find_missed_quests,
    pending_behavior_flags,
)
from famquest.behavior.events import MissedQuestEvent, Trigger
from famquest.behavior.family_service import (
    day_bounds,
    get_family_timezone,
    list_family_ids,
    local_day,
)
from famquest.behavior.penalties import PenaltyLifecycleManager
from famquest.behavior.penalty_service import evaluate_and_apply, expire_due_penalties
from famquest.behavior.rules import list_rules
from famquest.behavior.streak_service import sweep_stale_streaks
from famquest.db.models import SystemLog

logger = logging.getLogger(__name__)

FLAG_TRIGGERS = frozenset({
    Trigger.BEHAVIORAL_ISSUE.value,
    Trigger.RULE_VIOLATION.value,
    Trigger.CUSTOM.value,
})


@dataclass
class SweepSummary:
    families_processed: int = 0
    rules_processed: int = 0
    children_processed: int = 0
    successes: int = 0
    failures: int = 0
    penalties_applied: int = 0
    quests_missed: int = 0
    flags_processed: int = 0
    streaks_broken: int = 0
    penalties_expired: int = 0


async def write_system_log(
    db: AsyncSession,
    log_type: str,
    summary: dict[str, object],
    now: datetime,
) -> None:
    status = "partial_failure" if summary.get("failures") else "success"
    db.add(SystemLog(log_type=log_type, status=status, summary=summary, created_at=now))
    await db.commit()


async def _apply_for_children(
    db: AsyncSession,
    redis: object,
    events_by_child: dict[int, list[BaseModel]],
    manager: PenaltyLifecycleManager,
    summary: SweepSummary,
    now: datetime,
) -> None:
    for child_id, events in events_by_child.items():
        summary.children_processed += 1
        try:
            child_failures = 0
            for event in events:
                if isinstance(event, MissedQuestEvent) and event.quest_id is not None:
                    if not await claim_missed_quest(db, event.quest_id):
                        continue
                    summary.quests_missed += 1
                result = await evaluate_and_apply(db, redis, event, manager, now=now)
                summary.penalties_applied += len(result.applied)
                child_failures += result.failures
        except Exception:
            await db.rollback()
            summary.failures += 1
            logger.exception("Penalty sweep failed for child %s", child_id)
            continue
        if child_failures:
            summary.failures += 1
        else:
            summary.successes += 1


def _group_by_child(events: Iterable[BaseModel]) -> dict[int, list[BaseModel]]:
    grouped: dict[int, list[BaseModel]] = defaultdict(list)
    for event in events:
        grouped[getattr(event, "child_id")].append(event)
    return grouped


async def _collect_family_events(
    db: AsyncSession,
    family_id: int,
    now: datetime,
    summary: SweepSummary,
) -> list[BaseModel]:
    rules = await list_rules(db, family_id, active_only=True)
    if not rules:
        return []
    summary.rules_processed += len(rules)
    triggers = {rule.trigger for rule in rules}

    tz = await get_family_timezone(db, family_id)
    yesterday = local_day(now, tz) - timedelta(days=1)
    start, end = day_bounds(yesterday, tz)

    events: list[BaseModel] = []
    if Trigger.MISSED_QUEST.value in triggers:
        events.extend(await find_missed_quests(db, family_id, start, end))

    if triggers & FLAG_TRIGGERS:
        flags = await pending_behavior_flags(db, family_id)
        claimed = await claim_behavior_flags(db, [f.flag_id for f in flags if f.flag_id is not None], now)
        summary.flags_processed += len(claimed)
        events.extend(f for f in flags if f.flag_id in claimed)
    return events


async def run_penalty_sweep(
    db: AsyncSession,
    redis: object,
    now: datetime | None = None,
    manager: PenaltyLifecycleManager | None = None,
) -> SweepSummary:
    """Daily sweep across every family. Returns the run summary."""
    if now is None:
        now = datetime.now(timezone.utc)
    manager = manager or PenaltyLifecycleManager.from_settings()
    summary = SweepSummary()

    for family_id in await list_family_ids(db):
        try:
            events = await _collect_family_events(db, family_id, now, summary)
        except Exception:
            await db.rollback()
            summary.failures += 1
            logger.exception("Penalty sweep could not scan family %s", family_id)
            continue
        summary.families_processed += 1
        await _apply_for_children(db, redis, _group_by_child(events), manager, summary, now)

    break_events = await sweep_stale_streaks(db, redis, now)
    summary.streaks_broken = len(break_events)
    await _apply_for_children(db, redis, _group_by_child(break_events), manager, summary, now)

    await write_system_log(db, "daily_penalty_sweep", asdict(summary), now)
    logger.info(
        "Penalty sweep done: %d children, %d penalties applied, %d failures",
        summary.children_processed, summary.penalties_applied, summary.failures,
    )
    return summary


async def run_maintenance(
    db: AsyncSession,
    redis: object,
    now: datetime | None = None,
    manager: PenaltyLifecycleManager | None = None,
) -> SweepSummary:
    """Hourly: expire due penalties and break stale streaks."""
    if now is None:
        now = datetime.now(timezone.utc)
    manager = manager or PenaltyLifecycleManager.from_settings()
    summary = SweepSummary()

    summary.penalties_expired = await expire_due_penalties(db, now)
    break_events = await sweep_stale_streaks(db, redis, now)
    summary.streaks_broken = len(break_events)
    await _apply_for_children(db, redis, _group_by_child(break_events), manager, summary, now)

    await write_system_log(db, "penalty_maintenance", asdict(summary), now)
    return summary
