"""Source-document scans and claims used by the sweep and the event consumer.

Claims are conditional bulk updates: a flag or quest is processed by whoever
flips it first, so reruns and the real-time path never double-penalize.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import exists, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from famquest.behavior.events import BehaviorFlagEvent, MissedQuestEvent
from famquest.db.models import BehaviorFlag, Quest, QuestCompletion


async def find_missed_quests(
    db: AsyncSession,
    family_id: int,
    start: datetime,
    end: datetime,
) -> list[MissedQuestEvent]:
    """Assigned pending quests due in [start, end) with no completion on record."""
    completed = exists().where(QuestCompletion.quest_id == Quest.id)
    result = await db.execute(
        select(Quest.id, Quest.assigned_to, Quest.category, Quest.difficulty, Quest.due_at)
        .where(
            Quest.family_id == family_id,
            Quest.assigned_to.is_not(None),
            Quest.status == "pending",
            Quest.due_at >= start,
            Quest.due_at < end,
            ~completed,
        )
        .order_by(Quest.assigned_to, Quest.id)
    )
    return [
        MissedQuestEvent(
            family_id=family_id,
            child_id=row.assigned_to,
            quest_id=row.id,
            category=row.category,
            difficulty=row.difficulty,
            due_at=row.due_at,
            occurred_at=row.due_at,
        )
        for row in result.all()
    ]


async def claim_missed_quest(db: AsyncSession, quest_id: int) -> bool:
    """Mark a pending quest missed and commit. False if someone else got there first."""
    result = await db.execute(
        update(Quest)
        .where(Quest.id == quest_id, Quest.status == "pending")
        .values(status="missed")
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return (result.rowcount or 0) == 1


async def pending_behavior_flags(db: AsyncSession, family_id: int) -> list[BehaviorFlagEvent]:
    result = await db.execute(
        select(BehaviorFlag)
        .where(BehaviorFlag.family_id == family_id, BehaviorFlag.processed.is_(False))
        .order_by(BehaviorFlag.child_id, BehaviorFlag.id)
    )
    return [
        BehaviorFlagEvent(
            family_id=flag.family_id,
            child_id=flag.child_id,
            trigger=flag.trigger,
            behavior_type=flag.behavior_type,
            note=flag.note,
            flag_id=flag.id,
            occurred_at=flag.created_at,
        )
        for flag in result.scalars()
    ]


async def claim_behavior_flags(db: AsyncSession, flag_ids: list[int], now: datetime) -> set[int]:
    """Mark flags processed in one statement and commit. Returns the ids this call claimed."""
    if not flag_ids:
        return set()
    result = await db.execute(
        update(BehaviorFlag)
        .where(BehaviorFlag.id.in_(flag_ids), BehaviorFlag.processed.is_(False))
        .values(processed=True, processed_at=now)
        .returning(BehaviorFlag.id)
        .execution_options(synchronize_session=False)
    )
    claimed = set(result.scalars())
    await db.commit()
    return claimed
