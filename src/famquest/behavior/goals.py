"""Family goal progress tracking.

Contribution by goal type:
- total_quests: +1 per quest completion
- category_quests: +1 per completion in the goal's target category
- total_xp: the XP the completion earned
A goal flips to completed the first time progress reaches its target and
never goes back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from famquest.behavior.events import QuestCompletionEvent
from famquest.behavior.family_service import Actor, require_family, require_parent
from famquest.behavior.notifications import GOAL_COMPLETED_CHANNEL, publish
from famquest.db.models import FamilyGoal
from famquest.db.transactions import run_transaction
from famquest.errors import ValidationFailed

logger = logging.getLogger(__name__)

GOAL_TYPES = frozenset({"total_quests", "total_xp", "category_quests"})
GOAL_ACTIVE = "active"
GOAL_COMPLETED = "completed"


class GoalLike(Protocol):
    goal_type: str
    target_value: int
    target_category: str | None
    current_progress: int
    status: str
    completed_at: datetime | None


def contribution(goal: GoalLike, event: QuestCompletionEvent) -> int:
    """How much one completion moves this goal."""
    if goal.goal_type == "total_quests":
        return 1
    if goal.goal_type == "category_quests":
        return 1 if event.category == goal.target_category else 0
    if goal.goal_type == "total_xp":
        return max(event.xp_earned, 0)
    return 0


def contribute(goal: GoalLike, event: QuestCompletionEvent, now: datetime | None = None) -> bool:
    """Add the event's contribution in place. Returns True if this call completed the goal."""
    amount = contribution(goal, event)
    if amount <= 0:
        return False
    goal.current_progress += amount
    if goal.status != GOAL_COMPLETED and goal.current_progress >= goal.target_value:
        goal.status = GOAL_COMPLETED
        goal.completed_at = now or event.occurred_at
        return True
    return False


@dataclass(frozen=True)
class GoalProgress:
    goal_id: int
    title: str
    progress: int
    target: int
    completed_now: bool


async def update_goal_progress(
    db: AsyncSession,
    redis: object,
    event: QuestCompletionEvent,
) -> list[GoalProgress]:
    """Apply a completion to each of the family's active goals, one transaction per goal."""
    result = await db.execute(
        select(FamilyGoal.id).where(
            FamilyGoal.family_id == event.family_id,
            FamilyGoal.status == GOAL_ACTIVE,
        )
    )
    goal_ids = list(result.scalars())

    updates: list[GoalProgress] = []
    for goal_id in goal_ids:

        async def _txn(session: AsyncSession, goal_id: int = goal_id) -> GoalProgress | None:
            goal = await session.get(FamilyGoal, goal_id, populate_existing=True)
            if goal is None or goal.status != GOAL_ACTIVE:
                return None
            completed_now = contribute(goal, event)
            await session.flush()
            return GoalProgress(goal.id, goal.title, goal.current_progress, goal.target_value, completed_now)

        progress = await run_transaction(db, _txn, label="goal progress")
        if progress is None:
            continue
        updates.append(progress)
        if progress.completed_now:
            logger.info("Family %s completed goal %s", event.family_id, progress.goal_id)
            await publish(redis, GOAL_COMPLETED_CHANNEL, {
                "family_id": event.family_id,
                "goal_id": progress.goal_id,
                "title": progress.title,
                "target": progress.target,
            })
    return updates


def _goal_errors(definition: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    if not str(definition.get("title") or "").strip():
        errors.append("title is required")
    goal_type = definition.get("goal_type")
    if goal_type not in GOAL_TYPES:
        errors.append(f"goal_type must be one of {sorted(GOAL_TYPES)}")
    target = definition.get("target_value")
    if isinstance(target, bool) or not isinstance(target, int) or target <= 0:
        errors.append("target_value must be a positive integer")
    if goal_type == "category_quests" and not definition.get("target_category"):
        errors.append("target_category is required for category_quests goals")
    return errors


async def create_goal(db: AsyncSession, actor: Actor, definition: dict[str, Any]) -> FamilyGoal:
    require_parent(actor)
    errors = _goal_errors(definition)
    if errors:
        raise ValidationFailed("Invalid goal", details=errors)

    goal = FamilyGoal(
        family_id=actor.family_id,
        title=definition["title"].strip(),
        goal_type=definition["goal_type"],
        target_value=definition["target_value"],
        target_category=definition.get("target_category"),
        current_progress=0,
        status=GOAL_ACTIVE,
        created_by=actor.user_id,
        created_at=datetime.now(timezone.utc),
    )
    db.add(goal)
    await db.commit()
    return goal


async def list_goals(db: AsyncSession, actor: Actor, family_id: int | None = None) -> list[FamilyGoal]:
    family_id = family_id if family_id is not None else actor.family_id
    require_family(actor, family_id)
    result = await db.execute(
        select(FamilyGoal).where(FamilyGoal.family_id == family_id).order_by(FamilyGoal.id)
    )
    return list(result.scalars())
