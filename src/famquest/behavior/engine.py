"""Behavior engine: routes one event through counters, XP, streaks, goals and penalties."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from famquest.analytics.counters import record_event_counters
from famquest.behavior.activity import claim_behavior_flags
from famquest.behavior.conditions import ConditionEvaluator
from famquest.behavior.events import (
    BehaviorEvent,
    BehaviorFlagEvent,
    QuestCompletionEvent,
    RedemptionEvent,
    parse_event,
)
from famquest.behavior.goals import GoalProgress, update_goal_progress
from famquest.behavior.penalties import EvaluationResult, PenaltyLifecycleManager
from famquest.behavior.penalty_service import evaluate_and_apply
from famquest.behavior.streak_service import StreakUpdate, record_activity
from famquest.behavior.xp_service import deduct_xp, grant_xp
from famquest.db.models import AppliedPenalty
from famquest.db.transactions import run_transaction

logger = logging.getLogger(__name__)


@dataclass
class EngineOutcome:
    """What handling one event changed."""

    penalties: list[AppliedPenalty] = field(default_factory=list)
    needs_review: bool = False
    failures: int = 0
    streak: StreakUpdate | None = None
    goals: list[GoalProgress] = field(default_factory=list)
    skipped: bool = False

    def absorb(self, result: EvaluationResult) -> None:
        self.penalties.extend(result.applied)
        self.needs_review = self.needs_review or result.needs_review
        self.failures += result.failures


def completion_key(event: QuestCompletionEvent) -> str:
    ref = event.quest_id if event.quest_id is not None else event.occurred_at.isoformat()
    return f"completion:{event.child_id}:{ref}"


class BehaviorEngine:
    """Handles behavioral events for one database session."""

    def __init__(
        self,
        db: AsyncSession,
        redis: object,
        manager: PenaltyLifecycleManager | None = None,
        evaluator: ConditionEvaluator | None = None,
    ) -> None:
        self.db = db
        self.redis = redis
        self.manager = manager or PenaltyLifecycleManager.from_settings(evaluator)

    async def handle_raw(self, data: dict[str, Any]) -> EngineOutcome:
        """Validate a raw event document and handle it."""
        return await self.handle(parse_event(data))

    async def handle(self, event: BehaviorEvent) -> EngineOutcome:
        if isinstance(event, QuestCompletionEvent):
            return await self._on_completion(event)
        if isinstance(event, RedemptionEvent):
            return await self._on_redemption(event)
        if isinstance(event, BehaviorFlagEvent) and event.flag_id is not None:
            claimed = await claim_behavior_flags(self.db, [event.flag_id], datetime.now(timezone.utc))
            if event.flag_id not in claimed:
                logger.info("Behavior flag %s already processed", event.flag_id)
                return EngineOutcome(skipped=True)
        return await self.evaluate(event)

    async def evaluate(self, event: BehaviorEvent) -> EngineOutcome:
        outcome = EngineOutcome()
        outcome.absorb(await evaluate_and_apply(self.db, self.redis, event, self.manager))
        return outcome

    async def _on_completion(self, event: QuestCompletionEvent) -> EngineOutcome:
        outcome = EngineOutcome()
        await record_event_counters(self.db, event)

        async def _credit(session: AsyncSession) -> None:
            await grant_xp(
                session, event.child_id, event.xp_earned,
                source="quest",
                source_id=str(event.quest_id or ""),
                idempotency_key=completion_key(event),
                count_quest=True,
            )

        await run_transaction(self.db, _credit, label="xp credit")

        outcome.streak = await record_activity(
            self.db, self.redis, event.family_id, event.child_id, event.occurred_at,
        )
        outcome.goals = await update_goal_progress(self.db, self.redis, event)

        outcome.absorb(await evaluate_and_apply(self.db, self.redis, event, self.manager))

        break_event = outcome.streak.break_event()
        if break_event is not None:
            outcome.absorb(await evaluate_and_apply(self.db, self.redis, break_event, self.manager))
        return outcome

    async def _on_redemption(self, event: RedemptionEvent) -> EngineOutcome:
        await record_event_counters(self.db, event)

        async def _debit(session: AsyncSession) -> None:
            await deduct_xp(
                session, event.child_id, event.xp_cost,
                source="redemption",
                source_id=event.reward_id,
                idempotency_key=f"redemption:{event.child_id}:{event.reward_id}:{event.occurred_at.isoformat()}",
                description=event.reward_title,
            )

        await run_transaction(self.db, _debit, label="xp debit")
        return EngineOutcome()
