"""Penalty persistence: apply, appeal, resolve, complete, cancel, expire.

Each operation is its own optimistic transaction. Identity checks (family
scope, parent role) run before any state is touched.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from pydantic import BaseModel
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import class_mapper

from famquest.behavior.consequences import Consequence, RuleTerms
from famquest.behavior.family_service import (
    Actor,
    get_child,
    get_child_profile,
    require_family,
    require_parent,
)
from famquest.behavior.notifications import PENALTY_APPLIED_CHANNEL, PENALTY_UPDATED_CHANNEL, publish
from famquest.behavior.offenses import peek_offense_count, record_offense, reset_period_hours
from famquest.behavior.penalties import (
    ACTIVE,
    EXPIRED,
    EvaluationResult,
    PenaltyLifecycleManager,
    describe_consequences,
)
from famquest.behavior.rules import get_rule, list_rules
from famquest.behavior.streak_service import DAILY, get_streak
from famquest.behavior.xp_service import deduct_xp
from famquest.config import get_settings
from famquest.db.models import AppliedPenalty, PenaltyRule, Quest, QuestTemplate, RewardLock
from famquest.db.transactions import run_transaction
from famquest.errors import BusinessRuleViolation, EngineError, NotFound

logger = logging.getLogger(__name__)

_COPY_EXCLUDE = frozenset({"id", "version"})


def _fresh_copy(penalty: AppliedPenalty) -> AppliedPenalty:
    """New transient row with the same column values (one per transaction attempt)."""
    columns = class_mapper(AppliedPenalty).column_attrs
    return AppliedPenalty(**{
        attr.key: getattr(penalty, attr.key)
        for attr in columns
        if attr.key not in _COPY_EXCLUDE
    })


async def _lock_rewards(db: AsyncSession, penalty: AppliedPenalty, consequence: Consequence) -> None:
    if not (consequence.restrict_rewards or consequence.locked_reward_id):
        return
    db.add(RewardLock(
        family_id=penalty.family_id,
        child_id=penalty.child_id,
        penalty_id=penalty.id,
        reward_id=consequence.locked_reward_id,
        expires_at=penalty.expires_at,
        created_at=penalty.applied_at,
    ))


async def _create_remedial_quest(
    db: AsyncSession, penalty: AppliedPenalty, template_id: int
) -> Quest:
    template = await db.get(QuestTemplate, template_id)
    if template is None or template.family_id != penalty.family_id:
        msg = f"Quest template {template_id} not found"
        raise NotFound(msg)

    due_days = get_settings().remedial_quest_due_days
    quest = Quest(
        family_id=penalty.family_id,
        assigned_to=penalty.child_id,
        title=f"Redemption: {template.title}",
        description=template.description,
        category="redemption",
        difficulty=template.difficulty,
        xp_reward=0,
        status="pending",
        due_at=penalty.applied_at + timedelta(days=due_days),
        template_id=template.id,
        penalty_id=penalty.id,
    )
    db.add(quest)
    await db.flush()
    return quest


async def _break_streak(db: AsyncSession, child_id: int, now: datetime) -> bool:
    streak = await get_streak(db, child_id, DAILY, refresh=True)
    if streak is None:
        return False
    streak.current_length = 1
    streak.broken = True
    streak.broken_at = now
    return True


async def apply_penalty(
    db: AsyncSession,
    redis: object,
    penalty: AppliedPenalty,
    rule: PenaltyRule | RuleTerms | None = None,
    manager: PenaltyLifecycleManager | None = None,
) -> AppliedPenalty:
    """Persist a built penalty and enforce its consequences in one transaction.

    - records the offense; an escalating rule whose tier changed under a
      concurrent offense gets its consequence recomputed
    - XP deduction (flat plus percentage of recent earnings) clamped at zero,
      the amount actually removed stored on the penalty
    - streak break, reward lock, remedial quest from a template
    """
    manager = manager or PenaltyLifecycleManager.from_settings()
    terms = rule if isinstance(rule, RuleTerms) or rule is None else RuleTerms.of(rule)

    async def _txn(session: AsyncSession) -> AppliedPenalty:
        record = _fresh_copy(penalty)

        if terms is not None and terms.rule_id is not None:
            count = await record_offense(
                session, record.child_id, terms.rule_id, record.applied_at,
                reset_period_hours(terms.escalation),
            )
            if terms.escalation and count != record.offense_number:
                recalculated = manager.calculator.calculate(terms, None, count)
                record.consequences = recalculated.model_dump(mode="json")
                record.expires_at = (
                    record.applied_at + timedelta(hours=recalculated.cooldown_hours)
                    if recalculated.cooldown_hours else None
                )
            record.offense_number = count

        session.add(record)
        await session.flush()

        consequence = Consequence.model_validate(record.consequences)

        if consequence.xp_deduction or consequence.xp_reduction:
            profile = await get_child_profile(session, record.child_id, refresh=True)
            requested = consequence.xp_deduction + math.floor(profile.recent_xp_earned * consequence.xp_reduction)
            change = await deduct_xp(
                session, record.child_id, requested,
                source="penalty",
                source_id=str(record.id),
                idempotency_key=f"penalty:{record.id}",
                description=record.rule_name,
            )
            record.xp_deducted = change.applied
            record.xp_balance_after = change.balance_after

        if consequence.streak_break:
            await _break_streak(session, record.child_id, record.applied_at)

        await _lock_rewards(session, record, consequence)

        if consequence.remedial_quest_template_id is not None:
            quest = await _create_remedial_quest(session, record, consequence.remedial_quest_template_id)
            record.remedial_quest_id = quest.id

        await session.flush()
        return record

    applied = await run_transaction(db, _txn, label="penalty application")
    logger.info(
        "Applied penalty %s (%s) to child %s, xp_deducted=%d",
        applied.id, applied.rule_name, applied.child_id, applied.xp_deducted,
    )
    await publish(redis, PENALTY_APPLIED_CHANNEL, {
        "penalty_id": applied.id,
        "family_id": applied.family_id,
        "child_id": applied.child_id,
        "rule_name": applied.rule_name,
        "severity": applied.severity,
        "summary": describe_consequences(applied.consequences),
        "xp_deducted": applied.xp_deducted,
    })
    return applied


async def count_active_penalties(db: AsyncSession, child_id: int) -> int:
    result = await db.execute(
        select(func.count()).select_from(AppliedPenalty).where(
            AppliedPenalty.child_id == child_id,
            AppliedPenalty.status == ACTIVE,
        )
    )
    return int(result.scalar_one())


async def evaluate_and_apply(
    db: AsyncSession,
    redis: object,
    event: BaseModel,
    manager: PenaltyLifecycleManager | None = None,
    rules: list[PenaltyRule] | None = None,
    now: datetime | None = None,
) -> EvaluationResult:
    """Evaluate an event against the family's active rules and apply auto matches.

    A failure applying one penalty (missing template, exhausted retries) is
    logged and counted; the remaining penalties are still applied.
    """
    manager = manager or PenaltyLifecycleManager.from_settings()
    if now is None:
        now = datetime.now(timezone.utc)
    family_id: int = getattr(event, "family_id")
    child_id: int = getattr(event, "child_id")

    if rules is None:
        fired = event.triggers() if hasattr(event, "triggers") else None
        if not fired:
            return EvaluationResult()
        rules = await list_rules(db, family_id, active_only=True, triggers=fired)
    if not rules:
        return EvaluationResult()

    # Rules are read before any commit or rollback can expire them
    terms_by_id = {rule.id: RuleTerms.of(rule) for rule in rules}
    offense_counts: dict[int, int] = {}
    for rule_id, terms in terms_by_id.items():
        if terms.escalation and rule_id is not None:
            offense_counts[rule_id] = await peek_offense_count(
                db, child_id, rule_id, now, reset_period_hours(terms.escalation),
            )

    active = await count_active_penalties(db, child_id)
    result = manager.evaluate(event, rules, offense_counts, active_penalty_count=active, now=now)

    persisted: list[AppliedPenalty] = []
    for built in result.applied:
        rule_id = built.rule_id
        try:
            persisted.append(await apply_penalty(db, redis, built, terms_by_id.get(rule_id), manager))
        except EngineError:
            result.failures += 1
            logger.exception("Failed to apply rule %s to child %s", rule_id, child_id)
    result.applied = persisted

    if result.needs_review:
        logger.info(
            "Event for child %s matched %d rule(s) needing parent review",
            child_id, len(result.review_rules),
        )
    return result


# ---------------------------------------------------------------------------
# Callable operations (identity checked first)
# ---------------------------------------------------------------------------


async def get_penalty(db: AsyncSession, penalty_id: int, *, refresh: bool = False) -> AppliedPenalty:
    penalty = await db.get(AppliedPenalty, penalty_id, populate_existing=refresh)
    if penalty is None:
        msg = f"Penalty {penalty_id} not found"
        raise NotFound(msg)
    return penalty


async def apply_rule_manually(
    db: AsyncSession,
    redis: object,
    actor: Actor,
    child_id: int,
    rule_id: int,
    note: str | None = None,
    manager: PenaltyLifecycleManager | None = None,
    now: datetime | None = None,
) -> AppliedPenalty:
    """A parent applies one of the family's rules to a child, bypassing matching."""
    manager = manager or PenaltyLifecycleManager.from_settings()
    if now is None:
        now = datetime.now(timezone.utc)

    require_parent(actor)
    child = await get_child(db, child_id)
    require_family(actor, child.family_id)
    rule = await get_rule(db, rule_id, child.family_id)
    if not rule.is_active:
        msg = f"Rule '{rule.name}' is disabled"
        raise BusinessRuleViolation(msg)

    terms = RuleTerms.of(rule)
    offense_number = 1
    if terms.escalation:
        offense_number = await peek_offense_count(
            db, child.id, rule.id, now, reset_period_hours(terms.escalation),
        )
    consequence = manager.calculator.calculate(terms, None, offense_number if terms.escalation else None)
    built = manager.build_penalty(
        rule,
        family_id=child.family_id,
        child_id=child.id,
        consequence=consequence,
        offense_number=offense_number,
        applied_by=f"user:{actor.user_id}",
        source_event={"kind": "manual", "note": note} if note else {"kind": "manual"},
        now=now,
    )
    return await apply_penalty(db, redis, built, terms, manager)


async def _mutate_penalty(
    db: AsyncSession,
    redis: object,
    penalty_id: int,
    actor: Actor | None,
    mutate: Callable[[AppliedPenalty], object],
    *,
    label: str,
) -> AppliedPenalty:
    async def _txn(session: AsyncSession) -> AppliedPenalty:
        penalty = await get_penalty(session, penalty_id, refresh=True)
        if actor is not None:
            require_family(actor, penalty.family_id)
        mutate(penalty)
        await session.flush()
        return penalty

    penalty = await run_transaction(db, _txn, label=label)
    await publish(redis, PENALTY_UPDATED_CHANNEL, {
        "penalty_id": penalty.id,
        "family_id": penalty.family_id,
        "child_id": penalty.child_id,
        "status": penalty.status,
        "appeal_status": penalty.appeal_status,
    })
    return penalty


async def submit_appeal(
    db: AsyncSession,
    redis: object,
    actor: Actor,
    penalty_id: int,
    reason: str,
    manager: PenaltyLifecycleManager | None = None,
    now: datetime | None = None,
) -> AppliedPenalty:
    """Any member of the owning family may appeal within the window."""
    manager = manager or PenaltyLifecycleManager.from_settings()
    return await _mutate_penalty(
        db, redis, penalty_id, actor,
        lambda p: manager.appeal(p, reason, now),
        label="penalty appeal",
    )


async def resolve_appeal(
    db: AsyncSession,
    redis: object,
    actor: Actor,
    penalty_id: int,
    decision: str,
    notes: str | None = None,
    manager: PenaltyLifecycleManager | None = None,
    now: datetime | None = None,
) -> AppliedPenalty:
    manager = manager or PenaltyLifecycleManager.from_settings()
    require_parent(actor)
    return await _mutate_penalty(
        db, redis, penalty_id, actor,
        lambda p: manager.resolve_appeal(p, decision, notes, actor.user_id, now),
        label="appeal resolution",
    )


async def complete_penalty(
    db: AsyncSession,
    redis: object,
    actor: Actor,
    penalty_id: int,
    manager: PenaltyLifecycleManager | None = None,
) -> AppliedPenalty:
    manager = manager or PenaltyLifecycleManager.from_settings()
    require_parent(actor)
    return await _mutate_penalty(
        db, redis, penalty_id, actor, manager.complete, label="penalty completion",
    )


async def cancel_penalty(
    db: AsyncSession,
    redis: object,
    actor: Actor,
    penalty_id: int,
    reason: str = "",
    manager: PenaltyLifecycleManager | None = None,
) -> AppliedPenalty:
    manager = manager or PenaltyLifecycleManager.from_settings()
    require_parent(actor)
    return await _mutate_penalty(
        db, redis, penalty_id, actor,
        lambda p: manager.cancel(p, reason),
        label="penalty cancellation",
    )


async def expire_penalty(
    db: AsyncSession,
    redis: object,
    penalty_id: int,
    manager: PenaltyLifecycleManager | None = None,
    now: datetime | None = None,
) -> AppliedPenalty:
    """Single-penalty expiry, idempotent once expired."""
    manager = manager or PenaltyLifecycleManager.from_settings()
    return await _mutate_penalty(
        db, redis, penalty_id, None,
        lambda p: manager.expire(p, now),
        label="penalty expiry",
    )


async def expire_due_penalties(db: AsyncSession, now: datetime | None = None) -> int:
    """Bulk-expire every active penalty whose cooldown has passed. Returns rows changed."""
    if now is None:
        now = datetime.now(timezone.utc)
    result = await db.execute(
        update(AppliedPenalty)
        .where(
            AppliedPenalty.status == ACTIVE,
            AppliedPenalty.expires_at.is_not(None),
            AppliedPenalty.expires_at <= now,
        )
        .values(
            status=EXPIRED,
            expired_at=now,
            version=AppliedPenalty.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    expired = result.rowcount or 0
    if expired:
        logger.info("Expired %d penalties", expired)
    return expired


async def list_child_penalties(
    db: AsyncSession,
    child_id: int,
    *,
    status: str | None = ACTIVE,
) -> list[AppliedPenalty]:
    stmt = select(AppliedPenalty).where(AppliedPenalty.child_id == child_id)
    if status is not None:
        stmt = stmt.where(AppliedPenalty.status == status)
    result = await db.execute(stmt.order_by(AppliedPenalty.applied_at.desc(), AppliedPenalty.id.desc()))
    return list(result.scalars())


async def list_family_penalties(
    db: AsyncSession,
    family_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[AppliedPenalty]:
    stmt = select(AppliedPenalty).where(AppliedPenalty.family_id == family_id)
    if start is not None:
        stmt = stmt.where(AppliedPenalty.applied_at >= start)
    if end is not None:
        stmt = stmt.where(AppliedPenalty.applied_at < end)
    result = await db.execute(stmt.order_by(AppliedPenalty.applied_at))
    return list(result.scalars())
