"""Penalty lifecycle: matching, construction and state transitions.

States: active -> completed | cancelled | expired (all terminal).
Appeals ride alongside: pending -> approved (penalty cancelled) | denied
(penalty stays active, the appeal is consumed).

Everything here mutates in-memory ``AppliedPenalty`` objects only and checks
every precondition before touching a field, so a rejected call leaves the
penalty unchanged. Persistence lives in ``penalty_service``.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel

from famquest.behavior.conditions import ConditionEvaluator
from famquest.behavior.consequences import Consequence, ConsequenceCalculator
from famquest.db.models import AppliedPenalty, PenaltyRule
from famquest.errors import BusinessRuleViolation, ValidationFailed

ACTIVE = "active"
COMPLETED = "completed"
CANCELLED = "cancelled"
EXPIRED = "expired"

TERMINAL_STATUSES = frozenset({COMPLETED, CANCELLED, EXPIRED})

VALID_TRANSITIONS: dict[str, list[str]] = {
    ACTIVE: [COMPLETED, CANCELLED, EXPIRED],
    COMPLETED: [],
    CANCELLED: [],
    EXPIRED: [],
}

APPEAL_PENDING = "pending"
APPEAL_APPROVED = "approved"
APPEAL_DENIED = "denied"
APPEAL_DECISIONS = frozenset({APPEAL_APPROVED, APPEAL_DENIED})


def validate_transition(current: str, target: str) -> None:
    """Raise BusinessRuleViolation if the status transition is not allowed."""
    allowed = VALID_TRANSITIONS.get(current, [])
    if target not in allowed:
        msg = f"Invalid transition: {current} -> {target}. Allowed: {allowed}"
        raise BusinessRuleViolation(msg)


def _now(now: datetime | None) -> datetime:
    return now if now is not None else datetime.now(timezone.utc)


@dataclass
class EvaluationResult:
    """Outcome of matching one event against a family's rules."""

    applicable: list[PenaltyRule] = field(default_factory=list)
    applied: list[AppliedPenalty] = field(default_factory=list)
    needs_review: bool = False
    review_rules: list[PenaltyRule] = field(default_factory=list)
    failures: int = 0


class PenaltyLifecycleManager:
    """Creates, appeals, resolves, completes, cancels and expires penalties."""

    def __init__(
        self,
        evaluator: ConditionEvaluator | None = None,
        calculator: ConsequenceCalculator | None = None,
        appeal_window: timedelta = timedelta(hours=24),
        max_active_penalties: int | None = None,
    ) -> None:
        self.evaluator = evaluator or ConditionEvaluator()
        self.calculator = calculator or ConsequenceCalculator()
        self.appeal_window = appeal_window
        self.max_active_penalties = max_active_penalties

    @classmethod
    def from_settings(cls, evaluator: ConditionEvaluator | None = None) -> PenaltyLifecycleManager:
        from famquest.behavior.consequences import SeverityTable
        from famquest.config import get_settings

        settings = get_settings()
        return cls(
            evaluator=evaluator,
            calculator=ConsequenceCalculator(SeverityTable.from_settings()),
            appeal_window=timedelta(hours=settings.appeal_window_hours),
            max_active_penalties=settings.max_active_penalties,
        )

    # --- Creation ---

    def build_penalty(
        self,
        rule: PenaltyRule,
        family_id: int,
        child_id: int,
        consequence: Consequence,
        *,
        offense_number: int = 1,
        applied_by: str = "system",
        source_event: Mapping[str, Any] | None = None,
        now: datetime | None = None,
    ) -> AppliedPenalty:
        """Unsaved active penalty with a snapshot of the rule."""
        applied_at = _now(now)
        return AppliedPenalty(
            family_id=family_id,
            child_id=child_id,
            rule_id=rule.id,
            rule_name=rule.name,
            trigger=rule.trigger,
            penalty_type=rule.penalty_type,
            severity=rule.severity,
            appealable=rule.appealable,
            consequences=consequence.model_dump(mode="json"),
            offense_number=offense_number,
            source_event=dict(source_event) if source_event is not None else None,
            status=ACTIVE,
            applied_by=applied_by,
            applied_at=applied_at,
            expires_at=applied_at + timedelta(hours=consequence.cooldown_hours) if consequence.cooldown_hours else None,
            xp_deducted=0,
        )

    def evaluate(
        self,
        event: BaseModel,
        rules: Iterable[PenaltyRule],
        offense_counts: Mapping[int, int] | None = None,
        *,
        active_penalty_count: int = 0,
        now: datetime | None = None,
    ) -> EvaluationResult:
        """Match an event against rules and build penalties for auto-apply matches.

        Only rules whose trigger the event can fire are considered. Matches
        that need a parent (``auto_apply`` off) set ``needs_review`` instead of
        producing a penalty, as do auto matches beyond the active penalty cap.
        """
        fired = event.triggers() if hasattr(event, "triggers") else None
        offense_counts = offense_counts or {}
        result = EvaluationResult()
        source = event.model_dump(mode="json")

        for rule in rules:
            if fired is not None and rule.trigger not in fired:
                continue
            if not self.evaluator.matches(rule, event):
                continue
            result.applicable.append(rule)

            if not rule.auto_apply:
                result.needs_review = True
                result.review_rules.append(rule)
                continue

            if (
                self.max_active_penalties is not None
                and active_penalty_count + len(result.applied) >= self.max_active_penalties
            ):
                result.needs_review = True
                result.review_rules.append(rule)
                continue

            offense_number = offense_counts.get(rule.id, 1) if rule.id is not None else 1
            consequence = self.calculator.calculate(rule, event, offense_number if rule.escalation else None)
            result.applied.append(self.build_penalty(
                rule,
                family_id=getattr(event, "family_id"),
                child_id=getattr(event, "child_id"),
                consequence=consequence,
                offense_number=offense_number,
                source_event=source,
                now=now,
            ))

        return result

    # --- Appeals ---

    def appeal_rejection(self, penalty: AppliedPenalty, now: datetime | None = None) -> str | None:
        """Why an appeal would be rejected right now, or None if it is allowed."""
        now = _now(now)
        if not penalty.appealable:
            return "This penalty cannot be appealed"
        if penalty.appealed_at is not None:
            return "This penalty has already been appealed"
        if penalty.status != ACTIVE:
            return f"Only active penalties can be appealed (status is {penalty.status})"
        if now - penalty.applied_at > self.appeal_window:
            hours = int(self.appeal_window.total_seconds() // 3600)
            return f"The {hours}-hour appeal window has closed"
        return None

    def can_appeal(self, penalty: AppliedPenalty, now: datetime | None = None) -> bool:
        return self.appeal_rejection(penalty, now) is None

    def appeal(self, penalty: AppliedPenalty, reason: str, now: datetime | None = None) -> AppliedPenalty:
        if not reason or not reason.strip():
            raise ValidationFailed("Appeal reason is required", details=["reason must not be empty"])
        rejection = self.appeal_rejection(penalty, now)
        if rejection is not None:
            raise BusinessRuleViolation(rejection)
        penalty.appealed_at = _now(now)
        penalty.appeal_reason = reason.strip()
        penalty.appeal_status = APPEAL_PENDING
        return penalty

    def resolve_appeal(
        self,
        penalty: AppliedPenalty,
        decision: str,
        notes: str | None = None,
        resolved_by: int | None = None,
        now: datetime | None = None,
    ) -> AppliedPenalty:
        if decision not in APPEAL_DECISIONS:
            raise ValidationFailed(
                "Invalid appeal decision",
                details=[f"decision must be one of {sorted(APPEAL_DECISIONS)}"],
            )
        if penalty.appealed_at is None:
            raise BusinessRuleViolation("No appeal has been submitted for this penalty")
        if penalty.appeal_status != APPEAL_PENDING:
            raise BusinessRuleViolation(f"Appeal already resolved ({penalty.appeal_status})")
        if decision == APPEAL_APPROVED:
            validate_transition(penalty.status, CANCELLED)

        now = _now(now)
        penalty.appeal_status = decision
        penalty.appeal_notes = notes
        penalty.appeal_resolved_at = now
        penalty.appeal_resolved_by = resolved_by
        if decision == APPEAL_APPROVED:
            penalty.status = CANCELLED
            penalty.cancelled_at = now
            penalty.cancel_reason = "Appeal approved"
        return penalty

    # --- Terminal transitions ---

    def complete(self, penalty: AppliedPenalty, now: datetime | None = None) -> AppliedPenalty:
        validate_transition(penalty.status, COMPLETED)
        penalty.status = COMPLETED
        penalty.completed_at = _now(now)
        return penalty

    def cancel(self, penalty: AppliedPenalty, reason: str = "", now: datetime | None = None) -> AppliedPenalty:
        validate_transition(penalty.status, CANCELLED)
        penalty.status = CANCELLED
        penalty.cancelled_at = _now(now)
        penalty.cancel_reason = reason or None
        return penalty

    def expire(self, penalty: AppliedPenalty, now: datetime | None = None) -> bool:
        """Move a due penalty to expired. Returns False if it already was."""
        if penalty.status == EXPIRED:
            return False
        now = _now(now)
        if penalty.expires_at is None or now < penalty.expires_at:
            raise BusinessRuleViolation("Penalty has not reached its expiry time")
        validate_transition(penalty.status, EXPIRED)
        penalty.status = EXPIRED
        penalty.expired_at = now
        return True


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------


@dataclass
class PenaltyImpact:
    total_xp_deduction: int = 0
    xp_reduction_multiplier: float = 1.0
    streak_broken: bool = False
    rewards_restricted: bool = False
    quests_limited: bool = False
    privileges_lost: list[str] = field(default_factory=list)


def summarize_impact(penalties: Iterable[AppliedPenalty]) -> PenaltyImpact:
    """Combined effect of a child's active penalties."""
    impact = PenaltyImpact()
    for penalty in penalties:
        c = penalty.consequences or {}
        impact.total_xp_deduction += c.get("xp_deduction") or 0
        if c.get("xp_reduction"):
            impact.xp_reduction_multiplier = min(impact.xp_reduction_multiplier, 1 - c["xp_reduction"])
        impact.streak_broken = impact.streak_broken or bool(c.get("streak_break"))
        impact.rewards_restricted = impact.rewards_restricted or bool(c.get("restrict_rewards") or c.get("locked_reward_id"))
        impact.quests_limited = impact.quests_limited or c.get("limit_quests") is not None
        for privilege in c.get("privileges_lost") or []:
            if privilege not in impact.privileges_lost:
                impact.privileges_lost.append(privilege)
    return impact


def penalty_stats(
    penalties: Iterable[AppliedPenalty],
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict[str, Any]:
    """Counts by status, type, severity and trigger, optionally within [start, end]."""
    relevant = [
        p for p in penalties
        if (start is None or p.applied_at >= start) and (end is None or p.applied_at <= end)
    ]
    statuses = Counter(p.status for p in relevant)
    return {
        "total_penalties": len(relevant),
        "active_penalties": statuses[ACTIVE],
        "completed_penalties": statuses[COMPLETED],
        "cancelled_penalties": statuses[CANCELLED],
        "expired_penalties": statuses[EXPIRED],
        "appealed_penalties": sum(1 for p in relevant if p.appealed_at is not None),
        "by_type": dict(Counter(p.penalty_type for p in relevant)),
        "by_severity": dict(Counter(p.severity for p in relevant)),
        "by_trigger": dict(Counter(p.trigger for p in relevant)),
        "total_xp_deducted": sum(p.xp_deducted or 0 for p in relevant),
    }


def describe_consequences(consequences: Mapping[str, Any]) -> str:
    """Short human-readable summary, e.g. ``-50 XP, 24h cooldown``."""
    parts: list[str] = []
    if consequences.get("xp_deduction"):
        parts.append(f"-{consequences['xp_deduction']} XP")
    if consequences.get("xp_reduction"):
        parts.append(f"{round(consequences['xp_reduction'] * 100)}% XP reduction")
    if consequences.get("streak_break"):
        parts.append("Streak broken")
    if consequences.get("cooldown_hours"):
        parts.append(f"{consequences['cooldown_hours']}h cooldown")
    if consequences.get("restrict_rewards") or consequences.get("locked_reward_id"):
        parts.append("Rewards restricted")
    if consequences.get("limit_quests") is not None:
        parts.append("Quest limits applied")
    if consequences.get("privileges_lost"):
        parts.append("Privileges lost: " + ", ".join(consequences["privileges_lost"]))
    if consequences.get("remedial_quest_template_id"):
        parts.append("Redemption quest assigned")
    if consequences.get("redo_required"):
        parts.append("Redo required")
    return ", ".join(parts) or "No consequences"
