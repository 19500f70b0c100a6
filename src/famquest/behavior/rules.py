"""Penalty rule definitions: validation, stock rules, admin CRUD.

Rules are created by a family admin, changed only through admin edits and
never deleted; ``disable_rule`` flips ``is_active`` instead.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from famquest.behavior.conditions import (
    EQUALITY_CONDITIONS,
    KNOWN_CONDITION_KEYS,
    RANGE_CONDITIONS,
    ConditionEvaluator,
)
from famquest.behavior.consequences import (
    OFFENSE_TIERS,
    SUBSEQUENT_TIER,
    Consequence,
    SeverityTable,
)
from famquest.behavior.events import Trigger
from famquest.behavior.offenses import RESET_PERIOD_ALIASES
from famquest.db.models import PenaltyRule
from famquest.errors import NotFound, ValidationFailed

logger = logging.getLogger(__name__)

TRIGGERS = frozenset(t.value for t in Trigger)

PENALTY_TYPES = frozenset({
    "xp_deduction",
    "streak_break",
    "reward_restriction",
    "quest_limit",
    "time_based",
    "privilege_loss",
    "redemption_quest",
    "warning",
})

QUEST_DIFFICULTIES = frozenset({"easy", "medium", "hard"})

# Fields an admin edit may touch
EDITABLE_FIELDS = frozenset({
    "name", "description", "trigger", "penalty_type", "severity", "conditions",
    "consequences", "escalation", "is_active", "auto_apply", "appealable",
})

RULE_FLAGS = ("is_active", "auto_apply", "appealable")

DEFAULT_RULES: list[dict[str, Any]] = [
    {
        "name": "Missed Quest - Minor",
        "description": "Small XP deduction for missing an easy quest",
        "trigger": "missed_quest",
        "severity": "minor",
        "penalty_type": "xp_deduction",
        "conditions": {"quest_difficulty": "easy"},
        "consequences": {"xp_deduction": 25},
        "is_active": True,
        "auto_apply": True,
    },
    {
        "name": "Missed Quest - Moderate",
        "description": "XP deduction for missing a medium quest",
        "trigger": "missed_quest",
        "severity": "moderate",
        "penalty_type": "xp_deduction",
        "conditions": {"quest_difficulty": "medium"},
        "consequences": {"xp_deduction": 50},
        "is_active": True,
        "auto_apply": True,
    },
    {
        "name": "Missed Quest - Major",
        "description": "Significant penalty for missing a hard quest",
        "trigger": "missed_quest",
        "severity": "major",
        "penalty_type": "xp_deduction",
        "conditions": {"quest_difficulty": "hard"},
        "consequences": {"xp_deduction": 100, "streak_break": True},
        "is_active": True,
        "auto_apply": True,
    },
    {
        "name": "Late Quest Completion",
        "description": "Reduced XP for completing a quest after its deadline",
        "trigger": "late_completion",
        "severity": "minor",
        "penalty_type": "xp_deduction",
        "conditions": {"hours_late": {"min": 1, "max": 24}},
        "consequences": {"xp_reduction": 0.5},
        "is_active": True,
        "auto_apply": True,
    },
    {
        "name": "Streak Break Penalty",
        "description": "Additional penalty for breaking a long streak",
        "trigger": "streak_break",
        "severity": "moderate",
        "penalty_type": "time_based",
        "conditions": {"streak_length": {"min": 7}},
        "consequences": {"cooldown_hours": 24, "xp_deduction": 100},
        "is_active": True,
        "auto_apply": True,
    },
    {
        "name": "Poor Quality Work",
        "description": "Penalty for submitting a low-quality quest completion",
        "trigger": "poor_quality",
        "severity": "moderate",
        "penalty_type": "xp_deduction",
        "conditions": {"parent_rating": {"max": 2}},
        "consequences": {"xp_deduction": 75, "redo_required": True},
        "is_active": False,
        "auto_apply": False,
    },
]


def _consequence_errors(declared: Any, label: str) -> list[str]:
    if not isinstance(declared, Mapping) or not declared:
        return [f"{label} must be a non-empty object"]
    try:
        Consequence.model_validate(dict(declared))
    except ValidationError as exc:
        return [f"{label}.{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]
    return []


def _condition_errors(conditions: Any, evaluator: ConditionEvaluator | None) -> list[str]:
    if conditions is None:
        return []
    if not isinstance(conditions, Mapping):
        return ["conditions must be an object"]

    errors: list[str] = []
    for key in conditions:
        if key not in KNOWN_CONDITION_KEYS:
            errors.append(f"conditions.{key}: unknown condition")

    for key in EQUALITY_CONDITIONS:
        value = conditions.get(key)
        if value is not None and value not in QUEST_DIFFICULTIES:
            errors.append(f"conditions.{key}: must be one of {sorted(QUEST_DIFFICULTIES)}")

    for key in RANGE_CONDITIONS:
        bounds = conditions.get(key)
        if bounds is None:
            continue
        if not isinstance(bounds, Mapping) or not ({"min", "max"} & set(bounds)):
            errors.append(f"conditions.{key}: must declare min and/or max")
            continue
        lo, hi = bounds.get("min"), bounds.get("max")
        for name, bound in (("min", lo), ("max", hi)):
            if bound is not None and (isinstance(bound, bool) or not isinstance(bound, (int, float))):
                errors.append(f"conditions.{key}.{name}: must be a number")
        if isinstance(lo, (int, float)) and isinstance(hi, (int, float)) and lo > hi:
            errors.append(f"conditions.{key}: min must not exceed max")

    custom = conditions.get("custom")
    if custom is not None:
        if not isinstance(custom, str) or not custom:
            errors.append("conditions.custom: must name a registered predicate")
        elif evaluator is not None and not evaluator.has_predicate(custom):
            errors.append(f"conditions.custom: unknown predicate '{custom}'")
    return errors


def _escalation_errors(escalation: Any) -> list[str]:
    if escalation is None:
        return []
    if not isinstance(escalation, Mapping):
        return ["escalation must be an object"]

    errors: list[str] = []
    tiers = escalation.get("tiers")
    if not isinstance(tiers, Mapping) or not tiers:
        errors.append("escalation.tiers must be a non-empty object")
    else:
        allowed = {*OFFENSE_TIERS, SUBSEQUENT_TIER}
        for name, declared in tiers.items():
            if name not in allowed:
                errors.append(f"escalation.tiers.{name}: unknown tier")
                continue
            errors.extend(_consequence_errors(declared, f"escalation.tiers.{name}"))

    hours = escalation.get("reset_period_hours")
    alias = escalation.get("reset_period")
    if hours is not None and (isinstance(hours, bool) or not isinstance(hours, (int, float)) or hours <= 0):
        errors.append("escalation.reset_period_hours must be a positive number")
    if alias is not None and alias not in RESET_PERIOD_ALIASES:
        errors.append(f"escalation.reset_period must be one of {sorted(RESET_PERIOD_ALIASES)}")
    return errors


def rule_definition_errors(
    definition: Mapping[str, Any],
    severities: SeverityTable | None = None,
    evaluator: ConditionEvaluator | None = None,
) -> list[str]:
    """Every problem with a rule definition; empty means valid."""
    severities = severities or SeverityTable.from_settings()
    errors: list[str] = []

    name = definition.get("name")
    if not isinstance(name, str) or not name.strip():
        errors.append("name is required")

    trigger = definition.get("trigger")
    if not trigger:
        errors.append("trigger is required")
    elif trigger not in TRIGGERS:
        errors.append(f"trigger '{trigger}' is not one of {sorted(TRIGGERS)}")

    penalty_type = definition.get("penalty_type")
    if not penalty_type:
        errors.append("penalty_type is required")
    elif penalty_type not in PENALTY_TYPES:
        errors.append(f"penalty_type '{penalty_type}' is not one of {sorted(PENALTY_TYPES)}")

    severity = definition.get("severity")
    if not severity:
        errors.append("severity is required")
    elif severity not in severities:
        errors.append(f"severity '{severity}' is not one of {sorted(severities.multipliers)}")

    consequences = definition.get("consequences")
    if not consequences:
        errors.append("at least one consequence is required")
    else:
        errors.extend(_consequence_errors(consequences, "consequences"))

    for flag in RULE_FLAGS:
        if flag in definition and not isinstance(definition[flag], bool):
            errors.append(f"{flag} must be true or false")

    errors.extend(_condition_errors(definition.get("conditions"), evaluator))
    errors.extend(_escalation_errors(definition.get("escalation")))
    return errors


def validate_rule_definition(
    definition: Mapping[str, Any],
    severities: SeverityTable | None = None,
    evaluator: ConditionEvaluator | None = None,
) -> None:
    """Raise ``ValidationFailed`` listing every problem with the definition."""
    errors = rule_definition_errors(definition, severities, evaluator)
    if errors:
        raise ValidationFailed("Invalid penalty rule", details=errors)


async def create_rule(
    db: AsyncSession,
    family_id: int,
    definition: Mapping[str, Any],
    created_by: int | None = None,
    *,
    severities: SeverityTable | None = None,
    evaluator: ConditionEvaluator | None = None,
) -> PenaltyRule:
    """Validate and persist a new rule. Does not commit."""
    validate_rule_definition(definition, severities, evaluator)
    rule = PenaltyRule(
        family_id=family_id,
        name=definition["name"].strip(),
        description=definition.get("description"),
        trigger=definition["trigger"],
        penalty_type=definition["penalty_type"],
        severity=definition["severity"],
        conditions=dict(definition.get("conditions") or {}),
        consequences=dict(definition["consequences"]),
        escalation=dict(definition["escalation"]) if definition.get("escalation") else None,
        is_active=definition.get("is_active", True),
        auto_apply=definition.get("auto_apply", False),
        appealable=definition.get("appealable", True),
        created_by=created_by,
        created_at=datetime.now(timezone.utc),
    )
    db.add(rule)
    await db.flush()
    return rule


async def get_rule(db: AsyncSession, rule_id: int, family_id: int | None = None) -> PenaltyRule:
    rule = await db.get(PenaltyRule, rule_id)
    if rule is None or (family_id is not None and rule.family_id != family_id):
        msg = f"Penalty rule {rule_id} not found"
        raise NotFound(msg)
    return rule


async def list_rules(
    db: AsyncSession,
    family_id: int,
    *,
    active_only: bool = False,
    triggers: set[str] | None = None,
) -> list[PenaltyRule]:
    stmt = select(PenaltyRule).where(PenaltyRule.family_id == family_id)
    if active_only:
        stmt = stmt.where(PenaltyRule.is_active.is_(True))
    if triggers is not None:
        stmt = stmt.where(PenaltyRule.trigger.in_(sorted(triggers)))
    result = await db.execute(stmt.order_by(PenaltyRule.id))
    return list(result.scalars())


async def update_rule(
    db: AsyncSession,
    rule_id: int,
    family_id: int,
    changes: Mapping[str, Any],
    *,
    severities: SeverityTable | None = None,
    evaluator: ConditionEvaluator | None = None,
) -> PenaltyRule:
    """Admin edit. The merged definition is re-validated before anything changes."""
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValidationFailed("Invalid penalty rule", details=[f"{f} cannot be edited" for f in sorted(unknown)])

    if "conditions" in changes and changes["conditions"] is None:
        changes = {**changes, "conditions": {}}

    rule = await get_rule(db, rule_id, family_id)
    merged = {field: getattr(rule, field) for field in EDITABLE_FIELDS}
    merged.update(changes)
    validate_rule_definition(merged, severities, evaluator)

    for field, value in changes.items():
        setattr(rule, field, value)
    rule.updated_at = datetime.now(timezone.utc)
    await db.flush()
    return rule


async def disable_rule(db: AsyncSession, rule_id: int, family_id: int) -> PenaltyRule:
    """Soft-delete: the rule stays for history but never matches again."""
    rule = await get_rule(db, rule_id, family_id)
    rule.is_active = False
    rule.updated_at = datetime.now(timezone.utc)
    await db.flush()
    return rule


async def seed_default_rules(db: AsyncSession, family_id: int, created_by: int | None = None) -> int:
    """Install the stock rules a family does not have yet (matched by name).

    Returns the number of rules created.
    """
    result = await db.execute(select(PenaltyRule.name).where(PenaltyRule.family_id == family_id))
    existing = set(result.scalars())

    created = 0
    for definition in DEFAULT_RULES:
        if definition["name"] in existing:
            continue
        await create_rule(db, family_id, definition, created_by)
        created += 1

    await db.commit()
    logger.info("Seeded %d default penalty rules for family %s", created, family_id)
    return created
