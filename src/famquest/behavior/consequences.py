"""Consequence calculator: severity scaling and escalation tiers.

Rules:
- Numeric fields (xp_deduction, cooldown_hours) are multiplied by the rule's
  severity multiplier and floored to an integer.
- Everything else (flags, percentages, restriction lists) passes through.
- An escalating rule picks the tier for the child's offense count inside the
  reset window: first..fourth offense, then subsequent_offenses as the
  catch-all. A missing tier falls back to the rule's flat consequences.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field

from famquest.errors import ValidationFailed

DEFAULT_SEVERITY_MULTIPLIERS: Mapping[str, float] = MappingProxyType({
    "minor": 1.0,
    "moderate": 1.5,
    "major": 2.0,
    "severe": 3.0,
})

SCALED_FIELDS = ("xp_deduction", "cooldown_hours")

OFFENSE_TIERS = ("first_offense", "second_offense", "third_offense", "fourth_offense")
SUBSEQUENT_TIER = "subsequent_offenses"


class Consequence(BaseModel):
    """Declarative effect description, also the concrete computed result."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    xp_deduction: int = Field(default=0, ge=0)
    xp_reduction: float = Field(default=0.0, ge=0.0, le=1.0)  # fraction of recently earned XP
    streak_break: bool = False
    cooldown_hours: int = Field(default=0, ge=0)
    restrict_rewards: bool = False
    locked_reward_id: str | None = None
    limit_quests: int | None = Field(default=None, ge=0)
    privileges_lost: tuple[str, ...] = ()
    remedial_quest_template_id: int | None = None
    redo_required: bool = False
    warning: bool = False


@dataclass(frozen=True)
class SeverityTable:
    """Immutable severity -> multiplier mapping."""

    multipliers: Mapping[str, float] = field(default_factory=lambda: DEFAULT_SEVERITY_MULTIPLIERS)

    def __post_init__(self) -> None:
        object.__setattr__(self, "multipliers", MappingProxyType(dict(self.multipliers)))

    @classmethod
    def from_settings(cls) -> SeverityTable:
        from famquest.config import get_settings

        return cls(get_settings().severity_multipliers)

    def __contains__(self, severity: object) -> bool:
        return severity in self.multipliers

    def multiplier(self, severity: str) -> float:
        try:
            return self.multipliers[severity]
        except KeyError:
            msg = f"Unknown severity '{severity}'"
            raise ValidationFailed(msg, details=[f"severity must be one of {sorted(self.multipliers)}"]) from None


class ConsequenceRule(Protocol):
    severity: str
    consequences: Mapping[str, Any]
    escalation: Mapping[str, Any] | None


@dataclass(frozen=True)
class RuleTerms:
    """Detached copy of the fields a calculation reads from a rule."""

    rule_id: int | None
    severity: str
    consequences: Mapping[str, Any]
    escalation: Mapping[str, Any] | None

    @classmethod
    def of(cls, rule: Any) -> RuleTerms:
        return cls(
            rule_id=getattr(rule, "id", None),
            severity=rule.severity,
            consequences=dict(rule.consequences or {}),
            escalation=dict(rule.escalation) if rule.escalation else None,
        )


def tier_name(offense_count: int) -> str:
    """Escalation tier key for a 1-based offense count."""
    if 1 <= offense_count <= len(OFFENSE_TIERS):
        return OFFENSE_TIERS[offense_count - 1]
    return SUBSEQUENT_TIER


def select_tier(escalation: Mapping[str, Any], offense_count: int) -> Mapping[str, Any] | None:
    """Return the declared consequences for this offense count, if any."""
    tiers: Mapping[str, Any] = escalation.get("tiers") or {}
    declared = tiers.get(tier_name(offense_count))
    if declared is None and offense_count > 1:
        declared = tiers.get(SUBSEQUENT_TIER)
    return declared


class ConsequenceCalculator:
    """Computes the concrete consequence for a matched rule."""

    def __init__(self, severities: SeverityTable | None = None) -> None:
        self.severities = severities or SeverityTable()

    def scale(self, declared: Mapping[str, Any] | Consequence, severity: str) -> Consequence:
        base = declared if isinstance(declared, Consequence) else Consequence.model_validate(dict(declared))
        multiplier = self.severities.multiplier(severity)
        scaled = {name: math.floor(getattr(base, name) * multiplier) for name in SCALED_FIELDS}
        return base.model_copy(update=scaled)

    def calculate(
        self,
        rule: ConsequenceRule,
        event: object = None,
        offense_count: int | None = None,
    ) -> Consequence:
        """Severity-scaled consequence, using the escalation tier when applicable.

        No declared field reads ``event`` yet.
        """
        declared: Mapping[str, Any] = rule.consequences
        if rule.escalation and offense_count is not None:
            tier = select_tier(rule.escalation, offense_count)
            if tier is not None:
                declared = tier
        return self.scale(declared, rule.severity)
