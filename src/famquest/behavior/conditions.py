"""Condition evaluator: decides whether a penalty rule matches an event.

Rule conditions are a JSON map; every present key is an independent
constraint and all of them must hold:

    {"quest_difficulty": "hard",          equality against the event
     "hours_late":    {"min": 1, "max": 24},
     "streak_length": {"min": 7},
     "parent_rating": {"max": 2},         range, either bound optional
     "custom": "no_screens_on_school_night"}   named injected predicate

Missing event values fall back to favorable defaults (hours late 0, streak
length 0, parent rating 5). Pure: no I/O and no mutation.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any, Protocol

from pydantic import BaseModel

from famquest.behavior.events import (
    DEFAULT_HOURS_LATE,
    DEFAULT_PARENT_RATING,
    DEFAULT_STREAK_LENGTH,
)

CustomPredicate = Callable[[Mapping[str, Any]], bool]

# condition key -> (event field, default when the event lacks it)
RANGE_CONDITIONS: dict[str, tuple[str, float]] = {
    "hours_late": ("hours_late", DEFAULT_HOURS_LATE),
    "streak_length": ("streak_length", DEFAULT_STREAK_LENGTH),
    "parent_rating": ("parent_rating", DEFAULT_PARENT_RATING),
}

EQUALITY_CONDITIONS: dict[str, str] = {
    "quest_difficulty": "difficulty",
}

KNOWN_CONDITION_KEYS = frozenset({*RANGE_CONDITIONS, *EQUALITY_CONDITIONS, "custom"})


class RuleLike(Protocol):
    is_active: bool
    conditions: Mapping[str, Any] | None


def event_data(event: BaseModel | Mapping[str, Any]) -> dict[str, Any]:
    """Flatten an event into the dict conditions and predicates read."""
    if isinstance(event, BaseModel):
        data = event.model_dump()
        condition_fields = getattr(event, "condition_fields", None)
        if condition_fields is not None:
            data.update(condition_fields())
        return data
    return dict(event)


def in_range(value: float, bounds: Mapping[str, Any]) -> bool:
    """Inclusive range check; absent bounds are unconstrained."""
    lo = bounds.get("min")
    hi = bounds.get("max")
    if lo is not None and value < lo:
        return False
    if hi is not None and value > hi:
        return False
    return True


class ConditionEvaluator:
    """Matches rules against events using an injected predicate registry."""

    def __init__(self, predicates: Mapping[str, CustomPredicate] | None = None) -> None:
        self._predicates: dict[str, CustomPredicate] = dict(predicates or {})

    def has_predicate(self, name: str) -> bool:
        return name in self._predicates

    def matches(self, rule: RuleLike, event: BaseModel | Mapping[str, Any]) -> bool:
        """True iff the rule is active and every configured condition holds."""
        if not rule.is_active:
            return False

        conditions = rule.conditions or {}
        data = event_data(event)

        for key, field in EQUALITY_CONDITIONS.items():
            expected = conditions.get(key)
            if expected is not None and data.get(field) != expected:
                return False

        for key, (field, default) in RANGE_CONDITIONS.items():
            bounds = conditions.get(key)
            if bounds is None:
                continue
            value = data.get(field)
            if value is None:
                value = default
            if not in_range(value, bounds):
                return False

        custom = conditions.get("custom")
        if custom is not None:
            predicate = self._predicates.get(custom)
            # An unregistered predicate can never be satisfied
            if predicate is None or not predicate(data):
                return False

        return True
