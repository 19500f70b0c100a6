"""Behavioral event payloads as a tagged union on ``kind``."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from famquest.errors import ValidationFailed

# Defaults assumed when an event does not carry the field. "Assume favorable".
DEFAULT_HOURS_LATE = 0.0
DEFAULT_STREAK_LENGTH = 0
DEFAULT_PARENT_RATING = 5


class Trigger(str, Enum):
    """What a penalty rule reacts to."""

    MISSED_QUEST = "missed_quest"
    LATE_COMPLETION = "late_completion"
    POOR_QUALITY = "poor_quality"
    BEHAVIORAL_ISSUE = "behavioral_issue"
    RULE_VIOLATION = "rule_violation"
    STREAK_BREAK = "streak_break"
    CUSTOM = "custom"


class _EventBase(BaseModel):
    family_id: int
    child_id: int
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("occurred_at")
    @classmethod
    def _ensure_aware(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def triggers(self) -> set[str]:
        """Rule triggers this event can fire."""
        return set()

    def condition_fields(self) -> dict[str, Any]:
        """Values the condition evaluator reads, with documented defaults applied."""
        return {
            "difficulty": None,
            "hours_late": DEFAULT_HOURS_LATE,
            "streak_length": DEFAULT_STREAK_LENGTH,
            "parent_rating": DEFAULT_PARENT_RATING,
        }


class QuestCompletionEvent(_EventBase):
    kind: Literal["quest_completed"] = "quest_completed"
    quest_id: int | None = None
    category: str = "general"
    difficulty: str | None = None
    xp_earned: int = 0
    time_to_complete_minutes: float | None = None
    hours_late: float | None = None
    parent_rating: int | None = Field(default=None, ge=1, le=5)

    def triggers(self) -> set[str]:
        fired: set[str] = set()
        if self.hours_late is not None and self.hours_late > 0:
            fired.add(Trigger.LATE_COMPLETION.value)
        if self.parent_rating is not None:
            fired.add(Trigger.POOR_QUALITY.value)
        return fired

    def condition_fields(self) -> dict[str, Any]:
        fields = super().condition_fields()
        fields["difficulty"] = self.difficulty
        if self.hours_late is not None:
            fields["hours_late"] = self.hours_late
        if self.parent_rating is not None:
            fields["parent_rating"] = self.parent_rating
        return fields


class MissedQuestEvent(_EventBase):
    kind: Literal["quest_missed"] = "quest_missed"
    quest_id: int | None = None
    category: str = "general"
    difficulty: str | None = None
    due_at: datetime | None = None

    def triggers(self) -> set[str]:
        return {Trigger.MISSED_QUEST.value}

    def condition_fields(self) -> dict[str, Any]:
        fields = super().condition_fields()
        fields["difficulty"] = self.difficulty
        return fields


class RedemptionEvent(_EventBase):
    kind: Literal["reward_redeemed"] = "reward_redeemed"
    reward_id: str
    reward_title: str | None = None
    xp_cost: int = 0


class BehaviorFlagEvent(_EventBase):
    kind: Literal["behavior_flagged"] = "behavior_flagged"
    trigger: Literal["behavioral_issue", "rule_violation", "custom"] = "behavioral_issue"
    behavior_type: str | None = None
    note: str | None = None
    flag_id: int | None = None

    def triggers(self) -> set[str]:
        return {self.trigger}


class StreakBreakEvent(_EventBase):
    kind: Literal["streak_broken"] = "streak_broken"
    streak_length: int = DEFAULT_STREAK_LENGTH
    streak_type: str = "daily"

    def triggers(self) -> set[str]:
        return {Trigger.STREAK_BREAK.value}

    def condition_fields(self) -> dict[str, Any]:
        fields = super().condition_fields()
        fields["streak_length"] = self.streak_length
        return fields


BehaviorEvent = Annotated[
    Union[
        QuestCompletionEvent,
        MissedQuestEvent,
        RedemptionEvent,
        BehaviorFlagEvent,
        StreakBreakEvent,
    ],
    Field(discriminator="kind"),
]

_event_adapter: TypeAdapter[BehaviorEvent] = TypeAdapter(BehaviorEvent)


def parse_event(raw: dict[str, Any]) -> BehaviorEvent:
    """Validate a raw event document into its typed event model."""
    try:
        return _event_adapter.validate_python(raw)
    except ValidationError as exc:
        details = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]
        raise ValidationFailed("Invalid event payload", details=details) from exc
