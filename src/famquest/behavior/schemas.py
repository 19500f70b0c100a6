"""Pydantic request/response models for the behavior endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ApiResult(BaseModel):
    """Envelope for every successful callable response."""

    success: bool = True
    message: str
    data: Any = None


# --- Penalties ---


class ApplyPenaltyRequest(BaseModel):
    child_id: int
    rule_id: int
    note: str | None = Field(default=None, max_length=500)


class AppealRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=1000)


class ResolveAppealRequest(BaseModel):
    decision: Literal["approved", "denied"]
    notes: str | None = Field(default=None, max_length=1000)


class CancelPenaltyRequest(BaseModel):
    reason: str = Field(default="", max_length=500)


class PenaltyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    family_id: int
    child_id: int
    rule_id: int | None
    rule_name: str
    trigger: str
    penalty_type: str
    severity: str
    appealable: bool
    consequences: dict[str, Any]
    summary: str = ""
    offense_number: int
    status: str
    applied_by: str
    applied_at: datetime
    expires_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancel_reason: str | None = None
    expired_at: datetime | None = None
    xp_deducted: int = 0
    xp_balance_after: int | None = None
    remedial_quest_id: int | None = None
    appealed_at: datetime | None = None
    appeal_reason: str | None = None
    appeal_status: str | None = None
    appeal_resolved_at: datetime | None = None
    appeal_notes: str | None = None


class ImpactResponse(BaseModel):
    total_xp_deduction: int
    xp_reduction_multiplier: float
    streak_broken: bool
    rewards_restricted: bool
    quests_limited: bool
    privileges_lost: list[str]


class ChildPenaltiesResponse(BaseModel):
    child_id: int
    penalties: list[PenaltyResponse]
    impact: ImpactResponse


# --- Rules ---


class RuleDefinition(BaseModel):
    """Shape of a rule payload. Semantic checks run in the rule service so
    every problem is reported at once."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    description: str | None = None
    trigger: str | None = None
    penalty_type: str | None = None
    severity: str | None = None
    conditions: dict[str, Any] | None = None
    consequences: dict[str, Any] | None = None
    escalation: dict[str, Any] | None = None
    is_active: bool | None = None
    auto_apply: bool | None = None
    appealable: bool | None = None


class RuleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    family_id: int
    name: str
    description: str | None = None
    trigger: str
    penalty_type: str
    severity: str
    conditions: dict[str, Any]
    consequences: dict[str, Any]
    escalation: dict[str, Any] | None = None
    is_active: bool
    auto_apply: bool
    appealable: bool


# --- Goals ---


class GoalCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=128)
    goal_type: Literal["total_quests", "total_xp", "category_quests"]
    target_value: int = Field(gt=0)
    target_category: str | None = Field(default=None, max_length=64)


class GoalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    family_id: int
    title: str
    goal_type: str
    target_value: int
    target_category: str | None = None
    current_progress: int
    status: str
    completed_at: datetime | None = None
