"""Behavior endpoints: penalties, appeals, penalty rules and family goals."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from famquest.auth.dependencies import get_current_actor
from famquest.behavior import goals as goal_service
from famquest.behavior import penalty_service
from famquest.behavior import rules as rule_service
from famquest.behavior.family_service import Actor, get_child, require_parent
from famquest.behavior.penalties import ACTIVE, describe_consequences, penalty_stats, summarize_impact
from famquest.behavior.schemas import (
    ApiResult,
    AppealRequest,
    ApplyPenaltyRequest,
    CancelPenaltyRequest,
    ChildPenaltiesResponse,
    GoalCreateRequest,
    GoalResponse,
    ImpactResponse,
    PenaltyResponse,
    ResolveAppealRequest,
    RuleDefinition,
    RuleResponse,
)
from famquest.database import get_session
from famquest.db.models import AppliedPenalty
from famquest.redis_client import get_optional_redis

router = APIRouter(prefix="/api/v1", tags=["Behavior"])


def _penalty_out(penalty: AppliedPenalty) -> PenaltyResponse:
    out = PenaltyResponse.model_validate(penalty)
    out.summary = describe_consequences(penalty.consequences or {})
    return out


# ── Penalties ──


@router.post("/penalties/apply", response_model=ApiResult)
async def apply_penalty(
    body: ApplyPenaltyRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
    redis=Depends(get_optional_redis),
):
    """Manually apply one of the family's rules to a child (parents only)."""
    penalty = await penalty_service.apply_rule_manually(
        db, redis, actor, body.child_id, body.rule_id, body.note,
    )
    return ApiResult(message="Penalty applied", data=_penalty_out(penalty))


@router.post("/penalties/{penalty_id}/appeal", response_model=ApiResult)
async def appeal_penalty(
    penalty_id: int,
    body: AppealRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
    redis=Depends(get_optional_redis),
):
    penalty = await penalty_service.submit_appeal(db, redis, actor, penalty_id, body.reason)
    return ApiResult(message="Appeal submitted", data=_penalty_out(penalty))


@router.post("/penalties/{penalty_id}/appeal/resolve", response_model=ApiResult)
async def resolve_appeal(
    penalty_id: int,
    body: ResolveAppealRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
    redis=Depends(get_optional_redis),
):
    penalty = await penalty_service.resolve_appeal(db, redis, actor, penalty_id, body.decision, body.notes)
    return ApiResult(message=f"Appeal {body.decision}", data=_penalty_out(penalty))


@router.post("/penalties/{penalty_id}/complete", response_model=ApiResult)
async def complete_penalty(
    penalty_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
    redis=Depends(get_optional_redis),
):
    penalty = await penalty_service.complete_penalty(db, redis, actor, penalty_id)
    return ApiResult(message="Penalty completed", data=_penalty_out(penalty))


@router.post("/penalties/{penalty_id}/cancel", response_model=ApiResult)
async def cancel_penalty(
    penalty_id: int,
    body: CancelPenaltyRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
    redis=Depends(get_optional_redis),
):
    penalty = await penalty_service.cancel_penalty(db, redis, actor, penalty_id, body.reason)
    return ApiResult(message="Penalty cancelled", data=_penalty_out(penalty))


@router.get("/penalties/stats", response_model=ApiResult)
async def family_penalty_stats(
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    """Penalty counts for the caller's family, optionally limited to an applied_at window."""
    require_parent(actor)
    penalties = await penalty_service.list_family_penalties(db, actor.family_id, start, end)
    return ApiResult(message="Penalty stats", data=penalty_stats(penalties))


@router.get("/children/{child_id}/penalties", response_model=ApiResult)
async def child_penalties(
    child_id: int,
    status: str | None = Query(default=ACTIVE),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    """A child's penalties (active by default) with the combined impact of the active ones."""
    await get_child(db, child_id, actor.family_id)
    penalties = await penalty_service.list_child_penalties(db, child_id, status=status or None)
    impact = summarize_impact(p for p in penalties if p.status == ACTIVE)
    data = ChildPenaltiesResponse(
        child_id=child_id,
        penalties=[_penalty_out(p) for p in penalties],
        impact=ImpactResponse(**vars(impact)),
    )
    return ApiResult(message=f"{len(penalties)} penalties", data=data)


# ── Penalty rules ──


@router.get("/penalty-rules", response_model=ApiResult)
async def list_rules(
    active_only: bool = Query(default=False),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    rules = await rule_service.list_rules(db, actor.family_id, active_only=active_only)
    return ApiResult(
        message=f"{len(rules)} rules",
        data=[RuleResponse.model_validate(r) for r in rules],
    )


@router.post("/penalty-rules", response_model=ApiResult, status_code=201)
async def create_rule(
    body: RuleDefinition,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    require_parent(actor)
    rule = await rule_service.create_rule(
        db, actor.family_id, body.model_dump(exclude_none=True), created_by=actor.user_id,
    )
    await db.commit()
    return ApiResult(message="Rule created", data=RuleResponse.model_validate(rule))


@router.patch("/penalty-rules/{rule_id}", response_model=ApiResult)
async def update_rule(
    rule_id: int,
    body: RuleDefinition,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    require_parent(actor)
    rule = await rule_service.update_rule(db, rule_id, actor.family_id, body.model_dump(exclude_unset=True))
    await db.commit()
    return ApiResult(message="Rule updated", data=RuleResponse.model_validate(rule))


@router.post("/penalty-rules/{rule_id}/disable", response_model=ApiResult)
async def disable_rule(
    rule_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    require_parent(actor)
    rule = await rule_service.disable_rule(db, rule_id, actor.family_id)
    await db.commit()
    return ApiResult(message="Rule disabled", data=RuleResponse.model_validate(rule))


@router.post("/penalty-rules/seed", response_model=ApiResult)
async def seed_rules(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    """Install the stock rules the family does not have yet."""
    require_parent(actor)
    created = await rule_service.seed_default_rules(db, actor.family_id, created_by=actor.user_id)
    return ApiResult(message=f"Seeded {created} rules", data={"created": created})


# ── Goals ──


@router.get("/goals", response_model=ApiResult)
async def list_goals(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    goals = await goal_service.list_goals(db, actor)
    return ApiResult(message=f"{len(goals)} goals", data=[GoalResponse.model_validate(g) for g in goals])


@router.post("/goals", response_model=ApiResult, status_code=201)
async def create_goal(
    body: GoalCreateRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    goal = await goal_service.create_goal(db, actor, body.model_dump())
    return ApiResult(message="Goal created", data=GoalResponse.model_validate(goal))
