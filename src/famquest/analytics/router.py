"""Analytics endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from famquest.analytics.report_service import generate_report_for_actor
from famquest.analytics.schemas import ReportRequest, ReportResponse
from famquest.auth.dependencies import get_current_actor
from famquest.behavior.family_service import Actor
from famquest.behavior.schemas import ApiResult
from famquest.database import get_session
from famquest.redis_client import get_optional_redis

router = APIRouter(prefix="/api/v1/analytics", tags=["Analytics"])


@router.post("/reports", response_model=ApiResult)
async def generate_report(
    body: ReportRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
    redis=Depends(get_optional_redis),
):
    """Generate a daily or weekly report for the caller's family on demand."""
    report = await generate_report_for_actor(
        db, redis, actor, body.report_type, body.start_date, body.end_date,
    )
    if report is None:
        return ApiResult(message="No children in this family, nothing to report")
    return ApiResult(
        message="Analytics report generated successfully",
        data=ReportResponse.model_validate(report),
    )
