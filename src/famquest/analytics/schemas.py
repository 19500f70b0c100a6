"""Pydantic models for the analytics endpoints."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict


class ReportRequest(BaseModel):
    report_type: Literal["daily", "weekly"]
    start_date: date | None = None
    end_date: date | None = None


class ReportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    family_id: int
    report_type: str
    period_start: date
    period_end: date
    metrics: dict[str, Any]
    insights: list[dict[str, Any]]
    child_profiles: list[dict[str, Any]]
    generated_by: str
    generated_at: datetime
