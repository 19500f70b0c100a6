"""Integration tests for on-demand report generation."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from famquest.behavior.family_service import Actor
from famquest.db.models import QuestCompletion


class TestReportEndpoint:
    @pytest.mark.asyncio
    async def test_daily_report(self, client, db_session, household, auth_headers):
        db_session.add(QuestCompletion(
            family_id=household.family_id, child_id=household.child_id, category="homework",
            xp_earned=25, time_to_complete_minutes=50, completed_at=datetime(2026, 10, 14, 16, 0, tzinfo=timezone.utc),
        ))
        await db_session.commit()

        response = await client.post(
            "/api/v1/analytics/reports",
            json={"report_type": "daily", "start_date": "2026-10-14"},
            headers=auth_headers(household.parent),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        report = body["data"]
        assert report["period_start"] == "2026-10-14"
        assert report["metrics"]["quests_completed"] == 1
        assert report["metrics"]["popular_quest_category"] == "homework"
        assert report["generated_by"] == f"user:{household.parent_id}"

    @pytest.mark.asyncio
    async def test_weekly_report(self, client, household, auth_headers):
        response = await client.post(
            "/api/v1/analytics/reports",
            json={"report_type": "weekly", "start_date": "2026-10-08", "end_date": "2026-10-14"},
            headers=auth_headers(household.child),
        )
        report = response.json()["data"]
        assert len(report["metrics"]["daily_breakdown"]) == 7
        assert [i["type"] for i in report["insights"]] == ["low_weekly_activity"]

    @pytest.mark.asyncio
    async def test_reversed_window(self, client, household, auth_headers):
        response = await client.post(
            "/api/v1/analytics/reports",
            json={"report_type": "weekly", "start_date": "2026-10-14", "end_date": "2026-10-08"},
            headers=auth_headers(household.parent),
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_invalid_type(self, client, household, auth_headers):
        response = await client.post(
            "/api/v1/analytics/reports", json={"report_type": "monthly"}, headers=auth_headers(household.parent),
        )
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "validation_failed"

    @pytest.mark.asyncio
    async def test_family_without_children(self, client, seed, auth_headers):
        family = await seed.family("Empty nest")
        parent = await seed.parent(family.id)

        response = await client.post(
            "/api/v1/analytics/reports",
            json={"report_type": "daily"},
            headers=auth_headers(Actor(parent.id, family.id, "parent")),
        )

        assert response.status_code == 200
        assert response.json()["data"] is None
