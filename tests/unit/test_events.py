"""Tests for event parsing and trigger derivation."""

from datetime import datetime, timezone

import pytest

from famquest.behavior.events import (
    BehaviorFlagEvent,
    MissedQuestEvent,
    QuestCompletionEvent,
    RedemptionEvent,
    StreakBreakEvent,
    parse_event,
)
from famquest.errors import ValidationFailed


class TestParseEvent:
    def test_completion(self):
        event = parse_event({"kind": "quest_completed", "family_id": 1, "child_id": 2, "xp_earned": 30})
        assert isinstance(event, QuestCompletionEvent)
        assert event.xp_earned == 30
        assert event.category == "general"

    def test_redemption(self):
        event = parse_event({"kind": "reward_redeemed", "family_id": 1, "child_id": 2, "reward_id": "ice-cream"})
        assert isinstance(event, RedemptionEvent)

    def test_redemption_requires_reward(self):
        with pytest.raises(ValidationFailed):
            parse_event({"kind": "reward_redeemed", "family_id": 1, "child_id": 2})

    def test_unknown_kind(self):
        with pytest.raises(ValidationFailed):
            parse_event({"kind": "quest_exploded", "family_id": 1, "child_id": 2})

    def test_rating_out_of_range_reports_field(self):
        with pytest.raises(ValidationFailed) as exc_info:
            parse_event({"kind": "quest_completed", "family_id": 1, "child_id": 2, "parent_rating": 6})
        assert any("parent_rating" in d for d in exc_info.value.details)

    def test_naive_timestamp_becomes_utc(self):
        event = parse_event({
            "kind": "quest_completed", "family_id": 1, "child_id": 2,
            "occurred_at": "2026-10-05T08:00:00",
        })
        assert event.occurred_at == datetime(2026, 10, 5, 8, 0, tzinfo=timezone.utc)


class TestTriggers:
    def test_on_time_completion_fires_nothing(self):
        assert QuestCompletionEvent(family_id=1, child_id=2).triggers() == set()

    def test_late_completion(self):
        assert QuestCompletionEvent(family_id=1, child_id=2, hours_late=3).triggers() == {"late_completion"}

    def test_rated_completion(self):
        event = QuestCompletionEvent(family_id=1, child_id=2, parent_rating=2)
        assert event.triggers() == {"poor_quality"}

    def test_missed_quest(self):
        assert MissedQuestEvent(family_id=1, child_id=2).triggers() == {"missed_quest"}

    def test_behavior_flag_uses_its_trigger(self):
        event = BehaviorFlagEvent(family_id=1, child_id=2, trigger="rule_violation")
        assert event.triggers() == {"rule_violation"}

    def test_streak_break(self):
        assert StreakBreakEvent(family_id=1, child_id=2, streak_length=9).triggers() == {"streak_break"}

    def test_redemption_fires_nothing(self):
        assert RedemptionEvent(family_id=1, child_id=2, reward_id="movie").triggers() == set()
