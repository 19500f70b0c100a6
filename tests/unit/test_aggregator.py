"""Report aggregation over completion and redemption records."""

import random
from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest

from famquest.analytics.aggregator import aggregate_daily, aggregate_weekly, max_by_count, population_stdev

START = date(2026, 10, 5)
END = date(2026, 10, 9)


def _completion(child_id=1, category="chores", xp=10, minutes=None, at=None):
    return SimpleNamespace(
        child_id=child_id,
        category=category,
        xp_earned=xp,
        time_to_complete_minutes=minutes,
        completed_at=at or datetime(2026, 10, 5, 12, 0, tzinfo=timezone.utc),
    )


def _redemption(child_id=1, cost=20):
    return SimpleNamespace(child_id=child_id, xp_cost=cost, redeemed_at=datetime(2026, 10, 5, 18, 0, tzinfo=timezone.utc))


def _week(counts):
    """Completions spread over START.. with the given count per day."""
    records = []
    for offset, count in enumerate(counts):
        day = START + timedelta(days=offset)
        for i in range(count):
            records.append(_completion(at=datetime(day.year, day.month, day.day, 9 + i, 0, tzinfo=timezone.utc)))
    return records


class TestHelpers:
    def test_max_by_count_first_seen_wins_tie(self):
        assert max_by_count({"b": 2, "a": 2, "c": 1}) == "b"

    def test_max_by_count_empty(self):
        assert max_by_count({}) is None

    def test_population_stdev(self):
        assert population_stdev([2, 4, 4, 4, 5, 5, 7, 9]) == 2.0
        assert population_stdev([]) == 0.0


class TestDaily:
    def test_totals(self):
        metrics = aggregate_daily(
            [
                _completion(1, "chores", 10, 20),
                _completion(1, "chores", 15, 40),
                _completion(2, "homework", 30, None),
            ],
            [_redemption(2, 25)],
        )
        assert metrics.quests_completed == 3
        assert metrics.total_xp_earned == 55
        assert metrics.rewards_redeemed == 1
        assert metrics.total_xp_spent == 25
        assert metrics.average_completion_time == 30.0
        assert metrics.popular_quest_category == "chores"
        assert metrics.most_active_child == 1
        assert metrics.child_metrics[2].xp_spent == 25
        assert metrics.child_metrics[2].quests_completed == 1

    def test_average_ignores_missing_durations(self):
        metrics = aggregate_daily([_completion(minutes=None), _completion(minutes=12.34)], [])
        assert metrics.average_completion_time == 12.3

    def test_zero_minute_duration_counts(self):
        metrics = aggregate_daily([_completion(minutes=0), _completion(minutes=10)], [])
        assert metrics.average_completion_time == 5.0

    def test_tie_goes_to_first_category(self):
        metrics = aggregate_daily([_completion(category="reading"), _completion(category="chores")], [])
        assert metrics.popular_quest_category == "reading"

    def test_redeeming_child_without_completions(self):
        metrics = aggregate_daily([], [_redemption(3, 40)])
        assert metrics.child_metrics[3].rewards_redeemed == 1
        assert metrics.child_metrics[3].quests_completed == 0
        assert metrics.most_active_child is None

    def test_empty_day(self):
        metrics = aggregate_daily([], [])
        assert metrics.quests_completed == 0
        assert metrics.average_completion_time == 0.0
        assert metrics.popular_quest_category is None

    def test_to_dict_uses_string_child_keys(self):
        data = aggregate_daily([_completion(child_id=7)], []).to_dict()
        assert list(data["child_metrics"]) == ["7"]
        assert data["child_metrics"]["7"]["quests_completed"] == 1


class TestWeekly:
    def test_breakdown_and_consistency(self):
        metrics = aggregate_weekly(_week([0, 2, 5, 5, 8]), [], START, END)
        assert [d.quests_completed for d in metrics.daily_breakdown] == [0, 2, 5, 5, 8]
        assert [d.date for d in metrics.daily_breakdown][0] == "2026-10-05"
        assert metrics.days == 5
        assert metrics.average_quests_per_day == 4.0
        assert metrics.most_popular_day == "2026-10-09"
        assert metrics.consistency == pytest.approx(2.7568)

    def test_order_independent(self):
        records = _week([0, 2, 5, 5, 8])
        shuffled = list(records)
        random.Random(4).shuffle(shuffled)
        a = aggregate_weekly(records, [], START, END)
        b = aggregate_weekly(shuffled, [], START, END)
        assert a.consistency == b.consistency
        assert a.daily_breakdown == b.daily_breakdown

    def test_idle_week_is_zero_filled(self):
        metrics = aggregate_weekly([], [], START, START + timedelta(days=6))
        assert len(metrics.daily_breakdown) == 7
        assert all(d.quests_completed == 0 for d in metrics.daily_breakdown)
        assert metrics.most_popular_day is None
        assert metrics.consistency == 0.0

    def test_days_follow_family_timezone(self):
        late_evening = _completion(at=datetime(2026, 10, 6, 2, 0, tzinfo=timezone.utc))
        metrics = aggregate_weekly([late_evening], [], START, END, ZoneInfo("America/New_York"))
        assert metrics.daily_breakdown[0].quests_completed == 1
        assert metrics.daily_breakdown[1].quests_completed == 0

    def test_streaks(self):
        streaks = [SimpleNamespace(current_length=3), SimpleNamespace(current_length=9)]
        metrics = aggregate_weekly([], [], START, END, streaks=streaks)
        assert metrics.streaks_count == 2
        assert metrics.longest_streak == 9
