"""Offense counting and reset windows."""

from datetime import datetime, timedelta, timezone

from famquest.behavior.offenses import next_offense_count, reset_period_hours

NOW = datetime(2026, 10, 10, 12, 0, tzinfo=timezone.utc)


class TestResetPeriodHours:
    def test_aliases(self):
        assert reset_period_hours({"reset_period": "1 day"}) == 24.0
        assert reset_period_hours({"reset_period": "1 week"}) == 168.0

    def test_explicit_hours_win(self):
        assert reset_period_hours({"reset_period_hours": 12, "reset_period": "1 week"}) == 12.0

    def test_never_resets(self):
        assert reset_period_hours(None) is None
        assert reset_period_hours({"tiers": {"first_offense": {"warning": True}}}) is None


class TestNextOffenseCount:
    def test_first_offense(self):
        assert next_offense_count(0, None, NOW, None) == 1

    def test_counts_up_without_reset(self):
        assert next_offense_count(4, NOW - timedelta(days=365), NOW, None) == 5

    def test_inside_window(self):
        assert next_offense_count(2, NOW - timedelta(hours=23), NOW, 24) == 3

    def test_window_boundary_still_counts(self):
        assert next_offense_count(2, NOW - timedelta(hours=24), NOW, 24) == 3

    def test_after_window_resets(self):
        assert next_offense_count(2, NOW - timedelta(hours=25), NOW, 24) == 1
