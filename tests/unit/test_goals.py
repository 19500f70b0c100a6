"""Goal contribution rules."""

from datetime import datetime, timezone
from types import SimpleNamespace

from famquest.behavior.events import QuestCompletionEvent
from famquest.behavior.goals import contribute, contribution

NOW = datetime(2026, 10, 10, 12, 0, tzinfo=timezone.utc)


def _goal(goal_type="total_quests", target=2, category=None):
    return SimpleNamespace(
        goal_type=goal_type,
        target_value=target,
        target_category=category,
        current_progress=0,
        status="active",
        completed_at=None,
    )


def _done(category="chores", xp=10):
    return QuestCompletionEvent(family_id=1, child_id=2, category=category, xp_earned=xp, occurred_at=NOW)


class TestContribution:
    def test_total_quests_counts_each_completion(self):
        assert contribution(_goal(), _done(xp=500)) == 1

    def test_category_quests(self):
        goal = _goal("category_quests", category="reading")
        assert contribution(goal, _done("reading")) == 1
        assert contribution(goal, _done("chores")) == 0

    def test_total_xp(self):
        assert contribution(_goal("total_xp", target=100), _done(xp=40)) == 40

    def test_unknown_goal_type(self):
        assert contribution(_goal("total_smiles"), _done()) == 0


class TestContribute:
    def test_completes_exactly_once(self):
        goal = _goal(target=2)
        assert contribute(goal, _done()) is False
        assert goal.current_progress == 1

        assert contribute(goal, _done()) is True
        assert goal.status == "completed"
        assert goal.completed_at == NOW

        assert contribute(goal, _done()) is False
        assert goal.current_progress == 3
        assert goal.status == "completed"

    def test_overshoot_completes(self):
        goal = _goal("total_xp", target=100)
        assert contribute(goal, _done(xp=150)) is True
        assert goal.current_progress == 150

    def test_no_contribution_no_change(self):
        goal = _goal("category_quests", target=1, category="reading")
        assert contribute(goal, _done("chores")) is False
        assert goal.current_progress == 0
        assert goal.status == "active"
