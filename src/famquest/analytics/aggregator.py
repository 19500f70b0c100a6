"""Report aggregation over completion and redemption records.

Pure functions: callers load the rows, these fold them into metrics. Records
only need the attributes listed on the protocols below, so ORM rows and
plain objects both work.

Ties for the most popular category, most active child and most popular day
go to whichever key was seen first.
"""

from __future__ import annotations

import statistics
from collections.abc import Iterable
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Protocol
from zoneinfo import ZoneInfo


class CompletionRecord(Protocol):
    child_id: int
    category: str | None
    xp_earned: int
    time_to_complete_minutes: float | None
    completed_at: datetime


class RedemptionRecord(Protocol):
    child_id: int
    xp_cost: int
    redeemed_at: datetime


class StreakRecord(Protocol):
    current_length: int


@dataclass
class ChildMetrics:
    quests_completed: int = 0
    xp_earned: int = 0
    rewards_redeemed: int = 0
    xp_spent: int = 0


@dataclass
class DayActivity:
    date: str
    quests_completed: int = 0
    xp_earned: int = 0


@dataclass
class ReportMetrics:
    quests_completed: int = 0
    total_xp_earned: int = 0
    rewards_redeemed: int = 0
    total_xp_spent: int = 0
    average_completion_time: float = 0.0
    popular_quest_category: str | None = None
    most_active_child: int | None = None
    child_metrics: dict[int, ChildMetrics] = field(default_factory=dict)
    # weekly only
    days: int = 1
    daily_breakdown: list[DayActivity] = field(default_factory=list)
    most_popular_day: str | None = None
    consistency: float = 0.0
    streaks_count: int = 0
    longest_streak: int = 0

    @property
    def average_quests_per_day(self) -> float:
        return self.quests_completed / self.days if self.days else 0.0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["child_metrics"] = {str(k): v for k, v in data["child_metrics"].items()}
        return data


def max_by_count(counts: dict[Any, int]) -> Any | None:
    """Key with the highest count; the first key seen wins a tie."""
    best = None
    for key, count in counts.items():
        if best is None or count > counts[best]:
            best = key
    return best


def population_stdev(values: Iterable[float]) -> float:
    values = list(values)
    if not values:
        return 0.0
    return statistics.pstdev(values)


def _fold_completions(metrics: ReportMetrics, completions: Iterable[CompletionRecord]) -> list[CompletionRecord]:
    seen: list[CompletionRecord] = []
    categories: dict[str, int] = {}
    per_child: dict[int, int] = {}
    durations: list[float] = []

    for completion in completions:
        seen.append(completion)
        xp = completion.xp_earned or 0
        metrics.quests_completed += 1
        metrics.total_xp_earned += xp
        if completion.time_to_complete_minutes is not None:
            durations.append(completion.time_to_complete_minutes)
        if completion.category:
            categories[completion.category] = categories.get(completion.category, 0) + 1
        per_child[completion.child_id] = per_child.get(completion.child_id, 0) + 1

        child = metrics.child_metrics.setdefault(completion.child_id, ChildMetrics())
        child.quests_completed += 1
        child.xp_earned += xp

    if durations:
        metrics.average_completion_time = round(sum(durations) / len(durations), 1)
    metrics.popular_quest_category = max_by_count(categories)
    metrics.most_active_child = max_by_count(per_child)
    return seen


def _fold_redemptions(metrics: ReportMetrics, redemptions: Iterable[RedemptionRecord]) -> None:
    for redemption in redemptions:
        cost = redemption.xp_cost or 0
        metrics.rewards_redeemed += 1
        metrics.total_xp_spent += cost
        child = metrics.child_metrics.setdefault(redemption.child_id, ChildMetrics())
        child.rewards_redeemed += 1
        child.xp_spent += cost


def aggregate_daily(
    completions: Iterable[CompletionRecord],
    redemptions: Iterable[RedemptionRecord],
) -> ReportMetrics:
    metrics = ReportMetrics()
    _fold_completions(metrics, completions)
    _fold_redemptions(metrics, redemptions)
    return metrics


def aggregate_weekly(
    completions: Iterable[CompletionRecord],
    redemptions: Iterable[RedemptionRecord],
    start: date,
    end: date,
    tz: ZoneInfo | timezone = timezone.utc,
    streaks: Iterable[StreakRecord] = (),
) -> ReportMetrics:
    """Metrics for the local days ``start`` through ``end`` inclusive.

    The daily breakdown has one entry per day in the window, zero-filled and
    in date order, so the consistency figure (population standard deviation
    of daily completion counts) counts idle days too.
    """
    if end < start:
        start, end = end, start
    metrics = ReportMetrics()
    seen = _fold_completions(metrics, completions)
    _fold_redemptions(metrics, redemptions)

    span = (end - start).days + 1
    breakdown = {
        (start + timedelta(days=offset)).isoformat(): DayActivity((start + timedelta(days=offset)).isoformat())
        for offset in range(span)
    }
    for completion in seen:
        moment = completion.completed_at
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        day = breakdown.get(moment.astimezone(tz).date().isoformat())
        if day is None:
            continue
        day.quests_completed += 1
        day.xp_earned += completion.xp_earned or 0

    metrics.days = span
    metrics.daily_breakdown = list(breakdown.values())
    if metrics.quests_completed:
        metrics.most_popular_day = max_by_count({d.date: d.quests_completed for d in metrics.daily_breakdown})
    metrics.consistency = round(population_stdev(d.quests_completed for d in metrics.daily_breakdown), 4)

    lengths = [s.current_length for s in streaks]
    metrics.streaks_count = len(lengths)
    metrics.longest_streak = max(lengths, default=0)
    return metrics
