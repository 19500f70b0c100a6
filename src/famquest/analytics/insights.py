"""Threshold rules that turn report metrics into parent-facing insights."""

from __future__ import annotations

from dataclasses import asdict, dataclass

from famquest.analytics.aggregator import ReportMetrics

HIGH = "high"
MEDIUM = "medium"
POSITIVE = "positive"

HIGH_DAILY_ACTIVITY = 5
QUICK_COMPLETION_MINUTES = 30
XP_ACCUMULATION_RATIO = 3
LOW_WEEKLY_AVERAGE = 1
EXCELLENT_WEEKLY_AVERAGE = 3
INCONSISTENCY_STDEV = 2


@dataclass(frozen=True)
class Insight:
    type: str
    message: str
    priority: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


def _xp_accumulation(metrics: ReportMetrics) -> Insight | None:
    if metrics.total_xp_earned > metrics.total_xp_spent * XP_ACCUMULATION_RATIO:
        return Insight(
            "xp_accumulation",
            "Children are earning more XP than they're spending. Consider adding more attractive rewards.",
            MEDIUM,
        )
    return None


def daily_insights(metrics: ReportMetrics) -> list[Insight]:
    insights: list[Insight] = []

    if metrics.quests_completed == 0:
        insights.append(Insight(
            "low_activity",
            "No quests were completed today. Consider encouraging your children to engage with their tasks.",
            HIGH,
        ))
    elif metrics.quests_completed >= HIGH_DAILY_ACTIVITY:
        insights.append(Insight(
            "high_activity",
            f"Great job! Your family completed {metrics.quests_completed} quests today.",
            POSITIVE,
        ))

    avg = metrics.average_completion_time
    if 0 < avg < QUICK_COMPLETION_MINUTES:
        insights.append(Insight(
            "quick_completion",
            f"Tasks are being completed quickly (avg {avg:g} min). Consider adding more challenging quests.",
            MEDIUM,
        ))

    accumulation = _xp_accumulation(metrics)
    if accumulation is not None:
        insights.append(accumulation)
    return insights


def weekly_insights(metrics: ReportMetrics) -> list[Insight]:
    insights: list[Insight] = []
    per_day = metrics.average_quests_per_day

    if per_day < LOW_WEEKLY_AVERAGE:
        insights.append(Insight(
            "low_weekly_activity",
            "Quest completion is below recommended levels. Consider adjusting difficulty or adding more engaging tasks.",
            HIGH,
        ))
    elif per_day >= EXCELLENT_WEEKLY_AVERAGE:
        insights.append(Insight(
            "excellent_weekly_activity",
            f"Outstanding week! Your family is averaging {per_day:.1f} quests per day.",
            POSITIVE,
        ))

    if metrics.streaks_count > 0:
        insights.append(Insight(
            "streak_success",
            f"{metrics.streaks_count} streaks were started this week! "
            f"The longest streak is {metrics.longest_streak} days.",
            POSITIVE,
        ))

    if metrics.consistency > INCONSISTENCY_STDEV:
        insights.append(Insight(
            "inconsistent_activity",
            "Quest completion varies significantly day-to-day. Try establishing a more consistent routine.",
            MEDIUM,
        ))
    return insights


def generate_insights(metrics: ReportMetrics, report_type: str = "daily") -> list[Insight]:
    """Ordered insights for a daily or weekly report."""
    if report_type == "weekly":
        return weekly_insights(metrics)
    return daily_insights(metrics)
