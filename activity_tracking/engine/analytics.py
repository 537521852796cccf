"""Pure analytics over a list of activities.

Nothing here touches storage, caches or the clock except through the
``now`` argument, so results are deterministic for a given input.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from datetime import datetime, timedelta, timezone
from typing import Iterable, Sequence

from ..schemas import Activity, ActivityAnalytics, Insight, TopPerformer, TrendPoint

OUTCOME_POINTS = {"positive": 10, "neutral": 5, "negative": -5}
COMPLETION_BONUS = 2
TOP_PERFORMER_LIMIT = 5


def resolve_period(period: str, now: datetime) -> tuple[datetime, datetime]:
    """Return (start, end) for a named reporting period ending at ``now``."""
    now = now.astimezone(timezone.utc)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "day":
        start = midnight
    elif period == "week":
        start = now - timedelta(days=7)
    elif period == "month":
        start = midnight.replace(day=1)
    elif period == "quarter":
        quarter_month = (now.month - 1) // 3 * 3 + 1
        start = midnight.replace(month=quarter_month, day=1)
    elif period == "year":
        start = midnight.replace(month=1, day=1)
    else:
        start = now - timedelta(days=30)
    return start, now


def calculate_engagement_score(activities: Iterable[Activity]) -> int:
    """+10 positive, +5 neutral, -5 negative, +2 per completed; never below 0."""
    score = 0
    for activity in activities:
        score += OUTCOME_POINTS.get(activity.outcome, 0)
        if activity.status == "completed":
            score += COMPLETION_BONUS
    return max(0, score)


def calculate_completion_rate(activities: Sequence[Activity]) -> float:
    if not activities:
        return 0.0
    completed = sum(1 for a in activities if a.status == "completed")
    return completed / len(activities) * 100


def calculate_average_response_time(activities: Iterable[Activity]) -> float:
    """Mean hours between scheduled_at and completed_at."""
    hours = [
        (a.completed_at - a.scheduled_at).total_seconds() / 3600
        for a in activities
        if a.scheduled_at and a.completed_at
    ]
    return sum(hours) / len(hours) if hours else 0.0


def group_activities(activities: Iterable[Activity]) -> dict[str, dict[str, int]]:
    """Tally by type, channel, outcome and creator in one pass."""
    by_type: Counter[str] = Counter()
    by_channel: Counter[str] = Counter()
    by_outcome: Counter[str] = Counter()
    by_user: Counter[str] = Counter()
    for activity in activities:
        by_type[activity.type] += 1
        by_channel[activity.channel] += 1
        by_outcome[activity.outcome] += 1
        by_user[activity.created_by] += 1
    return {
        "type": dict(sorted(by_type.items())),
        "channel": dict(sorted(by_channel.items())),
        "outcome": dict(sorted(by_outcome.items())),
        "user": dict(sorted(by_user.items())),
    }


def calculate_trends(activities: Iterable[Activity]) -> list[TrendPoint]:
    buckets: dict[str, Counter[str]] = defaultdict(Counter)
    counts: Counter[str] = Counter()
    for activity in activities:
        day = activity.created_at.astimezone(timezone.utc).date().isoformat()
        counts[day] += 1
        buckets[day][activity.outcome] += 1
    return [
        TrendPoint(date=day, count=counts[day], outcome=dict(sorted(buckets[day].items())))
        for day in sorted(counts)
    ]


def calculate_top_performers(activities: Iterable[Activity]) -> list[TopPerformer]:
    totals: Counter[str] = Counter()
    positives: Counter[str] = Counter()
    for activity in activities:
        totals[activity.created_by] += 1
        if activity.outcome == "positive":
            positives[activity.created_by] += 1
    performers = [
        TopPerformer(
            user_id=user,
            user_name=user,
            activity_count=count,
            success_rate=positives[user] / count * 100,
        )
        for user, count in totals.items()
    ]
    performers.sort(key=lambda p: (-p.activity_count, -p.success_rate, p.user_id))
    return performers[:TOP_PERFORMER_LIMIT]


def generate_insights(
    activities: Sequence[Activity],
    *,
    completion_rate: float,
    engagement_score: int,
    average_response_time: float,
) -> list[Insight]:
    insights: list[Insight] = []
    if not activities:
        insights.append(Insight(
            insight="No activities were recorded in this period",
            type="neutral",
            impact="low",
            recommendation="Log customer interactions to build an engagement baseline",
        ))

    if completion_rate > 80:
        insights.append(Insight(
            insight="High activity completion rate indicates good follow-through",
            type="positive",
            impact="medium",
            recommendation="Continue current activity management practices",
        ))

    if engagement_score < 50:
        insights.append(Insight(
            insight="Low engagement score suggests need for better interaction quality",
            type="negative",
            impact="high",
            recommendation="Focus on more meaningful customer interactions",
        ))

    negative = sum(1 for a in activities if a.outcome == "negative")
    if activities and negative > len(activities) * 0.3:
        insights.append(Insight(
            insight="More than 30% of interactions had a negative outcome",
            type="negative",
            impact="high",
            recommendation="Review messaging and qualify contacts before outreach",
        ))

    if average_response_time > 48:
        insights.append(Insight(
            insight="Scheduled activities take more than two days to complete on average",
            type="negative",
            impact="medium",
            recommendation="Tighten follow-up SLAs and set reminders for scheduled activities",
        ))
    return insights


def compute_analytics(
    activities: Iterable[Activity],
    period: str,
    *,
    now: datetime,
    user_id: str = "",
) -> ActivityAnalytics:
    """Build the analytics report for activities created within ``period``."""
    start, end = resolve_period(period, now)
    in_period = sorted(
        (a for a in activities if start <= a.created_at <= end),
        key=lambda a: (a.created_at, a.id),
    )
    groups = group_activities(in_period)
    completion_rate = calculate_completion_rate(in_period)
    engagement_score = calculate_engagement_score(in_period)
    response_time = calculate_average_response_time(in_period)

    return ActivityAnalytics(
        user_id=user_id,
        period=period,
        start_date=start,
        end_date=end,
        total_activities=len(in_period),
        activities_by_type=groups["type"],
        activities_by_channel=groups["channel"],
        activities_by_outcome=groups["outcome"],
        activities_by_user=groups["user"],
        average_response_time=response_time,
        completion_rate=completion_rate,
        engagement_score=engagement_score,
        trends=calculate_trends(in_period),
        top_performers=calculate_top_performers(in_period),
        insights=generate_insights(
            in_period,
            completion_rate=completion_rate,
            engagement_score=engagement_score,
            average_response_time=response_time,
        ),
        generated_at=now,
    )
