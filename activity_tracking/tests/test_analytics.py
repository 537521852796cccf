"""Tests for the pure analytics functions."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from activity_tracking.engine.analytics import (
    calculate_average_response_time,
    calculate_completion_rate,
    calculate_engagement_score,
    calculate_top_performers,
    calculate_trends,
    compute_analytics,
    resolve_period,
)


def test_engagement_score_positive_completed(make_activity):
    activity = make_activity(outcome="positive", status="completed")
    assert calculate_engagement_score([activity]) == 12


def test_engagement_score_floored_at_zero(make_activity):
    activities = [make_activity(outcome="negative") for _ in range(3)]
    assert calculate_engagement_score(activities) == 0


def test_engagement_score_grows_with_positive_activity(make_activity):
    base = [make_activity(outcome="neutral"), make_activity(outcome="negative")]
    before = calculate_engagement_score(base)
    after = calculate_engagement_score(base + [make_activity(outcome="positive")])
    assert after > before


def test_completion_rate_bounds(make_activity):
    assert calculate_completion_rate([]) == 0.0
    activities = [
        make_activity(status="completed"),
        make_activity(status="planned"),
        make_activity(status="completed"),
        make_activity(status="cancelled"),
    ]
    rate = calculate_completion_rate(activities)
    assert rate == 50.0
    assert 0 <= rate <= 100


def test_average_response_time_in_hours(make_activity, now):
    activity = make_activity(
        status="completed",
        scheduled_at=now - timedelta(hours=3),
        completed_at=now - timedelta(hours=1),
    )
    unscheduled = make_activity(status="completed")
    assert calculate_average_response_time([activity, unscheduled]) == 2.0
    assert calculate_average_response_time([unscheduled]) == 0.0


def test_resolve_period(now):
    assert resolve_period("day", now)[0] == datetime(2024, 6, 15, tzinfo=timezone.utc)
    assert resolve_period("week", now)[0] == now - timedelta(days=7)
    assert resolve_period("month", now)[0] == datetime(2024, 6, 1, tzinfo=timezone.utc)
    assert resolve_period("quarter", now)[0] == datetime(2024, 4, 1, tzinfo=timezone.utc)
    assert resolve_period("year", now)[0] == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert resolve_period("fortnight", now)[0] == now - timedelta(days=30)
    assert resolve_period("month", now)[1] == now


def test_trends_are_daily_and_ascending(make_activity):
    activities = [
        make_activity(days_ago=0, outcome="positive"),
        make_activity(days_ago=2, outcome="negative"),
        make_activity(days_ago=0, outcome="neutral"),
    ]
    trends = calculate_trends(activities)
    assert [t.date for t in trends] == ["2024-06-13", "2024-06-15"]
    assert trends[1].count == 2
    assert trends[1].outcome == {"neutral": 1, "positive": 1}


def test_top_performers_ranked_by_count_then_success(make_activity):
    activities = [
        make_activity(created_by="ana", outcome="positive"),
        make_activity(created_by="ana", outcome="negative"),
        make_activity(created_by="ben", outcome="positive"),
        make_activity(created_by="cy", outcome="negative"),
    ]
    performers = calculate_top_performers(activities)
    assert [p.user_id for p in performers] == ["ana", "ben", "cy"]
    assert performers[0].activity_count == 2
    assert performers[0].success_rate == 50.0
    assert performers[1].success_rate == 100.0


def test_compute_analytics_excludes_out_of_period(make_activity, now):
    inside = make_activity(days_ago=1, outcome="positive", status="completed")
    outside = make_activity(days_ago=40, outcome="positive", status="completed")
    analytics = compute_analytics([inside, outside], "month", now=now, user_id="user-1")
    assert analytics.total_activities == 1
    assert analytics.activities_by_type == {"call": 1}
    assert analytics.activities_by_user == {"rep-1": 1}
    assert analytics.generated_at == now


def test_compute_analytics_is_idempotent(make_activity, now):
    activities = [
        make_activity(days_ago=1, outcome="positive", status="completed"),
        make_activity(days_ago=2, outcome="negative", type="email", channel="email"),
    ]
    first = compute_analytics(activities, "week", now=now, user_id="user-1")
    second = compute_analytics(list(reversed(activities)), "week", now=now, user_id="user-1")
    assert first == second


def test_insights_for_empty_period(now):
    analytics = compute_analytics([], "month", now=now)
    assert analytics.total_activities == 0
    assert analytics.completion_rate == 0.0
    assert analytics.engagement_score == 0
    kinds = {(i.type, i.impact) for i in analytics.insights}
    assert ("neutral", "low") in kinds


def test_insights_flag_negative_share_and_slow_response(make_activity, now):
    activities = [
        make_activity(
            outcome="negative",
            status="completed",
            scheduled_at=now - timedelta(days=4),
            completed_at=now - timedelta(hours=1),
        ),
        make_activity(outcome="negative"),
        make_activity(outcome="positive"),
    ]
    analytics = compute_analytics(activities, "month", now=now)
    texts = [i.insight for i in analytics.insights]
    assert "More than 30% of interactions had a negative outcome" in texts
    assert any("two days" in t for t in texts)
    assert any(i.type == "negative" and i.impact == "high" for i in analytics.insights)
