"""Per-contact interaction timeline: milestones, trend, risks and next actions."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Sequence

from ..schemas import Activity, InteractionTimeline, Milestone, RiskFactor, SuggestedAction
from .analytics import calculate_engagement_score

MILESTONE_TYPES = {"demo", "proposal", "contract", "meeting"}
FOLLOW_UP_AFTER_DAYS = 7
AT_RISK_AFTER_DAYS = 14
NEGATIVE_SHARE_THRESHOLD = 0.3
TREND_WINDOW = 3
TREND_THRESHOLD = 10


def _impact(outcome: str) -> str:
    if outcome == "positive":
        return "positive"
    if outcome == "negative":
        return "negative"
    return "neutral"


def sort_chronologically(activities: Iterable[Activity]) -> list[Activity]:
    return sorted(activities, key=lambda a: (a.created_at, a.id))


def generate_milestones(activities: Sequence[Activity]) -> list[Milestone]:
    """First contact plus every demo, proposal, contract and meeting."""
    if not activities:
        return []
    first = activities[0]
    milestones = [Milestone(
        date=first.created_at,
        event="First Contact",
        description=f"Initial {first.type} interaction",
        impact="positive",
    )]
    for activity in activities:
        if activity.type in MILESTONE_TYPES:
            milestones.append(Milestone(
                date=activity.created_at,
                event=activity.type.capitalize(),
                description=activity.subject,
                impact=_impact(activity.outcome),
            ))
    milestones.sort(key=lambda m: m.date)
    return milestones


def calculate_engagement_trend(activities: Sequence[Activity]) -> str:
    """Compare the last three activities against the three before them."""
    if len(activities) < 4:
        return "stable"
    recent = activities[-TREND_WINDOW:]
    older = activities[-2 * TREND_WINDOW:-TREND_WINDOW]
    difference = calculate_engagement_score(recent) - calculate_engagement_score(older)
    if difference > TREND_THRESHOLD:
        return "increasing"
    if difference < -TREND_THRESHOLD:
        return "decreasing"
    return "stable"


def _days_since(activity: Activity, now: datetime) -> int:
    return (now - activity.created_at).days


def suggest_next_actions(activities: Sequence[Activity], now: datetime) -> list[SuggestedAction]:
    if not activities:
        return []
    actions: list[SuggestedAction] = []
    last = activities[-1]

    if _days_since(last, now) > FOLLOW_UP_AFTER_DAYS:
        actions.append(SuggestedAction(
            action="Schedule follow-up call",
            priority="high",
            reason="No activity for over a week",
            expected_outcome="Re-engage contact and maintain relationship",
        ))

    if last.outcome == "positive" and last.type == "demo":
        actions.append(SuggestedAction(
            action="Send proposal",
            priority="high",
            reason="Positive demo outcome",
            expected_outcome="Move to next stage in sales process",
        ))
    elif last.outcome == "positive" and last.type == "proposal":
        actions.append(SuggestedAction(
            action="Schedule contract review",
            priority="high",
            reason="Proposal was well received",
            expected_outcome="Agree on terms and close the deal",
        ))
    elif last.outcome == "negative":
        actions.append(SuggestedAction(
            action="Address concerns from last interaction",
            priority="medium",
            reason=f"Last {last.type} had a negative outcome",
            expected_outcome="Recover the relationship before it goes cold",
        ))

    if len(activities) >= 3 and not any(a.type in ("demo", "meeting") for a in activities):
        actions.append(SuggestedAction(
            action="Schedule a product demo",
            priority="medium",
            reason="Several touches without a live conversation",
            expected_outcome="Qualify interest with a face-to-face walkthrough",
        ))
    return actions


def identify_risks(
    activities: Sequence[Activity], now: datetime, trend: str
) -> list[RiskFactor]:
    if not activities:
        return []
    risks: list[RiskFactor] = []

    if _days_since(activities[-1], now) > AT_RISK_AFTER_DAYS:
        risks.append(RiskFactor(
            factor="No recent activity",
            severity="high",
            recommendation="Immediate re-engagement required",
        ))

    negative = sum(1 for a in activities if a.outcome == "negative")
    if negative > len(activities) * NEGATIVE_SHARE_THRESHOLD:
        risks.append(RiskFactor(
            factor="High negative interaction rate",
            severity="medium",
            recommendation="Review interaction approach and value proposition",
        ))

    if trend == "decreasing":
        risks.append(RiskFactor(
            factor="Declining engagement",
            severity="medium",
            recommendation="Change channel or offer new value in the next touch",
        ))

    overdue = [
        a for a in activities
        if a.status == "planned" and a.scheduled_at is not None and a.scheduled_at < now
    ]
    if overdue:
        risks.append(RiskFactor(
            factor="Overdue planned activities",
            severity="low",
            recommendation=f"Complete or reschedule {len(overdue)} overdue activit{'y' if len(overdue) == 1 else 'ies'}",
        ))
    return risks


def build_timeline(
    contact_id: str,
    activities: Iterable[Activity],
    *,
    now: datetime,
    latest_insight: str | None = None,
) -> InteractionTimeline:
    ordered = sort_chronologically(activities)
    trend = calculate_engagement_trend(ordered)
    return InteractionTimeline(
        contact_id=contact_id,
        activities=ordered,
        milestones=generate_milestones(ordered),
        engagement_score=calculate_engagement_score(ordered),
        engagement_trend=trend,
        next_suggested_actions=suggest_next_actions(ordered, now),
        risk_factors=identify_risks(ordered, now, trend),
        latest_insight=latest_insight,
    )
