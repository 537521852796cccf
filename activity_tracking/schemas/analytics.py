"""Pydantic models for derived analytics and timelines."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from .activity import Activity

Impact = Literal["high", "medium", "low"]
Tone = Literal["positive", "negative", "neutral"]
EngagementTrend = Literal["increasing", "decreasing", "stable"]


class TrendPoint(BaseModel):
    date: str
    count: int
    outcome: dict[str, int] = Field(default_factory=dict)


class TopPerformer(BaseModel):
    user_id: str
    user_name: str
    activity_count: int
    success_rate: float


class Insight(BaseModel):
    insight: str
    type: Tone
    impact: Impact
    recommendation: str


class ActivityAnalytics(BaseModel):
    user_id: str
    period: str
    start_date: datetime
    end_date: datetime
    total_activities: int
    activities_by_type: dict[str, int] = Field(default_factory=dict)
    activities_by_channel: dict[str, int] = Field(default_factory=dict)
    activities_by_outcome: dict[str, int] = Field(default_factory=dict)
    activities_by_user: dict[str, int] = Field(default_factory=dict)
    average_response_time: float = 0.0  # hours
    completion_rate: float = 0.0
    engagement_score: int = 0
    trends: list[TrendPoint] = Field(default_factory=list)
    top_performers: list[TopPerformer] = Field(default_factory=list)
    insights: list[Insight] = Field(default_factory=list)
    generated_at: datetime


class Milestone(BaseModel):
    date: datetime
    event: str
    description: str
    impact: Tone


class SuggestedAction(BaseModel):
    action: str
    priority: Impact
    reason: str
    expected_outcome: str


class RiskFactor(BaseModel):
    factor: str
    severity: Impact
    recommendation: str


class InteractionTimeline(BaseModel):
    contact_id: str
    activities: list[Activity] = Field(default_factory=list)
    milestones: list[Milestone] = Field(default_factory=list)
    engagement_score: int = 0
    engagement_trend: EngagementTrend = "stable"
    next_suggested_actions: list[SuggestedAction] = Field(default_factory=list)
    risk_factors: list[RiskFactor] = Field(default_factory=list)
    latest_insight: str | None = None
