"""Pydantic models for activity sequences."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from .common import as_utc

SequenceTriggerType = Literal["manual", "automatic", "scheduled", "event_based"]
TriggerEvent = Literal[
    "activity_logged",
    "activity_completed",
    "time_based",
    "field_changed",
    "stage_changed",
    "score_threshold",
]
StepType = Literal["create_activity", "send_email", "create_task", "update_field", "wait", "condition"]
InstanceStatus = Literal["pending", "running", "step_waiting", "completed", "failed"]


class SequenceTrigger(BaseModel):
    type: TriggerEvent
    conditions: dict[str, Any] = Field(default_factory=dict)
    delay: int | None = Field(default=None, ge=0)  # minutes


class SequenceStep(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    order: int | None = None
    type: StepType
    configuration: dict[str, Any] = Field(default_factory=dict)
    delay: int | None = Field(default=None, ge=0)  # minutes
    conditions: dict[str, Any] | None = None


class SequenceAnalytics(BaseModel):
    total_executions: int = 0
    completion_rate: float = 0.0
    average_execution_time: float = 0.0  # seconds
    success_rate: float = 0.0


class SequenceCreate(BaseModel):
    name: str = ""
    description: str = ""
    trigger_type: SequenceTriggerType = "manual"
    triggers: list[SequenceTrigger] = Field(default_factory=list)
    steps: list[SequenceStep] = Field(default_factory=list)
    is_active: bool = True


class ActivitySequence(BaseModel):
    id: str
    user_id: str
    name: str
    description: str = ""
    trigger_type: SequenceTriggerType
    triggers: list[SequenceTrigger] = Field(default_factory=list)
    steps: list[SequenceStep]
    is_active: bool = True
    analytics: SequenceAnalytics = Field(default_factory=SequenceAnalytics)
    created_at: datetime
    updated_at: datetime

    @field_validator("created_at", "updated_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class SequenceInstance(BaseModel):
    id: str
    sequence_id: str
    activity_id: str | None = None
    contact_id: str | None = None
    key: str
    status: InstanceStatus = "pending"
    current_step: int = 0
    resume_at: datetime | None = None
    context: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @field_validator("resume_at", "started_at", "completed_at")
    @classmethod
    def _utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)

    @property
    def finished(self) -> bool:
        return self.status in ("completed", "failed")
