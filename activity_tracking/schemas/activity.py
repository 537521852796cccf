"""Pydantic models for activities."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Literal, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .common import as_utc

ActivityType = Literal[
    "call", "email", "meeting", "demo", "presentation", "proposal",
    "negotiation", "contract", "follow_up", "note", "task", "reminder",
    "website_visit", "email_open", "email_click", "form_submit",
    "download", "webinar", "event", "social_interaction", "support_ticket",
]
Outcome = Literal["positive", "neutral", "negative", "pending"]
Status = Literal["planned", "in_progress", "completed", "cancelled", "rescheduled"]
Priority = Literal["high", "medium", "low"]
Direction = Literal["inbound", "outbound"]
Channel = Literal["call", "phone", "email", "meeting", "chat", "social", "website", "mobile", "other"]

ACTIVITY_TYPES: frozenset[str] = frozenset(get_args(ActivityType))
CHANNELS: frozenset[str] = frozenset(get_args(Channel))


def _new_id() -> str:
    return uuid.uuid4().hex


class Participant(BaseModel):
    id: str = Field(default_factory=_new_id)
    name: str
    email: str | None = None
    role: str = "attendee"
    type: Literal["internal", "external"] = "external"
    response_status: Literal["accepted", "declined", "tentative", "no_response"] | None = None


class Attachment(BaseModel):
    id: str = Field(default_factory=_new_id)
    name: str
    type: str
    size: int = Field(default=0, ge=0)
    url: str
    uploaded_by: str
    uploaded_at: datetime | None = None


class Geolocation(BaseModel):
    country: str
    region: str | None = None
    city: str | None = None
    lat: float | None = None
    lng: float | None = None


class DeviceInfo(BaseModel):
    type: Literal["desktop", "mobile", "tablet"]
    os: str | None = None
    browser: str | None = None


class ActivityMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    source: str = "manual"
    campaign: str | None = None
    referrer: str | None = None
    user_agent: str | None = None
    ip_address: str | None = None
    geolocation: Geolocation | None = None
    device_info: DeviceInfo | None = None
    integration_data: dict[str, Any] = Field(default_factory=dict)


class _ActivityFields(BaseModel):
    """Fields shared by stored activities and creation input."""

    contact_id: str | None = None
    deal_id: str | None = None
    lead_id: str | None = None
    type: ActivityType
    subtype: str | None = None
    subject: str
    description: str = ""
    outcome: Outcome = "pending"
    priority: Priority = "medium"
    status: Status = "planned"
    direction: Direction = "outbound"
    channel: Channel = "other"
    duration: int | None = Field(default=None, ge=0)
    location: str | None = None
    scheduled_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    participants: list[Participant] = Field(default_factory=list)
    attachments: list[Attachment] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    metadata: ActivityMetadata = Field(default_factory=ActivityMetadata)
    created_by: str
    assigned_to: str | None = None

    @field_validator("subject", "created_by")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value

    @field_validator("scheduled_at", "started_at", "completed_at")
    @classmethod
    def _utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(tag for tag in value if tag))

    @model_validator(mode="after")
    def _timestamps_ordered(self):
        if self.started_at and self.completed_at and self.started_at > self.completed_at:
            raise ValueError("started_at must not be after completed_at")
        return self


class ActivityCreate(_ActivityFields):
    """Caller-supplied data for logging an activity."""


class Activity(_ActivityFields):
    """A single recorded interaction."""

    id: str
    user_id: str
    created_at: datetime
    updated_at: datetime

    @field_validator("created_at", "updated_at")
    @classmethod
    def _utc_audit(cls, value: datetime) -> datetime:
        return as_utc(value)

    @model_validator(mode="after")
    def _completed_has_timestamp(self):
        if self.status == "completed" and self.completed_at is None:
            raise ValueError("completed activities must have completed_at")
        return self


class ActivityUpdate(BaseModel):
    """Patch for an existing activity. Identity and audit fields are not patchable."""

    model_config = ConfigDict(extra="forbid")

    contact_id: str | None = None
    deal_id: str | None = None
    lead_id: str | None = None
    type: ActivityType | None = None
    subtype: str | None = None
    subject: str | None = None
    description: str | None = None
    outcome: Outcome | None = None
    priority: Priority | None = None
    status: Status | None = None
    direction: Direction | None = None
    channel: Channel | None = None
    duration: int | None = Field(default=None, ge=0)
    location: str | None = None
    scheduled_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    participants: list[Participant] | None = None
    attachments: list[Attachment] | None = None
    tags: list[str] | None = None
    custom_fields: dict[str, Any] | None = None
    metadata: ActivityMetadata | None = None
    assigned_to: str | None = None


class ActivityFilters(BaseModel):
    user_id: str | None = None
    contact_id: str | None = None
    deal_id: str | None = None
    lead_id: str | None = None
    type: ActivityType | None = None
    status: Status | None = None
    outcome: Outcome | None = None
    start: datetime | None = None
    end: datetime | None = None
    limit: int | None = Field(default=None, ge=1)

    @field_validator("start", "end")
    @classmethod
    def _utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)
