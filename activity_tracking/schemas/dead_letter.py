"""Pydantic model for dead-lettered post-processing jobs."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from .common import as_utc


class DeadLetter(BaseModel):
    id: str
    kind: str
    activity_id: str
    payload: dict[str, Any] = Field(default_factory=dict)
    reason: str
    error: str | None = None
    attempts: int = 0
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return as_utc(value)
