"""Activity model - one recorded customer interaction."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, IdMixin, TimestampMixin


class ActivityRecord(IdMixin, TimestampMixin, Base):
    __tablename__ = "activity"

    user_id: Mapped[str] = mapped_column(String(100), index=True)
    contact_id: Mapped[str | None] = mapped_column(String(100), default=None, index=True)
    deal_id: Mapped[str | None] = mapped_column(String(100), default=None, index=True)
    lead_id: Mapped[str | None] = mapped_column(String(100), default=None, index=True)

    type: Mapped[str] = mapped_column(String(50), index=True)
    subtype: Mapped[str | None] = mapped_column(String(100), default=None)
    subject: Mapped[str] = mapped_column(String(500))
    description: Mapped[str] = mapped_column(Text, default="")

    outcome: Mapped[str] = mapped_column(String(20), default="pending")  # positive/neutral/negative/pending
    priority: Mapped[str] = mapped_column(String(10), default="medium")
    status: Mapped[str] = mapped_column(String(20), default="planned", index=True)
    direction: Mapped[str] = mapped_column(String(10), default="outbound")
    channel: Mapped[str] = mapped_column(String(20), default="other")

    duration: Mapped[int | None] = mapped_column(Integer, default=None)  # minutes
    location: Mapped[str | None] = mapped_column(String(255), default=None)
    scheduled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    participants: Mapped[list | None] = mapped_column(JSON, default=None)
    attachments: Mapped[list | None] = mapped_column(JSON, default=None)
    tags: Mapped[list | None] = mapped_column(JSON, default=None)
    custom_fields: Mapped[dict | None] = mapped_column(JSON, default=None)
    metadata_json: Mapped[dict | None] = mapped_column(JSON, default=None)

    created_by: Mapped[str] = mapped_column(String(100))
    assigned_to: Mapped[str | None] = mapped_column(String(100), default=None)

    def __repr__(self) -> str:
        return f"<ActivityRecord {self.type} {self.subject!r}>"
