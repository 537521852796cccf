"""Activity sequence definitions and their running instances."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, IdMixin, TimestampMixin


class SequenceRecord(IdMixin, TimestampMixin, Base):
    """A reusable multi-step automation definition."""

    __tablename__ = "activity_sequence"

    user_id: Mapped[str] = mapped_column(String(100), index=True)
    name: Mapped[str] = mapped_column(String(200))
    description: Mapped[str] = mapped_column(Text, default="")
    trigger_type: Mapped[str] = mapped_column(String(20), default="manual")
    triggers: Mapped[list | None] = mapped_column(JSON, default=None)
    steps: Mapped[list | None] = mapped_column(JSON, default=None)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)

    # Running totals behind the rolling analytics summary
    total_executions: Mapped[int] = mapped_column(Integer, default=0)
    completed_executions: Mapped[int] = mapped_column(Integer, default=0)
    failed_executions: Mapped[int] = mapped_column(Integer, default=0)
    total_execution_seconds: Mapped[float] = mapped_column(Float, default=0.0)

    def __repr__(self) -> str:
        return f"<SequenceRecord {self.name!r} active={self.is_active}>"


class SequenceInstanceRecord(IdMixin, TimestampMixin, Base):
    """One execution of a sequence for a triggering activity."""

    __tablename__ = "activity_sequence_instance"

    sequence_id: Mapped[str] = mapped_column(String(64), index=True)
    activity_id: Mapped[str | None] = mapped_column(String(64), default=None, index=True)
    contact_id: Mapped[str | None] = mapped_column(String(100), default=None)
    key: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    status: Mapped[str] = mapped_column(
        String(20), default="pending", index=True
    )  # pending/running/step_waiting/completed/failed
    current_step: Mapped[int] = mapped_column(Integer, default=0)
    resume_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None, index=True
    )
    context: Mapped[dict | None] = mapped_column(JSON, default=None)
    error: Mapped[str | None] = mapped_column(Text, default=None)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    def __repr__(self) -> str:
        return f"<SequenceInstanceRecord {self.status} step={self.current_step}>"
