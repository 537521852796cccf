"""Dead-letter log for post-processing jobs that could not complete."""

from __future__ import annotations

from sqlalchemy import JSON, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, IdMixin, TimestampMixin


class DeadLetterRecord(IdMixin, TimestampMixin, Base):
    __tablename__ = "activity_dead_letter"

    kind: Mapped[str] = mapped_column(String(50), index=True)
    activity_id: Mapped[str] = mapped_column(String(64), index=True)
    payload: Mapped[dict | None] = mapped_column(JSON, default=None)
    reason: Mapped[str] = mapped_column(String(30))  # retries_exhausted/non_retryable/queue_full/shutdown
    error: Mapped[str | None] = mapped_column(Text, default=None)
    attempts: Mapped[int] = mapped_column(Integer, default=0)

    def __repr__(self) -> str:
        return f"<DeadLetterRecord {self.kind} {self.reason}>"
