"""Store adapter - persists activities, sequences and instances via SQLAlchemy."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import settings
from ..errors import StorageError
from ..models import ActivityRecord, DeadLetterRecord, SequenceInstanceRecord, SequenceRecord
from ..models.base import new_id
from ..schemas import (
    Activity,
    ActivityFilters,
    ActivitySequence,
    DeadLetter,
    SequenceAnalytics,
    SequenceInstance,
)
from ..schemas.common import parse_input, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

_ACTIVITY_SCALARS = (
    "id", "user_id", "contact_id", "deal_id", "lead_id", "type", "subtype",
    "subject", "description", "outcome", "priority", "status", "direction",
    "channel", "duration", "location", "scheduled_at", "started_at",
    "completed_at", "created_by", "assigned_to", "created_at", "updated_at",
)
_ACTIVITY_JSON = ("participants", "attachments", "tags", "custom_fields")

_INSTANCE_FIELDS = (
    "sequence_id", "activity_id", "contact_id", "key", "status", "current_step",
    "resume_at", "context", "error", "started_at", "completed_at",
)


# ── Record translation ───────────────────────────────────────────────────

def _activity_columns(activity: Activity) -> dict[str, Any]:
    json_data = activity.model_dump(mode="json", include=set(_ACTIVITY_JSON) | {"metadata"})
    values = {name: getattr(activity, name) for name in _ACTIVITY_SCALARS}
    values.update({name: json_data[name] for name in _ACTIVITY_JSON})
    values["metadata_json"] = json_data["metadata"]
    return values


def _to_activity(record: ActivityRecord) -> Activity:
    data = {name: getattr(record, name) for name in _ACTIVITY_SCALARS}
    data.update({name: getattr(record, name) for name in _ACTIVITY_JSON if getattr(record, name) is not None})
    if record.metadata_json is not None:
        data["metadata"] = record.metadata_json
    return Activity.model_validate(data)


def _sequence_analytics(record: SequenceRecord) -> SequenceAnalytics:
    total = record.total_executions or 0
    completed = record.completed_executions or 0
    finished = completed + (record.failed_executions or 0)
    return SequenceAnalytics(
        total_executions=total,
        completion_rate=(completed / total * 100) if total else 0.0,
        average_execution_time=(record.total_execution_seconds / finished) if finished else 0.0,
        success_rate=(completed / finished * 100) if finished else 0.0,
    )


def _to_sequence(record: SequenceRecord) -> ActivitySequence:
    return ActivitySequence(
        id=record.id,
        user_id=record.user_id,
        name=record.name,
        description=record.description or "",
        trigger_type=record.trigger_type,
        triggers=record.triggers or [],
        steps=record.steps or [],
        is_active=record.is_active,
        analytics=_sequence_analytics(record),
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _to_instance(record: SequenceInstanceRecord) -> SequenceInstance:
    data = {name: getattr(record, name) for name in _INSTANCE_FIELDS}
    data["id"] = record.id
    data["context"] = record.context or {}
    return SequenceInstance.model_validate(data)


def _to_dead_letter(record: DeadLetterRecord) -> DeadLetter:
    return DeadLetter(
        id=record.id,
        kind=record.kind,
        activity_id=record.activity_id,
        payload=record.payload or {},
        reason=record.reason,
        error=record.error,
        attempts=record.attempts,
        created_at=record.created_at,
    )


class SqlActivityStore:
    """Persistence collaborator backed by an async SQLAlchemy session factory.

    Every call runs in its own session under a timeout. SQLAlchemy failures
    and timeouts surface as StorageError so callers can branch on them.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        timeout: float | None = None,
    ):
        if session_factory is None:
            from ..database import async_session_factory
            session_factory = async_session_factory
        self._session_factory = session_factory
        self.timeout = timeout if timeout is not None else settings.store_timeout_seconds

    async def _call(self, op: str, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        async def run() -> T:
            async with self._session_factory() as db:
                return await fn(db)

        try:
            return await asyncio.wait_for(run(), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise StorageError(f"{op} timed out after {self.timeout}s") from exc
        except SQLAlchemyError as exc:
            logger.warning("Store operation %s failed: %s", op, exc)
            raise StorageError(f"{op} failed: {exc}") from exc

    # ── Activities ────────────────────────────────────────────────────────

    async def insert_activity(self, activity: Activity) -> Activity:
        async def op(db: AsyncSession) -> Activity:
            record = ActivityRecord(**_activity_columns(activity))
            db.add(record)
            await db.commit()
            return _to_activity(record)

        return await self._call("insert_activity", op)

    async def get_activity(self, activity_id: str) -> Activity | None:
        async def op(db: AsyncSession) -> Activity | None:
            record = await db.get(ActivityRecord, activity_id)
            return _to_activity(record) if record else None

        return await self._call("get_activity", op)

    async def update_activity(self, activity_id: str, patch: dict[str, Any]) -> Activity | None:
        """Merge a patch of activity fields onto the stored record."""

        async def op(db: AsyncSession) -> Activity | None:
            record = await db.get(ActivityRecord, activity_id)
            if not record:
                return None
            current = _to_activity(record)
            merged = parse_input(Activity, {**current.model_dump(), **patch, "id": activity_id})
            for key, value in _activity_columns(merged).items():
                setattr(record, key, value)
            await db.commit()
            return merged

        return await self._call("update_activity", op)

    async def delete_activity(self, activity_id: str) -> bool:
        async def op(db: AsyncSession) -> bool:
            record = await db.get(ActivityRecord, activity_id)
            if not record:
                return False
            await db.delete(record)
            await db.commit()
            return True

        return await self._call("delete_activity", op)

    async def query_activities(self, filters: ActivityFilters) -> list[Activity]:
        async def op(db: AsyncSession) -> list[Activity]:
            stmt = select(ActivityRecord)
            for name in ("user_id", "contact_id", "deal_id", "lead_id", "type", "status", "outcome"):
                value = getattr(filters, name)
                if value is not None:
                    stmt = stmt.where(getattr(ActivityRecord, name) == value)
            if filters.start is not None:
                stmt = stmt.where(ActivityRecord.created_at >= filters.start)
            if filters.end is not None:
                stmt = stmt.where(ActivityRecord.created_at <= filters.end)
            stmt = stmt.order_by(ActivityRecord.created_at.desc(), ActivityRecord.id)
            if filters.limit:
                stmt = stmt.limit(filters.limit)
            result = await db.execute(stmt)
            return [_to_activity(r) for r in result.scalars().all()]

        return await self._call("query_activities", op)

    # ── Sequences ─────────────────────────────────────────────────────────

    async def insert_sequence(self, sequence: ActivitySequence) -> ActivitySequence:
        async def op(db: AsyncSession) -> ActivitySequence:
            data = sequence.model_dump(mode="json", include={"triggers", "steps"})
            record = SequenceRecord(
                id=sequence.id,
                user_id=sequence.user_id,
                name=sequence.name,
                description=sequence.description,
                trigger_type=sequence.trigger_type,
                triggers=data["triggers"],
                steps=data["steps"],
                is_active=sequence.is_active,
                created_at=sequence.created_at,
                updated_at=sequence.updated_at,
            )
            db.add(record)
            await db.commit()
            return _to_sequence(record)

        return await self._call("insert_sequence", op)

    async def get_sequence(self, sequence_id: str) -> ActivitySequence | None:
        async def op(db: AsyncSession) -> ActivitySequence | None:
            record = await db.get(SequenceRecord, sequence_id)
            return _to_sequence(record) if record else None

        return await self._call("get_sequence", op)

    async def update_sequence(self, sequence_id: str, patch: dict[str, Any]) -> ActivitySequence | None:
        async def op(db: AsyncSession) -> ActivitySequence | None:
            record = await db.get(SequenceRecord, sequence_id)
            if not record:
                return None
            for key, value in patch.items():
                if hasattr(record, key):
                    setattr(record, key, value)
            record.updated_at = utcnow()
            await db.commit()
            return _to_sequence(record)

        return await self._call("update_sequence", op)

    async def list_sequences(
        self, user_id: str | None = None, *, active_only: bool = False
    ) -> list[ActivitySequence]:
        async def op(db: AsyncSession) -> list[ActivitySequence]:
            stmt = select(SequenceRecord)
            if user_id is not None:
                stmt = stmt.where(SequenceRecord.user_id == user_id)
            if active_only:
                stmt = stmt.where(SequenceRecord.is_active.is_(True))
            stmt = stmt.order_by(SequenceRecord.created_at, SequenceRecord.id)
            result = await db.execute(stmt)
            return [_to_sequence(r) for r in result.scalars().all()]

        return await self._call("list_sequences", op)

    async def record_sequence_started(self, sequence_id: str) -> ActivitySequence | None:
        async def op(db: AsyncSession) -> ActivitySequence | None:
            record = await db.get(SequenceRecord, sequence_id)
            if not record:
                return None
            record.total_executions = (record.total_executions or 0) + 1
            record.updated_at = utcnow()
            await db.commit()
            return _to_sequence(record)

        return await self._call("record_sequence_started", op)

    async def record_sequence_finished(
        self, sequence_id: str, *, succeeded: bool, seconds: float
    ) -> ActivitySequence | None:
        async def op(db: AsyncSession) -> ActivitySequence | None:
            record = await db.get(SequenceRecord, sequence_id)
            if not record:
                return None
            if succeeded:
                record.completed_executions = (record.completed_executions or 0) + 1
            else:
                record.failed_executions = (record.failed_executions or 0) + 1
            record.total_execution_seconds = (record.total_execution_seconds or 0.0) + max(seconds, 0.0)
            record.updated_at = utcnow()
            await db.commit()
            return _to_sequence(record)

        return await self._call("record_sequence_finished", op)

    # ── Sequence instances ────────────────────────────────────────────────

    async def insert_instance(self, instance: SequenceInstance) -> SequenceInstance | None:
        """Insert an instance; returns None when one with the same key already exists."""

        async def op(db: AsyncSession) -> SequenceInstance | None:
            values = instance.model_dump(include=set(_INSTANCE_FIELDS))
            record = SequenceInstanceRecord(id=instance.id, **values)
            db.add(record)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                return None
            return _to_instance(record)

        return await self._call("insert_instance", op)

    async def update_instance(self, instance: SequenceInstance) -> SequenceInstance:
        async def op(db: AsyncSession) -> SequenceInstance:
            record = await db.get(SequenceInstanceRecord, instance.id)
            if not record:
                raise StorageError(f"Sequence instance {instance.id} not found")
            for key, value in instance.model_dump(include=set(_INSTANCE_FIELDS)).items():
                setattr(record, key, value)
            await db.commit()
            return _to_instance(record)

        return await self._call("update_instance", op)

    async def get_instance_by_key(self, key: str) -> SequenceInstance | None:
        async def op(db: AsyncSession) -> SequenceInstance | None:
            result = await db.execute(
                select(SequenceInstanceRecord).where(SequenceInstanceRecord.key == key)
            )
            record = result.scalar_one_or_none()
            return _to_instance(record) if record else None

        return await self._call("get_instance_by_key", op)

    async def list_instances(self, sequence_id: str) -> list[SequenceInstance]:
        async def op(db: AsyncSession) -> list[SequenceInstance]:
            result = await db.execute(
                select(SequenceInstanceRecord)
                .where(SequenceInstanceRecord.sequence_id == sequence_id)
                .order_by(SequenceInstanceRecord.created_at, SequenceInstanceRecord.id)
            )
            return [_to_instance(r) for r in result.scalars().all()]

        return await self._call("list_instances", op)

    async def list_due_instances(self, now: datetime, limit: int = 10) -> list[SequenceInstance]:
        """Unfinished instances whose resume time has passed (or was never set)."""

        async def op(db: AsyncSession) -> list[SequenceInstance]:
            stmt = (
                select(SequenceInstanceRecord)
                .where(
                    and_(
                        SequenceInstanceRecord.status.in_(("pending", "running", "step_waiting")),
                        or_(
                            SequenceInstanceRecord.resume_at.is_(None),
                            SequenceInstanceRecord.resume_at <= now,
                        ),
                    )
                )
                .order_by(SequenceInstanceRecord.created_at.asc(), SequenceInstanceRecord.id)
                .limit(limit)
            )
            result = await db.execute(stmt)
            return [_to_instance(r) for r in result.scalars().all()]

        return await self._call("list_due_instances", op)

    # ── Dead letters ──────────────────────────────────────────────────────

    async def record_dead_letter(
        self,
        kind: str,
        activity_id: str,
        *,
        payload: dict[str, Any] | None = None,
        reason: str,
        error: str | None = None,
        attempts: int = 0,
    ) -> DeadLetter:
        async def op(db: AsyncSession) -> DeadLetter:
            record = DeadLetterRecord(
                id=new_id(),
                kind=kind,
                activity_id=activity_id,
                payload=payload,
                reason=reason,
                error=error,
                attempts=attempts,
                created_at=utcnow(),
            )
            db.add(record)
            await db.commit()
            return _to_dead_letter(record)

        return await self._call("record_dead_letter", op)

    async def list_dead_letters(self, limit: int = 100) -> list[DeadLetter]:
        async def op(db: AsyncSession) -> list[DeadLetter]:
            result = await db.execute(
                select(DeadLetterRecord)
                .order_by(DeadLetterRecord.created_at.desc(), DeadLetterRecord.id)
                .limit(limit)
            )
            return [_to_dead_letter(r) for r in result.scalars().all()]

        return await self._call("list_dead_letters", op)
