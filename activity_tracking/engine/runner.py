"""Sequence instance runner.

Each instance moves through pending → running → (step_waiting → running)*
→ completed | failed. Every transition is written to the store, so an
instance interrupted mid-sequence resumes from its last persisted step.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from ..models.base import new_id
from ..schemas import Activity, ActivitySequence, SequenceInstance, SequenceStep
from ..schemas.common import utcnow
from .actions import execute_action
from .context import ExecutionContext
from .evaluator import conditions_hold, evaluate_condition

if TYPE_CHECKING:
    from ..tracker import ActivityTracker

logger = logging.getLogger(__name__)

# Context key holding the id of the step whose delay has already elapsed
WAITED_STEP_KEY = "_waited_step"


def step_delay_minutes(step: SequenceStep) -> float:
    """Total minutes to wait before running a step."""
    minutes = float(step.delay or 0)
    if step.type == "wait":
        config = step.configuration or {}
        minutes += float(config.get("minutes", 0))
        minutes += float(config.get("hours", 0)) * 60
        minutes += float(config.get("days", 0)) * 1440
        minutes += float(config.get("seconds", 0)) / 60
    return minutes


def ordered_steps(sequence: ActivitySequence) -> list[SequenceStep]:
    return sorted(sequence.steps, key=lambda s: s.order if s.order is not None else 0)


class SequenceRunner:
    """Starts and advances sequence instances."""

    def __init__(self, tracker: ActivityTracker):
        self.tracker = tracker

    @property
    def store(self):
        return self.tracker.store

    async def start_instance(
        self,
        sequence: ActivitySequence,
        activity: Activity | None,
        trigger_type: str,
        *,
        delay_minutes: float | None = None,
        key: str | None = None,
        contact: dict | None = None,
        now: datetime | None = None,
    ) -> SequenceInstance | None:
        """Create a pending instance unless one already exists for the same key."""
        now = now or utcnow()
        activity_id = activity.id if activity else None
        key = key or f"{sequence.id}:{activity_id or 'manual'}:{trigger_type}"
        if await self.store.get_instance_by_key(key):
            return None

        instance_id = new_id()
        ctx = ExecutionContext.for_activity(
            activity.model_dump(mode="json") if activity else None, contact
        )
        ctx.set("sequence", {
            "id": sequence.id,
            "user_id": sequence.user_id,
            "name": sequence.name,
            "instance_id": instance_id,
            "trigger": trigger_type,
        })
        instance = SequenceInstance(
            id=instance_id,
            sequence_id=sequence.id,
            activity_id=activity_id,
            contact_id=activity.contact_id if activity else None,
            key=key,
            status="pending",
            resume_at=now + timedelta(minutes=delay_minutes) if delay_minutes else None,
            context=ctx.to_dict(),
        )
        created = await self.store.insert_instance(instance)
        if created is None:
            return None
        updated = await self.store.record_sequence_started(sequence.id)
        if updated:
            self.tracker.registry.put_sequence(updated)
        logger.info("Started sequence %s (%s) instance %s", sequence.name, trigger_type, created.id)
        return created

    async def advance_due(self, now: datetime | None = None, limit: int | None = None) -> int:
        """Advance every instance whose resume time has passed."""
        now = now or utcnow()
        instances = await self.store.list_due_instances(
            now, limit or self.tracker.settings.sequence_batch_size
        )
        for instance in instances:
            await self.advance(instance, now=now)
        return len(instances)

    async def _load_sequence(self, sequence_id: str) -> ActivitySequence | None:
        sequence = self.tracker.registry.get_sequence(sequence_id)
        if sequence is None:
            sequence = await self.store.get_sequence(sequence_id)
            if sequence:
                self.tracker.registry.put_sequence(sequence)
        return sequence

    async def advance(self, instance: SequenceInstance, now: datetime | None = None) -> SequenceInstance:
        """Run steps until the instance finishes or has to wait."""
        now = now or utcnow()
        if instance.finished:
            return instance

        sequence = await self._load_sequence(instance.sequence_id)
        if sequence is None:
            return await self._finish(instance, None, now, error="Sequence no longer exists")
        if not sequence.is_active:
            return await self._finish(instance, sequence, now, error="Sequence was deactivated")

        if instance.status == "pending":
            instance.status = "running"
            instance.started_at = now
            instance.resume_at = None
            instance = await self.store.update_instance(instance)

        ctx = ExecutionContext(instance.context)
        steps = ordered_steps(sequence)

        try:
            while instance.current_step < len(steps):
                step = steps[instance.current_step]

                delay = step_delay_minutes(step)
                if delay > 0 and ctx.get(WAITED_STEP_KEY) != step.id:
                    ctx.set(WAITED_STEP_KEY, step.id)
                    instance.status = "step_waiting"
                    instance.resume_at = now + timedelta(minutes=delay)
                    instance.context = ctx.to_dict()
                    return await self.store.update_instance(instance)

                output, halt = await self._execute_step(step, ctx)
                ctx.set_step_output(step.id, output)
                instance.current_step += 1
                instance.status = "running"
                instance.resume_at = None
                instance.context = ctx.to_dict()
                instance = await self.store.update_instance(instance)
                if halt:
                    break
        except Exception as e:
            logger.exception("Sequence %s instance %s failed", sequence.name, instance.id)
            instance.context = ctx.to_dict()
            return await self._finish(instance, sequence, now, error=str(e))

        return await self._finish(instance, sequence, now)

    async def _execute_step(self, step: SequenceStep, ctx: ExecutionContext) -> tuple[dict, bool]:
        """Execute a single step; returns (output, halt_sequence)."""
        if step.conditions and not conditions_hold(step.conditions, ctx):
            return {"skipped": True, "reason": "conditions not met"}, False

        if step.type == "wait":
            return {"waited_minutes": step_delay_minutes(step)}, False

        if step.type == "condition":
            config = ctx.resolve_config(step.configuration or {})
            result = evaluate_condition(config, ctx)
            return {"branch": result, "condition": config}, not result

        config = ctx.resolve_config(step.configuration or {})
        return await execute_action(step.type, config, ctx, self.tracker), False

    async def _finish(
        self,
        instance: SequenceInstance,
        sequence: ActivitySequence | None,
        now: datetime,
        error: str | None = None,
    ) -> SequenceInstance:
        instance.status = "failed" if error else "completed"
        instance.error = error
        instance.resume_at = None
        instance.completed_at = now
        instance = await self.store.update_instance(instance)

        if sequence is not None:
            seconds = (now - instance.started_at).total_seconds() if instance.started_at else 0.0
            updated = await self.store.record_sequence_finished(
                sequence.id, succeeded=error is None, seconds=seconds
            )
            if updated:
                self.tracker.registry.put_sequence(updated)
        logger.info("Sequence instance %s finished: %s", instance.id, instance.status)
        return instance
