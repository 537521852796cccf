"""Post-processing job handlers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Awaitable, Callable

from ..engine.actions import SEQUENCE_SOURCE
from ..engine.analytics import calculate_engagement_score
from ..engine.jobs import (
    GenerateInsights,
    Job,
    JobKind,
    ProcessCompletion,
    ProcessTriggers,
    UpdateEngagement,
)
from ..errors import DependencyError
from ..schemas import Activity, ActivityFilters
from .insight_svc import generate_with_timeout
from .sequence_svc import find_triggered

if TYPE_CHECKING:
    from ..tracker import ActivityTracker

logger = logging.getLogger(__name__)


def is_sequence_generated(activity: Activity) -> bool:
    return activity.metadata.source == SEQUENCE_SOURCE


class JobHandlers:
    """Runs one post-processing job against the current state of its activity.

    Every handler is safe to re-run: sequence instances are keyed, scores
    are recomputed from scratch and insights overwrite the cached value.
    """

    def __init__(self, tracker: ActivityTracker):
        self.tracker = tracker
        self._handlers: dict[JobKind, Callable[[Job, Activity], Awaitable[None]]] = {
            JobKind.PROCESS_TRIGGERS: self.process_triggers,
            JobKind.UPDATE_ENGAGEMENT: self.update_engagement,
            JobKind.GENERATE_INSIGHTS: self.generate_insights,
            JobKind.PROCESS_COMPLETION: self.process_completion,
        }

    async def handle(self, job: Job) -> bool:
        """Run the job; returns False when its activity no longer exists."""
        activity = await self.tracker.find_activity(job.activity_id)
        if activity is None:
            logger.debug("Dropping %s for missing activity %s", job.kind.value, job.activity_id)
            return False
        await self._handlers[job.kind](job, activity)
        return True

    async def _contact_context(self, activity: Activity) -> dict | None:
        if not activity.contact_id:
            return None
        score = await self.tracker.cache.get_engagement_score(activity.contact_id)
        contact = {"id": activity.contact_id}
        if score is not None:
            contact["engagement_score"] = score
        return contact

    async def _start_matching(
        self,
        event: str,
        activity: Activity,
        *,
        contact: dict | None,
        changed_fields: tuple[str, ...] = (),
        key_scope: str | None = None,
    ) -> int:
        matched = find_triggered(
            self.tracker.registry.sequences(active_only=True),
            event,
            activity,
            changed_fields=changed_fields,
            contact=contact,
        )
        started = 0
        for sequence, trigger in matched:
            key = f"{sequence.id}:{key_scope}:{trigger.type}" if key_scope else None
            instance = await self.tracker.runner.start_instance(
                sequence,
                activity,
                trigger.type,
                delay_minutes=trigger.delay,
                key=key,
                contact=contact,
            )
            if instance:
                started += 1
        return started

    async def process_triggers(self, job: ProcessTriggers, activity: Activity) -> None:
        if is_sequence_generated(activity):
            return
        contact = await self._contact_context(activity)
        started = await self._start_matching("logged", activity, contact=contact)
        if started:
            logger.info("Activity %s started %d sequence(s)", activity.id, started)

    async def update_engagement(self, job: UpdateEngagement, activity: Activity) -> None:
        if not activity.contact_id:
            return
        history = await self.tracker.store.query_activities(
            ActivityFilters(contact_id=activity.contact_id)
        )
        score = calculate_engagement_score(history)
        await self.tracker.cache.set_engagement_score(activity.contact_id, score)
        logger.debug("Contact %s engagement score is %d", activity.contact_id, score)

        if is_sequence_generated(activity):
            return
        contact = {"id": activity.contact_id, "engagement_score": score}
        await self._start_matching(
            "score", activity, contact=contact, key_scope=f"contact-{activity.contact_id}"
        )

    async def generate_insights(self, job: GenerateInsights, activity: Activity) -> None:
        generator = self.tracker.insight_generator
        if generator is None or not activity.contact_id:
            return
        if not await self.tracker.debouncer.allow(activity.contact_id):
            logger.debug("Skipping insight for contact %s (debounced)", activity.contact_id)
            return
        try:
            text = await generate_with_timeout(
                generator, activity, self.tracker.settings.insight_timeout_seconds
            )
        except DependencyError as exc:
            logger.warning("No insight for activity %s: %s", activity.id, exc)
            return
        await self.tracker.cache.set_contact_insight(activity.contact_id, text)

    async def process_completion(self, job: ProcessCompletion, activity: Activity) -> None:
        if activity.contact_id:
            await self.tracker.enqueue_jobs([UpdateEngagement(activity.id)])
        if activity.status == "completed" and "status" in job.changed_fields:
            logger.info("Activity %s (%s) completed with outcome %s", activity.id, activity.type, activity.outcome)
        if is_sequence_generated(activity):
            return
        contact = await self._contact_context(activity)
        await self._start_matching(
            "completed", activity, contact=contact, changed_fields=job.changed_fields
        )
