"""ActivityTracker - the public surface of the activity tracking engine.

Owns its collaborators (store, cache, registry, queue, insight generator)
and the background worker that post-processes logged activities.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable

from .cache import ActivityCache
from .config import ActivitySettings, settings as default_settings
from .database import init_models
from .engine.analytics import compute_analytics, resolve_period
from .engine.jobs import (
    GenerateInsights,
    Job,
    ProcessCompletion,
    ProcessTriggers,
    QueuedJob,
    UpdateEngagement,
    job_payload,
)
from .engine.queue import PostProcessingQueue
from .engine.runner import SequenceRunner
from .engine.timeline import build_timeline
from .errors import DependencyError, NotFoundError, QueueFullError, StorageError, ValidationError
from .models.base import new_id
from .registry import ActivityRegistry
from .schemas import (
    Activity,
    ActivityAnalytics,
    ActivityCreate,
    ActivityFilters,
    ActivitySequence,
    ActivityUpdate,
    DeadLetter,
    InteractionTimeline,
    SequenceInstance,
)
from .schemas.activity import CHANNELS
from .schemas.common import parse_input, utcnow
from .services.insight_svc import AnthropicInsightGenerator, InsightDebouncer
from .services.processing_svc import JobHandlers
from .services.sequence_svc import build_sequence, validate_sequence_data
from .services.store_svc import SqlActivityStore
from .worker import PostProcessingWorker

logger = logging.getLogger(__name__)

REALTIME_SOURCE = "automatic_tracking"
STAGE_FIELD = "custom_fields.stage"


def _changed_fields(before: Activity, after: Activity, patch: dict[str, Any]) -> tuple[str, ...]:
    """Names of fields the patch actually changed; custom fields as custom_fields.<key>."""
    changed: list[str] = []
    for name in patch:
        if name == "updated_at":
            continue
        if name == "custom_fields":
            keys = set(before.custom_fields) | set(after.custom_fields)
            for key in sorted(keys):
                if before.custom_fields.get(key) != after.custom_fields.get(key):
                    changed.append(f"custom_fields.{key}")
        elif getattr(before, name) != getattr(after, name):
            changed.append(name)
    return tuple(changed)


def _needs_completion_processing(after: Activity, changed: Iterable[str]) -> bool:
    changed = set(changed)
    if "status" in changed and after.status == "completed":
        return True
    return "outcome" in changed or STAGE_FIELD in changed


class ActivityTracker:
    """Activity logging, analytics, timelines and automation sequences."""

    def __init__(
        self,
        store: SqlActivityStore | None = None,
        cache: ActivityCache | None = None,
        registry: ActivityRegistry | None = None,
        queue: PostProcessingQueue | None = None,
        insight_generator=None,
        settings: ActivitySettings | None = None,
    ):
        self.settings = settings or default_settings
        self._owns_store = store is None
        self.store = store or SqlActivityStore(timeout=self.settings.store_timeout_seconds)
        self.cache = cache or ActivityCache(
            analytics_ttl_seconds=self.settings.analytics_cache_ttl_seconds,
            engagement_ttl_seconds=self.settings.engagement_cache_ttl_seconds,
            insight_ttl_seconds=self.settings.insight_cache_ttl_seconds,
        )
        self.registry = registry or ActivityRegistry()
        self.queue = queue or PostProcessingQueue(
            max_size=self.settings.queue_max_size,
            max_attempts=self.settings.job_max_attempts,
            backoff_seconds=self.settings.job_retry_backoff_seconds,
            max_backoff_seconds=self.settings.job_retry_max_backoff_seconds,
        )
        if insight_generator is None and self.settings.insights_configured:
            try:
                insight_generator = AnthropicInsightGenerator(
                    api_key=self.settings.anthropic_api_key,
                    model=self.settings.insight_model,
                    max_tokens=self.settings.insight_max_tokens,
                )
            except DependencyError as exc:
                logger.warning("AI insights disabled: %s", exc)
        self.insight_generator = insight_generator
        self.debouncer = InsightDebouncer(self.settings.insight_debounce_seconds)
        self.runner = SequenceRunner(self)
        self.handlers = JobHandlers(self)
        self.worker = PostProcessingWorker(self)

    # ── Lifecycle ─────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Create tables for local SQLite, load active sequences, start the worker."""
        if self._owns_store and self.settings.database_url.startswith("sqlite"):
            await init_models()
        for sequence in await self.store.list_sequences(active_only=True):
            self.registry.put_sequence(sequence)
        self.worker.start()
        logger.info(
            "Activity tracker started in %s (%d active sequences)",
            self.settings.environment,
            len(self.registry.sequences()),
        )

    async def cleanup(self) -> None:
        """Stop the worker, drain ready jobs, dead-letter the rest and clear the registry."""
        await self.worker.stop()
        processed = await self.worker.drain(self.settings.shutdown_drain_seconds)
        leftover = await self.queue.drain()
        for item in leftover:
            await self.dead_letter(item, reason="shutdown", error=item.last_error)
        self.registry.clear()
        logger.info(
            "Activity tracker stopped (drained %d job(s), %d left in dead letters)",
            processed,
            len(leftover),
        )

    # ── Queue plumbing ────────────────────────────────────────────────────

    async def enqueue_jobs(self, jobs: list[Job]) -> bool:
        """Queue a batch of jobs; a batch that does not fit is dead-lettered."""
        try:
            await self.queue.enqueue_many(jobs)
            return True
        except QueueFullError as exc:
            logger.error("%s", exc)
            for job in jobs:
                await self.dead_letter(QueuedJob(job=job), reason="queue_full", error=str(exc))
            return False

    async def dead_letter(self, item: QueuedJob, *, reason: str, error: str | None = None) -> None:
        try:
            await self.store.record_dead_letter(
                item.kind.value,
                item.activity_id,
                payload=job_payload(item.job),
                reason=reason,
                error=error,
                attempts=item.attempts,
            )
        except StorageError:
            logger.exception(
                "Could not dead-letter %s for activity %s (%s)", item.kind.value, item.activity_id, reason
            )

    async def list_dead_letters(self, limit: int = 100) -> list[DeadLetter]:
        return await self.store.list_dead_letters(limit)

    # ── Activities ────────────────────────────────────────────────────────

    async def log_activity(self, user_id: str, activity_data: Any) -> Activity:
        """Validate, persist and register an activity, then queue its post-processing."""
        if not user_id:
            raise ValidationError("user_id is required", field="user_id")
        payload = parse_input(ActivityCreate, activity_data)
        now = utcnow()
        data = payload.model_dump()
        if data["status"] == "completed" and data["completed_at"] is None:
            data["completed_at"] = now
        activity = parse_input(
            Activity,
            {**data, "id": new_id(), "user_id": user_id, "created_at": now, "updated_at": now},
        )

        activity = await self.store.insert_activity(activity)
        self.registry.put(activity)
        await self.cache.invalidate_analytics(user_id)

        jobs: list[Job] = [ProcessTriggers(activity.id)]
        if activity.contact_id:
            jobs.append(UpdateEngagement(activity.id))
        jobs.append(GenerateInsights(activity.id))
        await self.enqueue_jobs(jobs)

        logger.info("Logged %s activity %s for user %s", activity.type, activity.id, user_id)
        return activity

    async def find_activity(self, activity_id: str) -> Activity | None:
        """Registry first, store fallback (populating the registry)."""
        activity = self.registry.get(activity_id)
        if activity is not None:
            return activity
        activity = await self.store.get_activity(activity_id)
        if activity is not None:
            self.registry.put(activity)
        return activity

    async def get_activity(self, activity_id: str) -> Activity:
        activity = await self.find_activity(activity_id)
        if activity is None:
            raise NotFoundError(f"Activity {activity_id} not found", field="id")
        return activity

    async def update_activity(self, activity_id: str, updates: Any) -> Activity:
        current = await self.get_activity(activity_id)
        patch = parse_input(ActivityUpdate, updates).model_dump(exclude_unset=True)
        if patch.get("status") == "completed" and current.completed_at is None:
            patch.setdefault("completed_at", utcnow())
        patch["updated_at"] = utcnow()

        updated = await self.store.update_activity(activity_id, patch)
        if updated is None:
            self.registry.remove(activity_id)
            raise NotFoundError(f"Activity {activity_id} not found", field="id")
        self.registry.put(updated)
        await self.cache.invalidate_analytics(updated.user_id)

        changed = _changed_fields(current, updated, patch)
        if _needs_completion_processing(updated, changed):
            await self.enqueue_jobs([ProcessCompletion(updated.id, changed)])
        logger.debug("Updated activity %s (%s)", activity_id, ", ".join(changed) or "no changes")
        return updated

    async def delete_activity(self, activity_id: str) -> None:
        known = await self.find_activity(activity_id)
        deleted = await self.store.delete_activity(activity_id)
        self.registry.remove(activity_id)
        if not deleted and known is None:
            raise NotFoundError(f"Activity {activity_id} not found", field="id")
        if known is not None:
            await self.cache.invalidate_analytics(known.user_id)
        logger.info("Deleted activity %s", activity_id)

    async def get_activities(self, user_id: str, filters: Any = None) -> list[Activity]:
        data = filters.model_dump(exclude_unset=True) if isinstance(filters, ActivityFilters) else dict(filters or {})
        data["user_id"] = user_id
        return await self.store.query_activities(parse_input(ActivityFilters, data))

    async def track_realtime_activity(
        self, user_id: str, activity_type: str, metadata: dict[str, Any] | None = None
    ) -> Activity | None:
        """Log an automatic activity; failures are logged and never raised."""
        metadata = dict(metadata or {})
        source = metadata.get("source")
        now = utcnow()
        try:
            return await self.log_activity(user_id, {
                "type": activity_type,
                "subject": f"Automatic {activity_type} tracking",
                "description": f"Automatically tracked {activity_type} activity",
                "contact_id": metadata.get("contact_id"),
                "outcome": "neutral",
                "priority": "low",
                "status": "completed",
                "direction": "inbound",
                "channel": source if source in CHANNELS else "website",
                "completed_at": now,
                "tags": ["automatic", "real-time"],
                "metadata": {"source": REALTIME_SOURCE, "integration_data": metadata},
                "created_by": "system",
            })
        except (ValidationError, StorageError) as exc:
            logger.warning("Real-time tracking of %s for %s failed: %s", activity_type, user_id, exc)
            return None

    # ── Sequences ─────────────────────────────────────────────────────────

    async def create_activity_sequence(self, user_id: str, sequence_data: Any) -> ActivitySequence:
        if not user_id:
            raise ValidationError("user_id is required", field="user_id")
        payload = validate_sequence_data(sequence_data)
        sequence = await self.store.insert_sequence(build_sequence(user_id, payload))
        self.registry.put_sequence(sequence)
        logger.info("Created sequence %s (%s) with %d step(s)", sequence.name, sequence.id, len(sequence.steps))
        return sequence

    async def get_activity_sequences(self, user_id: str) -> list[ActivitySequence]:
        sequences = await self.store.list_sequences(user_id)
        for sequence in sequences:
            self.registry.put_sequence(sequence)
        return sequences

    async def _get_sequence(self, sequence_id: str) -> ActivitySequence:
        sequence = self.registry.get_sequence(sequence_id) or await self.store.get_sequence(sequence_id)
        if sequence is None:
            raise NotFoundError(f"Sequence {sequence_id} not found", field="sequence_id")
        return sequence

    async def set_sequence_active(self, sequence_id: str, is_active: bool) -> ActivitySequence:
        updated = await self.store.update_sequence(sequence_id, {"is_active": is_active})
        if updated is None:
            raise NotFoundError(f"Sequence {sequence_id} not found", field="sequence_id")
        self.registry.put_sequence(updated)
        logger.info("Sequence %s %s", sequence_id, "activated" if is_active else "deactivated")
        return updated

    async def trigger_sequence(
        self, sequence_id: str, activity_id: str | None = None
    ) -> SequenceInstance:
        """Start a sequence by hand; each call starts a new instance."""
        sequence = await self._get_sequence(sequence_id)
        if not sequence.is_active:
            raise ValidationError(f"Sequence {sequence_id} is not active", field="sequence_id")
        activity = await self.get_activity(activity_id) if activity_id else None

        contact = None
        if activity is not None and activity.contact_id:
            contact = {"id": activity.contact_id}
            score = await self.cache.get_engagement_score(activity.contact_id)
            if score is not None:
                contact["engagement_score"] = score

        instance = await self.runner.start_instance(
            sequence,
            activity,
            "manual",
            key=f"{sequence.id}:{activity_id or 'manual'}:manual:{new_id()}",
            contact=contact,
        )
        if instance is None:
            raise StorageError(f"Could not start sequence {sequence_id}")
        return instance

    # ── Analytics & timeline ──────────────────────────────────────────────

    async def get_activity_analytics(
        self, user_id: str, period: str = "month", *, now: datetime | None = None
    ) -> ActivityAnalytics:
        if now is None:
            cached = await self.cache.get_analytics(user_id, period)
            if cached is not None:
                return cached
        now = now or utcnow()
        start, end = resolve_period(period, now)
        activities = await self.store.query_activities(
            ActivityFilters(user_id=user_id, start=start, end=end)
        )
        analytics = compute_analytics(activities, period, now=now, user_id=user_id)
        await self.cache.set_analytics(analytics)
        return analytics

    async def get_interaction_timeline(
        self, contact_id: str, *, now: datetime | None = None
    ) -> InteractionTimeline:
        activities = await self.store.query_activities(ActivityFilters(contact_id=contact_id))
        return build_timeline(
            contact_id,
            activities,
            now=now or utcnow(),
            latest_insight=await self.cache.get_contact_insight(contact_id),
        )
