"""Tests for the ActivityTracker activity operations."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from activity_tracking import ActivityTracker
from activity_tracking.engine.jobs import JobKind
from activity_tracking.engine.queue import PostProcessingQueue
from activity_tracking.errors import NotFoundError, StorageError, ValidationError
from activity_tracking.schemas.common import utcnow
from activity_tracking.services.store_svc import SqlActivityStore


def _call(**overrides) -> dict:
    data = {"type": "call", "subject": "Intro call", "created_by": "rep-1"}
    data.update(overrides)
    return data


async def _queued_kinds(tracker) -> list[str]:
    items = await tracker.queue.drain()
    return [item.kind.value for item in items]


# ── Logging ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_log_activity_defaults(tracker):
    activity = await tracker.log_activity("user-1", _call())
    assert activity.user_id == "user-1"
    assert activity.outcome == "pending"
    assert activity.status == "planned"
    assert activity.priority == "medium"
    assert activity.metadata.source == "manual"
    assert activity.created_at == activity.updated_at


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "data, field",
    [
        ({"type": "call", "created_by": "rep-1"}, "subject"),
        ({"type": "call", "subject": "   ", "created_by": "rep-1"}, "subject"),
        ({"type": "carrier_pigeon", "subject": "Hi", "created_by": "rep-1"}, "type"),
        ({"type": "call", "subject": "Hi"}, "created_by"),
        ({"type": "call", "subject": "Hi", "created_by": "rep-1", "outcome": "great"}, "outcome"),
    ],
)
async def test_log_activity_validation(tracker, data, field):
    with pytest.raises(ValidationError) as exc_info:
        await tracker.log_activity("user-1", data)
    assert exc_info.value.field == field
    assert await tracker.get_activities("user-1") == []


@pytest.mark.asyncio
async def test_log_activity_rejects_completion_before_start(tracker):
    now = utcnow()
    with pytest.raises(ValidationError):
        await tracker.log_activity(
            "user-1", _call(started_at=now, completed_at=now - timedelta(hours=1))
        )


@pytest.mark.asyncio
async def test_logged_ids_are_unique(tracker):
    ids = {(await tracker.log_activity("user-1", _call())).id for _ in range(5)}
    assert len(ids) == 5


@pytest.mark.asyncio
async def test_log_activity_queues_post_processing(tracker):
    await tracker.log_activity("user-1", _call(contact_id="c1"))
    assert await _queued_kinds(tracker) == ["process_triggers", "update_engagement", "generate_insights"]

    await tracker.log_activity("user-1", _call())
    assert await _queued_kinds(tracker) == ["process_triggers", "generate_insights"]


@pytest.mark.asyncio
async def test_intro_call_analytics(tracker):
    await tracker.log_activity(
        "user-1", _call(outcome="positive", status="completed", contact_id="c1")
    )
    analytics = await tracker.get_activity_analytics("user-1", "week")
    assert analytics.total_activities == 1
    assert analytics.completion_rate == 100.0
    assert analytics.engagement_score == 12
    assert analytics.activities_by_type == {"call": 1}


@pytest.mark.asyncio
async def test_completed_activity_gets_completed_at(tracker):
    activity = await tracker.log_activity("user-1", _call(status="completed"))
    assert activity.completed_at is not None


@pytest.mark.asyncio
async def test_analytics_cache_invalidated_on_log(tracker):
    empty = await tracker.get_activity_analytics("user-1", "month")
    assert empty.total_activities == 0
    await tracker.log_activity("user-1", _call())
    analytics = await tracker.get_activity_analytics("user-1", "month")
    assert analytics.total_activities == 1


@pytest.mark.asyncio
async def test_fallback_period_analytics_invalidated_on_log(tracker):
    empty = await tracker.get_activity_analytics("user-1", "last30")
    assert empty.total_activities == 0
    await tracker.log_activity("user-1", _call())
    analytics = await tracker.get_activity_analytics("user-1", "last30")
    assert analytics.total_activities == 1


@pytest.mark.asyncio
async def test_cache_ttls_come_from_tracker_settings(store, test_settings):
    settings = test_settings.model_copy(update={"analytics_cache_ttl_seconds": 42})
    tracker = ActivityTracker(store=store, settings=settings)
    assert tracker.cache.analytics_ttl_seconds == 42
    assert tracker.cache.engagement_ttl_seconds == settings.engagement_cache_ttl_seconds


@pytest.mark.asyncio
async def test_storage_failure_leaves_registry_untouched(store, test_settings):
    class FailingStore(SqlActivityStore):
        async def insert_activity(self, activity):
            raise StorageError("insert_activity failed: disk full")

    tracker = ActivityTracker(store=FailingStore(store._session_factory), settings=test_settings)
    with pytest.raises(StorageError):
        await tracker.log_activity("user-1", _call())
    assert len(tracker.registry) == 0
    assert len(tracker.queue) == 0


@pytest.mark.asyncio
async def test_queue_full_dead_letters_jobs_but_logs_activity(store, test_settings):
    tracker = ActivityTracker(
        store=store, queue=PostProcessingQueue(max_size=1), settings=test_settings
    )
    activity = await tracker.log_activity("user-1", _call())
    assert (await tracker.get_activity(activity.id)).id == activity.id
    letters = await tracker.list_dead_letters()
    assert sorted(l.kind for l in letters) == ["generate_insights", "process_triggers"]
    assert {l.reason for l in letters} == {"queue_full"}


# ── Reads, updates and deletes ───────────────────────────────────────────


@pytest.mark.asyncio
async def test_get_activity_falls_back_to_store(tracker):
    activity = await tracker.log_activity("user-1", _call())
    tracker.registry.clear()
    fetched = await tracker.get_activity(activity.id)
    assert fetched.subject == "Intro call"
    assert tracker.registry.get(activity.id) is not None


@pytest.mark.asyncio
async def test_get_unknown_activity(tracker):
    with pytest.raises(NotFoundError):
        await tracker.get_activity("missing")


@pytest.mark.asyncio
async def test_update_unknown_activity(tracker):
    with pytest.raises(NotFoundError):
        await tracker.update_activity("missing", {"subject": "New"})


@pytest.mark.asyncio
async def test_update_rejects_identity_fields(tracker):
    activity = await tracker.log_activity("user-1", _call())
    with pytest.raises(ValidationError):
        await tracker.update_activity(activity.id, {"user_id": "someone-else"})


@pytest.mark.asyncio
async def test_update_to_completed_queues_completion(tracker):
    activity = await tracker.log_activity("user-1", _call(contact_id="c1"))
    await tracker.queue.drain()

    updated = await tracker.update_activity(activity.id, {"status": "completed", "outcome": "positive"})
    assert updated.status == "completed"
    assert updated.completed_at is not None
    assert updated.updated_at >= activity.updated_at

    items = await tracker.queue.drain()
    assert [i.kind for i in items] == [JobKind.PROCESS_COMPLETION]
    assert set(items[0].job.changed_fields) >= {"status", "outcome", "completed_at"}


@pytest.mark.asyncio
async def test_plain_update_does_not_queue_completion(tracker):
    activity = await tracker.log_activity("user-1", _call())
    await tracker.queue.drain()
    updated = await tracker.update_activity(activity.id, {"description": "Left a voicemail"})
    assert updated.description == "Left a voicemail"
    assert len(tracker.queue) == 0
    stored = await tracker.store.get_activity(activity.id)
    assert stored.description == "Left a voicemail"


@pytest.mark.asyncio
async def test_delete_activity(tracker):
    activity = await tracker.log_activity("user-1", _call())
    await tracker.delete_activity(activity.id)
    with pytest.raises(NotFoundError):
        await tracker.get_activity(activity.id)
    with pytest.raises(NotFoundError):
        await tracker.delete_activity(activity.id)


@pytest.mark.asyncio
async def test_get_activities_filters_newest_first(tracker):
    now = utcnow()
    first = await tracker.log_activity("user-1", _call(contact_id="c1"))
    second = await tracker.log_activity("user-1", _call(type="email", subject="Recap", contact_id="c1"))
    await tracker.log_activity("user-1", _call(contact_id="c2"))
    await tracker.log_activity("user-2", _call(contact_id="c1"))

    for_contact = await tracker.get_activities("user-1", {"contact_id": "c1"})
    assert {a.id for a in for_contact} == {first.id, second.id}
    assert for_contact[0].created_at >= for_contact[1].created_at

    emails = await tracker.get_activities("user-1", {"type": "email"})
    assert [a.id for a in emails] == [second.id]

    limited = await tracker.get_activities("user-1", {"limit": 2})
    assert len(limited) == 2

    future = await tracker.get_activities("user-1", {"start": now + timedelta(days=1)})
    assert future == []


# ── Real-time tracking ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_track_realtime_activity(tracker):
    activity = await tracker.track_realtime_activity(
        "user-1", "website_visit", {"source": "mobile", "page": "/pricing", "contact_id": "c1"}
    )
    assert activity.subject == "Automatic website_visit tracking"
    assert activity.channel == "mobile"
    assert activity.direction == "inbound"
    assert activity.status == "completed"
    assert activity.outcome == "neutral"
    assert activity.created_by == "system"
    assert activity.tags == ["automatic", "real-time"]
    assert activity.metadata.source == "automatic_tracking"
    assert activity.metadata.integration_data["page"] == "/pricing"
    assert activity.contact_id == "c1"


@pytest.mark.asyncio
async def test_track_realtime_activity_is_best_effort(tracker):
    assert await tracker.track_realtime_activity("user-1", "not_a_type", {}) is None
    default_channel = await tracker.track_realtime_activity("user-1", "download", None)
    assert default_channel.channel == "website"


# ── Timeline & lifecycle ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_interaction_timeline_for_contact(tracker):
    await tracker.log_activity("user-1", _call(contact_id="c1", outcome="positive", status="completed"))
    await tracker.log_activity("user-1", _call(type="demo", subject="Demo", contact_id="c1", outcome="positive"))
    await tracker.log_activity("user-1", _call(contact_id="c2"))

    timeline = await tracker.get_interaction_timeline("c1")
    assert len(timeline.activities) == 2
    assert timeline.engagement_score == 22
    assert [m.event for m in timeline.milestones] == ["First Contact", "Demo"]


@pytest.mark.asyncio
async def test_cleanup_dead_letters_pending_jobs(tracker):
    await tracker.log_activity("user-1", _call())
    await tracker.cleanup()
    letters = await tracker.list_dead_letters()
    assert {l.reason for l in letters} == {"shutdown"}
    assert len(letters) == 2
    assert len(tracker.registry) == 0


# ── Background worker ────────────────────────────────────────────────────


@pytest.fixture
def live_settings(test_settings):
    return test_settings.model_copy(
        update={
            "worker_enabled": True,
            "worker_poll_interval_seconds": 0.01,
            "worker_max_idle_seconds": 0.05,
            "shutdown_drain_seconds": 0.05,
        }
    )


async def _wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        assert loop.time() < deadline, "worker did not finish in time"
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_running_worker_processes_logged_activity(store, live_settings):
    tracker = ActivityTracker(store=store, settings=live_settings)
    await tracker.start()
    assert tracker.worker.running

    await tracker.log_activity("user-1", _call(contact_id="c1", status="completed", outcome="positive"))
    await _wait_until(lambda: tracker.worker.processed == 3 and len(tracker.queue) == 0)
    assert await tracker.cache.get_engagement_score("c1") == 12

    await tracker.cleanup()
    assert not tracker.worker.running
    assert await tracker.list_dead_letters() == []


@pytest.mark.asyncio
async def test_cleanup_dead_letters_job_interrupted_mid_run(store, live_settings):
    tracker = ActivityTracker(store=store, settings=live_settings)
    started = asyncio.Event()

    async def slow_triggers(job, activity):
        started.set()
        await asyncio.sleep(5)

    tracker.handlers._handlers[JobKind.PROCESS_TRIGGERS] = slow_triggers
    await tracker.start()
    await tracker.log_activity("user-1", _call())
    await asyncio.wait_for(started.wait(), timeout=2)

    await tracker.cleanup()
    letters = await tracker.list_dead_letters()
    assert sorted(l.kind for l in letters) == ["generate_insights", "process_triggers"]
    assert {l.reason for l in letters} == {"shutdown"}
    assert tracker.worker.processed == 0
