"""Async test fixtures for the activity tracking engine using in-memory SQLite."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from activity_tracking import ActivityTracker
from activity_tracking.config import ActivitySettings
from activity_tracking.models import Base
from activity_tracking.schemas import Activity
from activity_tracking.services.store_svc import SqlActivityStore

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def make_activity():
    """Factory for Activity objects created relative to NOW."""

    def _make(**overrides) -> Activity:
        age = timedelta(days=overrides.pop("days_ago", 0), minutes=overrides.pop("minutes_ago", 0))
        created = overrides.pop("created_at", NOW - age)
        data = {
            "id": uuid.uuid4().hex,
            "user_id": "user-1",
            "type": "call",
            "subject": "Check-in call",
            "created_by": "rep-1",
            "created_at": created,
            "updated_at": created,
        }
        data.update(overrides)
        if data.get("status") == "completed":
            data.setdefault("completed_at", created)
        return Activity.model_validate(data)

    return _make


@pytest.fixture
def test_settings() -> ActivitySettings:
    return ActivitySettings(
        database_url="sqlite+aiosqlite:///:memory:",
        worker_enabled=False,
        job_max_attempts=3,
        job_retry_backoff_seconds=0.0,
        shutdown_drain_seconds=0.0,
        insight_debounce_seconds=60.0,
        insight_timeout_seconds=1.0,
        anthropic_api_key="",
    )


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False, poolclass=StaticPool)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def store(session_factory):
    return SqlActivityStore(session_factory, timeout=5.0)


@pytest_asyncio.fixture
async def tracker(store, test_settings):
    """Tracker with the background worker disabled; tests drive it by hand."""
    t = ActivityTracker(store=store, settings=test_settings)
    yield t
    await t.cleanup()
