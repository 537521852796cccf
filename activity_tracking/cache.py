"""Analytics cache - key construction and TTL policy over a cache backend."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import timedelta
from typing import Any

from .config import settings
from .schemas import ActivityAnalytics
from .schemas.common import utcnow

logger = logging.getLogger(__name__)

ANALYTICS_PERIODS = ("day", "week", "month", "quarter", "year")


class MemoryCache:
    """In-process key/value cache with per-key TTL."""

    def __init__(self) -> None:
        self._entries: dict[str, tuple[float, Any]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Any | None:
        now = time.monotonic()
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= now:
                del self._entries[key]
                return None
            return value

    async def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        async with self._lock:
            self._entries[key] = (time.monotonic() + ttl_seconds, value)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()


def build_cache_key(operation: str, user_id: str, *params: Any) -> str:
    """Deterministic key from (operation, user_id, params)."""
    parts = [operation, user_id, *(str(p) for p in params)]
    return ":".join(parts)


class ActivityCache:
    """Wraps a cache backend for analytics, engagement scores and insights.

    Backend failures are logged and treated as misses; the cache never
    fails the operation it serves.
    """

    def __init__(
        self,
        backend=None,
        analytics_ttl_seconds: float | None = None,
        engagement_ttl_seconds: float | None = None,
        insight_ttl_seconds: float | None = None,
    ):
        self.backend = backend if backend is not None else MemoryCache()
        self.analytics_ttl_seconds = (
            analytics_ttl_seconds
            if analytics_ttl_seconds is not None
            else settings.analytics_cache_ttl_seconds
        )
        self.engagement_ttl_seconds = (
            engagement_ttl_seconds
            if engagement_ttl_seconds is not None
            else settings.engagement_cache_ttl_seconds
        )
        self.insight_ttl_seconds = (
            insight_ttl_seconds if insight_ttl_seconds is not None else settings.insight_cache_ttl_seconds
        )
        # Periods cached per user beyond the named ones, so invalidation finds them
        self._extra_periods: dict[str, set[str]] = {}

    async def _get(self, key: str) -> Any | None:
        try:
            return await self.backend.get(key)
        except Exception as exc:
            logger.warning("Cache read failed for %s: %s", key, exc)
            return None

    async def _set(self, key: str, value: Any, ttl: float) -> None:
        try:
            await self.backend.set(key, value, ttl)
        except Exception as exc:
            logger.warning("Cache write failed for %s: %s", key, exc)

    async def _delete(self, key: str) -> None:
        try:
            await self.backend.delete(key)
        except Exception as exc:
            logger.warning("Cache delete failed for %s: %s", key, exc)

    # ── Analytics ─────────────────────────────────────────────────────────

    async def get_analytics(self, user_id: str, period: str) -> ActivityAnalytics | None:
        cached = await self._get(build_cache_key("activity_analytics", user_id, period))
        if not cached:
            return None
        try:
            analytics = ActivityAnalytics.model_validate(cached)
        except ValueError:
            logger.warning("Discarding malformed cached analytics for %s/%s", user_id, period)
            return None
        if not self.is_analytics_fresh(analytics):
            return None
        return analytics

    async def set_analytics(self, analytics: ActivityAnalytics) -> None:
        key = build_cache_key("activity_analytics", analytics.user_id, analytics.period)
        if analytics.period not in ANALYTICS_PERIODS:
            self._extra_periods.setdefault(analytics.user_id, set()).add(analytics.period)
        await self._set(key, analytics.model_dump(mode="json"), self.analytics_ttl_seconds)

    async def invalidate_analytics(self, user_id: str) -> None:
        extra = self._extra_periods.pop(user_id, set())
        for period in (*ANALYTICS_PERIODS, *sorted(extra)):
            await self._delete(build_cache_key("activity_analytics", user_id, period))

    def is_analytics_fresh(self, analytics: ActivityAnalytics) -> bool:
        window = timedelta(seconds=self.analytics_ttl_seconds)
        return analytics.generated_at > utcnow() - window

    # ── Contact engagement & insights ─────────────────────────────────────

    async def get_engagement_score(self, contact_id: str) -> int | None:
        value = await self._get(build_cache_key("contact_engagement", contact_id))
        return int(value) if value is not None else None

    async def set_engagement_score(self, contact_id: str, score: int) -> None:
        await self._set(
            build_cache_key("contact_engagement", contact_id),
            score,
            self.engagement_ttl_seconds,
        )

    async def get_contact_insight(self, contact_id: str) -> str | None:
        return await self._get(build_cache_key("contact_insight", contact_id))

    async def set_contact_insight(self, contact_id: str, insight: str) -> None:
        await self._set(
            build_cache_key("contact_insight", contact_id),
            insight,
            self.insight_ttl_seconds,
        )
