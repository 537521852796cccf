"""Insight service - AI-generated notes about a contact's latest activity."""

from __future__ import annotations

import asyncio
import logging
import time

import anthropic

from ..config import settings
from ..errors import DependencyError
from ..schemas import Activity

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a sales assistant reviewing CRM activity. Given one customer "
    "interaction, reply with a single short sentence describing what it says "
    "about the contact's engagement and the most useful next step."
)


def describe_activity(activity: Activity) -> str:
    lines = [
        f"Type: {activity.type}",
        f"Subject: {activity.subject}",
        f"Outcome: {activity.outcome}",
        f"Status: {activity.status}",
        f"Direction: {activity.direction} via {activity.channel}",
    ]
    if activity.description:
        lines.append(f"Notes: {activity.description[:1000]}")
    if activity.tags:
        lines.append(f"Tags: {', '.join(activity.tags)}")
    return "\n".join(lines)


class AnthropicInsightGenerator:
    """Generates insights with the Anthropic Messages API."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
    ):
        api_key = api_key or settings.anthropic_api_key
        if not api_key:
            raise DependencyError("Set ACTIVITY_ANTHROPIC_API_KEY to enable AI insights.")
        self.client = anthropic.AsyncAnthropic(api_key=api_key)
        self.model = model or settings.insight_model
        self.max_tokens = max_tokens or settings.insight_max_tokens

    async def generate_insight(self, activity: Activity) -> str:
        message = await self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            system=SYSTEM_PROMPT,
            messages=[{"role": "user", "content": describe_activity(activity)}],
        )
        text = "".join(
            block.text for block in message.content if getattr(block, "type", None) == "text"
        )
        return text.strip()


async def generate_with_timeout(generator, activity: Activity, timeout: float) -> str:
    """Call the generator; any failure or timeout becomes DependencyError."""
    try:
        text = await asyncio.wait_for(generator.generate_insight(activity), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise DependencyError(f"Insight generation timed out after {timeout}s") from exc
    except Exception as exc:
        raise DependencyError(f"Insight generation failed: {exc}") from exc
    if not text:
        raise DependencyError("Insight generator returned no text")
    return text


class InsightDebouncer:
    """Allows at most one insight request per key within a window."""

    def __init__(self, window_seconds: float | None = None) -> None:
        self.window_seconds = (
            window_seconds if window_seconds is not None else settings.insight_debounce_seconds
        )
        self._last: dict[str, float] = {}
        self._lock = asyncio.Lock()

    async def allow(self, key: str) -> bool:
        now = time.monotonic()
        async with self._lock:
            last = self._last.get(key)
            if last is not None and now - last < self.window_seconds:
                return False
            self._last[key] = now
            return True

    async def reset(self) -> None:
        async with self._lock:
            self._last.clear()
