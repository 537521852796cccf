"""Background worker draining the post-processing queue."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Optional

from .engine.jobs import QueuedJob
from .errors import NotFoundError, ValidationError

if TYPE_CHECKING:
    from .tracker import ActivityTracker

logger = logging.getLogger(__name__)

NON_RETRYABLE = (ValidationError, NotFoundError)


class PostProcessingWorker:
    """Drains queued jobs continuously and advances due sequence instances.

    When there is nothing to do it waits on the queue, backing off
    exponentially up to ``worker_max_idle_seconds``; an enqueue wakes it
    immediately.
    """

    def __init__(self, tracker: ActivityTracker) -> None:
        self.tracker = tracker
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self.processed = 0
        self.failed = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is not None or not self.tracker.settings.worker_enabled:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop(), name="activity-post-processing-worker")

    async def stop(self) -> None:
        """Let the current job finish, cancelling only after the grace period.

        A job interrupted by the cancel goes back on the queue so the caller
        can drain or dead-letter it.
        """
        if self._task is None:
            return
        self._stop_event.set()
        await self.tracker.queue.wake()
        grace = self.tracker.settings.shutdown_drain_seconds
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=grace)
        except asyncio.TimeoutError:
            logger.warning("Worker still busy after %.1fs; cancelling", grace)
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None

    async def process(self, item: QueuedJob) -> None:
        """Run one job; failures are retried with backoff or dead-lettered."""
        try:
            handled = await self.tracker.handlers.handle(item.job)
            if handled:
                self.processed += 1
        except asyncio.CancelledError:
            self.tracker.queue.requeue(item)
            raise
        except NON_RETRYABLE as exc:
            self.failed += 1
            logger.error("Job %s for %s failed permanently: %s", item.kind.value, item.activity_id, exc)
            await self.tracker.dead_letter(item, reason="non_retryable", error=str(exc))
        except Exception as exc:
            self.failed += 1
            logger.exception(
                "Job %s for %s failed (attempt %d)", item.kind.value, item.activity_id, item.attempts
            )
            if not await self.tracker.queue.retry(item, str(exc)):
                await self.tracker.dead_letter(item, reason="retries_exhausted", error=str(exc))

    async def run_once(self) -> bool:
        """Process the next ready job, or else advance due sequences.

        Returns True when any work was done.
        """
        item = await self.tracker.queue.claim()
        if item is not None:
            await self.process(item)
            return True
        return await self.tracker.runner.advance_due() > 0

    async def run_until_idle(self, max_iterations: int = 1000) -> int:
        """Process work until none is left; used for draining and in tests."""
        count = 0
        while count < max_iterations and await self.run_once():
            count += 1
        return count

    async def drain(self, timeout: float) -> int:
        """Process ready jobs until the queue is empty or the deadline passes.

        A job still running at the deadline is cancelled and put back.
        """
        deadline = time.monotonic() + timeout
        count = 0
        while (remaining := deadline - time.monotonic()) > 0:
            item = await self.tracker.queue.claim()
            if item is None:
                break
            try:
                await asyncio.wait_for(self.process(item), timeout=remaining)
            except asyncio.TimeoutError:
                logger.warning("Shutdown deadline hit while running %s", item.kind.value)
                break
            count += 1
        return count

    async def _run_loop(self) -> None:
        settings = self.tracker.settings
        idle = settings.worker_poll_interval_seconds
        while not self._stop_event.is_set():
            worked = False
            try:
                worked = await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:  # pragma: no cover - defensive log path
                logger.exception("Post-processing worker loop failed")

            if worked:
                idle = settings.worker_poll_interval_seconds
                continue
            if self._stop_event.is_set():
                break
            await self.tracker.queue.wait(idle)
            idle = min(idle * 2, settings.worker_max_idle_seconds)
