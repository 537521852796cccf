"""Bounded in-memory FIFO queue of post-processing jobs with retry backoff."""

from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from collections import deque
from typing import Iterable

from ..config import settings
from ..errors import QueueFullError
from .jobs import Job, QueuedJob


class PostProcessingQueue:
    """FIFO of jobs drained by a single worker.

    Jobs that fail are parked in a delay heap and rejoin the tail of the
    FIFO once their backoff expires. Batches are accepted all-or-nothing.
    """

    def __init__(
        self,
        max_size: int | None = None,
        max_attempts: int | None = None,
        backoff_seconds: float | None = None,
        max_backoff_seconds: float | None = None,
    ):
        self.max_size = max_size if max_size is not None else settings.queue_max_size
        self.max_attempts = max_attempts if max_attempts is not None else settings.job_max_attempts
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else settings.job_retry_backoff_seconds
        )
        self.max_backoff_seconds = (
            max_backoff_seconds
            if max_backoff_seconds is not None
            else settings.job_retry_max_backoff_seconds
        )
        self._ready: deque[QueuedJob] = deque()
        self._delayed: list[tuple[float, int, QueuedJob]] = []
        self._counter = itertools.count()
        self._cond = asyncio.Condition()

    def __len__(self) -> int:
        return len(self._ready) + len(self._delayed)

    async def enqueue(self, job: Job) -> None:
        await self.enqueue_many([job])

    async def enqueue_many(self, jobs: Iterable[Job]) -> None:
        batch = list(jobs)
        async with self._cond:
            if len(self) + len(batch) > self.max_size:
                raise QueueFullError(
                    f"Post-processing queue full ({len(self)}/{self.max_size}); "
                    f"cannot accept {len(batch)} job(s)"
                )
            for job in batch:
                self._ready.append(QueuedJob(job=job, seq=next(self._counter)))
            self._cond.notify_all()

    def _promote_due(self, now: float) -> None:
        while self._delayed and self._delayed[0][0] <= now:
            _, _, item = heapq.heappop(self._delayed)
            self._ready.append(item)

    async def claim(self) -> QueuedJob | None:
        """Pop the next runnable job, counting the delivery attempt."""
        async with self._cond:
            self._promote_due(time.monotonic())
            if not self._ready:
                return None
            item = self._ready.popleft()
            item.attempts += 1
            return item

    async def wait(self, timeout: float) -> bool:
        """Wait until a job is runnable or the timeout expires."""
        async with self._cond:
            now = time.monotonic()
            self._promote_due(now)
            if self._ready:
                return True
            if self._delayed:
                timeout = min(timeout, max(self._delayed[0][0] - now, 0.0))
            try:
                await asyncio.wait_for(self._cond.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                pass
            self._promote_due(time.monotonic())
            return bool(self._ready)

    def requeue(self, item: QueuedJob) -> None:
        """Put an interrupted job back at the head of the FIFO.

        Synchronous so it can run inside a cancellation handler; the
        interrupted delivery does not count as an attempt.
        """
        item.attempts = max(item.attempts - 1, 0)
        self._ready.appendleft(item)

    async def wake(self) -> None:
        """Release anyone blocked in wait()."""
        async with self._cond:
            self._cond.notify_all()

    def retry_delay(self, attempts: int) -> float:
        delay = self.backoff_seconds * (2 ** max(attempts - 1, 0))
        return min(delay, self.max_backoff_seconds)

    async def retry(self, item: QueuedJob, error: str) -> bool:
        """Schedule a failed job for another attempt.

        Returns False when the attempt ceiling is reached; the caller is
        then responsible for dead-lettering the job.
        """
        item.last_error = error
        if item.attempts >= self.max_attempts:
            return False
        async with self._cond:
            item.available_at = time.monotonic() + self.retry_delay(item.attempts)
            heapq.heappush(self._delayed, (item.available_at, next(self._counter), item))
            self._cond.notify_all()
        return True

    async def drain(self) -> list[QueuedJob]:
        """Remove and return every queued job, ready ones first."""
        async with self._cond:
            items = list(self._ready)
            items.extend(item for _, _, item in sorted(self._delayed))
            self._ready.clear()
            self._delayed.clear()
            return items
