"""Post-processing job kinds.

Each job is a small frozen dataclass carrying only what its handler needs.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Union


class JobKind(str, Enum):
    PROCESS_TRIGGERS = "process_triggers"
    UPDATE_ENGAGEMENT = "update_engagement"
    GENERATE_INSIGHTS = "generate_insights"
    PROCESS_COMPLETION = "process_completion"


@dataclass(frozen=True)
class ProcessTriggers:
    activity_id: str
    kind: ClassVar[JobKind] = JobKind.PROCESS_TRIGGERS


@dataclass(frozen=True)
class UpdateEngagement:
    activity_id: str
    kind: ClassVar[JobKind] = JobKind.UPDATE_ENGAGEMENT


@dataclass(frozen=True)
class GenerateInsights:
    activity_id: str
    kind: ClassVar[JobKind] = JobKind.GENERATE_INSIGHTS


@dataclass(frozen=True)
class ProcessCompletion:
    activity_id: str
    changed_fields: tuple[str, ...] = ()
    kind: ClassVar[JobKind] = JobKind.PROCESS_COMPLETION


Job = Union[ProcessTriggers, UpdateEngagement, GenerateInsights, ProcessCompletion]


def job_payload(job: Job) -> dict[str, Any]:
    """JSON-friendly payload for dead-letter records."""
    payload = dataclasses.asdict(job)
    payload.pop("activity_id", None)
    return {k: list(v) if isinstance(v, tuple) else v for k, v in payload.items()}


@dataclass
class QueuedJob:
    """A job plus its delivery bookkeeping."""

    job: Job
    attempts: int = 0
    available_at: float = 0.0  # time.monotonic()
    last_error: str | None = None
    seq: int = field(default=0, compare=False)

    @property
    def kind(self) -> JobKind:
        return self.job.kind

    @property
    def activity_id(self) -> str:
        return self.job.activity_id
