"""Pydantic schemas for activities, sequences and derived reports."""

from .activity import (
    ACTIVITY_TYPES,
    Activity,
    ActivityCreate,
    ActivityFilters,
    ActivityMetadata,
    ActivityUpdate,
    Attachment,
    Participant,
)
from .analytics import (
    ActivityAnalytics,
    Insight,
    InteractionTimeline,
    Milestone,
    RiskFactor,
    SuggestedAction,
    TopPerformer,
    TrendPoint,
)
from .dead_letter import DeadLetter
from .sequence import (
    ActivitySequence,
    SequenceAnalytics,
    SequenceCreate,
    SequenceInstance,
    SequenceStep,
    SequenceTrigger,
)

__all__ = [
    "ACTIVITY_TYPES",
    "Activity",
    "ActivityCreate",
    "ActivityFilters",
    "ActivityMetadata",
    "ActivityUpdate",
    "Attachment",
    "Participant",
    "ActivityAnalytics",
    "Insight",
    "InteractionTimeline",
    "Milestone",
    "RiskFactor",
    "SuggestedAction",
    "TopPerformer",
    "TrendPoint",
    "ActivitySequence",
    "SequenceAnalytics",
    "SequenceCreate",
    "SequenceInstance",
    "SequenceStep",
    "SequenceTrigger",
    "DeadLetter",
]
