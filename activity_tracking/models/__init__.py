"""Activity tracking database models."""

from .base import Base
from .activity import ActivityRecord
from .sequence import SequenceInstanceRecord, SequenceRecord
from .dead_letter import DeadLetterRecord

__all__ = [
    "Base",
    "ActivityRecord",
    "SequenceRecord",
    "SequenceInstanceRecord",
    "DeadLetterRecord",
]
