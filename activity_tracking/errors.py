"""Exception types raised by the activity tracking engine."""

from __future__ import annotations


class ActivityTrackingError(Exception):
    """Base exception for activity tracking errors."""

    def __init__(self, message: str, *, field: str | None = None):
        self.message = message
        self.field = field
        super().__init__(self.message)


class ValidationError(ActivityTrackingError):
    """Input is missing a required field or violates an invariant."""


class NotFoundError(ActivityTrackingError):
    """Referenced activity or sequence does not exist."""


class StorageError(ActivityTrackingError):
    """The persistence collaborator failed or timed out."""


class DependencyError(ActivityTrackingError):
    """A cache or AI collaborator failed. Never fatal to the caller."""


class QueueFullError(ActivityTrackingError):
    """The post-processing queue cannot accept a job batch."""
