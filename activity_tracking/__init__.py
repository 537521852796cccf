"""Activity tracking and interaction analytics engine."""

from .tracker import ActivityTracker

__all__ = ["ActivityTracker"]
