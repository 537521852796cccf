"""In-memory registry of activities and sequences known to the process."""

from __future__ import annotations

import threading

from .schemas import Activity, ActivitySequence


class ActivityRegistry:
    """Authoritative in-process cache keyed by id.

    Lookups that miss here fall back to the store in the caller. All access
    goes through put/get/remove so request handlers and the worker can share
    one instance.
    """

    def __init__(self) -> None:
        self._activities: dict[str, Activity] = {}
        self._sequences: dict[str, ActivitySequence] = {}
        self._lock = threading.RLock()

    # Activities

    def put(self, activity: Activity) -> None:
        with self._lock:
            self._activities[activity.id] = activity

    def get(self, activity_id: str) -> Activity | None:
        with self._lock:
            return self._activities.get(activity_id)

    def remove(self, activity_id: str) -> Activity | None:
        with self._lock:
            return self._activities.pop(activity_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._activities)

    # Sequences

    def put_sequence(self, sequence: ActivitySequence) -> None:
        with self._lock:
            self._sequences[sequence.id] = sequence

    def get_sequence(self, sequence_id: str) -> ActivitySequence | None:
        with self._lock:
            return self._sequences.get(sequence_id)

    def sequences(self, *, active_only: bool = False) -> list[ActivitySequence]:
        with self._lock:
            items = list(self._sequences.values())
        if active_only:
            items = [s for s in items if s.is_active]
        return items

    def clear(self) -> None:
        with self._lock:
            self._activities.clear()
            self._sequences.clear()
