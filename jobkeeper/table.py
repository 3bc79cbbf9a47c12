"""
In-memory scheduling state.

Tracks the live timer for each scheduled job name and the names whose
removal is in progress. Only the keeper mutates this table.
"""

import threading
from enum import Enum
from typing import Dict, List, Optional, Set

from jobkeeper.timers import TimerHandle


class JobState(Enum):
    ABSENT = "absent"
    SCHEDULED = "scheduled"
    CANCELLING = "cancelling"


class SchedulingTable:
    """
    Scheduling table plus cancellation set.

    A name is CANCELLING while its removal is in flight (this wins over a
    live timer), SCHEDULED while it has a live timer, and ABSENT otherwise.
    A single lock serializes both maps since firings arrive on timer
    threads.
    """

    def __init__(self):
        self._timers: Dict[str, TimerHandle] = {}
        self._cancelling: Set[str] = set()
        self._lock = threading.RLock()

    def install(self, name: str, handle: TimerHandle):
        with self._lock:
            self._timers[name] = handle

    def handle(self, name: str) -> Optional[TimerHandle]:
        with self._lock:
            return self._timers.get(name)

    def has_timer(self, name: str) -> bool:
        with self._lock:
            return name in self._timers

    def pop(self, name: str) -> Optional[TimerHandle]:
        """Remove and return the timer handle for ``name``, if any."""
        with self._lock:
            return self._timers.pop(name, None)

    def mark_cancelling(self, name: str):
        with self._lock:
            self._cancelling.add(name)

    def is_cancelling(self, name: str) -> bool:
        with self._lock:
            return name in self._cancelling

    def clear_cancelling(self, name: str):
        with self._lock:
            self._cancelling.discard(name)

    def state(self, name: str) -> JobState:
        with self._lock:
            if name in self._cancelling:
                return JobState.CANCELLING
            if name in self._timers:
                return JobState.SCHEDULED
            return JobState.ABSENT

    def names(self) -> List[str]:
        """Names with a live timer."""
        with self._lock:
            return list(self._timers)

    @property
    def lock(self) -> threading.RLock:
        return self._lock
