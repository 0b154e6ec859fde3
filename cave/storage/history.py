from __future__ import annotations

import math
import threading
from collections import deque
from datetime import datetime, timedelta
from typing import Deque, Optional, Tuple

from ..domain.errors import ConfigError
from ..domain.models import ControlDecision


def retention_capacity(retention: timedelta, sample_interval: timedelta) -> int:
    """Number of entries needed to cover `retention` at one per `sample_interval`."""
    if sample_interval <= timedelta(0):
        raise ConfigError(f"sample_interval must be > 0, got {sample_interval}")
    if retention <= timedelta(0):
        raise ConfigError(f"retention must be > 0, got {retention}")
    return math.ceil(retention / sample_interval)


class HistoryStore:
    """
    Bounded, time-ordered ring buffer of control decisions.

    One writer (the control loop) appends; any number of readers take
    snapshots. The lock only guards the O(1) append and the O(n) copy, so a
    reader rendering a snapshot never holds up the writer. Decisions are
    frozen, so a snapshot can never expose a half-built entry.
    """

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ConfigError(f"History capacity must be > 0, got {capacity}")
        self._capacity = capacity
        self._buf: Deque[ControlDecision] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    @classmethod
    def from_retention(cls, retention: timedelta, sample_interval: timedelta) -> "HistoryStore":
        return cls(retention_capacity(retention, sample_interval))

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        with self._lock:
            return len(self._buf)

    def append(self, decision: ControlDecision) -> None:
        """Add a decision, evicting the oldest one when full."""
        with self._lock:
            if self._buf and decision.timestamp.monotonic < self._buf[-1].timestamp.monotonic:
                raise ValueError(
                    "Decision is older than the newest stored entry "
                    f"({decision.timestamp.ts_utc.isoformat()} < {self._buf[-1].timestamp.ts_utc.isoformat()})"
                )
            self._buf.append(decision)

    def snapshot(self) -> Tuple[ControlDecision, ...]:
        with self._lock:
            return tuple(self._buf)

    def snapshot_since(self, since: datetime) -> Tuple[ControlDecision, ...]:
        """Decisions stamped strictly after `since` (wall clock), oldest first."""
        return tuple(d for d in self.snapshot() if d.timestamp.ts_utc > since)

    def latest(self) -> Optional[ControlDecision]:
        with self._lock:
            return self._buf[-1] if self._buf else None
