"""Wall-clock budget for a single run."""

from __future__ import annotations

import math
import time
from typing import Callable, Optional


class Budget:
    """A deadline measured on a monotonic clock. ``seconds=None`` never expires."""

    def __init__(self, seconds: Optional[float], clock: Callable[[], float] = time.monotonic):
        if seconds is not None and seconds < 0:
            raise ValueError("budget seconds must be >= 0")
        self._clock = clock
        self.seconds = seconds
        self.deadline = None if seconds is None else clock() + seconds

    @classmethod
    def unlimited(cls, clock: Callable[[], float] = time.monotonic) -> Budget:
        return cls(None, clock=clock)

    def remaining(self) -> float:
        if self.deadline is None:
            return math.inf
        return max(0.0, self.deadline - self._clock())

    @property
    def expired(self) -> bool:
        return self.deadline is not None and self._clock() >= self.deadline

    def __repr__(self) -> str:
        return f"Budget(seconds={self.seconds!r}, remaining={self.remaining():.1f})"
