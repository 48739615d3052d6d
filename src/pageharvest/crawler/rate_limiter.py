"""
Adaptive Rate Controller

Pure state machine that decides how long to wait before the next page request,
based on the recent success/failure pattern. No I/O and no clock: callers own
the sleeping, which keeps every transition deterministic and testable.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, Tuple

from pageharvest.config import RateLimitConfig
from pageharvest.protocols import PageOutcome


@dataclass(frozen=True)
class RateControllerState:
    """Delay and streak bookkeeping carried between requests."""

    current_delay: float
    success_streak: int = 0
    failure_streak: int = 0
    rate_limited: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_delay": self.current_delay,
            "success_streak": self.success_streak,
            "failure_streak": self.failure_streak,
            "rate_limited": self.rate_limited,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> RateControllerState:
        return cls(
            current_delay=float(data["current_delay"]),
            success_streak=int(data.get("success_streak", 0)),
            failure_streak=int(data.get("failure_streak", 0)),
            rate_limited=bool(data.get("rate_limited", False)),
        )


class RateController:
    """
    Computes request delays from observed outcomes.

    - rate-limited responses double the current delay once
    - failures grow the delay exponentially from the base delay
    - long success streaks decay it gently toward the minimum
    - the returned delay is jittered, the stored one is not
    """

    def __init__(self, config: Optional[RateLimitConfig] = None):
        self.config = config or RateLimitConfig()

    def initial_state(self) -> RateControllerState:
        return RateControllerState(current_delay=self.config.base_delay)

    def clamp(self, delay: float) -> float:
        return min(max(delay, self.config.min_delay), self.config.max_delay)

    def restore(self, state: RateControllerState) -> RateControllerState:
        """Re-clamp a persisted state against the active configuration."""
        return replace(state, current_delay=self.clamp(state.current_delay))

    def next_delay(
        self, state: RateControllerState, rng: Optional[random.Random] = None
    ) -> Tuple[float, RateControllerState]:
        """Return the jittered delay to wait now and the state to carry forward."""
        cfg = self.config
        delay = state.current_delay
        rate_limited = state.rate_limited

        if rate_limited:
            delay = min(state.current_delay * 2, cfg.max_delay)
            rate_limited = False
        elif state.failure_streak > 0:
            delay = min(cfg.base_delay * cfg.growth_factor**state.failure_streak, cfg.max_delay)
        elif state.success_streak > cfg.success_threshold:
            delay = max(state.current_delay * cfg.decay_factor, cfg.min_delay)

        delay = self.clamp(delay)
        jitter = (rng or random).uniform(cfg.jitter_low, cfg.jitter_high)
        return delay * jitter, replace(state, current_delay=delay, rate_limited=rate_limited)

    def record_outcome(self, state: RateControllerState, outcome: PageOutcome) -> RateControllerState:
        if outcome is PageOutcome.SUCCESS:
            return replace(state, success_streak=state.success_streak + 1, failure_streak=0)
        return replace(
            state,
            success_streak=0,
            failure_streak=state.failure_streak + 1,
            rate_limited=state.rate_limited or outcome is PageOutcome.RATE_LIMITED,
        )

    def retry_backoff(self, attempt: int) -> float:
        """Exponential backoff for the ``attempt``-th retry of the same page."""
        return min(self.config.base_delay * 2**attempt, self.config.max_delay)
