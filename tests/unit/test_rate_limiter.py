"""
Unit tests for the adaptive rate controller.
"""

import random

import pytest

from pageharvest.config import RateLimitConfig
from pageharvest.crawler.rate_limiter import RateController, RateControllerState
from pageharvest.protocols import PageOutcome
from tests.helpers import FixedJitter


class TestRateController:
    @pytest.fixture
    def controller(self):
        return RateController(RateLimitConfig())

    def test_initial_delay_is_base_delay(self, controller):
        delay, state = controller.next_delay(controller.initial_state(), FixedJitter())
        assert delay == pytest.approx(2.0)
        assert state.current_delay == 2.0

    def test_rate_limit_doubles_delay_once(self, controller):
        state = controller.record_outcome(controller.initial_state(), PageOutcome.RATE_LIMITED)
        assert state.rate_limited

        delay, state = controller.next_delay(state, FixedJitter())
        assert delay == pytest.approx(4.0)
        assert not state.rate_limited

    def test_failures_grow_delay_from_base(self, controller):
        state = controller.initial_state()
        for _ in range(3):
            state = controller.record_outcome(state, PageOutcome.TRANSPORT_ERROR)
        delay, state = controller.next_delay(state, FixedJitter())
        assert delay == pytest.approx(2.0 * 1.5**3)

    def test_success_streak_decays_toward_minimum(self, controller):
        state = RateControllerState(current_delay=10.0, success_streak=6)
        _, state = controller.next_delay(state, FixedJitter())
        assert state.current_delay == pytest.approx(9.0)

        state = RateControllerState(current_delay=1.05, success_streak=50)
        _, state = controller.next_delay(state, FixedJitter())
        assert state.current_delay == 1.0

    def test_no_decay_until_threshold_exceeded(self, controller):
        state = RateControllerState(current_delay=10.0, success_streak=5)
        _, state = controller.next_delay(state, FixedJitter())
        assert state.current_delay == 10.0

    def test_success_resets_failure_streak(self, controller):
        state = RateControllerState(current_delay=5.0, failure_streak=4)
        state = controller.record_outcome(state, PageOutcome.SUCCESS)
        assert state.failure_streak == 0
        assert state.success_streak == 1

    def test_empty_page_counts_as_failure(self, controller):
        state = controller.record_outcome(controller.initial_state(), PageOutcome.EMPTY)
        assert state.failure_streak == 1
        assert not state.rate_limited

    def test_delay_stays_within_bounds_for_any_outcome_sequence(self, controller):
        cfg = controller.config
        rng = random.Random(1234)
        outcomes = list(PageOutcome)
        state = controller.initial_state()

        for _ in range(2000):
            delay, state = controller.next_delay(state, rng)
            assert cfg.min_delay <= state.current_delay <= cfg.max_delay
            assert cfg.min_delay * cfg.jitter_low <= delay <= cfg.max_delay * cfg.jitter_high
            state = controller.record_outcome(state, rng.choice(outcomes))

    def test_jitter_applies_to_returned_delay_only(self, controller):
        rng = random.Random(7)
        delays = set()
        state = controller.initial_state()
        for _ in range(20):
            delay, state = controller.next_delay(state, rng)
            delays.add(round(delay, 6))
            assert state.current_delay == 2.0
        assert len(delays) > 1

    def test_restore_clamps_persisted_delay(self, controller):
        restored = controller.restore(RateControllerState(current_delay=500.0, failure_streak=2))
        assert restored.current_delay == 30.0
        assert restored.failure_streak == 2

    def test_retry_backoff_is_capped(self, controller):
        assert controller.retry_backoff(1) == 4.0
        assert controller.retry_backoff(2) == 8.0
        assert controller.retry_backoff(10) == 30.0

    def test_state_round_trips_through_dict(self):
        state = RateControllerState(current_delay=3.5, success_streak=1, failure_streak=0, rate_limited=True)
        assert RateControllerState.from_dict(state.to_dict()) == state
