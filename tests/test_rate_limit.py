"""Tests for the sliding window rate limiter."""
from __future__ import annotations

import pytest

from isbnscout.rate_limit import SlidingWindowRateLimiter


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.unit
class TestSlidingWindowRateLimiter:
    def test_blocks_after_limit(self):
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(3, 60, clock=clock)

        assert [limiter.allow("1.2.3.4") for _ in range(4)] == [True, True, True, False]
        assert limiter.allow("5.6.7.8")

    def test_window_slides(self):
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(2, 60, clock=clock)
        limiter.allow("k")
        clock.now += 30
        limiter.allow("k")

        assert not limiter.allow("k")
        assert limiter.retry_after("k") == 30.0

        clock.now += 30
        assert limiter.allow("k")

    def test_retry_after_when_not_limited(self):
        limiter = SlidingWindowRateLimiter(2, 60, clock=FakeClock())
        assert limiter.retry_after("k") == 0.0
        limiter.allow("k")
        assert limiter.retry_after("k") == 0.0

    def test_reset(self):
        limiter = SlidingWindowRateLimiter(1, 60, clock=FakeClock())
        limiter.allow("k")
        limiter.reset()
        assert limiter.allow("k")
