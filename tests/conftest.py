from __future__ import annotations

import pytest

from throttle.config import LimiterConfig
from throttle.security.rate_limiter import SlidingWindowRateLimiter


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self.start = start_ms
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def set(self, offset_ms: int) -> None:
        self.now = self.start + offset_ms

    def advance(self, delta_ms: int) -> None:
        self.now += delta_ms


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def limiter(clock: FakeClock) -> SlidingWindowRateLimiter:
    """Limiter with the reference window and capacity driven by a fake clock."""
    return SlidingWindowRateLimiter(LimiterConfig(window_ms=10_000, store_capacity=500), clock=clock)
