"""Shared fixtures for pdf_service tests."""

import pytest

from pdf_service.conversion import CircuitBreaker, CircuitBreakerConfig


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    """Breaker with the production thresholds: 5 failures, 15 second break."""
    return CircuitBreaker("test", CircuitBreakerConfig(failure_threshold=5, reset_timeout=15.0), clock=clock)
