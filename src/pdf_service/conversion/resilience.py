"""Circuit breaker guarding calls to the document source."""

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

import structlog

from .errors import CircuitOpen

logger = structlog.get_logger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    reset_timeout: float = 15.0


class CircuitBreaker:
    """Consecutive-failure circuit breaker.

    Created once and shared by every fetcher that should trip together.
    Callers wrap each attempt as:

        breaker.before_call()      # raises CircuitOpen while open
        ... do the call ...
        breaker.record_success() / breaker.record_failure()

    Thread-safe, since downloads run on worker threads.
    """

    def __init__(
        self,
        name: str = "source",
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at: float | None = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._current_state()

    def _current_state(self) -> CircuitState:
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if self._clock() - self._opened_at >= self.config.reset_timeout:
                self._state = CircuitState.HALF_OPEN
                self._trial_in_flight = False
                logger.info("circuit half-open", circuit=self.name)
        return self._state

    def _remaining(self) -> float:
        if self._opened_at is None:
            return 0.0
        return max(0.0, self.config.reset_timeout - (self._clock() - self._opened_at))

    def before_call(self) -> None:
        with self._lock:
            state = self._current_state()
            if state == CircuitState.OPEN:
                raise CircuitOpen(retry_after=self._remaining())
            if state == CircuitState.HALF_OPEN:
                # one trial request at a time
                if self._trial_in_flight:
                    raise CircuitOpen(retry_after=self.config.reset_timeout)
                self._trial_in_flight = True

    def record_success(self) -> None:
        with self._lock:
            if self._state != CircuitState.CLOSED:
                logger.info("circuit closed", circuit=self.name)
            self._state = CircuitState.CLOSED
            self._failures = 0
            self._opened_at = None
            self._trial_in_flight = False

    def record_failure(self) -> None:
        with self._lock:
            state = self._current_state()
            self._failures += 1
            if state == CircuitState.HALF_OPEN or self._failures >= self.config.failure_threshold:
                self._trip()

    def _trip(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._trial_in_flight = False
        logger.warning(
            "circuit opened",
            circuit=self.name,
            failures=self._failures,
            reset_timeout=self.config.reset_timeout,
        )

    def snapshot(self) -> dict[str, object]:
        with self._lock:
            state = self._current_state()
            return {
                "name": self.name,
                "state": state.value,
                "failures": self._failures,
                "retry_after": round(self._remaining(), 3) if state == CircuitState.OPEN else 0.0,
            }
