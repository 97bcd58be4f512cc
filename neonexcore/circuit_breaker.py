"""Circuit breaker that stops calls to a failing dependency for a while."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable


class CircuitBreakerState(str, Enum):
    """State of a circuit breaker."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Thresholds for a circuit breaker; the timeout is in seconds."""

    failure_threshold: int = 5
    success_threshold: int = 2
    timeout: float = 60.0
    half_open_requests: int = 3


class CircuitBreaker:
    """Opens after repeated failures and probes again after a timeout.

    ``clock`` returns monotonic seconds and is used for the timeout.
    """

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config if config is not None else CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: datetime | None = None
        self._last_state_change = datetime.now().astimezone()
        self._changed_at = clock()

    def _change_state(self, state: CircuitBreakerState) -> None:
        self._state = state
        self._last_state_change = datetime.now().astimezone()
        self._changed_at = self._clock()

    def is_open(self) -> bool:
        """Whether calls are blocked; an expired open state turns half-open."""
        with self._lock:
            if self._state is not CircuitBreakerState.OPEN:
                return False
            if self._clock() - self._changed_at >= self.config.timeout:
                self._success_count = 0
                self._failure_count = 0
                self._change_state(CircuitBreakerState.HALF_OPEN)
                return False
            return True

    def record_success(self) -> None:
        with self._lock:
            if self._state is CircuitBreakerState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.config.success_threshold:
                    self._failure_count = 0
                    self._success_count = 0
                    self._change_state(CircuitBreakerState.CLOSED)
            elif self._state is CircuitBreakerState.CLOSED:
                self._failure_count = 0

    def record_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = datetime.now().astimezone()
            if self._state is CircuitBreakerState.HALF_OPEN:
                self._change_state(CircuitBreakerState.OPEN)
            elif self._state is CircuitBreakerState.CLOSED:
                if self._failure_count >= self.config.failure_threshold:
                    self._change_state(CircuitBreakerState.OPEN)

    def get_state(self) -> CircuitBreakerState:
        with self._lock:
            return self._state

    def get_metrics(self) -> dict[str, Any]:
        """Current state, counters and timing information."""
        with self._lock:
            return {
                "state": self._state,
                "failure_count": self._failure_count,
                "success_count": self._success_count,
                "last_failure_time": self._last_failure_time,
                "last_state_change": self._last_state_change,
                "time_in_state": self._clock() - self._changed_at,
            }

    def reset(self) -> None:
        """Return to the closed state with cleared counters."""
        with self._lock:
            self._failure_count = 0
            self._success_count = 0
            self._change_state(CircuitBreakerState.CLOSED)