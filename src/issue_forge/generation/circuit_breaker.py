"""Circuit breaker guarding calls to the external generation agent."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_THRESHOLD = 3
DEFAULT_RESET_TIMEOUT_SECONDS = 30.0


class CircuitState(str, Enum):
    """Gate states of the breaker."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True, slots=True)
class CircuitSnapshot:
    """Read-only view of breaker state."""

    state: CircuitState
    consecutive_failures: int
    last_failure_at: float | None
    failure_threshold: int
    reset_timeout_seconds: float

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN


class CircuitBreaker:
    """Consecutive-failure breaker with timed half-open probing.

    Non-positive configuration falls back to defaults so the breaker can never be
    permanently open because of a bad setting.
    """

    def __init__(
        self,
        *,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        reset_timeout_seconds: float = DEFAULT_RESET_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.failure_threshold = (
            failure_threshold if failure_threshold > 0 else DEFAULT_FAILURE_THRESHOLD
        )
        self.reset_timeout_seconds = (
            reset_timeout_seconds if reset_timeout_seconds > 0 else DEFAULT_RESET_TIMEOUT_SECONDS
        )
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._last_failure_at: float | None = None

    def allow_request(self) -> bool:
        """Return whether a call may proceed, moving OPEN to HALF_OPEN after the timeout."""

        with self._lock:
            if self._state != CircuitState.OPEN:
                return True
            if self._reset_timeout_elapsed():
                self._state = CircuitState.HALF_OPEN
                logger.info("Circuit breaker transitioning to half-open")
                return True
            return False

    def record_success(self) -> None:
        with self._lock:
            self._consecutive_failures = 0
            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.CLOSED
                logger.info("Circuit breaker closed after successful request")

    def record_failure(self) -> bool:
        """Count a failure; return True when this failure opened the breaker."""

        with self._lock:
            self._consecutive_failures += 1
            self._last_failure_at = self._clock()

            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN
                logger.warning("Circuit breaker re-opened after half-open failure")
                return True

            if (
                self._state == CircuitState.CLOSED
                and self._consecutive_failures >= self.failure_threshold
            ):
                self._state = CircuitState.OPEN
                logger.warning(
                    "Circuit breaker opened: failures=%d threshold=%d",
                    self._consecutive_failures,
                    self.failure_threshold,
                )
                return True
            return False

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
            self._last_failure_at = None

    def is_open(self) -> bool:
        with self._lock:
            return self._state == CircuitState.OPEN

    def get_state(self) -> CircuitSnapshot:
        with self._lock:
            return CircuitSnapshot(
                state=self._state,
                consecutive_failures=self._consecutive_failures,
                last_failure_at=self._last_failure_at,
                failure_threshold=self.failure_threshold,
                reset_timeout_seconds=self.reset_timeout_seconds,
            )

    def _reset_timeout_elapsed(self) -> bool:
        if self._last_failure_at is None:
            return True
        return self._clock() - self._last_failure_at >= self.reset_timeout_seconds
