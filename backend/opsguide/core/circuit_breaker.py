"""
Circuit breaker for external dependencies (LLM provider, operational API).

Policy:
- Opens when the error rate over the sliding window reaches the threshold
  (only once at least `min_requests_for_threshold` calls were recorded)
- Stays open for `open_duration_seconds`, rejecting calls immediately
- Half-open lets a fraction of calls through; 3 successes out of 5 probes
  close it again, otherwise it reopens

The breaker never retries. A rejected call raises CircuitBreakerOpenError and
the caller decides how to degrade.
"""
import time
from collections import deque
from enum import Enum
from threading import Lock
from typing import Any, Callable, Deque, Optional, Tuple

from opsguide.core.logging import get_logger

logger = get_logger(__name__)

HALF_OPEN_PROBES = 5
HALF_OPEN_SUCCESSES_TO_CLOSE = 3


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpenError(Exception):
    """Raised when the breaker rejects a call."""


class CircuitBreaker:
    """Error-rate circuit breaker shared by sync and async callers."""

    def __init__(
        self,
        name: str,
        failure_threshold: float = 0.5,
        time_window_seconds: int = 60,
        open_duration_seconds: int = 30,
        half_open_test_percentage: float = 0.1,
        min_requests_for_threshold: int = 10,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.time_window_seconds = time_window_seconds
        self.open_duration_seconds = open_duration_seconds
        self.half_open_test_percentage = half_open_test_percentage
        self.min_requests_for_threshold = min_requests_for_threshold

        self._state = CircuitState.CLOSED
        self._lock = Lock()
        self._window: Deque[Tuple[float, bool]] = deque()
        self._opened_at: Optional[float] = None
        self._half_open_seen = 0
        self._probe_successes = 0
        self._probe_failures = 0

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._refresh(time.time())
            return self._state

    def _trim_window(self, now: float) -> None:
        cutoff = now - self.time_window_seconds
        while self._window and self._window[0][0] < cutoff:
            self._window.popleft()

    def _error_rate(self) -> float:
        if not self._window:
            return 0.0
        failures = sum(1 for _, ok in self._window if not ok)
        return failures / len(self._window)

    def _open(self, now: float, event: str, **fields: Any) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = now
        logger.warning(event, circuit_breaker=self.name, **fields)

    def _refresh(self, now: float) -> None:
        """Apply time- and window-based transitions. Caller holds the lock."""
        self._trim_window(now)

        if self._state == CircuitState.OPEN:
            if self._opened_at is not None and now - self._opened_at >= self.open_duration_seconds:
                self._state = CircuitState.HALF_OPEN
                self._half_open_seen = 0
                self._probe_successes = 0
                self._probe_failures = 0
                logger.info("circuit_breaker_half_open", circuit_breaker=self.name)
        elif self._state == CircuitState.CLOSED:
            if len(self._window) >= self.min_requests_for_threshold:
                error_rate = self._error_rate()
                if error_rate >= self.failure_threshold:
                    self._open(
                        now,
                        "circuit_breaker_opened",
                        error_rate=error_rate,
                        total=len(self._window),
                    )

    def _admit(self) -> None:
        """Raise CircuitBreakerOpenError unless the call may proceed."""
        with self._lock:
            self._refresh(time.time())
            if self._state == CircuitState.OPEN:
                raise CircuitBreakerOpenError(
                    f"Circuit breaker {self.name} is OPEN. Service unavailable."
                )
            if self._state == CircuitState.HALF_OPEN:
                self._half_open_seen += 1
                every = max(1, int(round(1 / self.half_open_test_percentage)))
                if self._half_open_seen % every != 0:
                    raise CircuitBreakerOpenError(
                        f"Circuit breaker {self.name} is HALF_OPEN. Skipping test request."
                    )

    def _record(self, success: bool) -> None:
        now = time.time()
        with self._lock:
            if self._state != CircuitState.HALF_OPEN:
                self._window.append((now, success))
                return

            if success:
                self._probe_successes += 1
            else:
                self._probe_failures += 1

            if self._probe_successes + self._probe_failures < HALF_OPEN_PROBES:
                return

            if self._probe_successes >= HALF_OPEN_SUCCESSES_TO_CLOSE:
                self._state = CircuitState.CLOSED
                self._opened_at = None
                self._window.clear()
                logger.info(
                    "circuit_breaker_closed",
                    circuit_breaker=self.name,
                    success_count=self._probe_successes,
                    failure_count=self._probe_failures,
                )
            else:
                self._open(
                    now,
                    "circuit_breaker_reopened",
                    success_count=self._probe_successes,
                    failure_count=self._probe_failures,
                )

    def call(self, func: Callable, *args, **kwargs) -> Any:
        """Run a sync callable under breaker protection."""
        self._admit()
        try:
            result = func(*args, **kwargs)
        except Exception:
            self._record(False)
            raise
        self._record(True)
        return result

    async def call_async(self, func: Callable, *args, **kwargs) -> Any:
        """Await an async callable under breaker protection."""
        self._admit()
        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._record(False)
            raise
        self._record(True)
        return result

    def get_metrics(self) -> dict:
        """Snapshot for health reporting."""
        with self._lock:
            self._refresh(time.time())
            failures = sum(1 for _, ok in self._window if not ok)
            return {
                "name": self.name,
                "state": self._state.value,
                "recent_requests": len(self._window),
                "recent_failures": failures,
                "error_rate": self._error_rate(),
                "opened_at": self._opened_at,
            }
