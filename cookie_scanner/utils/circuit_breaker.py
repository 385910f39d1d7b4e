"""
Count-based circuit breaker for flaky upstream calls.

The breaker records the outcome of the last ``window_size`` calls.
Once at least ``minimum_calls`` outcomes are recorded and the failure
rate reaches ``failure_rate_threshold`` percent, it opens: calls are
rejected with :class:`~cookie_scanner.utils.errors.CircuitOpenError`
without running.  After ``open_seconds`` the breaker goes half-open
and lets ``half_open_calls`` trial calls through; a failing trial
reopens it, and enough successful trials close it again.

A single instance is shared by every concurrent scan in the process.
State changes happen between awaits only, and a lock guards them for
callers on other threads.
"""

from __future__ import annotations

import collections
import dataclasses
import threading
import time
from collections.abc import Awaitable, Callable
from typing import Literal, TypeVar

from cookie_scanner.utils import errors, logger

log = logger.create_logger("CircuitBreaker")

T = TypeVar("T")

BreakerState = Literal["CLOSED", "OPEN", "HALF_OPEN"]


@dataclasses.dataclass(frozen=True)
class CircuitBreakerConfig:
    """Thresholds for a :class:`CircuitBreaker`."""

    failure_rate_threshold: float = 60.0
    window_size: int = 10
    minimum_calls: int = 5
    open_seconds: float = 20.0
    half_open_calls: int = 3


class CircuitBreaker:
    """Rolling-window failure-rate circuit breaker."""

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self._config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._outcomes: collections.deque[bool] = collections.deque(maxlen=max(self._config.window_size, 1))
        self._state: BreakerState = "CLOSED"
        self._opened_at = 0.0
        self._half_open_in_flight = 0
        self._half_open_successes = 0

    @property
    def state(self) -> BreakerState:
        """Current state, promoting OPEN to HALF_OPEN once the cool-down has elapsed."""
        with self._lock:
            self._maybe_half_open()
            return self._state

    def failure_rate(self) -> float:
        """Failure percentage over the recorded window (0 when empty)."""
        with self._lock:
            return self._failure_rate()

    def _failure_rate(self) -> float:
        if not self._outcomes:
            return 0.0
        failures = sum(1 for ok in self._outcomes if not ok)
        return failures * 100.0 / len(self._outcomes)

    def _maybe_half_open(self) -> None:
        if self._state == "OPEN" and self._clock() - self._opened_at >= self._config.open_seconds:
            self._state = "HALF_OPEN"
            self._half_open_in_flight = 0
            self._half_open_successes = 0
            log.info("Circuit half-open, allowing trial calls", {"breaker": self.name})

    def _transition_open(self) -> None:
        self._state = "OPEN"
        self._opened_at = self._clock()
        self._outcomes.clear()
        log.warn(
            "Circuit opened",
            {"breaker": self.name, "openSeconds": self._config.open_seconds},
        )

    def _acquire_permission(self) -> None:
        """Raise :class:`CircuitOpenError` unless a call may proceed now."""
        with self._lock:
            self._maybe_half_open()
            if self._state == "OPEN":
                remaining = self._config.open_seconds - (self._clock() - self._opened_at)
                raise errors.CircuitOpenError(self.name, max(remaining, 0.0))
            if self._state == "HALF_OPEN":
                if self._half_open_in_flight >= self._config.half_open_calls:
                    raise errors.CircuitOpenError(self.name, 0.0)
                self._half_open_in_flight += 1

    def record_success(self) -> None:
        with self._lock:
            if self._state == "HALF_OPEN":
                self._half_open_in_flight = max(self._half_open_in_flight - 1, 0)
                self._half_open_successes += 1
                if self._half_open_successes >= self._config.half_open_calls:
                    self._state = "CLOSED"
                    self._outcomes.clear()
                    log.success("Circuit closed", {"breaker": self.name})
                return
            self._outcomes.append(True)

    def record_failure(self) -> None:
        with self._lock:
            if self._state == "HALF_OPEN":
                self._half_open_in_flight = max(self._half_open_in_flight - 1, 0)
                self._transition_open()
                return
            self._outcomes.append(False)
            if (
                len(self._outcomes) >= self._config.minimum_calls
                and self._failure_rate() >= self._config.failure_rate_threshold
            ):
                self._transition_open()

    def _release_trial(self) -> None:
        with self._lock:
            if self._state == "HALF_OPEN":
                self._half_open_in_flight = max(self._half_open_in_flight - 1, 0)

    async def call(
        self,
        fn: Callable[[], Awaitable[T]],
        *,
        record: Callable[[BaseException], bool] | None = None,
    ) -> T:
        """Run *fn* through the breaker.

        Args:
            fn: The guarded coroutine factory.
            record: Optional predicate deciding whether an error
                counts as a failure.  Errors it rejects still
                propagate but leave the window untouched.
        """
        self._acquire_permission()
        try:
            result = await fn()
        except Exception as error:
            if record is None or record(error):
                self.record_failure()
            else:
                self.record_success()
            raise
        except BaseException:
            # Cancelled: no outcome, but the trial slot is freed.
            self._release_trial()
            raise
        self.record_success()
        return result

    def reset(self) -> None:
        """Force the breaker back to CLOSED with an empty window."""
        with self._lock:
            self._state = "CLOSED"
            self._outcomes.clear()
            self._half_open_in_flight = 0
            self._half_open_successes = 0
