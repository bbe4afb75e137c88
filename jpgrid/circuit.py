"""Consecutive-failure circuit breaker shared across fetch invocations."""

from __future__ import annotations

import enum
import logging
import threading
import time
from typing import Callable, TypeVar

from .errors import CircuitOpenError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class BreakerState(str, enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Reject calls after `failure_threshold` consecutive failures until `cooldown` elapses.

    The open → half-open transition is evaluated lazily when a call arrives. In
    half-open only a single trial runs; concurrent callers are rejected until it
    settles. The wrapped function always runs outside the lock.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        cooldown: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        name: str = "upstream",
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if cooldown < 0:
            raise ValueError("cooldown must be non-negative")
        self.failure_threshold = failure_threshold
        self.cooldown = cooldown
        self.name = name
        self._clock = clock
        self._lock = threading.Lock()
        self._state = BreakerState.CLOSED
        self._failures = 0
        self._last_failure = 0.0
        self._trial_in_flight = False

    @property
    def state(self) -> BreakerState:
        with self._lock:
            self._refresh()
            return self._state

    @property
    def failures(self) -> int:
        with self._lock:
            return self._failures

    def _refresh(self) -> None:
        if self._state is BreakerState.OPEN and self._clock() - self._last_failure >= self.cooldown:
            self._state = BreakerState.HALF_OPEN
            self._trial_in_flight = False
            LOGGER.info("Circuit %s half-open; allowing a trial call", self.name)

    def _acquire(self) -> None:
        with self._lock:
            self._refresh()
            if self._state is BreakerState.OPEN:
                remaining = self.cooldown - (self._clock() - self._last_failure)
                raise CircuitOpenError(max(0.0, remaining))
            if self._state is BreakerState.HALF_OPEN:
                if self._trial_in_flight:
                    raise CircuitOpenError(0.0)
                self._trial_in_flight = True

    def _on_success(self) -> None:
        with self._lock:
            if self._state is not BreakerState.CLOSED:
                LOGGER.info("Circuit %s closed after successful trial", self.name)
            self._state = BreakerState.CLOSED
            self._failures = 0
            self._trial_in_flight = False

    def _on_failure(self) -> None:
        with self._lock:
            self._last_failure = self._clock()
            if self._state is BreakerState.HALF_OPEN:
                self._state = BreakerState.OPEN
                self._trial_in_flight = False
                LOGGER.warning("Circuit %s re-opened after failed trial", self.name)
                return
            self._failures += 1
            if self._failures >= self.failure_threshold:
                self._state = BreakerState.OPEN
                LOGGER.warning(
                    "Circuit %s opened after %d consecutive failures", self.name, self._failures
                )

    def call(self, fn: Callable[..., T], *args, **kwargs) -> T:
        self._acquire()
        try:
            result = fn(*args, **kwargs)
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def reset(self) -> None:
        with self._lock:
            self._state = BreakerState.CLOSED
            self._failures = 0
            self._last_failure = 0.0
            self._trial_in_flight = False
