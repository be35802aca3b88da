"""Circuit breaker wrapping calls to remote backends."""

from __future__ import annotations

import functools
import logging
import threading
import time
from typing import Any, Callable

from .constants import BREAKER_FAILURE_THRESHOLD, BREAKER_RESET_TIMEOUT_SECONDS
from .errors import CircuitOpenError

logger = logging.getLogger(__name__)

Fallback = Callable[[BaseException], Any]


class CircuitBreaker:
    """Counts consecutive failures and short-circuits once a threshold trips.

    After ``reset_timeout`` seconds in the open state a single trial call is
    let through (half-open) while other callers are still refused. Success
    closes the circuit; failure re-opens it.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = BREAKER_FAILURE_THRESHOLD,
        reset_timeout: float = BREAKER_RESET_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._failures = 0
        self._opened_at: float | None = None
        self._trial_in_flight = False

    @property
    def failures(self) -> int:
        return self._failures

    @property
    def state(self) -> str:
        with self._lock:
            return self._state()

    @property
    def is_open(self) -> bool:
        return self.state == "open"

    def _state(self) -> str:
        if self._opened_at is None:
            return "closed"
        if self._clock() - self._opened_at >= self.reset_timeout:
            return "half_open"
        return "open"

    def reset(self) -> None:
        with self._lock:
            self._failures = 0
            self._opened_at = None
            self._trial_in_flight = False

    def _admit(self) -> bool:
        with self._lock:
            state = self._state()
            if state == "closed":
                return True
            if state == "half_open" and not self._trial_in_flight:
                self._trial_in_flight = True
                return True
            return False

    def _record_success(self) -> None:
        with self._lock:
            if self._opened_at is not None:
                logger.info("Circuit breaker '%s' closed", self.name)
            self._failures = 0
            self._opened_at = None
            self._trial_in_flight = False

    def _record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            half_open = self._state() == "half_open"
            self._trial_in_flight = False
            if half_open or self._failures >= self.failure_threshold:
                self._opened_at = self._clock()
                logger.error(
                    "Circuit breaker '%s' opened | failures=%d | threshold=%d",
                    self.name,
                    self._failures,
                    self.failure_threshold,
                )

    def call(self, func: Callable[..., Any], *args, fallback: Fallback | None = None, **kwargs) -> Any:
        """Invoke ``func`` through the breaker.

        With a ``fallback`` the breaker never raises: an open circuit or a
        failing call returns ``fallback(exc)``. Without one, a refused call
        raises CircuitOpenError and call failures propagate.
        """
        if not self._admit():
            exc = CircuitOpenError(self.name)
            if fallback is None:
                raise exc
            return fallback(exc)

        try:
            result = func(*args, **kwargs)
        except Exception as exc:
            self._record_failure()
            if fallback is None:
                raise
            return fallback(exc)

        self._record_success()
        return result


def circuit_breaker(breaker: CircuitBreaker, fallback: Fallback | None = None):
    """Decorator form of CircuitBreaker.call."""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            return breaker.call(func, *args, fallback=fallback, **kwargs)

        return wrapper

    return decorator
