"""Circuit breaker guarding container engine calls.

CLOSED passes calls through and counts consecutive outage failures.
Reaching failure_threshold opens the circuit. An OPEN circuit rejects
calls until `timeout` seconds have passed since it opened, then admits
trial calls as HALF_OPEN: success_threshold trial successes close it,
a single trial failure opens it again.

Usage:
    breaker = get_circuit_breaker("docker", is_outage=is_engine_outage)
    state = await breaker.call(lambda: containers.inspect(name))
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TypeVar

from gamehub.logging_schema import LogEvent
from gamehub.metrics.collector import (
    CIRCUIT_BREAKER_REJECTIONS_TOTAL,
    CIRCUIT_BREAKER_STATE,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    HALF_OPEN = "half_open"
    OPEN = "open"


_GAUGE_VALUE = {CircuitState.CLOSED: 0, CircuitState.HALF_OPEN: 1, CircuitState.OPEN: 2}


class CircuitOpenError(Exception):
    """Call rejected without reaching the protected service."""

    def __init__(self, service: str, retry_after: float) -> None:
        self.service = service
        self.retry_after = retry_after
        super().__init__(f"{service} circuit open, retry in {retry_after:.1f}s")


def _every_error(exc: Exception) -> bool:
    return True


class CircuitBreaker:
    """Consecutive-failure circuit breaker.

    Args:
        name: Label for logs and metrics
        failure_threshold: Consecutive outage failures that open the circuit
        success_threshold: Trial successes needed to close from HALF_OPEN
        timeout: Seconds an open circuit rejects calls
        is_outage: Decides whether an exception counts as a failure;
            exceptions it rejects propagate without touching the counters
        clock: Monotonic time source
    """

    def __init__(
        self,
        name: str = "default",
        failure_threshold: int = 5,
        success_threshold: int = 2,
        timeout: float = 30.0,
        is_outage: Callable[[Exception], bool] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.timeout = timeout
        self._is_outage = is_outage or _every_error
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._trial_successes = 0
        self._opened_at = 0.0
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    def retry_after(self) -> float:
        """Seconds until an open circuit admits a trial call."""
        if self._state != CircuitState.OPEN:
            return 0.0
        return max(0.0, self._opened_at + self.timeout - self._clock())

    async def call(self, coro_factory: Callable[[], Awaitable[T]]) -> T:
        """Run `coro_factory()` unless the circuit is open.

        Raises:
            CircuitOpenError: The circuit is open; the factory was not called.
        """
        async with self._lock:
            self._admit()

        try:
            result = await coro_factory()
        except Exception as exc:
            if self._is_outage(exc):
                async with self._lock:
                    self._record_failure()
            raise

        async with self._lock:
            self._record_success()
        return result

    def _admit(self) -> None:
        if self._state != CircuitState.OPEN:
            return
        retry_after = self.retry_after()
        if retry_after <= 0:
            self._set_state(CircuitState.HALF_OPEN)
            return
        CIRCUIT_BREAKER_REJECTIONS_TOTAL.labels(circuit=self.name).inc()
        logger.warning(
            "Circuit open, call rejected",
            extra={
                "event": LogEvent.RUNTIME_UNAVAILABLE,
                "circuit": self.name,
                "retry_after": round(retry_after, 1),
            },
        )
        raise CircuitOpenError(self.name, retry_after)

    def _record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._trial_successes += 1
            if self._trial_successes >= self.success_threshold:
                self._set_state(CircuitState.CLOSED)
        else:
            self._failures = 0

    def _record_failure(self) -> None:
        self._failures += 1
        if self._state == CircuitState.HALF_OPEN or (
            self._state == CircuitState.CLOSED and self._failures >= self.failure_threshold
        ):
            self._opened_at = self._clock()
            self._set_state(CircuitState.OPEN)

    def _set_state(self, state: CircuitState) -> None:
        previous, self._state = self._state, state
        if state == CircuitState.CLOSED:
            self._failures = 0
        elif state == CircuitState.HALF_OPEN:
            self._trial_successes = 0
        CIRCUIT_BREAKER_STATE.labels(circuit=self.name).set(_GAUGE_VALUE[state])
        logger.log(
            logging.WARNING if state == CircuitState.OPEN else logging.INFO,
            "Circuit state changed",
            extra={
                "event": LogEvent.STATE_CHANGED,
                "circuit": self.name,
                "from_state": previous.value,
                "to_state": state.value,
                "failure_count": self._failures,
            },
        )


_breakers: dict[str, CircuitBreaker] = {}


def get_circuit_breaker(
    name: str,
    failure_threshold: int = 5,
    timeout: float = 30.0,
    is_outage: Callable[[Exception], bool] | None = None,
) -> CircuitBreaker:
    """Shared breaker per protected service.

    Settings only apply when the breaker is first created.
    """
    if name not in _breakers:
        _breakers[name] = CircuitBreaker(
            name=name,
            failure_threshold=failure_threshold,
            timeout=timeout,
            is_outage=is_outage,
        )
    return _breakers[name]


def reset_all_circuit_breakers() -> None:
    """Drop all shared breakers (for testing)."""
    _breakers.clear()
