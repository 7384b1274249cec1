"""
Circuit breaker guarding the database.

After ``failure_threshold`` consecutive connection-level failures the
breaker opens and repository calls fail fast with
:class:`CircuitBreakerError` instead of queueing on a dead connection
pool.  Once ``recovery_timeout`` seconds have passed a single probe call is
let through (HALF_OPEN); success closes the circuit, failure re-opens it.

States::

    CLOSED ──(threshold failures)──▶ OPEN ──(timeout)──▶ HALF_OPEN
       ▲                                                    │
       └───────────────────(probe succeeds)─────────────────┘
"""

import logging
import time
from enum import Enum
from typing import Any, Callable, Tuple, Type

from autoinvest.core.config import settings

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Possible states of a circuit breaker."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerError(Exception):
    """Raised when a call is rejected because the circuit is open."""

    def __init__(self, name: str, retry_after: float):
        self.name = name
        self.retry_after = retry_after
        super().__init__(
            f"Circuit breaker '{name}' is OPEN — failing fast. "
            f"Retry after {retry_after:.1f}s."
        )


class CircuitBreaker:
    """
    Async circuit breaker.

    Parameters
    ----------
    name : str
        Identifier used in logs and health output.
    failure_threshold : int
        Consecutive failures before the circuit opens.
    recovery_timeout : float
        Seconds spent OPEN before a probe is allowed.
    expected_exceptions : tuple
        Exception types counted as failures; anything else (for example a
        domain error raised inside the call) passes through untouched.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        expected_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exceptions = expected_exceptions

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float = 0.0
        self._success_count = 0

    @property
    def state(self) -> CircuitState:
        """Current state; an expired OPEN circuit reports HALF_OPEN."""
        if self._state == CircuitState.OPEN:
            elapsed = time.monotonic() - self._last_failure_time
            if elapsed >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                logger.info("Circuit '%s' → HALF_OPEN after %.1fs", self.name, elapsed)
        return self._state

    def _record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info(
                "Circuit '%s' → CLOSED (probe succeeded after %d failures)",
                self.name,
                self._failure_count,
            )
        self._failure_count = 0
        self._success_count += 1
        self._state = CircuitState.CLOSED

    def _record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.error(
                "Circuit '%s' → OPEN after %d failures; fast-failing for %.1fs",
                self.name,
                self._failure_count,
                self.recovery_timeout,
            )
        else:
            logger.warning(
                "Circuit '%s' failure #%d/%d",
                self.name,
                self._failure_count,
                self.failure_threshold,
            )

    async def call(self, func: Callable, *args: Any, **kwargs: Any) -> Any:
        """
        Await ``func(*args, **kwargs)`` through the breaker.

        Raises :class:`CircuitBreakerError` while the circuit is OPEN.
        """
        state = self.state

        if state == CircuitState.OPEN:
            retry_after = self.recovery_timeout - (time.monotonic() - self._last_failure_time)
            raise CircuitBreakerError(self.name, max(retry_after, 0))

        try:
            result = await func(*args, **kwargs)
        except self.expected_exceptions:
            self._record_failure()
            raise
        self._record_success()
        return result

    def get_status(self) -> dict:
        """Return a dict for the health endpoint."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "success_count": self._success_count,
            "recovery_timeout_s": self.recovery_timeout,
        }


db_circuit_breaker = CircuitBreaker(
    name="database",
    failure_threshold=settings.CB_FAILURE_THRESHOLD,
    recovery_timeout=settings.CB_RECOVERY_TIMEOUT,
    expected_exceptions=(
        ConnectionError,
        OSError,
        TimeoutError,
    ),
)
