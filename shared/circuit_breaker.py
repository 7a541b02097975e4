"""
Circuit breaker for calls to the resource service.
"""

import time
from enum import Enum
from typing import Dict, Any, Callable, Awaitable, Tuple, Type

from shared.errors import NetworkError
from shared.logging import get_logger


class CircuitBreakerState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(NetworkError):
    """Raised instead of calling a service whose breaker is open."""

    def __init__(self, name: str):
        super().__init__(
            f"Circuit breaker '{name}' is open",
            details={"circuit_breaker": name}
        )


class CircuitBreaker:
    """Circuit breaker implementation.

    Only exceptions listed in ``counted_exceptions`` trip the breaker, so a
    404 or a validation failure from a healthy service never opens it.
    """

    def __init__(self,
                 failure_threshold: int = 5,
                 recovery_timeout: float = 60.0,
                 counted_exceptions: Tuple[Type[BaseException], ...] = (Exception,),
                 name: str = "default"):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.counted_exceptions = counted_exceptions
        self.name = name
        self.logger = get_logger(f"circuit_breaker.{name}")

        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._last_failure_time = 0.0

    def _can_attempt_reset(self) -> bool:
        return (time.monotonic() - self._last_failure_time) >= self.recovery_timeout

    def _should_attempt_call(self) -> bool:
        if self._state == CircuitBreakerState.OPEN:
            if self._can_attempt_reset():
                self._state = CircuitBreakerState.HALF_OPEN
                self.logger.info("Circuit breaker transitioning to half-open")
                return True
            return False
        return True

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Execute function with circuit breaker protection."""
        if not self._should_attempt_call():
            raise CircuitOpenError(self.name)

        try:
            result = await func(*args, **kwargs)
        except self.counted_exceptions:
            self._record_failure()
            raise

        if self._state != CircuitBreakerState.CLOSED or self._failure_count:
            if self._state == CircuitBreakerState.HALF_OPEN:
                self.logger.info("Circuit breaker reset to CLOSED after successful call")
            self._state = CircuitBreakerState.CLOSED
            self._failure_count = 0
        return result

    def _record_failure(self):
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._state == CircuitBreakerState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._state = CircuitBreakerState.OPEN
            self.logger.warning(
                "Circuit breaker opened due to failures",
                failure_count=self._failure_count,
                threshold=self.failure_threshold
            )

    def get_state(self) -> Dict[str, Any]:
        """Get current circuit breaker state."""
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "last_failure_time": self._last_failure_time,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout
        }

    def is_open(self) -> bool:
        """Check if circuit breaker is in OPEN state."""
        return self._state == CircuitBreakerState.OPEN
