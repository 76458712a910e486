"""
Circuit breaker guarding calls to the upstream API.

States:
    CLOSED     requests flow; consecutive failures are counted
    OPEN       requests are rejected until ``reset_timeout`` has elapsed
    HALF_OPEN  one trial call is allowed; success closes, failure reopens

One breaker is shared by every request of a run and is never reset between
report items. The runner is sequential, so no locking is done here.
"""

import enum
import time
from typing import Callable, Dict, Optional, Union

from core.config import CircuitBreakerPolicy
import logging

logger = logging.getLogger(__name__)


class CircuitState(str, enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    Attributes:
        failure_threshold: Failures before the circuit opens
        reset_timeout: Seconds the circuit stays open before a trial call
        clock: Monotonic clock returning seconds (injectable for tests)
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        clock: Optional[Callable[[], float]] = None,
        name: str = "impact-api"
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.clock = clock or time.monotonic
        self.name = name

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None

    @classmethod
    def from_policy(
        cls,
        policy: CircuitBreakerPolicy,
        clock: Optional[Callable[[], float]] = None
    ) -> "CircuitBreaker":
        return cls(
            failure_threshold=policy.failure_threshold,
            reset_timeout=policy.reset_timeout,
            clock=clock
        )

    def can_execute(self) -> bool:
        """Whether a request may be sent now."""
        if self.state is CircuitState.CLOSED:
            return True

        if self.state is CircuitState.OPEN:
            elapsed = self.clock() - (self.last_failure_time or 0.0)
            if elapsed >= self.reset_timeout:
                self.state = CircuitState.HALF_OPEN
                logger.info(f"Circuit breaker half-open for {self.name} after {elapsed:.1f}s")
                return True
            return False

        return True

    def record_success(self) -> None:
        if self.state is not CircuitState.CLOSED:
            logger.info(f"Circuit breaker closed for {self.name}")
        self.failure_count = 0
        self.state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = self.clock()

        if self.state is CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            if self.state is not CircuitState.OPEN:
                logger.warning(
                    f"Circuit breaker opened for {self.name} after {self.failure_count} failures. "
                    f"Will allow a trial call after {self.reset_timeout} seconds."
                )
            self.state = CircuitState.OPEN

    def retry_in(self) -> float:
        """Seconds until an open circuit allows a trial call (0 when not open)."""
        if self.state is not CircuitState.OPEN:
            return 0.0
        elapsed = self.clock() - (self.last_failure_time or 0.0)
        return max(0.0, self.reset_timeout - elapsed)

    def snapshot(self) -> Dict[str, Union[str, int]]:
        return {"state": self.state.value, "failure_count": self.failure_count}
