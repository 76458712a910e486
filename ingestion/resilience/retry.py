"""
Retry executor with bounded exponential backoff.

The delay before retry k (k >= 1) is ``min(base_delay * 2**(k-1), max_delay)``.
A server-provided ``retry_after`` is honoured when it is longer than the
computed delay, up to ``retry_after_max_delay``. Sleeping goes through an
injectable coroutine so the event loop is never blocked and tests never wait.
"""

import asyncio
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from core.config import RetryPolicy
from core.exceptions import PipelineException, RetryExhaustedError, is_retryable
import logging

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[Any]]


class RetryExecutor:
    """
    Execute an async operation with retries.

    Attributes:
        max_attempts: Retries after the first call (total calls = max_attempts + 1)
        base_delay: Delay before the first retry, in seconds
        max_delay: Upper bound for any single computed delay, in seconds
        retry_after_max_delay: Upper bound for a server Retry-After hint, in seconds
        retry_on: Predicate deciding whether an exception is retryable
    """

    def __init__(
        self,
        max_attempts: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        retry_after_max_delay: float = 120.0,
        sleep: Optional[SleepFunc] = None,
        retry_on: Callable[[BaseException], bool] = is_retryable
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.retry_after_max_delay = retry_after_max_delay
        self.sleep = sleep or asyncio.sleep
        self.retry_on = retry_on

    @classmethod
    def from_policy(cls, policy: RetryPolicy, sleep: Optional[SleepFunc] = None) -> "RetryExecutor":
        return cls(
            max_attempts=policy.max_attempts,
            base_delay=policy.base_delay,
            max_delay=policy.max_delay,
            retry_after_max_delay=policy.retry_after_max_delay,
            sleep=sleep
        )

    def delay_for(self, retry: int, base_delay: Optional[float] = None, max_delay: Optional[float] = None) -> float:
        """Delay before retry number ``retry`` (1-based)."""
        base = self.base_delay if base_delay is None else base_delay
        cap = self.max_delay if max_delay is None else max_delay
        return min(base * (2 ** (retry - 1)), cap)

    def delays(
        self,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None
    ) -> List[float]:
        attempts = self.max_attempts if max_attempts is None else max_attempts
        return [self.delay_for(k, base_delay, max_delay) for k in range(1, attempts + 1)]

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None
    ) -> T:
        """
        Run ``operation`` until it succeeds or retries are exhausted.

        Raises:
            The last error with ``attempts`` added to its context, or
            RetryExhaustedError wrapping a foreign exception. Non-retryable
            errors propagate immediately.
        """
        retries = self.max_attempts if max_attempts is None else max_attempts
        total_calls = retries + 1

        for call in range(1, total_calls + 1):
            try:
                return await operation()
            except Exception as e:
                if not self.retry_on(e):
                    raise

                if call >= total_calls:
                    logger.error(f"Giving up after {call} attempts: {type(e).__name__}")
                    if isinstance(e, PipelineException):
                        e.context["attempts"] = call
                        raise
                    raise RetryExhaustedError(
                        f"Operation failed after {call} attempts",
                        context={"attempts": call},
                        original_exception=e
                    )

                delay = self.delay_for(call, base_delay, max_delay)
                retry_after = getattr(e, "retry_after", None)
                if retry_after is not None:
                    delay = max(delay, min(float(retry_after), self.retry_after_max_delay))

                logger.warning(
                    f"{type(e).__name__} on attempt {call}/{total_calls}. "
                    f"Retrying in {delay} seconds"
                )
                await self.sleep(delay)

        # total_calls is at least 1, so the loop always returns or raises
        raise RetryExhaustedError("Max retries exceeded", context={"attempts": total_calls})
