"""
Minimum spacing between upstream requests.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional
import logging

logger = logging.getLogger(__name__)


class RequestThrottle:
    """
    Enforces a minimum interval between consecutive requests.

    The first request is never delayed. Shared by every request of a run.
    """

    def __init__(
        self,
        min_interval: float = 0.8,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None
    ):
        self.min_interval = max(0.0, min_interval)
        self.clock = clock or time.monotonic
        self.sleep = sleep or asyncio.sleep
        self._last_request: Optional[float] = None

    async def wait(self) -> float:
        """Sleep as needed and mark a request as sent. Returns seconds waited."""
        waited = 0.0
        if self._last_request is not None:
            elapsed = self.clock() - self._last_request
            wait_seconds = self.min_interval - elapsed
            if wait_seconds > 0:
                logger.debug(f"Throttling request for {wait_seconds:.2f}s")
                await self.sleep(wait_seconds)
                waited = wait_seconds
        self._last_request = self.clock()
        return waited
