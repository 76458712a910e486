"""
Export job poller with exponential backoff.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from core.config import PollingPolicy
from core.exceptions import JobFailedError, PollTimeoutError, is_retryable
from models.base import JobStatus
from schemas.pipeline import ExportJob
import logging

logger = logging.getLogger(__name__)


class JobPoller:
    """
    Drive an ExportJob to a terminal status.

    Sleeps ``initial_delay`` after the first unfinished poll, then grows the
    delay by ``multiplier`` up to ``max_delay``. No sleep follows the last
    attempt.
    """

    def __init__(
        self,
        gateway,
        policy: Optional[PollingPolicy] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None
    ):
        self.gateway = gateway
        self.policy = policy or PollingPolicy()
        self.sleep = sleep or asyncio.sleep

    def delays(self):
        """Sleep schedule between polls for a job that never finishes."""
        delays = []
        delay = self.policy.initial_delay
        for _ in range(self.policy.max_attempts - 1):
            delays.append(delay)
            delay = min(delay * self.policy.multiplier, self.policy.max_delay)
        return delays

    async def poll_until_terminal(self, job: ExportJob) -> ExportJob:
        """
        Poll until the job completes.

        Raises:
            JobFailedError: Upstream reported the job failed
            PollTimeoutError: Attempts exhausted; the job is marked timed_out
            Non-retryable gateway errors, after marking the job failed
        """
        if job.is_terminal:
            return job

        delay = self.policy.initial_delay
        max_attempts = self.policy.max_attempts

        for attempt in range(1, max_attempts + 1):
            job.poll_attempts += 1
            try:
                await self.gateway.check_job_status(job)
            except Exception as e:
                if not is_retryable(e):
                    job.advance(JobStatus.FAILED, error=str(getattr(e, "message", e)))
                    raise
                logger.warning(
                    f"Poll {attempt}/{max_attempts} for job {job.job_id} failed: "
                    f"{type(e).__name__}"
                )
            else:
                if job.is_terminal:
                    return self._terminal(job)
                logger.debug(f"Job {job.job_id} is {job.status.value} (poll {attempt}/{max_attempts})")

            if attempt < max_attempts:
                await self.sleep(delay)
                delay = min(delay * self.policy.multiplier, self.policy.max_delay)

        job.advance(JobStatus.TIMED_OUT, error=f"Not finished after {max_attempts} polls")
        logger.warning(f"Job {job.job_id} timed out after {max_attempts} polls")
        raise PollTimeoutError(
            f"Export job {job.job_id} did not finish",
            attempts=max_attempts,
            context={"job_id": job.job_id, "report_id": job.report_id}
        )

    def _terminal(self, job: ExportJob) -> ExportJob:
        if job.status is JobStatus.FAILED:
            raise JobFailedError(
                job.error or f"Export job {job.job_id} failed upstream",
                context={"job_id": job.job_id, "report_id": job.report_id}
            )
        return job
