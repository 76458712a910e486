"""
Custom exceptions for the ingestion pipeline with structured error context.

Each exception carries a context dictionary for debugging and for the
per-item failure entries recorded in the run summary.

Exception Hierarchy:
    PipelineException (base)
    ├── ConfigError                      fatal, raised before any network call
    ├── GatewayError
    │   ├── CircuitOpenError             transient, retryable
    │   ├── ApiError                     retryable for transport/5xx/429
    │   │   ├── RateLimitError
    │   │   └── AuthenticationError      terminal
    │   ├── MalformedResponseError       terminal per item
    │   ├── DownloadError                retryable
    │   └── EmptyCatalogError            pipeline-fatal
    ├── JobError
    │   ├── InvalidDateRangeError        terminal per item
    │   ├── JobFailedError               terminal per item
    │   └── PollTimeoutError             recoverable, failed for this run
    ├── NoJobsScheduledError             pipeline-fatal
    ├── RetryExhaustedError
    ├── PersistenceError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class PipelineException(Exception):
    """
    Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (report id, endpoint, ...)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.now(timezone.utc)

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += (
                f" | Caused by: {type(self.original_exception).__name__}: "
                f"{str(self.original_exception)}"
            )

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(PipelineException):
    """
    Mixin for errors that should trigger retry logic.

    Use this for transient errors like:
    - Network timeouts
    - Rate limiting (HTTP 429)
    - Service unavailable (HTTP 5xx)
    - Open circuit breaker
    """


class NonRetryableError(PipelineException):
    """
    Mixin for errors that should NOT trigger retry logic.

    Use this for permanent errors like:
    - Authentication failures (HTTP 401, 403)
    - Malformed upstream responses
    - Invalid request parameters
    """


# ============================================================================
# Configuration
# ============================================================================

class ConfigError(NonRetryableError):
    """Invalid or missing configuration. Aborts the run before any request."""


# ============================================================================
# Gateway Errors
# ============================================================================

class GatewayError(PipelineException):
    """Base exception for upstream API failures."""


class CircuitOpenError(RetryableError, GatewayError):
    """The circuit breaker rejected the call; no request was sent."""


class ApiError(GatewayError):
    """
    Upstream request failed.

    Attributes:
        status_code: HTTP status, or None when the transport itself failed
        body: Response body (truncated)
        retry_after: Seconds requested by the server before retrying (429)
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[float] = None
    ):
        super().__init__(message, context, original_exception)
        self.status_code = status_code
        self.body = body
        self.retry_after = retry_after
        self.context["status_code"] = status_code
        if retry_after is not None:
            self.context["retry_after"] = retry_after

    @property
    def retryable(self) -> bool:
        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500


class RateLimitError(RetryableError, ApiError):
    """HTTP 429 from upstream; retried with backoff honouring Retry-After."""


class AuthenticationError(NonRetryableError, ApiError):
    """Authentication failures (HTTP 401, 403) that should not be retried."""

    @property
    def retryable(self) -> bool:
        return False


class MalformedResponseError(NonRetryableError, GatewayError):
    """Upstream payload broke the expected contract."""


class DownloadError(RetryableError, GatewayError):
    """Export result download returned a non-200 status."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(message, context, original_exception)
        self.status_code = status_code
        self.context["status_code"] = status_code


class EmptyCatalogError(NonRetryableError, GatewayError):
    """Report discovery found nothing accessible to export."""


# ============================================================================
# Job Errors
# ============================================================================

class JobError(PipelineException):
    """Base exception for export job lifecycle failures."""


class InvalidDateRangeError(NonRetryableError, JobError):
    """
    Export date window is malformed or ends in the future.

    Upstream silently returns empty exports for such windows, so they are
    rejected before the request is sent.
    """


class JobFailedError(NonRetryableError, JobError):
    """Upstream reported the export job as failed."""


class PollTimeoutError(JobError):
    """
    Job did not reach a terminal status within the polling budget.

    The job may still complete upstream; it is failed for this run only.
    """

    def __init__(
        self,
        message: str,
        attempts: int,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(message, context, original_exception)
        self.attempts = attempts
        self.context["attempts"] = attempts


# ============================================================================
# Pipeline Errors
# ============================================================================

class NoJobsScheduledError(PipelineException):
    """Every schedule request in the run failed."""


class RetryExhaustedError(PipelineException):
    """A foreign exception survived every retry attempt."""


class PersistenceError(PipelineException):
    """
    Exception raised when run state cannot be stored or loaded.

    Context should include:
        - run_id: Pipeline run identifier
        - operation: Operation that failed (save, load)
    """


def is_retryable(exc: BaseException) -> bool:
    """Default retry classification used by the retry executor."""
    if isinstance(exc, NonRetryableError):
        return False
    if isinstance(exc, ApiError):
        return exc.retryable
    if isinstance(exc, RetryableError):
        return True
    if isinstance(exc, PipelineException):
        return False
    return True
