"""
Core utilities and configuration for the Impact attribution pipeline.

Modules:
    config: Settings (environment + JSON overrides), credential access
    database: Async SQLAlchemy engine and session factory
    exceptions: Exception hierarchy with retry classification
    logging: Logging configuration with credential redaction

Usage:
    from core.config import settings
    from core.database import get_session
    from core.exceptions import ApiError, PollTimeoutError
    from core.logging import setup_logging
"""

__all__ = [
    "settings",
    "get_session",
    "setup_logging",
    # Exceptions
    "PipelineException",
    "ConfigError",
    "GatewayError",
    "CircuitOpenError",
    "ApiError",
    "RateLimitError",
    "AuthenticationError",
    "MalformedResponseError",
    "DownloadError",
    "EmptyCatalogError",
    "JobError",
    "InvalidDateRangeError",
    "JobFailedError",
    "PollTimeoutError",
    "NoJobsScheduledError",
    "RetryExhaustedError",
    "PersistenceError",
    "RetryableError",
    "NonRetryableError",
]
