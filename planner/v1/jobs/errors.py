"""
Failure taxonomy for job processors.

The worker maps these onto job outcomes:

- TransientExternalError: retry with backoff until max attempts
- PermanentValidationError: complete without retry (logged as discarded)
- StaleEntityError: complete as a no-op
- ExhaustedRetriesError: recorded when a job settles in the dead-letter state
"""

from typing import Any


class JobError(Exception):
    """Base class for job-layer errors."""

    code = "JOB_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class TransientExternalError(JobError):
    """Timeout, upstream 5xx, temporary lock; retrying may succeed."""

    code = "TRANSIENT_EXTERNAL"


class PermanentValidationError(JobError):
    """Referenced entity gone or payload invalid; retrying cannot help."""

    code = "PERMANENT_VALIDATION"


class StaleEntityError(JobError):
    """Entity no longer matches the state the job was scheduled for."""

    code = "STALE_ENTITY"


class ExhaustedRetriesError(JobError):
    """Job used all attempts; terminal until an operator retries it."""

    code = "EXHAUSTED_RETRIES"

    def __init__(self, attempts: int, last_error: str | None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Gave up after {attempts} attempt(s): {last_error or 'unknown error'}",
            details={"attempts": attempts},
        )
