"""Exceptions raised by the batch job queue."""

from __future__ import annotations

from kanuni.errors import KanuniError


__all__ = [
    "JobError",
    "JobNotFoundError",
    "JobQueueFullError",
    "JobTimeoutError",
]


class JobError(KanuniError):
    """Base exception for job queue errors.

    Attributes:
        job_id: The job this error concerns, if any.
    """

    def __init__(self, message: str, *, job_id: str | None = None) -> None:
        super().__init__(message)
        self.job_id = job_id

    def __str__(self) -> str:
        if self.job_id is not None:
            return f"{self.message} (job_id={self.job_id})"
        return self.message


class JobNotFoundError(JobError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}", job_id=job_id)


class JobQueueFullError(JobError):
    """Raised when submitting beyond the pending limit."""

    def __init__(self, pending_limit: int) -> None:
        super().__init__(f"Job queue full: pending_limit={pending_limit}")
        self.pending_limit = pending_limit


class JobTimeoutError(JobError):
    """Recorded on a job that ran past its timeout."""

    def __init__(self, job_id: str, timeout: float) -> None:
        super().__init__(f"Job timed out after {timeout:g}s", job_id=job_id)
        self.timeout = timeout
