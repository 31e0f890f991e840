"""Concurrent batch execution.

Example:
    ```python
    from kanuni.workers import JobQueue, JobStatus

    async with JobQueue(workers=4) as queue:
        job = await queue.submit(upload(path), label=path.name)
        await queue.wait(job.id)
        if job.status == JobStatus.COMPLETED:
            print(job.subject)
    ```
"""

from __future__ import annotations

from kanuni.workers.exceptions import (
    JobError,
    JobNotFoundError,
    JobQueueFullError,
    JobTimeoutError,
)
from kanuni.workers.models import Job, JobOutcome, JobStatus
from kanuni.workers.queue import JobQueue


__all__ = [
    "Job",
    "JobError",
    "JobNotFoundError",
    "JobOutcome",
    "JobQueue",
    "JobQueueFullError",
    "JobStatus",
    "JobTimeoutError",
]
