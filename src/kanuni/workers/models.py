"""Job records kept by the batch queue."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


__all__ = ["Job", "JobOutcome", "JobStatus"]


class JobStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class JobOutcome:
    """What a finished job produced.

    Attributes:
        value: Return value of a successful job.
        error: The exception a failed job raised.
    """

    value: Any = None
    error: BaseException | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def error_message(self) -> str | None:
        return None if self.error is None else str(self.error)


@dataclass
class Job:
    """One unit of batch work.

    Attributes:
        id: 12-character hex identifier.
        label: What the job works on, e.g. the file name being uploaded.
        subject: Id of the remote entity the job produced, once known.
        status: Current status.
        outcome: Set once the job reaches a terminal status.
    """

    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    label: str = ""
    subject: str | None = None
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    completed_at: datetime | None = None
    outcome: JobOutcome | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in {
            JobStatus.COMPLETED,
            JobStatus.FAILED,
            JobStatus.CANCELLED,
        }

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def finish(self, status: JobStatus, outcome: JobOutcome) -> None:
        self.status = status
        self.outcome = outcome
        self.completed_at = datetime.now(UTC)

    def to_dict(self) -> dict[str, Any]:
        """Summarize the job for JSON output."""
        return {
            "id": self.id,
            "label": self.label,
            "subject": self.subject,
            "status": self.status.value,
            "duration_seconds": self.duration_seconds,
            "error": self.outcome.error_message if self.outcome else None,
        }
