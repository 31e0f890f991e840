"""Bounded-concurrency job queue for batch operations."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Self, TypeVar

import aiojobs
import structlog

from kanuni.workers.exceptions import (
    JobError,
    JobNotFoundError,
    JobQueueFullError,
    JobTimeoutError,
)
from kanuni.workers.models import Job, JobOutcome, JobStatus


if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine

    from kanuni.config.schema import BatchConfig


__all__ = ["JobQueue"]

T = TypeVar("T")


class JobQueue:
    """Runs coroutines with a worker limit and records their outcome.

    A failing job never raises out of the queue; its exception is kept on
    :attr:`Job.outcome` so a batch can report every file at the end.

    Example:
        ```python
        async with JobQueue(config=settings.batch) as queue:
            for path in paths:
                await queue.submit(client.upload_document(path), label=path.name)
            jobs = await queue.join()
        ```
    """

    DEFAULT_WORKERS = 2
    DEFAULT_TIMEOUT = 600.0
    DEFAULT_PENDING_LIMIT = 10000

    def __init__(
        self,
        *,
        workers: int | None = None,
        timeout: float | None = None,
        pending_limit: int | None = None,
        config: BatchConfig | None = None,
    ) -> None:
        """Initialize the queue.

        Args:
            workers: Maximum concurrent jobs. Overrides config if provided.
            timeout: Default job timeout in seconds. Overrides config if provided.
            pending_limit: Maximum jobs waiting for a worker.
            config: Batch section of the settings, used for defaults.
        """
        default_workers = config.concurrency if config else self.DEFAULT_WORKERS
        default_timeout = config.job_timeout if config else self.DEFAULT_TIMEOUT
        self._workers = workers if workers is not None else default_workers
        self._timeout = float(timeout if timeout is not None else default_timeout)
        self._pending_limit = pending_limit or self.DEFAULT_PENDING_LIMIT

        self._scheduler: aiojobs.Scheduler | None = None
        self._jobs: dict[str, Job] = {}
        self._handles: dict[str, aiojobs.Job[Any]] = {}
        # Coroutines not yet started; closed if the queue shuts down first
        self._unstarted: dict[str, Coroutine[Any, Any, Any]] = {}
        self._lock = asyncio.Lock()
        self._logger = structlog.get_logger(__name__)

    @property
    def workers(self) -> int:
        return self._workers

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and not self._scheduler.closed

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.stop()

    async def start(self) -> None:
        if self.is_running:
            return
        self._scheduler = aiojobs.Scheduler(
            limit=self._workers,
            pending_limit=self._pending_limit,
            close_timeout=10.0,
        )
        self._logger.debug(
            "job_queue_started",
            workers=self._workers,
            timeout=self._timeout,
        )

    async def stop(self, *, cancel: bool = False) -> None:
        """Shut the queue down.

        Args:
            cancel: Cancel running and pending jobs instead of letting them
                finish.
        """
        scheduler, self._scheduler = self._scheduler, None
        if scheduler is None or scheduler.closed:
            return

        if cancel:
            await scheduler.close()
        else:
            await scheduler.wait_and_close()

        async with self._lock:
            for job_id, job in self._jobs.items():
                if not job.is_terminal:
                    job.finish(JobStatus.CANCELLED, JobOutcome())
                unstarted = self._unstarted.pop(job_id, None)
                if unstarted is not None:
                    unstarted.close()
        self._logger.debug("job_queue_stopped", cancelled=cancel)

    async def submit(
        self,
        coro: Coroutine[Any, Any, T],
        *,
        label: str = "",
        subject: Callable[[T], str | None] | None = None,
        timeout: float | None = None,  # noqa: ASYNC109
    ) -> Job:
        """Queue a coroutine.

        Args:
            coro: The work to run.
            label: Human-readable description of the job.
            subject: Extracts the remote entity id from the job's result.
            timeout: Job-specific timeout (overrides default).

        Returns:
            The created job, still PENDING.

        Raises:
            JobError: If the queue is not running.
            JobQueueFullError: If the pending limit is reached.
        """
        if self._scheduler is None or self._scheduler.closed:
            coro.close()
            msg = "Job queue is not running"
            raise JobError(msg)
        if self._scheduler.pending_count >= self._pending_limit:
            coro.close()
            raise JobQueueFullError(self._pending_limit)

        job = Job(label=label)
        job_timeout = timeout if timeout is not None else self._timeout

        async with self._lock:
            self._jobs[job.id] = job
            self._unstarted[job.id] = coro
            self._handles[job.id] = await self._scheduler.spawn(
                self._run(job, coro, job_timeout, subject),
            )

        self._logger.debug("job_submitted", job_id=job.id, label=label)
        return job

    async def _run(
        self,
        job: Job,
        coro: Coroutine[Any, Any, T],
        timeout: float,  # noqa: ASYNC109
        subject: Callable[[T], str | None] | None,
    ) -> T | None:
        self._unstarted.pop(job.id, None)
        job.status = JobStatus.RUNNING
        job.started_at = datetime.now(UTC)
        log = self._logger.bind(job_id=job.id, label=job.label)

        try:
            result = await asyncio.wait_for(coro, timeout=timeout)
        except TimeoutError:
            job.finish(
                JobStatus.FAILED,
                JobOutcome(error=JobTimeoutError(job.id, timeout)),
            )
            log.warning("job_timeout", timeout=timeout)
            return None
        except asyncio.CancelledError:
            job.finish(JobStatus.CANCELLED, JobOutcome())
            log.debug("job_cancelled")
            raise
        except Exception as exc:  # noqa: BLE001
            job.finish(JobStatus.FAILED, JobOutcome(error=exc))
            log.warning("job_failed", error=str(exc), error_type=type(exc).__name__)
            return None

        if subject is not None:
            job.subject = subject(result)
        job.finish(JobStatus.COMPLETED, JobOutcome(value=result))
        log.debug("job_completed", duration_seconds=job.duration_seconds)
        return result

    async def get(self, job_id: str) -> Job:
        """Look up a job.

        Raises:
            JobNotFoundError: If no job with this ID exists.
        """
        async with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def wait(
        self,
        job_id: str,
        *,
        timeout: float | None = None,  # noqa: ASYNC109
    ) -> Job:
        """Wait for one job to reach a terminal status.

        Raises:
            JobNotFoundError: If no job with this ID exists.
            TimeoutError: If ``timeout`` passes first.
        """
        job = await self.get(job_id)
        handle = self._handles[job_id]
        async with asyncio.timeout(timeout):
            while not job.is_terminal:
                if handle.closed:
                    # Cancelled before it ever ran
                    await asyncio.sleep(0)
                    if not job.is_terminal:
                        job.finish(JobStatus.CANCELLED, JobOutcome())
                    break
                await asyncio.sleep(0.05)
        return job

    async def join(self) -> list[Job]:
        """Wait for every submitted job and return them in submission order."""
        for job_id in list(self._jobs):
            await self.wait(job_id)
        return list(self._jobs.values())

    async def list_jobs(self, *, status: JobStatus | None = None) -> list[Job]:
        """List jobs in submission order, optionally filtered by status."""
        async with self._lock:
            jobs = list(self._jobs.values())
        if status is not None:
            jobs = [job for job in jobs if job.status == status]
        return jobs
