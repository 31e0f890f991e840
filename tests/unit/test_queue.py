"""Unit tests for the batch job queue."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from kanuni.config import BatchConfig
from kanuni.workers import (
    Job,
    JobError,
    JobNotFoundError,
    JobOutcome,
    JobQueue,
    JobQueueFullError,
    JobStatus,
    JobTimeoutError,
)


if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def queue() -> AsyncGenerator[JobQueue, None]:
    async with JobQueue(workers=2, timeout=0.5) as q:
        yield q


async def succeed(value: str, delay: float = 0.0) -> str:
    await asyncio.sleep(delay)
    return value


async def fail(message: str) -> str:
    await asyncio.sleep(0)
    raise ValueError(message)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class TestJob:
    """Tests for the Job record."""

    def test_defaults(self) -> None:
        job = Job()
        assert len(job.id) == 12
        assert job.label == ""
        assert job.subject is None
        assert job.status == JobStatus.PENDING
        assert job.outcome is None
        assert job.duration_seconds is None

    def test_is_terminal(self) -> None:
        job = Job()
        assert not job.is_terminal
        job.status = JobStatus.RUNNING
        assert not job.is_terminal
        for status in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED):
            job.status = status
            assert job.is_terminal

    def test_to_dict(self) -> None:
        job = Job(label="lease.pdf", subject="doc-1")
        job.finish(JobStatus.FAILED, JobOutcome(error=ValueError("bad file")))
        data = job.to_dict()
        assert data["label"] == "lease.pdf"
        assert data["subject"] == "doc-1"
        assert data["status"] == "failed"
        assert data["error"] == "bad file"

    def test_outcome(self) -> None:
        assert JobOutcome(value=1).success
        failed = JobOutcome(error=RuntimeError("x"))
        assert not failed.success
        assert failed.error_message == "x"


class TestJobErrors:
    def test_str_includes_job_id(self) -> None:
        assert str(JobNotFoundError("abc")) == "Job not found: abc (job_id=abc)"

    def test_timeout_message(self) -> None:
        error = JobTimeoutError("abc", 2.5)
        assert error.timeout == 2.5
        assert "2.5s" in str(error)


# ---------------------------------------------------------------------------
# JobQueue
# ---------------------------------------------------------------------------


class TestJobQueueConfig:
    def test_defaults_from_config(self) -> None:
        queue = JobQueue(config=BatchConfig(concurrency=6, job_timeout=42))
        assert queue.workers == 6
        assert queue.timeout == 42

    def test_explicit_values_win(self) -> None:
        queue = JobQueue(workers=1, timeout=3, config=BatchConfig(concurrency=6))
        assert queue.workers == 1
        assert queue.timeout == 3


class TestJobQueue:
    """Tests for submitting and waiting on jobs."""

    async def test_successful_job(self, queue: JobQueue) -> None:
        job = await queue.submit(
            succeed("doc-1"),
            label="lease.pdf",
            subject=lambda value: value,
        )
        finished = await queue.wait(job.id, timeout=1)

        assert finished.status == JobStatus.COMPLETED
        assert finished.outcome is not None
        assert finished.outcome.value == "doc-1"
        assert finished.subject == "doc-1"
        assert finished.duration_seconds is not None

    async def test_failure_is_recorded(self, queue: JobQueue) -> None:
        job = await queue.submit(fail("corrupt pdf"), label="bad.pdf")
        finished = await queue.wait(job.id, timeout=1)

        assert finished.status == JobStatus.FAILED
        assert finished.outcome is not None
        assert isinstance(finished.outcome.error, ValueError)
        assert finished.outcome.error_message == "corrupt pdf"
        assert finished.subject is None

    async def test_timeout(self, queue: JobQueue) -> None:
        job = await queue.submit(succeed("late", delay=5), timeout=0.05)
        finished = await queue.wait(job.id, timeout=1)

        assert finished.status == JobStatus.FAILED
        assert finished.outcome is not None
        assert isinstance(finished.outcome.error, JobTimeoutError)

    async def test_worker_limit(self) -> None:
        running = 0
        peak = 0

        async def tracked() -> None:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.02)
            running -= 1

        async with JobQueue(workers=2) as q:
            for _ in range(6):
                await q.submit(tracked())
            jobs = await q.join()

        assert peak == 2
        assert all(job.status == JobStatus.COMPLETED for job in jobs)

    async def test_join_keeps_submission_order(self, queue: JobQueue) -> None:
        slow = await queue.submit(succeed("a", delay=0.05), label="a")
        fast = await queue.submit(succeed("b"), label="b")
        jobs = await queue.join()
        assert [job.id for job in jobs] == [slow.id, fast.id]

    async def test_list_jobs_by_status(self, queue: JobQueue) -> None:
        await queue.submit(succeed("ok"))
        await queue.submit(fail("no"))
        await queue.join()

        assert len(await queue.list_jobs()) == 2
        failed = await queue.list_jobs(status=JobStatus.FAILED)
        assert len(failed) == 1

    async def test_get_unknown(self, queue: JobQueue) -> None:
        with pytest.raises(JobNotFoundError):
            await queue.get("missing")

    async def test_wait_timeout(self, queue: JobQueue) -> None:
        job = await queue.submit(succeed("slow", delay=0.3))
        with pytest.raises(TimeoutError):
            await queue.wait(job.id, timeout=0.01)


class TestJobQueueLifecycle:
    """Tests for start / stop."""

    async def test_submit_when_not_running(self) -> None:
        queue = JobQueue()
        coro = succeed("x")
        with pytest.raises(JobError, match="not running"):
            await queue.submit(coro)
        # The rejected coroutine is closed, not left un-awaited
        assert coro.cr_frame is None

    async def test_queue_full(self) -> None:
        async with JobQueue(workers=1, pending_limit=1) as q:
            await q.submit(succeed("a", delay=0.1))
            await q.submit(succeed("b", delay=0.1))
            with pytest.raises(JobQueueFullError) as exc_info:
                await q.submit(succeed("c"))
            assert exc_info.value.pending_limit == 1

    async def test_stop_waits_for_jobs(self) -> None:
        q = JobQueue(workers=1)
        await q.start()
        job = await q.submit(succeed("a", delay=0.02))
        await q.stop()

        assert not q.is_running
        assert job.status == JobStatus.COMPLETED

    async def test_stop_with_cancel(self) -> None:
        q = JobQueue(workers=1)
        await q.start()
        running = await q.submit(succeed("a", delay=5))
        pending = await q.submit(succeed("b", delay=5))
        await asyncio.sleep(0.01)

        await q.stop(cancel=True)

        assert running.status == JobStatus.CANCELLED
        assert pending.status == JobStatus.CANCELLED
        assert (await q.wait(pending.id, timeout=1)).status == JobStatus.CANCELLED
