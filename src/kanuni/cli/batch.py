"""``kanuni batch`` commands."""

from __future__ import annotations

import glob
import json
import time
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
import typer

from kanuni.api import AnalysisType, DocumentCategory, guess_mime_type
from kanuni.cli.render import describe_event, render_jobs
from kanuni.cli.runtime import (
    EXIT_FAILURE,
    exit_with_error,
    open_session,
    run,
    state_of,
)
from kanuni.config import OutputFormat
from kanuni.errors import KanuniError
from kanuni.workers import JobQueue, JobStatus


if TYPE_CHECKING:
    from collections.abc import Callable

    from kanuni.api import AnalysisStarted, Document
    from kanuni.cli.runtime import Session
    from kanuni.streaming import ProgressEvent, ProgressTracker
    from kanuni.workers import Job


app = typer.Typer(help="Work on many documents at once.", no_args_is_help=True)

logger = structlog.get_logger(__name__)


def expand_patterns(patterns: list[str]) -> list[Path]:
    """Expand glob patterns to supported files, without duplicates.

    Files with an unsupported extension are skipped with a warning.
    """
    seen: dict[Path, None] = {}
    for pattern in patterns:
        matches = glob.glob(pattern, recursive=True) or [pattern]  # noqa: PTH207
        for match in sorted(matches):
            path = Path(match)
            if not path.is_file():
                continue
            if guess_mime_type(path) is None:
                logger.warning("unsupported_file_skipped", path=str(path))
                continue
            seen.setdefault(path, None)
    return list(seen)


async def follow_until_finished(
    tracker: ProgressTracker,
    entity_id: str,
    *,
    timeout: float,  # noqa: ASYNC109
    on_event: Callable[[ProgressEvent], None],
    clock: Callable[[], float] = time.monotonic,
) -> bool:
    """Report events for ``entity_id`` until it finishes or ``timeout`` passes.

    Returns:
        True if a terminal event arrived before the deadline.
    """
    deadline = clock() + timeout
    seen = 0
    while tracker.is_tracking(entity_id):
        remaining = deadline - clock()
        if remaining <= 0:
            return False
        events = await tracker.wait_for_update(entity_id, seen=seen, timeout=remaining)
        if not events:
            return False
        seen += len(events)
        for event in events:
            on_event(event)
    return True


async def _process(
    session: Session,
    path: Path,
    category: DocumentCategory | None,
    analysis_type: AnalysisType | None,
) -> tuple[Document, AnalysisStarted | None]:
    document = await session.api.upload_document(path, category=category)
    started = None
    if analysis_type is not None:
        started = await session.api.start_analysis(document.id, analysis_type)
    return document, started


@app.command()
def upload(  # noqa: PLR0913
    ctx: typer.Context,
    patterns: list[str] = typer.Argument(..., help="Files or glob patterns."),
    analyze: AnalysisType | None = typer.Option(
        None,
        "--analyze",
        "-a",
        help="Start this analysis for every uploaded file.",
    ),
    category: DocumentCategory | None = typer.Option(
        None,
        "--category",
        help="Category for every file.",
    ),
    concurrency: int | None = typer.Option(
        None,
        "--concurrency",
        "-j",
        min=1,
        max=16,
        help="Parallel uploads (default from config).",
    ),
    continue_on_error: bool | None = typer.Option(  # noqa: FBT001
        None,
        "--continue-on-error/--stop-on-error",
        help="Keep going after a failed file (default from config).",
    ),
    output_format: OutputFormat | None = typer.Option(
        None,
        "--format",
        "-f",
        help="Output format.",
    ),
) -> None:
    """Upload many files concurrently, optionally starting analyses."""
    state = state_of(ctx)
    settings = state.settings
    paths = expand_patterns(patterns)
    if not paths:
        state.err_console.print("[red]No supported files matched.[/]")
        raise typer.Exit(EXIT_FAILURE)

    keep_going = (
        continue_on_error
        if continue_on_error is not None
        else settings.batch.continue_on_error
    )

    async def _batch() -> list[Job]:
        async with (
            open_session(state) as session,
            JobQueue(workers=concurrency, config=settings.batch) as queue,
        ):
            jobs = [
                await queue.submit(
                    _process(session, path, category, analyze),
                    label=path.name,
                    subject=lambda outcome: outcome[0].id,
                )
                for path in paths
            ]
            with state.err_console.status(f"Processing {len(jobs)} files..."):
                for job in jobs:
                    await queue.wait(job.id)
                    if job.status == JobStatus.FAILED and not keep_going:
                        logger.warning("batch_stopped", failed=job.label)
                        await queue.stop(cancel=True)
                        break
            return jobs

    jobs = run(state, _batch())

    if state.output_format(output_format) == OutputFormat.JSON:
        state.console.out(
            json.dumps([job.to_dict() for job in jobs], indent=2),
            highlight=False,
        )
    else:
        render_jobs(state.console, jobs)
        for job in jobs:
            started = job.outcome.value[1] if job.outcome and job.outcome.value else None
            if started is not None:
                state.console.print(f"{job.label}: analysis {started.analysis_id}")

    if any(job.status != JobStatus.COMPLETED for job in jobs):
        raise typer.Exit(EXIT_FAILURE)


@app.command()
def status(
    ctx: typer.Context,
    batch_id: str = typer.Argument(..., help="Batch id."),
    timeout: float | None = typer.Option(
        None,
        "--timeout",
        min=1,
        help="Give up when the batch has not finished after this many seconds.",
    ),
) -> None:
    """Follow a batch's progress events until it finishes."""
    state = state_of(ctx)
    if not state.settings.stream.enabled:
        msg = "Batch status needs the progress stream, which is disabled"
        exit_with_error(
            state,
            KanuniError(
                msg,
                hint="Enable it with 'kanuni config set stream.enabled true'.",
            ),
        )

    async def _follow() -> bool:
        async with open_session(state, streaming=True) as session:
            tracker = session.tracker
            if tracker is None or not await session.follow(
                tracker.track_batch(batch_id),
            ):
                msg = "Could not connect to the progress stream"
                raise KanuniError(msg)

            return await follow_until_finished(
                tracker,
                batch_id,
                timeout=timeout or session.settings.analysis.wait_timeout,
                on_event=lambda event: state.console.print(
                    describe_event(event),
                    highlight=False,
                ),
            )

    if not run(state, _follow()):
        state.err_console.print("[yellow]Stopped following before the batch finished.[/]")
        raise typer.Exit(EXIT_FAILURE)
