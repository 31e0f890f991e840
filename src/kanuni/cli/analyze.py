"""``kanuni analyze`` and the ``kanuni analysis`` commands."""

from __future__ import annotations

import asyncio
from contextlib import suppress
from pathlib import Path
from typing import TYPE_CHECKING

import typer
from rich.progress import BarColumn, Progress, TaskID, TextColumn

from kanuni.api import AnalysisType, DocumentCategory
from kanuni.cli.render import (
    describe_event,
    render_analysis_status,
    render_result,
)
from kanuni.cli.runtime import open_session, run, state_of
from kanuni.config import OutputFormat
from kanuni.streaming import AnalysisProgressEvent


if TYPE_CHECKING:
    from kanuni.api import AnalysisResult, AnalysisStatusResponse
    from kanuni.cli.runtime import CliState, Session


app = typer.Typer(help="Inspect and control analyses.", no_args_is_help=True)


async def _follow_stream(
    session: Session,
    analysis_id: str,
    progress: Progress,
    task: TaskID,
) -> None:
    """Mirror stream events for ``analysis_id`` onto the progress bar."""
    tracker = session.tracker
    if tracker is None:
        return
    seen = 0
    while tracker.is_running:
        events = await tracker.wait_for_update(analysis_id, seen=seen, timeout=None)
        seen += len(events)
        for event in events:
            completed = (
                event.progress if isinstance(event, AnalysisProgressEvent) else None
            )
            progress.update(task, description=describe_event(event), completed=completed)
        if not events:
            return


async def wait_with_progress(
    state: CliState,
    session: Session,
    analysis_id: str,
    *,
    timeout: float,  # noqa: ASYNC109
) -> AnalysisResult:
    """Wait for an analysis while showing a progress bar on stderr."""
    with Progress(
        TextColumn("{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        console=state.err_console,
        transient=True,
    ) as progress:
        task = progress.add_task("Queued", total=100)

        def on_status(status: AnalysisStatusResponse) -> None:
            if status.progress is not None:
                progress.update(task, completed=status.progress)

        watcher = asyncio.create_task(
            _follow_stream(session, analysis_id, progress, task),
        )
        try:
            return await session.api.wait_for_completion(
                analysis_id,
                timeout=timeout,
                poll_interval=session.settings.analysis.poll_interval,
                tracker=session.tracker,
                on_status=on_status,
            )
        finally:
            watcher.cancel()
            with suppress(asyncio.CancelledError):
                await watcher


def analyze(  # noqa: PLR0913
    ctx: typer.Context,
    file: Path | None = typer.Argument(
        None,
        exists=True,
        dir_okay=False,
        readable=True,
        help="File to upload and analyze.",
    ),
    document_id: str | None = typer.Option(
        None,
        "--document-id",
        "-d",
        help="Analyze an already uploaded document.",
    ),
    analysis_type: AnalysisType = typer.Option(
        AnalysisType.QUICK,
        "--type",
        "-t",
        help="Kind of analysis.",
    ),
    category: DocumentCategory | None = typer.Option(
        None,
        "--category",
        help="Category for an uploaded file.",
    ),
    wait: bool = typer.Option(  # noqa: FBT001
        True,  # noqa: FBT003
        "--wait/--no-wait",
        help="Wait for the result.",
    ),
    timeout: float | None = typer.Option(
        None,
        "--timeout",
        min=1,
        help="Seconds to wait for the result (default from config).",
    ),
    output_format: OutputFormat | None = typer.Option(
        None,
        "--format",
        "-f",
        help="Output format.",
    ),
) -> None:
    """Analyze a document, uploading it first when a file is given."""
    state = state_of(ctx)
    if (file is None) == (document_id is None):
        msg = "Give either a FILE or --document-id."
        raise typer.BadParameter(msg)

    async def _analyze() -> AnalysisResult | None:
        async with open_session(state, streaming=wait) as session:
            if file is not None:
                with state.err_console.status(f"Uploading {file.name}..."):
                    document = await session.api.upload_document(
                        file,
                        category=category,
                    )
                target = document.id
                state.err_console.print(f"Uploaded {file.name} as {target}")
            else:
                target = await session.api.resolve_document_id(str(document_id))

            started = await session.api.start_analysis(target, analysis_type)
            state.err_console.print(
                f"Started {started.analysis_type} analysis {started.analysis_id}",
            )
            if not wait:
                state.console.print(started.analysis_id)
                return None

            if session.tracker is not None:
                await session.follow(
                    session.tracker.track_analysis(started.analysis_id),
                )
            return await wait_with_progress(
                state,
                session,
                started.analysis_id,
                timeout=timeout or session.settings.analysis.wait_timeout,
            )

    result = run(state, _analyze())
    if result is not None:
        render_result(state.console, result, state.output_format(output_format))


@app.command()
def status(
    ctx: typer.Context,
    analysis_id: str = typer.Argument(..., help="Analysis id."),
) -> None:
    """Show the status of an analysis."""
    state = state_of(ctx)

    async def _status() -> AnalysisStatusResponse:
        async with open_session(state) as session:
            return await session.api.get_analysis_status(analysis_id)

    render_analysis_status(state.console, run(state, _status()))


@app.command()
def result(
    ctx: typer.Context,
    analysis_id: str = typer.Argument(..., help="Analysis id."),
    wait: bool = typer.Option(  # noqa: FBT001
        False,  # noqa: FBT003
        "--wait/--no-wait",
        help="Wait for the analysis to finish.",
    ),
    output_format: OutputFormat | None = typer.Option(
        None,
        "--format",
        "-f",
        help="Output format.",
    ),
) -> None:
    """Show the result of an analysis."""
    state = state_of(ctx)

    async def _result() -> AnalysisResult:
        async with open_session(state, streaming=wait) as session:
            if not wait:
                return await session.api.get_analysis_result(analysis_id)
            if session.tracker is not None:
                await session.follow(session.tracker.track_analysis(analysis_id))
            return await wait_with_progress(
                state,
                session,
                analysis_id,
                timeout=session.settings.analysis.wait_timeout,
            )

    render_result(
        state.console,
        run(state, _result()),
        state.output_format(output_format),
    )


@app.command()
def cancel(
    ctx: typer.Context,
    analysis_id: str = typer.Argument(..., help="Analysis id."),
) -> None:
    """Cancel a running analysis."""
    state = state_of(ctx)

    async def _cancel() -> None:
        async with open_session(state) as session:
            await session.api.cancel_analysis(analysis_id)

    run(state, _cancel())
    state.console.print(f"Cancelled analysis {analysis_id}.")
