"""Rendering of API records for the terminal."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from kanuni.config import OutputFormat
from kanuni.streaming import (
    AnalysisProgressEvent,
    BatchProgressEvent,
    CompleteEvent,
    ErrorEvent,
    UploadProgressEvent,
)


if TYPE_CHECKING:
    from datetime import datetime

    from rich.console import Console

    from kanuni.api import (
        AnalysisResult,
        AnalysisStatusResponse,
        Document,
        DocumentList,
    )
    from kanuni.auth import ApiKeyInfo, StoredCredentials
    from kanuni.streaming import ProgressEvent
    from kanuni.workers import Job


__all__ = [
    "describe_event",
    "format_size",
    "render_analysis_status",
    "render_api_keys",
    "render_auth_status",
    "render_document",
    "render_documents",
    "render_jobs",
    "render_result",
    "result_markdown",
]


def format_size(size: int | None) -> str:
    if size is None:
        return "-"
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":  # noqa: PLR2004
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


def _when(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "-"


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


def render_auth_status(console: Console, credentials: StoredCredentials) -> None:
    table = Table(show_header=False, box=None)
    table.add_column(style="bold")
    table.add_column()
    auth = credentials.auth_type
    if credentials.is_api_key:
        table.add_row("Method", "API key")
        table.add_row("Key", auth.display)  # type: ignore[union-attr]
        table.add_row("Name", auth.name)  # type: ignore[union-attr]
    else:
        table.add_row("Method", "OAuth")
        table.add_row("Token expires", _when(auth.expires_at))  # type: ignore[union-attr]
    table.add_row("Email", credentials.email or "-")
    table.add_row("User id", credentials.user_id or "-")
    table.add_row("Since", _when(credentials.created_at))
    console.print(table)


def render_api_keys(console: Console, keys: list[ApiKeyInfo]) -> None:
    table = Table(title="API keys")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Key")
    table.add_column("Last used")
    table.add_column("Expires")
    for key in keys:
        table.add_row(
            key.id,
            key.name,
            f"{key.prefix}...{key.last_4}",
            _when(key.last_used_at),
            _when(key.expires_at),
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


def render_documents(console: Console, page: DocumentList) -> None:
    table = Table(title=f"Documents ({page.total} total)")
    table.add_column("ID", no_wrap=True)
    table.add_column("Filename")
    table.add_column("Category")
    table.add_column("Size", justify="right")
    table.add_column("Analysis")
    table.add_column("Uploaded")
    for document in page.documents:
        table.add_row(
            document.id[:8],
            document.filename,
            document.category or "-",
            format_size(document.size_bytes),
            document.analysis_status or "-",
            _when(document.created_at),
        )
    console.print(table)
    shown_to = page.offset + len(page.documents)
    if shown_to < page.total:
        console.print(
            f"[dim]Showing {page.offset + 1}-{shown_to}; "
            f"use --offset {shown_to} for more.[/]",
        )


def render_document(console: Console, document: Document) -> None:
    table = Table(show_header=False, box=None)
    table.add_column(style="bold")
    table.add_column()
    table.add_row("ID", document.id)
    table.add_row("Filename", document.filename)
    table.add_row("Category", document.category or "-")
    table.add_row("Type", document.mime_type or "-")
    table.add_row("Size", format_size(document.size_bytes))
    table.add_row("Uploaded", _when(document.created_at))
    table.add_row("Analysis", document.analysis_status or "-")
    if document.analysis_id:
        table.add_row("Analysis id", document.analysis_id)
    console.print(table)


# ---------------------------------------------------------------------------
# Analyses
# ---------------------------------------------------------------------------


def render_analysis_status(console: Console, status: AnalysisStatusResponse) -> None:
    line = f"Analysis {status.id}: [bold]{status.status}[/]"
    if status.progress is not None:
        line += f" ({status.progress}%)"
    console.print(line)
    if status.error_message:
        console.print(f"[red]{status.error_message}[/]")


def result_markdown(result: AnalysisResult) -> str:
    """Render an analysis result as a Markdown report."""
    lines = [f"# Analysis {result.id}", ""]
    lines.append(f"- **Document:** {result.document_id}")
    lines.append(f"- **Type:** {result.analysis_type}")
    lines.append(f"- **Status:** {result.status}")
    if result.processing_time_ms is not None:
        lines.append(f"- **Processing time:** {result.processing_time_ms / 1000:.1f}s")
    lines.append("")

    if result.summary:
        lines += ["## Summary", "", result.summary, ""]
    if result.key_findings:
        lines += ["## Key findings", ""]
        lines += [f"- {finding}" for finding in result.key_findings]
        lines.append("")
    if result.risk_assessment is not None:
        risk = result.risk_assessment
        lines += ["## Risk assessment", "", f"**Level:** {risk.level}", ""]
        if risk.factors:
            lines += ["### Factors", ""] + [f"- {f}" for f in risk.factors] + [""]
        if risk.recommendations:
            lines += ["### Recommendations", ""]
            lines += [f"- {r}" for r in risk.recommendations]
            lines.append("")
    if result.entities:
        lines += ["## Entities", "", "| Type | Value | Confidence |", "|---|---|---|"]
        lines += [
            f"| {e.entity_type} | {e.value} | {e.confidence:.0%} |"
            for e in result.entities
        ]
        lines.append("")
    if result.dates:
        lines += ["## Dates", "", "| Date | Type | Context |", "|---|---|---|"]
        lines += [f"| {d.date} | {d.date_type} | {d.context} |" for d in result.dates]
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def render_result(
    console: Console,
    result: AnalysisResult,
    output_format: OutputFormat,
) -> None:
    """Print an analysis result in the requested format.

    JSON and Markdown go to stdout verbatim so they can be redirected.
    """
    if output_format == OutputFormat.JSON:
        console.out(result.model_dump_json(indent=2), highlight=False)
        return
    if output_format == OutputFormat.MARKDOWN:
        console.out(result_markdown(result), highlight=False)
        return

    console.print(Panel(Markdown(result_markdown(result)), expand=False))


# ---------------------------------------------------------------------------
# Progress and batches
# ---------------------------------------------------------------------------


def describe_event(event: ProgressEvent) -> str:
    """One-line description of a progress event."""
    match event:
        case UploadProgressEvent():
            return f"Uploading {event.file_name}: {event.progress}%"
        case AnalysisProgressEvent():
            text = f"{event.stage.display_name}: {event.progress}%"
            return f"{text} - {event.message}" if event.message else text
        case BatchProgressEvent():
            return (
                f"{event.completed_files}/{event.total_files} files "
                f"({event.overall_progress}%)"
            )
        case ErrorEvent():
            return f"Failed ({event.error_type}): {event.message}"
        case CompleteEvent():
            return f"Completed: {event.message}" if event.message else "Completed"
    return str(event)


def render_jobs(console: Console, jobs: list[Job]) -> None:
    table = Table(title="Batch results")
    table.add_column("File")
    table.add_column("Status")
    table.add_column("Document")
    table.add_column("Error")
    styles = {"completed": "green", "failed": "red", "cancelled": "yellow"}
    for job in jobs:
        style = styles.get(job.status, "")
        table.add_row(
            job.label,
            f"[{style}]{job.status}[/]" if style else str(job.status),
            job.subject or "-",
            (job.outcome.error_message if job.outcome else None) or "",
        )
    console.print(table)
