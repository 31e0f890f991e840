"""``kanuni document`` commands."""

from __future__ import annotations

from pathlib import Path

import typer

from kanuni.api import DocumentCategory
from kanuni.cli.render import render_document, render_documents
from kanuni.cli.runtime import open_session, run, state_of
from kanuni.config import OutputFormat


app = typer.Typer(help="Upload and manage documents.", no_args_is_help=True)


@app.command()
def upload(
    ctx: typer.Context,
    file: Path = typer.Argument(
        ...,
        exists=True,
        dir_okay=False,
        readable=True,
        help="File to upload (pdf, doc, docx or txt).",
    ),
    category: DocumentCategory | None = typer.Option(
        None,
        "--category",
        help="Document category.",
    ),
    description: str | None = typer.Option(
        None,
        "--description",
        "-d",
        help="Free-text description.",
    ),
) -> None:
    """Upload a document."""
    state = state_of(ctx)

    async def _upload() -> None:
        async with open_session(state) as session:
            with state.err_console.status(f"Uploading {file.name}..."):
                document = await session.api.upload_document(
                    file,
                    category=category,
                    description=description,
                )
        state.console.print(f"[green]Uploaded[/] {document.filename}")
        state.console.print(f"Document id: [bold]{document.id}[/]")

    run(state, _upload())


@app.command("list")
def list_documents(
    ctx: typer.Context,
    limit: int = typer.Option(20, "--limit", "-l", min=1, max=100),
    offset: int = typer.Option(0, "--offset", min=0),
    output_format: OutputFormat | None = typer.Option(
        None,
        "--format",
        "-f",
        help="Output format.",
    ),
) -> None:
    """List uploaded documents."""
    state = state_of(ctx)

    async def _list() -> None:
        async with open_session(state) as session:
            page = await session.api.list_documents(limit=limit, offset=offset)
        if state.output_format(output_format) == OutputFormat.JSON:
            state.console.out(page.model_dump_json(indent=2), highlight=False)
        elif not page.documents:
            state.console.print("No documents.")
        else:
            render_documents(state.console, page)

    run(state, _list())


@app.command()
def info(
    ctx: typer.Context,
    document_id: str = typer.Argument(..., help="Document id or unique prefix."),
    output_format: OutputFormat | None = typer.Option(
        None,
        "--format",
        "-f",
        help="Output format.",
    ),
) -> None:
    """Show a document."""
    state = state_of(ctx)

    async def _info() -> None:
        async with open_session(state) as session:
            full_id = await session.api.resolve_document_id(document_id)
            document = await session.api.get_document(full_id)
        if state.output_format(output_format) == OutputFormat.JSON:
            state.console.out(document.model_dump_json(indent=2), highlight=False)
        else:
            render_document(state.console, document)

    run(state, _info())


@app.command()
def delete(
    ctx: typer.Context,
    document_id: str = typer.Argument(..., help="Document id or unique prefix."),
    yes: bool = typer.Option(  # noqa: FBT001
        False,  # noqa: FBT003
        "--yes",
        "-y",
        help="Do not ask for confirmation.",
    ),
) -> None:
    """Delete a document."""
    state = state_of(ctx)

    async def _resolve() -> str:
        async with open_session(state) as session:
            return await session.api.resolve_document_id(document_id)

    full_id = run(state, _resolve())
    if not yes:
        typer.confirm(f"Delete document {full_id}?", abort=True)

    async def _delete() -> None:
        async with open_session(state) as session:
            await session.api.delete_document(full_id)

    run(state, _delete())
    state.console.print(f"Deleted document {full_id}.")


@app.command()
def download(
    ctx: typer.Context,
    document_id: str = typer.Argument(..., help="Document id or unique prefix."),
    output: Path = typer.Option(
        Path(),
        "--output",
        "-o",
        help="Target file, or directory to save under the original filename.",
    ),
) -> None:
    """Download a document's file."""
    state = state_of(ctx)

    async def _download() -> Path:
        async with open_session(state) as session:
            full_id = await session.api.resolve_document_id(document_id)
            return await session.api.download_document(full_id, output)

    written = run(state, _download())
    state.console.print(f"Saved to {written}")
