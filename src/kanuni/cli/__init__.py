"""Command-line interface for Kanuni."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from kanuni import __version__
from kanuni.cli import analyze as analyze_commands
from kanuni.cli import auth, batch, config, documents
from kanuni.cli.runtime import CliState, report_error
from kanuni.config import ConfigurationError, find_config_file, load_settings
from kanuni.observability import LogLevel, configure_logging, set_invocation_id


app = typer.Typer(
    name="kanuni",
    help="Upload documents to Kanuni and analyze them from the terminal.",
    no_args_is_help=True,
)
app.add_typer(auth.app, name="auth")
app.add_typer(documents.app, name="document")
app.add_typer(analyze_commands.app, name="analysis")
app.add_typer(batch.app, name="batch")
app.add_typer(config.app, name="config")
app.command("analyze")(analyze_commands.analyze)


def version_callback(value: bool) -> None:  # noqa: FBT001
    """Print version and exit."""
    if value:
        typer.echo(f"kanuni version {__version__}")
        raise typer.Exit


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(  # noqa: FBT001
        False,  # noqa: FBT003
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(  # noqa: FBT001
        False,  # noqa: FBT003
        "--verbose",
        "-V",
        help="Enable verbose (debug) logging.",
    ),
    quiet: bool = typer.Option(  # noqa: FBT001
        False,  # noqa: FBT003
        "--quiet",
        "-q",
        help="Only show errors.",
    ),
    config_file: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
    ),
) -> None:
    """Kanuni document analysis CLI."""
    del version  # Handled by callback

    if verbose and quiet:
        typer.echo("Error: --verbose and --quiet are mutually exclusive.", err=True)
        raise typer.Exit(1)

    try:
        settings = load_settings(config_file)
    except ConfigurationError as exc:
        report_error(Console(stderr=True), exc)

    color = settings.output.color
    ctx.obj = CliState(
        settings=settings,
        config_path=config_file or find_config_file(),
        console=Console(no_color=not color),
        err_console=Console(stderr=True, no_color=not color),
    )

    if verbose:
        level = LogLevel.DEBUG
    elif quiet:
        level = LogLevel.ERROR
    else:
        level = settings.observability.logging.level
    configure_logging(level=level)
    set_invocation_id()


__all__ = ["app"]
