"""``kanuni config`` commands."""

from __future__ import annotations

import json

import typer
import yaml

from kanuni.cli.runtime import exit_with_error, state_of
from kanuni.config import (
    ConfigurationError,
    default_config_path,
    reset_settings,
    set_setting,
)


app = typer.Typer(help="Show and edit the configuration.", no_args_is_help=True)


@app.command()
def show(
    ctx: typer.Context,
    as_json: bool = typer.Option(  # noqa: FBT001
        False,  # noqa: FBT003
        "--json",
        help="Print JSON instead of YAML.",
    ),
) -> None:
    """Print the effective configuration."""
    state = state_of(ctx)
    data = state.settings.model_dump(mode="json")
    if as_json:
        state.console.out(json.dumps(data, indent=2), highlight=False)
    else:
        state.console.out(
            yaml.safe_dump(data, sort_keys=False).rstrip(),
            highlight=False,
        )


@app.command("set")
def set_value(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Dotted key, e.g. stream.enabled."),
    value: str = typer.Argument(..., help="New value."),
) -> None:
    """Set one configuration value."""
    state = state_of(ctx)
    try:
        stored = set_setting(key, value, state.config_path)
    except ConfigurationError as exc:
        exit_with_error(state, exc)
    state.console.print(f"{key} = {stored!r}", highlight=False)


@app.command()
def reset(
    ctx: typer.Context,
    yes: bool = typer.Option(  # noqa: FBT001
        False,  # noqa: FBT003
        "--yes",
        "-y",
        help="Do not ask for confirmation.",
    ),
) -> None:
    """Restore every setting to its default."""
    state = state_of(ctx)
    if not yes:
        typer.confirm("Reset the configuration to defaults?", abort=True)
    try:
        removed = reset_settings(state.config_path)
    except ConfigurationError as exc:
        exit_with_error(state, exc)
    state.console.print("Configuration reset." if removed else "Nothing to reset.")


@app.command()
def path(ctx: typer.Context) -> None:
    """Print the configuration file location."""
    state = state_of(ctx)
    state.console.out(str(state.config_path or default_config_path()), highlight=False)
