"""Shared plumbing for CLI commands: state, service wiring and error exits."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, NoReturn, TypeVar

import structlog
import typer
from rich.console import Console

from kanuni.api import ApiClient, CompletionTimeoutError
from kanuni.auth import (
    AuthClient,
    AuthenticationError,
    CredentialManager,
    CredentialStore,
)
from kanuni.errors import ApiAuthenticationError, KanuniError
from kanuni.streaming import (
    ProgressTracker,
    ReconnectPolicy,
    StreamConnection,
    StreamError,
)


if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Coroutine
    from pathlib import Path

    from kanuni.config import OutputFormat, Settings


__all__ = [
    "EXIT_AUTH",
    "EXIT_FAILURE",
    "EXIT_TIMEOUT",
    "CliState",
    "Session",
    "exit_with_error",
    "open_session",
    "report_error",
    "run",
    "state_of",
]


EXIT_FAILURE = 1
EXIT_AUTH = 2
EXIT_TIMEOUT = 3

logger = structlog.get_logger(__name__)


@dataclass
class CliState:
    """Per-invocation state stored on the typer context."""

    settings: Settings
    config_path: Path | None = None
    console: Console = field(default_factory=Console)
    err_console: Console = field(default_factory=lambda: Console(stderr=True))

    def output_format(self, override: OutputFormat | None = None) -> OutputFormat:
        return override or self.settings.output.format


def state_of(ctx: typer.Context) -> CliState:
    state = ctx.find_root().obj
    if not isinstance(state, CliState):
        msg = "CLI state is not initialized"
        raise RuntimeError(msg)
    return state


@dataclass
class Session:
    """Service objects for one command, closed together."""

    settings: Settings
    credentials: CredentialManager
    api: ApiClient
    tracker: ProgressTracker | None = None

    async def follow(self, track: Coroutine[Any, Any, None]) -> bool:
        """Run a tracker subscription, degrading to polling when it fails.

        Returns:
            True if the subscription is active.
        """
        try:
            await track
        except StreamError as exc:
            logger.warning("progress_stream_unavailable", error=str(exc))
            if self.tracker is not None:
                await self.tracker.disconnect()
                self.tracker = None
            return False
        return True


@asynccontextmanager
async def open_session(
    state: CliState,
    *,
    streaming: bool = False,
) -> AsyncIterator[Session]:
    """Build the credential manager, REST client and optional tracker.

    Args:
        state: CLI state holding the loaded settings.
        streaming: Start a progress tracker when ``stream.enabled`` is set.
    """
    settings = state.settings
    auth_client = AuthClient(
        settings.api.endpoint,
        timeout=settings.api.timeout,
        max_retries=settings.api.max_retries,
    )
    credentials = CredentialManager(
        CredentialStore(settings.credentials_path),
        auth_client,
    )
    api = ApiClient(
        settings.api.endpoint,
        credentials,
        timeout=settings.api.timeout,
        max_retries=settings.api.max_retries,
    )

    tracker: ProgressTracker | None = None
    if streaming and settings.stream.enabled:
        connection = StreamConnection(
            settings.stream_url,
            credentials,
            policy=ReconnectPolicy.from_config(settings.stream),
            ping_interval=settings.stream.ping_interval,
        )
        tracker = ProgressTracker(connection)
        tracker.start_processing()

    session = Session(settings, credentials, api, tracker)
    try:
        yield session
    finally:
        if session.tracker is not None:
            await session.tracker.disconnect()
        await api.close()
        await auth_client.close()


def report_error(console: Console, exc: KanuniError) -> NoReturn:
    """Print ``exc`` with its hint and exit with the matching code."""
    console.print(f"[bold red]Error:[/] {exc}", highlight=False)
    if exc.hint:
        console.print(f"[dim]Hint: {exc.hint}[/]", highlight=False)

    if isinstance(exc, AuthenticationError | ApiAuthenticationError):
        code = EXIT_AUTH
    elif isinstance(exc, CompletionTimeoutError):
        code = EXIT_TIMEOUT
    else:
        code = EXIT_FAILURE
    raise typer.Exit(code)


def exit_with_error(state: CliState, exc: KanuniError) -> NoReturn:
    report_error(state.err_console, exc)


T = TypeVar("T")


def run(state: CliState, coro: Coroutine[Any, Any, T]) -> T:
    """Run an async command body, turning kanuni errors into exit codes."""
    try:
        return asyncio.run(coro)
    except KanuniError as exc:
        logger.debug("command_failed", error_type=type(exc).__name__, exc_info=True)
        exit_with_error(state, exc)
    except KeyboardInterrupt:
        state.err_console.print("Interrupted.")
        raise typer.Exit(130) from None
