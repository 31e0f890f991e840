"""Structured logging configuration for kanuni.

Log lines go to stderr so they never mix with command output on stdout.
The setup uses structlog and supports:
- Configurable log levels (debug through critical)
- An invocation ID bound via contextvars, shared by every line of one command
- Masking of tokens, keys and passwords before anything is rendered
- Colorized console output on a TTY, logfmt otherwise
"""

from __future__ import annotations

import logging
import re
import sys
import uuid
from contextvars import ContextVar
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog
from structlog.contextvars import (
    bind_contextvars,
    clear_contextvars,
    merge_contextvars,
)
from structlog.processors import TimeStamper, add_log_level


if TYPE_CHECKING:
    from structlog.typing import EventDict, WrappedLogger

__all__ = [
    "LogLevel",
    "clear_invocation_context",
    "configure_logging",
    "get_invocation_id",
    "get_logger",
    "mask_secret",
    "redact_secrets",
    "set_invocation_id",
]


class LogLevel(StrEnum):
    """Supported log levels."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    def to_stdlib_level(self) -> int:
        """Convert to stdlib logging level.

        Returns:
            The corresponding logging module level constant.
        """
        level: int = getattr(logging, self.name)
        return level


_invocation_id_var: ContextVar[str | None] = ContextVar(
    "invocation_id",
    default=None,
)


def get_invocation_id() -> str | None:
    """Get the current invocation ID from context."""
    return _invocation_id_var.get()


def set_invocation_id(invocation_id: str | None = None) -> str:
    """Set the invocation ID in context.

    Args:
        invocation_id: ID to bind. A short random ID is generated when None.

    Returns:
        The invocation ID that was set.
    """
    if invocation_id is None:
        invocation_id = uuid.uuid4().hex[:8]

    _invocation_id_var.set(invocation_id)
    bind_contextvars(invocation_id=invocation_id)
    return invocation_id


def clear_invocation_context() -> None:
    """Clear the invocation ID and any structlog contextvars."""
    _invocation_id_var.set(None)
    clear_contextvars()


# ---------------------------------------------------------------------------
# Secret redaction
# ---------------------------------------------------------------------------

SECRET_KEYS = frozenset(
    {
        "token",
        "access_token",
        "refresh_token",
        "api_key",
        "key",
        "password",
        "device_code",
    },
)

_TOKEN_QUERY_PATTERN = re.compile(r"([?&]token=)[^&\s]+")


def mask_secret(value: str, *, visible: int = 4) -> str:
    """Mask a secret, keeping only its last few characters.

    Args:
        value: The secret to mask.
        visible: Number of trailing characters left readable.

    Returns:
        The masked string, e.g. ``"****abcd"``.
    """
    if len(value) <= visible * 2:
        return "****"
    return f"****{value[-visible:]}"


def redact_secrets(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Mask credential values and ``token=`` query parameters.

    Args:
        logger: The wrapped logger object (unused but required by protocol).
        method_name: The name of the log method called (unused but required).
        event_dict: The event dictionary to process.

    Returns:
        The event dictionary with secrets masked.
    """
    del logger, method_name
    for key, value in event_dict.items():
        if not isinstance(value, str):
            continue
        if key in SECRET_KEYS:
            event_dict[key] = mask_secret(value)
        elif "token=" in value:
            event_dict[key] = _TOKEN_QUERY_PATTERN.sub(r"\1****", value)
    return event_dict


def add_invocation_id(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Add invocation_id to the event dict if bound and not already set."""
    del logger, method_name
    if "invocation_id" not in event_dict:
        invocation_id = get_invocation_id()
        if invocation_id is not None:
            event_dict["invocation_id"] = invocation_id
    return event_dict


def _create_renderer(
    *,
    colors: bool,
) -> structlog.dev.ConsoleRenderer | structlog.processors.LogfmtRenderer:
    """Create a console renderer on a TTY, logfmt otherwise."""
    if colors:
        return structlog.dev.ConsoleRenderer(
            colors=True,
            exception_formatter=structlog.dev.plain_traceback,
        )
    return structlog.processors.LogfmtRenderer(
        key_order=["timestamp", "level", "event", "invocation_id"],
        drop_missing=True,
        bool_as_flag=False,
    )


def configure_logging(
    level: LogLevel | str = LogLevel.WARNING,
    *,
    force_colors: bool | None = None,
) -> None:
    """Configure structured logging for the CLI.

    This function should be called once per process, from the CLI callback.

    Args:
        level: Minimum log level. Can be a LogLevel enum or string
            ('debug', 'info', 'warning', 'error', 'critical').
        force_colors: Force color output on/off. If None, auto-detect from TTY.

    Example:
        >>> from kanuni.observability import configure_logging, LogLevel
        >>> configure_logging(level=LogLevel.DEBUG)
    """
    if isinstance(level, str):
        level = LogLevel(level.lower())

    if force_colors is not None:
        use_colors = force_colors
    else:
        use_colors = (
            sys.stderr is not None
            and hasattr(sys.stderr, "isatty")
            and sys.stderr.isatty()
        )

    # Order matters: redaction must run before rendering.
    processors: list[structlog.typing.Processor] = [
        merge_contextvars,
        add_invocation_id,
        redact_secrets,
        add_log_level,
        TimeStamper(fmt="iso", utc=True, key="timestamp"),
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _create_renderer(colors=use_colors),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level.to_stdlib_level()),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )

    # aiohttp and httpx log through stdlib logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=level.to_stdlib_level(),
        force=True,
    )


def get_logger(
    name: str | None = None,
    **initial_context: object,
) -> structlog.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name, typically __name__ of the calling module.
        **initial_context: Initial key-value pairs to bind to the logger.

    Returns:
        A bound structlog logger.

    Example:
        >>> logger = get_logger(__name__, component="stream")
        >>> logger.info("stream_connected", url="wss://api.kanuni.ai/api/v1/ws")
    """
    log: structlog.BoundLogger = structlog.get_logger(name)
    if initial_context:
        log = log.bind(**initial_context)
    return log
