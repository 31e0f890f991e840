"""Observability module (structured logging)."""

from __future__ import annotations

from kanuni.observability.logging import (
    LogLevel,
    clear_invocation_context,
    configure_logging,
    get_invocation_id,
    get_logger,
    mask_secret,
    redact_secrets,
    set_invocation_id,
)


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
