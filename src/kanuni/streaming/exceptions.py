"""Exceptions raised by the real-time progress stream."""

from __future__ import annotations

from kanuni.errors import KanuniError


__all__ = [
    "ConnectivityError",
    "ProtocolError",
    "ReconnectExhaustedError",
    "StreamError",
    "SubscriptionError",
]


class StreamError(KanuniError):
    """Base exception for progress stream errors."""


class ConnectivityError(StreamError):
    """Raised when the stream cannot be opened or the connection drops.

    Retried by :meth:`StreamConnection.handle_reconnect`.
    """

    default_hint = "Check your network connection; progress also shows via REST."


class ReconnectExhaustedError(ConnectivityError):
    """Raised when every reconnect attempt failed.

    Attributes:
        attempts: Number of connection attempts made.
        elapsed: Seconds spent reconnecting.
    """

    def __init__(self, attempts: int, elapsed: float) -> None:
        """Initialize the exception.

        Args:
            attempts: Number of connection attempts made.
            elapsed: Seconds spent reconnecting.
        """
        super().__init__(
            f"Could not reconnect to the progress stream after {attempts} "
            f"attempt(s) in {elapsed:.1f}s",
        )
        self.attempts = attempts
        self.elapsed = elapsed


class ProtocolError(StreamError):
    """Raised for an inbound frame that does not match the wire protocol.

    Attributes:
        raw: The offending frame, truncated.
    """

    MAX_RAW = 200

    def __init__(self, message: str, *, raw: str | None = None) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            raw: The offending frame.
        """
        super().__init__(message)
        self.raw = raw[: self.MAX_RAW] if raw is not None else None


class SubscriptionError(StreamError):
    """Raised when a command is sent while no connection is live."""
