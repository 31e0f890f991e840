"""Exceptions raised by the credential lifecycle."""

from __future__ import annotations

from pathlib import Path  # noqa: TC003

from kanuni.errors import KanuniError


__all__ = [
    "AuthenticationError",
    "CredentialDecodeError",
    "CredentialError",
    "CredentialStorageError",
    "DeviceFlowError",
]


_LOGIN_HINT = "Run 'kanuni auth login' to authenticate."


class AuthenticationError(KanuniError):
    """Raised when no usable credential exists or a refresh was rejected.

    Never retried automatically; the user has to log in again.
    """

    default_hint = _LOGIN_HINT


class DeviceFlowError(AuthenticationError):
    """Raised when the device authorization flow is denied or expires.

    Attributes:
        error_code: OAuth error code returned by the server, if any.
    """

    def __init__(self, message: str, *, error_code: str | None = None) -> None:
        super().__init__(message)
        self.error_code = error_code


class CredentialError(KanuniError):
    """Base exception for credential file problems.

    Attributes:
        path: The credential file involved.
    """

    def __init__(self, message: str, *, path: Path) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            path: The credential file involved.
        """
        super().__init__(message)
        self.path = path

    def __str__(self) -> str:
        return f"{self.message} ({self.path})"


class CredentialStorageError(CredentialError):
    """Raised when the credential file cannot be read or written."""

    default_hint = "Check the permissions of the kanuni config directory."


class CredentialDecodeError(CredentialError):
    """Raised when the credential file exists but cannot be parsed."""

    default_hint = "Run 'kanuni auth logout' and log in again to rewrite it."
