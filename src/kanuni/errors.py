"""Exception hierarchy shared by every kanuni component.

All errors raised across package boundaries derive from :class:`KanuniError`,
so the CLI can render them as one category of failure. HTTP failures are
mapped from status codes onto the :class:`ApiError` subclasses below.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    import httpx


__all__ = [
    "ApiAuthenticationError",
    "ApiConnectionError",
    "ApiError",
    "ApiNotFoundError",
    "ApiRateLimitError",
    "ApiServerError",
    "ApiValidationError",
    "KanuniError",
]


class KanuniError(Exception):
    """Base exception for all kanuni errors.

    Attributes:
        message: Human-readable error description.
        hint: Optional suggestion shown to the user alongside the message.
    """

    default_hint: str | None = None

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            hint: Suggestion for the user; falls back to ``default_hint``.
        """
        super().__init__(message)
        self.message = message
        self.hint = hint if hint is not None else self.default_hint

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# HTTP API errors
# ---------------------------------------------------------------------------


class ApiError(KanuniError):
    """Raised for failed requests against the Kanuni REST API.

    Attributes:
        response: The HTTP response that caused this error, if available.
    """

    def __init__(
        self,
        message: str,
        *,
        response: httpx.Response | None = None,
        hint: str | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            response: The HTTP response that caused this error.
            hint: Suggestion for the user.
        """
        super().__init__(message, hint=hint)
        self.response = response

    @property
    def status_code(self) -> int | None:
        """HTTP status code of the failed response, if any."""
        if self.response is None:
            return None
        return self.response.status_code

    def __str__(self) -> str:
        """Return string representation with status code if available."""
        if self.response is not None:
            return f"{self.message} (status={self.response.status_code})"
        return self.message


class ApiConnectionError(ApiError):
    """Raised when the service cannot be reached (network error or timeout)."""

    default_hint = "Check your network connection and the configured api endpoint."

    def __init__(
        self,
        message: str = "Failed to connect to the Kanuni API",
        *,
        cause: Exception | None = None,
    ) -> None:
        """Initialize the connection error.

        Args:
            message: Human-readable error description.
            cause: The underlying exception that caused this error.
        """
        super().__init__(message)
        self.__cause__ = cause


class ApiAuthenticationError(ApiError):
    """Raised for 401/403 responses."""

    default_hint = "Run 'kanuni auth login' to authenticate again."


class ApiNotFoundError(ApiError):
    """Raised when a resource is not found (404).

    Attributes:
        resource_type: The kind of resource that was requested.
        resource_id: The identifier that was not found.
    """

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        *,
        response: httpx.Response | None = None,
    ) -> None:
        """Initialize the not found error.

        Args:
            resource_type: The kind of resource (e.g. "Document").
            resource_id: The identifier that was not found.
            response: The HTTP response that caused this error.
        """
        super().__init__(
            f"{resource_type} {resource_id} not found",
            response=response,
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ApiRateLimitError(ApiError):
    """Raised when rate limited (429) after retries are exhausted.

    Attributes:
        retry_after: Seconds the server asked us to wait, if provided.
    """

    default_hint = "Wait a moment and try again."

    def __init__(
        self,
        message: str = "Rate limited by the Kanuni API",
        *,
        retry_after: float | None = None,
        response: httpx.Response | None = None,
    ) -> None:
        """Initialize the rate limit error.

        Args:
            message: Human-readable error description.
            retry_after: Seconds to wait before retrying.
            response: The HTTP response that caused this error.
        """
        super().__init__(message, response=response)
        self.retry_after = retry_after


class ApiServerError(ApiError):
    """Raised for 5xx responses after retries are exhausted."""

    default_hint = "The service is having trouble; try again later."


class ApiValidationError(ApiError):
    """Raised for 400/422 responses.

    Attributes:
        errors: Error payload returned by the server, if it was JSON.
    """

    def __init__(
        self,
        message: str,
        *,
        errors: dict[str, Any] | None = None,
        response: httpx.Response | None = None,
    ) -> None:
        """Initialize the validation error.

        Args:
            message: Human-readable error description.
            errors: Server-provided error details.
            response: The HTTP response that caused this error.
        """
        super().__init__(message, response=response)
        self.errors = errors or {}
