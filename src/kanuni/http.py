"""Shared async HTTP plumbing for the Kanuni REST API."""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING, Any, Self

import httpx
import structlog

from kanuni import __version__
from kanuni.errors import (
    ApiAuthenticationError,
    ApiConnectionError,
    ApiError,
    ApiNotFoundError,
    ApiRateLimitError,
    ApiServerError,
    ApiValidationError,
)


if TYPE_CHECKING:
    from collections.abc import Mapping


__all__ = ["BaseApiClient"]


class BaseApiClient:
    """Async HTTP client with retry logic and typed error mapping.

    Subclasses add endpoint methods on top of :meth:`_request`. Requests that
    need authentication obtain their headers from :meth:`_auth_headers`,
    which subclasses override.

    Attributes:
        base_url: REST endpoint, e.g. ``https://api.kanuni.ai/api/v1``.
        timeout: Default timeout for requests.
        max_retries: Maximum number of retry attempts for transient errors.
    """

    DEFAULT_TIMEOUT = httpx.Timeout(30.0, connect=10.0)
    DEFAULT_MAX_RETRIES = 3
    RETRY_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

    def __init__(
        self,
        base_url: str,
        *,
        timeout: httpx.Timeout | float | None = None,
        max_retries: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: REST endpoint of the service.
            timeout: Optional custom timeout configuration.
            max_retries: Maximum retry attempts for transient errors (default: 3).
            transport: Optional custom transport for testing.
        """
        self.base_url = base_url.rstrip("/")
        if isinstance(timeout, int | float):
            timeout = httpx.Timeout(float(timeout), connect=10.0)
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self.max_retries = (
            max_retries if max_retries is not None else self.DEFAULT_MAX_RETRIES
        )
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._logger = structlog.get_logger(type(self).__module__)

    @property
    def _headers(self) -> dict[str, str]:
        """Default headers for API requests."""
        return {
            "Accept": "application/json",
            "User-Agent": f"kanuni-cli/{__version__}",
        }

    async def _auth_headers(self) -> dict[str, str]:
        """Return headers that authenticate a request."""
        return {}

    async def __aenter__(self) -> Self:
        """Enter async context and create HTTP client."""
        await self._ensure_client()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Exit async context and close HTTP client."""
        await self.close()

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Ensure the HTTP client is initialized."""
        if self._client is None or self._client.is_closed:
            transport = self._transport or httpx.AsyncHTTPTransport(retries=1)
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers,
                timeout=self.timeout,
                transport=transport,
                follow_redirects=True,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    # -------------------------------------------------------------------------
    # Core Request Methods with Retry Logic
    # -------------------------------------------------------------------------

    async def _request(  # noqa: C901, PLR0913
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any | None = None,  # noqa: ANN401
        data: Mapping[str, Any] | None = None,
        files: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        authenticated: bool = True,
        resource: tuple[str, str] | None = None,
    ) -> httpx.Response:
        """Execute an HTTP request with retry logic.

        Args:
            method: HTTP method (GET, POST, DELETE).
            path: Endpoint path relative to ``base_url``, or an absolute URL.
            params: Query parameters.
            json: JSON body data.
            data: Form data.
            files: Multipart file uploads.
            headers: Additional headers (merged with defaults).
            authenticated: Whether to attach authentication headers.
            resource: ``(type, id)`` used to describe a 404.

        Returns:
            The HTTP response.

        Raises:
            ApiAuthenticationError: For 401/403 responses.
            ApiNotFoundError: For 404 responses.
            ApiRateLimitError: For 429 responses (after retries exhausted).
            ApiServerError: For 5xx responses (after retries exhausted).
            ApiValidationError: For 400/422 responses.
            ApiConnectionError: For connection failures.
        """
        client = await self._ensure_client()
        log = self._logger.bind(method=method, path=path)

        request_headers: dict[str, str] = {}
        if authenticated:
            request_headers.update(await self._auth_headers())
        if headers:
            request_headers.update(headers)

        last_exception: Exception | None = None
        retry_after: float = 0.5

        for attempt in range(self.max_retries + 1):
            try:
                if attempt > 0:
                    log.debug(
                        "retrying_request",
                        attempt=attempt,
                        max_retries=self.max_retries,
                    )
                    await asyncio.sleep(retry_after)

                response = await client.request(
                    method,
                    path,
                    params=dict(params) if params else None,
                    json=json,
                    data=dict(data) if data else None,
                    files=files,
                    headers=request_headers,
                )

                log.debug(
                    "api_response",
                    status_code=response.status_code,
                    elapsed_ms=response.elapsed.total_seconds() * 1000,
                )

                if response.status_code == 429:  # noqa: PLR2004
                    retry_after = self._parse_retry_after(response, retry_after)
                    if attempt < self.max_retries:
                        continue
                    raise ApiRateLimitError(
                        retry_after=retry_after,
                        response=response,
                    )

                if response.status_code in self.RETRY_STATUS_CODES:
                    retry_after = min(retry_after * 2, 30.0)
                    if attempt < self.max_retries:
                        continue

                self._raise_for_status(response, resource=resource)
                return response  # noqa: TRY300

            except httpx.ConnectError as exc:
                last_exception = exc
                retry_after = min(retry_after * 2, 30.0)
                if attempt < self.max_retries:
                    log.warning("connection_error", error=str(exc), attempt=attempt)
                    continue
                raise ApiConnectionError(cause=exc) from exc

            except httpx.TimeoutException as exc:
                last_exception = exc
                retry_after = min(retry_after * 2, 30.0)
                if attempt < self.max_retries:
                    log.warning("timeout_error", error=str(exc), attempt=attempt)
                    continue
                raise ApiConnectionError(
                    message="Request to the Kanuni API timed out",
                    cause=exc,
                ) from exc

        msg = "Max retries exceeded"
        raise ApiError(msg) from last_exception

    def _parse_retry_after(
        self,
        response: httpx.Response,
        default: float,
    ) -> float:
        """Parse Retry-After header value."""
        retry_after_header = response.headers.get("Retry-After")
        if retry_after_header:
            try:
                return float(retry_after_header)
            except ValueError:
                pass
        return min(default * 2, 60.0)

    @staticmethod
    def _error_detail(response: httpx.Response) -> str | None:
        """Extract the server's error message from a JSON error body."""
        with contextlib.suppress(ValueError):
            body = response.json()
            if isinstance(body, dict):
                for key in ("message", "error", "detail"):
                    value = body.get(key)
                    if isinstance(value, str) and value:
                        return value
        return None

    def _raise_for_status(
        self,
        response: httpx.Response,
        *,
        resource: tuple[str, str] | None = None,
    ) -> None:
        """Raise appropriate exception for error status codes."""
        if response.is_success:
            return

        status = response.status_code
        detail = self._error_detail(response)

        if status in {401, 403}:
            raise ApiAuthenticationError(
                detail or "Authentication failed",
                response=response,
            )

        if status == 404:  # noqa: PLR2004
            resource_type, resource_id = resource or ("Resource", "unknown")
            raise ApiNotFoundError(resource_type, resource_id, response=response)

        if status == 413:  # noqa: PLR2004
            raise ApiValidationError(
                detail or "File too large",
                response=response,
            )

        if status in {400, 422}:
            errors = None
            with contextlib.suppress(ValueError):
                errors = response.json()
            raise ApiValidationError(
                detail or "Request rejected by the server",
                errors=errors if isinstance(errors, dict) else None,
                response=response,
            )

        if status >= 500:  # noqa: PLR2004
            raise ApiServerError(
                detail or f"Server error: {status}",
                response=response,
            )

        raise ApiError(
            detail or f"Unexpected error: {status}",
            response=response,
        )
