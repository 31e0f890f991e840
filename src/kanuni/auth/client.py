"""HTTP client for the authentication and API key endpoints."""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING, Any

from kanuni.auth.exceptions import DeviceFlowError
from kanuni.auth.models import (
    ApiKeyCreated,
    ApiKeyInfo,
    DeviceCode,
    LoginResponse,
    RefreshResponse,
    TokenGrant,
    UserInfo,
)
from kanuni.errors import ApiAuthenticationError, ApiError, ApiValidationError
from kanuni.http import BaseApiClient


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    import httpx


__all__ = ["CLIENT_ID", "AuthClient"]


CLIENT_ID = "kanuni-cli"
DEVICE_SCOPE = "full_access"


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class AuthClient(BaseApiClient):
    """Client for ``/auth/*`` and ``/account/api-keys`` endpoints.

    Unlike the document client, this one never attaches stored credentials on
    its own: every call receives the token it needs explicitly.

    Example:
        ```python
        async with AuthClient("https://api.kanuni.ai/api/v1") as client:
            tokens = await client.login("me@example.com", "hunter2")
        ```
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float | None = None,
        max_retries: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        super().__init__(
            base_url,
            timeout=timeout,
            max_retries=max_retries,
            transport=transport,
        )
        self._sleep = sleep

    # -------------------------------------------------------------------------
    # Session tokens
    # -------------------------------------------------------------------------

    async def login(
        self,
        email: str,
        password: str,
        *,
        mfa_code: str | None = None,
    ) -> LoginResponse:
        """Exchange email and password for a token pair.

        Raises:
            ApiAuthenticationError: If the credentials are rejected.
        """
        body: dict[str, Any] = {"email": email, "password": password}
        if mfa_code:
            body["mfa_code"] = mfa_code
        response = await self._request(
            "POST",
            "/auth/login",
            json=body,
            authenticated=False,
        )
        return LoginResponse.model_validate(response.json())

    async def refresh(self, refresh_token: str) -> RefreshResponse:
        """Exchange a refresh token for a new access token.

        Raises:
            ApiAuthenticationError: If the refresh token is invalid or revoked.
        """
        response = await self._request(
            "POST",
            "/auth/refresh",
            json={"refresh_token": refresh_token},
            authenticated=False,
        )
        return RefreshResponse.model_validate(response.json())

    async def logout(self, access_token: str) -> None:
        """Invalidate the session on the server."""
        await self._request(
            "POST",
            "/auth/logout",
            headers=_bearer(access_token),
            authenticated=False,
        )

    async def get_profile(
        self,
        *,
        api_key: str | None = None,
        access_token: str | None = None,
    ) -> UserInfo:
        """Fetch the account profile, authenticating with either credential."""
        if api_key is not None:
            headers = {"X-API-Key": api_key}
        elif access_token is not None:
            headers = _bearer(access_token)
        else:
            msg = "get_profile() needs an api_key or an access_token"
            raise ValueError(msg)

        response = await self._request(
            "GET",
            "/auth/profile",
            headers=headers,
            authenticated=False,
        )
        data = response.json()
        if isinstance(data, dict) and isinstance(data.get("user"), dict):
            data = data["user"]
        return UserInfo.model_validate(data)

    # -------------------------------------------------------------------------
    # Device authorization flow
    # -------------------------------------------------------------------------

    async def request_device_code(self) -> DeviceCode:
        """Start the device authorization flow."""
        response = await self._request(
            "POST",
            "/auth/device/code",
            json={"client_id": CLIENT_ID, "scope": DEVICE_SCOPE},
            authenticated=False,
        )
        return DeviceCode.model_validate(response.json())

    @staticmethod
    def _oauth_error(exc: ApiError) -> tuple[str | None, str | None]:
        """Extract ``(error, error_description)`` from an OAuth error body."""
        if exc.response is None:
            return None, None
        with contextlib.suppress(ValueError):
            body = exc.response.json()
            if isinstance(body, dict):
                return body.get("error"), body.get("error_description")
        return None, None

    async def poll_device_token(
        self,
        device_code: str,
        *,
        interval: float = 5.0,
        max_attempts: int = 120,
    ) -> TokenGrant:
        """Poll until the user approves the device code.

        Args:
            device_code: Code returned by :meth:`request_device_code`.
            interval: Seconds between polls, as advised by the server.
            max_attempts: Polls before giving up.

        Returns:
            The issued token pair.

        Raises:
            DeviceFlowError: If access is denied, the code expires, or the
                user never completes the flow.
        """
        poll_interval = interval
        for _ in range(max_attempts):
            await self._sleep(poll_interval)
            try:
                response = await self._request(
                    "POST",
                    "/auth/device/token",
                    json={"device_code": device_code, "client_id": CLIENT_ID},
                    authenticated=False,
                )
            except (ApiValidationError, ApiAuthenticationError) as exc:
                error, description = self._oauth_error(exc)
                if error == "authorization_pending":
                    continue
                if error == "slow_down":
                    poll_interval = interval + 5
                    self._logger.debug("device_flow_slow_down", interval=poll_interval)
                    continue
                if error == "access_denied":
                    msg = "Authorization was denied"
                    raise DeviceFlowError(msg, error_code=error) from exc
                if error == "expired_token":
                    msg = "Device code has expired"
                    raise DeviceFlowError(msg, error_code=error) from exc
                msg = f"Authentication failed: {description or error or exc.message}"
                raise DeviceFlowError(msg, error_code=error) from exc

            return TokenGrant.model_validate(response.json())

        msg = "Timed out waiting for device authorization"
        raise DeviceFlowError(msg)

    # -------------------------------------------------------------------------
    # API keys
    # -------------------------------------------------------------------------

    async def create_api_key(
        self,
        access_token: str,
        *,
        name: str,
        permissions: list[str] | None = None,
        expires_in_days: int | None = None,
    ) -> ApiKeyCreated:
        """Create an API key for the logged-in account."""
        response = await self._request(
            "POST",
            "/account/api-keys",
            json={
                "name": name,
                "permissions": permissions or ["full_access"],
                "expires_in_days": expires_in_days,
            },
            headers=_bearer(access_token),
            authenticated=False,
        )
        return ApiKeyCreated.model_validate(response.json())

    async def list_api_keys(self, access_token: str) -> list[ApiKeyInfo]:
        """List the account's API keys (masked)."""
        response = await self._request(
            "GET",
            "/account/api-keys",
            headers=_bearer(access_token),
            authenticated=False,
        )
        data = response.json()
        if isinstance(data, dict):
            data = data.get("api_keys", data.get("keys", []))
        return [ApiKeyInfo.model_validate(item) for item in data]

    async def revoke_api_key(self, access_token: str, key_id: str) -> None:
        """Revoke an API key by id."""
        await self._request(
            "DELETE",
            f"/account/api-keys/{key_id}",
            headers=_bearer(access_token),
            authenticated=False,
            resource=("API key", key_id),
        )
