"""Unit tests for the authentication endpoints client."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import httpx
import pytest

from kanuni.auth import AuthClient, DeviceFlowError
from kanuni.errors import (
    ApiAuthenticationError,
    ApiConnectionError,
    ApiNotFoundError,
    ApiServerError,
)


if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    import respx


API_URL = "http://kanuni.test/api/v1"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
async def client(sleeps: list[float]) -> AsyncGenerator[AuthClient, None]:
    """Auth client that records sleeps instead of waiting."""

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    async with AuthClient(API_URL, max_retries=1, sleep=fake_sleep) as c:
        yield c


@pytest.fixture
def user_json() -> dict[str, Any]:
    return {
        "id": "user-1",
        "email": "ada@example.com",
        "first_name": "Ada",
        "email_verified": True,
        "subscription_tier": "pro",
    }


def oauth_error(error: str, status: int = 400) -> httpx.Response:
    return httpx.Response(status, json={"error": error, "error_description": error})


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------


class TestLogin:
    """Tests for login / refresh / logout."""

    @pytest.mark.respx(base_url=API_URL)
    async def test_login_sends_credentials(
        self,
        client: AuthClient,
        respx_mock: respx.MockRouter,
        user_json: dict[str, Any],
    ) -> None:
        route = respx_mock.post("/auth/login").mock(
            return_value=httpx.Response(
                200,
                json={
                    "user": user_json,
                    "access_token": "acc",
                    "refresh_token": "ref",
                    "expires_in": 3600,
                },
            ),
        )
        response = await client.login("ada@example.com", "pw", mfa_code="123456")

        assert response.access_token == "acc"
        assert response.user.email == "ada@example.com"
        body = json.loads(route.calls.last.request.content)
        assert body == {
            "email": "ada@example.com",
            "password": "pw",
            "mfa_code": "123456",
        }
        assert "Authorization" not in route.calls.last.request.headers

    @pytest.mark.respx(base_url=API_URL)
    async def test_login_rejected(
        self,
        client: AuthClient,
        respx_mock: respx.MockRouter,
    ) -> None:
        respx_mock.post("/auth/login").mock(
            return_value=httpx.Response(401, json={"message": "Invalid credentials"}),
        )
        with pytest.raises(ApiAuthenticationError) as exc_info:
            await client.login("ada@example.com", "wrong")
        assert exc_info.value.message == "Invalid credentials"
        assert exc_info.value.status_code == 401

    @pytest.mark.respx(base_url=API_URL)
    async def test_refresh_without_rotation(
        self,
        client: AuthClient,
        respx_mock: respx.MockRouter,
    ) -> None:
        respx_mock.post("/auth/refresh").mock(
            return_value=httpx.Response(
                200,
                json={"access_token": "new", "expires_in": 900},
            ),
        )
        response = await client.refresh("ref")
        assert response.access_token == "new"
        assert response.refresh_token is None
        assert response.user is None

    @pytest.mark.respx(base_url=API_URL)
    async def test_logout_uses_bearer(
        self,
        client: AuthClient,
        respx_mock: respx.MockRouter,
    ) -> None:
        route = respx_mock.post("/auth/logout").mock(return_value=httpx.Response(204))
        await client.logout("acc")
        assert route.calls.last.request.headers["Authorization"] == "Bearer acc"


class TestProfile:
    @pytest.mark.respx(base_url=API_URL)
    async def test_profile_with_api_key(
        self,
        client: AuthClient,
        respx_mock: respx.MockRouter,
        user_json: dict[str, Any],
    ) -> None:
        route = respx_mock.get("/auth/profile").mock(
            return_value=httpx.Response(200, json={"user": user_json}),
        )
        user = await client.get_profile(api_key="kanuni_live_abcd1234")
        assert user.id == "user-1"
        assert route.calls.last.request.headers["X-API-Key"] == "kanuni_live_abcd1234"

    @pytest.mark.respx(base_url=API_URL)
    async def test_profile_unwrapped_body(
        self,
        client: AuthClient,
        respx_mock: respx.MockRouter,
        user_json: dict[str, Any],
    ) -> None:
        respx_mock.get("/auth/profile").mock(
            return_value=httpx.Response(200, json=user_json),
        )
        user = await client.get_profile(access_token="acc")
        assert user.email == "ada@example.com"

    async def test_profile_needs_a_credential(self, client: AuthClient) -> None:
        with pytest.raises(ValueError, match="api_key or an access_token"):
            await client.get_profile()


# ---------------------------------------------------------------------------
# Device flow
# ---------------------------------------------------------------------------


class TestDeviceFlow:
    """Tests for the device authorization flow."""

    @pytest.mark.respx(base_url=API_URL)
    async def test_request_device_code(
        self,
        client: AuthClient,
        respx_mock: respx.MockRouter,
    ) -> None:
        route = respx_mock.post("/auth/device/code").mock(
            return_value=httpx.Response(
                200,
                json={
                    "device_code": "dev",
                    "user_code": "ABCD-EFGH",
                    "verification_uri": "https://kanuni.ai/device",
                    "expires_in": 600,
                },
            ),
        )
        code = await client.request_device_code()
        assert code.user_code == "ABCD-EFGH"
        assert code.interval == 5
        assert json.loads(route.calls.last.request.content)["client_id"] == "kanuni-cli"

    @pytest.mark.respx(base_url=API_URL)
    async def test_poll_until_approved(
        self,
        client: AuthClient,
        respx_mock: respx.MockRouter,
        sleeps: list[float],
    ) -> None:
        respx_mock.post("/auth/device/token").mock(
            side_effect=[
                oauth_error("authorization_pending"),
                oauth_error("slow_down"),
                oauth_error("authorization_pending"),
                httpx.Response(
                    200,
                    json={
                        "access_token": "acc",
                        "refresh_token": "ref",
                        "expires_in": 3600,
                    },
                ),
            ],
        )
        grant = await client.poll_device_token("dev", interval=2)

        assert grant.access_token == "acc"
        assert grant.token_type == "Bearer"
        # Sleeps before every poll; slow_down adds five seconds from then on
        assert sleeps == [2, 2, 7, 7]

    @pytest.mark.respx(base_url=API_URL)
    @pytest.mark.parametrize(
        ("error", "message"),
        [
            ("access_denied", "Authorization was denied"),
            ("expired_token", "Device code has expired"),
        ],
    )
    async def test_poll_terminal_errors(
        self,
        client: AuthClient,
        respx_mock: respx.MockRouter,
        error: str,
        message: str,
    ) -> None:
        respx_mock.post("/auth/device/token").mock(return_value=oauth_error(error))
        with pytest.raises(DeviceFlowError) as exc_info:
            await client.poll_device_token("dev", interval=1)
        assert exc_info.value.message == message
        assert exc_info.value.error_code == error

    @pytest.mark.respx(base_url=API_URL)
    async def test_poll_gives_up(
        self,
        client: AuthClient,
        respx_mock: respx.MockRouter,
        sleeps: list[float],
    ) -> None:
        respx_mock.post("/auth/device/token").mock(
            return_value=oauth_error("authorization_pending"),
        )
        with pytest.raises(DeviceFlowError, match="Timed out"):
            await client.poll_device_token("dev", interval=1, max_attempts=3)
        assert len(sleeps) == 3


# ---------------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------------


class TestApiKeys:
    @pytest.mark.respx(base_url=API_URL)
    async def test_create_api_key(
        self,
        client: AuthClient,
        respx_mock: respx.MockRouter,
    ) -> None:
        route = respx_mock.post("/account/api-keys").mock(
            return_value=httpx.Response(
                201,
                json={
                    "key_id": "k1",
                    "name": "CI",
                    "api_key": "kanuni_live_fullsecret",
                    "prefix": "kanuni_live_",
                    "last_4": "cret",
                },
            ),
        )
        created = await client.create_api_key("acc", name="CI", expires_in_days=30)
        assert created.api_key == "kanuni_live_fullsecret"
        body = json.loads(route.calls.last.request.content)
        assert body == {
            "name": "CI",
            "permissions": ["full_access"],
            "expires_in_days": 30,
        }

    @pytest.mark.respx(base_url=API_URL)
    @pytest.mark.parametrize("wrapper", [None, "api_keys", "keys"])
    async def test_list_api_keys_shapes(
        self,
        client: AuthClient,
        respx_mock: respx.MockRouter,
        wrapper: str | None,
    ) -> None:
        keys = [{"id": "k1", "name": "CI", "prefix": "kanuni_live_", "last_4": "abcd"}]
        payload: Any = keys if wrapper is None else {wrapper: keys}
        respx_mock.get("/account/api-keys").mock(
            return_value=httpx.Response(200, json=payload),
        )
        listed = await client.list_api_keys("acc")
        assert [k.id for k in listed] == ["k1"]

    @pytest.mark.respx(base_url=API_URL)
    async def test_revoke_missing_key(
        self,
        client: AuthClient,
        respx_mock: respx.MockRouter,
    ) -> None:
        respx_mock.delete("/account/api-keys/k9").mock(
            return_value=httpx.Response(404),
        )
        with pytest.raises(ApiNotFoundError) as exc_info:
            await client.revoke_api_key("acc", "k9")
        assert exc_info.value.resource_id == "k9"


# ---------------------------------------------------------------------------
# Retry behavior
# ---------------------------------------------------------------------------


class TestRetries:
    """Tests for the shared retry loop."""

    @pytest.mark.respx(base_url=API_URL)
    async def test_server_error_retried_then_raised(
        self,
        client: AuthClient,
        respx_mock: respx.MockRouter,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        async def no_sleep(_: float) -> None:
            return None

        monkeypatch.setattr("kanuni.http.asyncio.sleep", no_sleep)
        route = respx_mock.post("/auth/refresh").mock(
            return_value=httpx.Response(503),
        )
        with pytest.raises(ApiServerError):
            await client.refresh("ref")
        assert route.call_count == 2

    @pytest.mark.respx(base_url=API_URL)
    async def test_connection_error(
        self,
        client: AuthClient,
        respx_mock: respx.MockRouter,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        async def no_sleep(_: float) -> None:
            return None

        monkeypatch.setattr("kanuni.http.asyncio.sleep", no_sleep)
        respx_mock.post("/auth/refresh").mock(
            side_effect=httpx.ConnectError("refused"),
        )
        with pytest.raises(ApiConnectionError):
            await client.refresh("ref")
