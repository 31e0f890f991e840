"""Pydantic models for credentials and the authentication endpoints."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


__all__ = [
    "API_KEY_PREFIXES",
    "ApiKeyCreated",
    "ApiKeyCredential",
    "ApiKeyInfo",
    "AuthBaseModel",
    "Credential",
    "DeviceCode",
    "LoginResponse",
    "OAuthCredential",
    "RefreshResponse",
    "StoredCredentials",
    "TokenGrant",
    "UserInfo",
]


API_KEY_PREFIXES = ("kanuni_live_", "kanuni_test_")


class AuthBaseModel(BaseModel):
    """Base model for authentication payloads."""

    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


# ---------------------------------------------------------------------------
# Stored credential
# ---------------------------------------------------------------------------


class OAuthCredential(AuthBaseModel):
    """Access/refresh token pair obtained through login or device flow."""

    kind: Literal["oauth"] = "oauth"
    access_token: str
    refresh_token: str
    expires_at: datetime

    def expires_within(self, margin: timedelta, *, now: datetime) -> bool:
        """Return True if the access token expires before ``now + margin``."""
        return self.expires_at <= now + margin


class ApiKeyCredential(AuthBaseModel):
    """Long-lived API key; never refreshed."""

    kind: Literal["api_key"] = "api_key"
    key: str
    name: str = "CLI Key"
    prefix: str
    last_4: str

    @property
    def display(self) -> str:
        """Masked form of the key, e.g. ``kanuni_live_...a1b2``."""
        return f"{self.prefix}...{self.last_4}"


Credential = Annotated[
    OAuthCredential | ApiKeyCredential,
    Field(discriminator="kind"),
]

_LEGACY_TAGS = {"OAuth": "oauth", "ApiKey": "api_key"}


class StoredCredentials(AuthBaseModel):
    """The single credential record persisted in ``auth.json``."""

    auth_type: Credential
    user_id: str | None = None
    email: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="before")
    @classmethod
    def _accept_external_tag(cls, data: Any) -> Any:  # noqa: ANN401
        """Accept ``{"OAuth": {...}}`` style records written by older clients."""
        if isinstance(data, dict):
            auth_type = data.get("auth_type")
            if isinstance(auth_type, dict) and len(auth_type) == 1:
                ((tag, body),) = auth_type.items()
                if tag in _LEGACY_TAGS and isinstance(body, dict):
                    data = {**data, "auth_type": {**body, "kind": _LEGACY_TAGS[tag]}}
        return data

    @property
    def is_api_key(self) -> bool:
        """True when the credential is an API key."""
        return isinstance(self.auth_type, ApiKeyCredential)


# ---------------------------------------------------------------------------
# Endpoint payloads
# ---------------------------------------------------------------------------


class UserInfo(AuthBaseModel):
    """Account profile returned by login, refresh and ``/auth/profile``."""

    id: str
    email: str
    first_name: str | None = None
    last_name: str | None = None
    email_verified: bool = False
    subscription_tier: str | None = None
    mfa_enabled: bool = False


class LoginResponse(AuthBaseModel):
    """Response of ``POST /auth/login``."""

    user: UserInfo
    access_token: str
    refresh_token: str
    expires_in: int


class RefreshResponse(AuthBaseModel):
    """Response of ``POST /auth/refresh``.

    ``refresh_token`` is only present when the server rotates it.
    """

    user: UserInfo | None = None
    access_token: str
    refresh_token: str | None = None
    expires_in: int


class DeviceCode(AuthBaseModel):
    """Response of ``POST /auth/device/code``."""

    device_code: str
    user_code: str
    verification_uri: str
    verification_uri_complete: str | None = None
    expires_in: int
    interval: int = 5


class TokenGrant(AuthBaseModel):
    """Successful response of ``POST /auth/device/token``."""

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int
    scope: str | None = None


class ApiKeyCreated(AuthBaseModel):
    """Response of ``POST /account/api-keys``; the only time the key is shown."""

    key_id: str | None = None
    name: str
    api_key: str
    prefix: str
    last_4: str
    permissions: list[str] = Field(default_factory=list)
    expires_at: datetime | None = None


class ApiKeyInfo(AuthBaseModel):
    """One entry of ``GET /account/api-keys``."""

    id: str
    name: str
    prefix: str
    last_4: str
    permissions: list[str] = Field(default_factory=list)
    last_used_at: datetime | None = None
    expires_at: datetime | None = None
    created_at: datetime | None = None
