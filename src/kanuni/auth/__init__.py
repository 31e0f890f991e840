"""Authentication: credential storage, login flows and token refresh.

Example:
    ```python
    from kanuni.auth import AuthClient, CredentialManager, CredentialStore

    manager = CredentialManager(
        CredentialStore(settings.credentials_path),
        AuthClient(settings.api.endpoint),
    )
    token = await manager.get_access_token()
    ```
"""

from __future__ import annotations

from kanuni.auth.client import CLIENT_ID, AuthClient
from kanuni.auth.exceptions import (
    AuthenticationError,
    CredentialDecodeError,
    CredentialError,
    CredentialStorageError,
    DeviceFlowError,
)
from kanuni.auth.manager import CredentialManager, parse_api_key
from kanuni.auth.models import (
    API_KEY_PREFIXES,
    ApiKeyCreated,
    ApiKeyCredential,
    ApiKeyInfo,
    Credential,
    DeviceCode,
    LoginResponse,
    OAuthCredential,
    RefreshResponse,
    StoredCredentials,
    TokenGrant,
    UserInfo,
)
from kanuni.auth.store import CredentialStore


__all__ = [
    "API_KEY_PREFIXES",
    "CLIENT_ID",
    "ApiKeyCreated",
    "ApiKeyCredential",
    "ApiKeyInfo",
    "AuthClient",
    "AuthenticationError",
    "Credential",
    "CredentialDecodeError",
    "CredentialError",
    "CredentialManager",
    "CredentialStorageError",
    "CredentialStore",
    "DeviceCode",
    "DeviceFlowError",
    "LoginResponse",
    "OAuthCredential",
    "RefreshResponse",
    "StoredCredentials",
    "TokenGrant",
    "UserInfo",
    "parse_api_key",
]
