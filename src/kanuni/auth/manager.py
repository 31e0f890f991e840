"""Credential lifecycle: login flows, token refresh and logout."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import structlog

from kanuni.auth.exceptions import AuthenticationError
from kanuni.auth.models import (
    API_KEY_PREFIXES,
    ApiKeyCreated,
    ApiKeyCredential,
    ApiKeyInfo,
    DeviceCode,
    OAuthCredential,
    StoredCredentials,
    UserInfo,
)
from kanuni.errors import ApiAuthenticationError, ApiError, ApiValidationError


if TYPE_CHECKING:
    from collections.abc import Callable

    from kanuni.auth.client import AuthClient
    from kanuni.auth.store import CredentialStore


__all__ = ["CredentialManager", "parse_api_key"]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def parse_api_key(key: str) -> tuple[str, str]:
    """Split an API key into its prefix and the last four characters.

    Args:
        key: Full API key, e.g. ``kanuni_live_abcd1234``.

    Returns:
        ``(prefix, last_4)``.

    Raises:
        AuthenticationError: If the key does not have a known prefix or its
            secret part is shorter than four characters.
    """
    key = key.strip()
    for prefix in API_KEY_PREFIXES:
        if key.startswith(prefix):
            suffix = key[len(prefix) :]
            if len(suffix) >= 4:  # noqa: PLR2004
                return prefix, suffix[-4:]
            break
    msg = "Invalid API key format"
    raise AuthenticationError(
        msg,
        hint="API keys start with 'kanuni_live_' or 'kanuni_test_'.",
    )


class CredentialManager:
    """Owns the in-memory credential and keeps the access token fresh.

    API keys are returned unchanged. OAuth access tokens are refreshed once
    they are within :attr:`REFRESH_MARGIN` of expiry; concurrent callers
    share a single in-flight refresh. A refresh is persisted before the
    in-memory copy is replaced, and a failed refresh changes neither.

    Example:
        ```python
        manager = CredentialManager(CredentialStore(path), AuthClient(endpoint))
        token = await manager.get_access_token()
        ```
    """

    REFRESH_MARGIN = timedelta(minutes=5)

    def __init__(
        self,
        store: CredentialStore,
        client: AuthClient,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the manager.

        Args:
            store: Where the credential record is persisted.
            client: Client for the authentication endpoints.
            clock: Returns the current UTC time; injectable for tests.
        """
        self._store = store
        self._client = client
        self._clock = clock
        self._credentials: StoredCredentials | None = None
        self._refresh_task: asyncio.Task[str] | None = None
        self._logger = structlog.get_logger(__name__)

    @property
    def store(self) -> CredentialStore:
        """The backing credential store."""
        return self._store

    def _current(self) -> StoredCredentials | None:
        if self._credentials is None:
            self._credentials = self._store.load()
        return self._credentials

    def status(self) -> StoredCredentials | None:
        """Return the current credential record, or None when logged out."""
        return self._current()

    def is_authenticated(self) -> bool:
        """Return True if a credential is stored."""
        return self._current() is not None

    # -------------------------------------------------------------------------
    # Access tokens
    # -------------------------------------------------------------------------

    async def get_access_token(self) -> str:
        """Return a usable bearer token, refreshing it if it is about to expire.

        Raises:
            AuthenticationError: If not logged in or the refresh was rejected.
            CredentialStorageError: If the refreshed credential cannot be saved.
            CredentialDecodeError: If the stored credential is corrupt.
        """
        credentials = self._current()
        if credentials is None:
            msg = "Not authenticated"
            raise AuthenticationError(msg)

        auth = credentials.auth_type
        if isinstance(auth, ApiKeyCredential):
            return auth.key

        if not auth.expires_within(self.REFRESH_MARGIN, now=self._clock()):
            return auth.access_token

        if self._refresh_task is None:
            task = asyncio.create_task(self._refresh(credentials, auth))
            task.add_done_callback(self._on_refresh_done)
            self._refresh_task = task
        return await asyncio.shield(self._refresh_task)

    async def get_auth_headers(self) -> dict[str, str]:
        """Return the Authorization header for REST requests."""
        return {"Authorization": f"Bearer {await self.get_access_token()}"}

    def _on_refresh_done(self, task: asyncio.Task[str]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        if not task.cancelled():
            # Mark the exception retrieved even if every waiter was cancelled
            task.exception()

    async def _refresh(
        self,
        credentials: StoredCredentials,
        auth: OAuthCredential,
    ) -> str:
        log = self._logger.bind(expires_at=auth.expires_at.isoformat())
        log.debug("token_refresh_started")

        try:
            response = await self._client.refresh(auth.refresh_token)
        except (ApiAuthenticationError, ApiValidationError) as exc:
            log.warning("token_refresh_rejected", error=str(exc))
            msg = "Your session has expired and could not be refreshed"
            raise AuthenticationError(msg) from exc

        now = self._clock()
        updates: dict[str, object] = {"updated_at": now}
        if response.user is not None:
            updates["user_id"] = response.user.id
            updates["email"] = response.user.email
        updates["auth_type"] = auth.model_copy(
            update={
                "access_token": response.access_token,
                "refresh_token": response.refresh_token or auth.refresh_token,
                "expires_at": now + timedelta(seconds=response.expires_in),
            },
        )
        refreshed = credentials.model_copy(update=updates)

        self._store.save(refreshed)
        self._credentials = refreshed
        log.info(
            "token_refreshed",
            rotated=response.refresh_token is not None,
            expires_in=response.expires_in,
        )
        return response.access_token

    # -------------------------------------------------------------------------
    # Login flows
    # -------------------------------------------------------------------------

    def _save_oauth(
        self,
        access_token: str,
        refresh_token: str,
        expires_in: int,
        user: UserInfo | None,
    ) -> StoredCredentials:
        now = self._clock()
        credentials = StoredCredentials(
            auth_type=OAuthCredential(
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=now + timedelta(seconds=expires_in),
            ),
            user_id=user.id if user else None,
            email=user.email if user else None,
            created_at=now,
            updated_at=now,
        )
        self._store.save(credentials)
        self._credentials = credentials
        return credentials

    async def login_with_password(
        self,
        email: str,
        password: str,
        *,
        mfa_code: str | None = None,
    ) -> StoredCredentials:
        """Log in with email and password.

        Raises:
            AuthenticationError: If the server rejects the credentials.
        """
        try:
            response = await self._client.login(email, password, mfa_code=mfa_code)
        except ApiAuthenticationError as exc:
            msg = "Invalid email, password or MFA code"
            raise AuthenticationError(
                msg,
                hint="Check your credentials and try again.",
            ) from exc

        self._logger.info("logged_in", method="password", email=email)
        return self._save_oauth(
            response.access_token,
            response.refresh_token,
            response.expires_in,
            response.user,
        )

    async def login_device_flow(
        self,
        on_code: Callable[[DeviceCode], None],
    ) -> StoredCredentials:
        """Log in through the OAuth device authorization flow.

        Args:
            on_code: Called once with the device code so the caller can show
                the verification URI and user code.

        Raises:
            DeviceFlowError: If the user denies access or the code expires.
        """
        code = await self._client.request_device_code()
        on_code(code)
        grant = await self._client.poll_device_token(
            code.device_code,
            interval=float(code.interval),
        )

        user: UserInfo | None = None
        try:
            user = await self._client.get_profile(access_token=grant.access_token)
        except ApiError as exc:
            self._logger.warning("profile_lookup_failed", error=str(exc))

        self._logger.info("logged_in", method="device_flow")
        return self._save_oauth(
            grant.access_token,
            grant.refresh_token,
            grant.expires_in,
            user,
        )

    async def login_with_api_key(
        self,
        key: str,
        *,
        name: str = "CLI Key",
        validate: bool = True,
    ) -> StoredCredentials:
        """Store an API key after checking it against the profile endpoint.

        Raises:
            AuthenticationError: If the key is malformed or rejected.
        """
        prefix, last_4 = parse_api_key(key)

        user: UserInfo | None = None
        if validate:
            try:
                user = await self._client.get_profile(api_key=key.strip())
            except ApiAuthenticationError as exc:
                msg = "The API key was rejected by the server"
                raise AuthenticationError(
                    msg,
                    hint="Check that the key has not been revoked or expired.",
                ) from exc

        now = self._clock()
        credentials = StoredCredentials(
            auth_type=ApiKeyCredential(
                key=key.strip(),
                name=name,
                prefix=prefix,
                last_4=last_4,
            ),
            user_id=user.id if user else None,
            email=user.email if user else None,
            created_at=now,
            updated_at=now,
        )
        self._store.save(credentials)
        self._credentials = credentials
        self._logger.info("logged_in", method="api_key", key=credentials.auth_type.key)
        return credentials

    async def logout(self) -> bool:
        """Forget the stored credential, revoking the session where possible.

        Returns:
            True if a credential was removed.
        """
        credentials = self._current()
        if credentials is not None and isinstance(
            credentials.auth_type,
            OAuthCredential,
        ):
            try:
                await self._client.logout(credentials.auth_type.access_token)
            except ApiError as exc:
                self._logger.warning("server_logout_failed", error=str(exc))

        removed = self._store.clear()
        self._credentials = None
        self._logger.info("logged_out", removed=removed)
        return removed

    # -------------------------------------------------------------------------
    # API key management
    # -------------------------------------------------------------------------

    async def create_api_key(
        self,
        name: str,
        *,
        permissions: list[str] | None = None,
        expires_in_days: int | None = None,
        use: bool = False,
    ) -> ApiKeyCreated:
        """Create an API key, optionally switching this CLI over to it."""
        token = await self.get_access_token()
        created = await self._client.create_api_key(
            token,
            name=name,
            permissions=permissions,
            expires_in_days=expires_in_days,
        )
        if use:
            await self.login_with_api_key(created.api_key, name=name, validate=False)
        return created

    async def list_api_keys(self) -> list[ApiKeyInfo]:
        """List the account's API keys."""
        return await self._client.list_api_keys(await self.get_access_token())

    async def revoke_api_key(self, key_id: str) -> None:
        """Revoke one of the account's API keys."""
        await self._client.revoke_api_key(await self.get_access_token(), key_id)
