"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest
import structlog

from kanuni.auth import (
    ApiKeyCredential,
    CredentialStore,
    OAuthCredential,
    StoredCredentials,
)
from kanuni.config import clear_settings_cache
from kanuni.observability import clear_invocation_context


if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


API_URL = "http://kanuni.test/api/v1"
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def isolated_environment(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> Iterator[Path]:
    """Point the config directory at a temp dir and drop KANUNI_* variables."""
    for key in list(os.environ):
        if key.startswith("KANUNI_"):
            monkeypatch.delenv(key)
    app_dir = tmp_path / "kanuni-home"
    monkeypatch.setenv("KANUNI_CONFIG_DIR", str(app_dir))
    monkeypatch.chdir(tmp_path)
    clear_settings_cache()
    yield app_dir
    clear_settings_cache()
    clear_invocation_context()
    structlog.reset_defaults()


@pytest.fixture
def api_url() -> str:
    return API_URL


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def store(tmp_path: Path) -> CredentialStore:
    return CredentialStore(tmp_path / "auth" / "auth.json")


@pytest.fixture
def oauth_credentials() -> StoredCredentials:
    """An OAuth record valid for another hour at :data:`NOW`."""
    return StoredCredentials(
        auth_type=OAuthCredential(
            access_token="access-old",
            refresh_token="refresh-old",
            expires_at=NOW + timedelta(hours=1),
        ),
        user_id="user-1",
        email="ada@example.com",
        created_at=NOW - timedelta(days=1),
        updated_at=NOW - timedelta(days=1),
    )


@pytest.fixture
def expiring_credentials(oauth_credentials: StoredCredentials) -> StoredCredentials:
    """An OAuth record that expires inside the refresh margin."""
    auth = oauth_credentials.auth_type
    assert isinstance(auth, OAuthCredential)
    return oauth_credentials.model_copy(
        update={
            "auth_type": auth.model_copy(
                update={"expires_at": NOW + timedelta(minutes=2)},
            ),
        },
    )


@pytest.fixture
def api_key_credentials() -> StoredCredentials:
    return StoredCredentials(
        auth_type=ApiKeyCredential(
            key="kanuni_live_secretkey9z8y",
            name="CI",
            prefix="kanuni_live_",
            last_4="9z8y",
        ),
        created_at=NOW,
        updated_at=NOW,
    )
