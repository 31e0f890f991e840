"""File-backed persistence of the credential record."""

from __future__ import annotations

import os
from pathlib import Path  # noqa: TC003

import structlog
from pydantic import ValidationError

from kanuni.auth.exceptions import CredentialDecodeError, CredentialStorageError
from kanuni.auth.models import StoredCredentials


__all__ = ["CredentialStore"]


class CredentialStore:
    """Persist a single credential record as JSON.

    The file is readable and writable by its owner only. Writes go to a
    temporary file that replaces the target in one step, so a reader never
    sees a half-written record.

    Example:
        ```python
        store = CredentialStore(Path("~/.config/kanuni/auth.json").expanduser())
        store.save(credentials)
        assert store.load() == credentials
        store.clear()
        ```
    """

    FILE_MODE = 0o600

    def __init__(self, path: Path) -> None:
        """Initialize the store.

        Args:
            path: Location of the credential file.
        """
        self.path = path
        self._logger = structlog.get_logger(__name__)

    def save(self, credentials: StoredCredentials) -> None:
        """Write ``credentials`` to disk, replacing any previous record.

        Raises:
            CredentialStorageError: If the file cannot be written.
        """
        payload = credentials.model_dump_json(indent=2).encode("utf-8")
        tmp_path = self.path.with_name(f".{self.path.name}.tmp")

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(
                tmp_path,
                os.O_WRONLY | os.O_CREAT | os.O_TRUNC,
                self.FILE_MODE,
            )
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            # O_CREAT's mode is filtered by umask and ignored for existing files
            if os.name == "posix":
                tmp_path.chmod(self.FILE_MODE)
            tmp_path.replace(self.path)
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            msg = f"Failed to write credentials: {exc.strerror or exc}"
            raise CredentialStorageError(msg, path=self.path) from exc

        self._logger.debug(
            "credentials_saved",
            path=str(self.path),
            kind=credentials.auth_type.kind,
        )

    def load(self) -> StoredCredentials | None:
        """Read the credential record.

        Returns:
            The stored record, or None if no credential file exists.

        Raises:
            CredentialStorageError: If the file exists but cannot be read.
            CredentialDecodeError: If the file content is not a valid record.
        """
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            msg = f"Failed to read credentials: {exc.strerror or exc}"
            raise CredentialStorageError(msg, path=self.path) from exc

        try:
            return StoredCredentials.model_validate_json(raw)
        except ValidationError as exc:
            msg = "Credential file is corrupt or in an unknown format"
            raise CredentialDecodeError(msg, path=self.path) from exc

    def clear(self) -> bool:
        """Remove the credential file.

        Returns:
            True if a file was removed, False if there was nothing to remove.

        Raises:
            CredentialStorageError: If the file exists but cannot be removed.
        """
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            msg = f"Failed to remove credentials: {exc.strerror or exc}"
            raise CredentialStorageError(msg, path=self.path) from exc

        self._logger.debug("credentials_cleared", path=str(self.path))
        return True
