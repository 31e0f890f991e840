"""Configuration-specific exceptions for kanuni."""

from __future__ import annotations

from kanuni.errors import KanuniError


__all__ = [
    "ConfigurationError",
    "ConfigurationFileNotFoundError",
    "ConfigurationValidationError",
]


class ConfigurationError(KanuniError):
    """Base exception for configuration errors."""

    default_hint = "Inspect your settings with 'kanuni config show'."


class ConfigurationFileNotFoundError(ConfigurationError):
    """Raised when an explicitly requested configuration file does not exist.

    Attributes:
        path: The path that was requested (may be None if searching defaults).
        searched_paths: List of paths that were searched.
    """

    def __init__(
        self,
        path: str | None = None,
        searched_paths: list[str] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            path: The specific path requested, or None if searching defaults.
            searched_paths: List of paths that were searched.
        """
        self.path = path
        self.searched_paths = searched_paths or []

        if path:
            message = f"Configuration file not found: {path}"
        elif self.searched_paths:
            paths_str = ", ".join(self.searched_paths)
            message = f"Configuration file not found. Searched: {paths_str}"
        else:
            message = "Configuration file not found"

        super().__init__(message)


class ConfigurationValidationError(ConfigurationError):
    """Raised when configuration validation fails.

    Attributes:
        errors: List of validation error details from Pydantic.
    """

    def __init__(
        self,
        message: str,
        errors: list[dict[str, object]] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable summary of the validation failure.
            errors: List of validation error details (from Pydantic).
        """
        super().__init__(message)
        self.errors = errors or []
