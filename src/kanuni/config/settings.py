"""Settings management for kanuni.

This module provides the main Settings class and functions for loading,
editing and saving configuration from YAML files and environment variables.

Example:
    >>> from kanuni.config import load_settings
    >>> settings = load_settings()
    >>> print(settings.api.endpoint)
    http://localhost:8080/api/v1
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar
from urllib.parse import urlsplit, urlunsplit

import typer
import yaml
from pydantic import ValidationError
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from kanuni.config.exceptions import (
    ConfigurationError,
    ConfigurationFileNotFoundError,
    ConfigurationValidationError,
)
from kanuni.config.schema import (
    AnalysisConfig,
    ApiConfig,
    AuthConfig,
    BatchConfig,
    ObservabilityConfig,
    OutputConfig,
    StreamConfig,
)


if TYPE_CHECKING:
    from collections.abc import Sequence


__all__ = [
    "APP_NAME",
    "Settings",
    "app_dir",
    "clear_settings_cache",
    "default_config_path",
    "derive_stream_url",
    "find_config_file",
    "get_settings",
    "load_settings",
    "reset_settings",
    "save_settings",
    "set_setting",
]


APP_NAME = "kanuni"

# Overrides the per-OS application directory (used by tests and CI).
APP_DIR_ENV = "KANUNI_CONFIG_DIR"


def app_dir() -> Path:
    """Return the per-OS configuration directory for kanuni.

    Returns:
        ``$KANUNI_CONFIG_DIR`` when set, otherwise the platform default
        (``~/.config/kanuni`` on Linux).
    """
    override = os.environ.get(APP_DIR_ENV)
    if override:
        return Path(override)
    return Path(typer.get_app_dir(APP_NAME))


def default_config_path() -> Path:
    """Return the path ``kanuni config set`` writes to by default."""
    return app_dir() / "config.yaml"


def derive_stream_url(endpoint: str) -> str:
    """Derive the WebSocket URL from the REST endpoint.

    ``http`` becomes ``ws`` and ``https`` becomes ``wss``. The path is rooted
    at ``/api/v1/ws`` whatever follows ``/api/v1`` in the endpoint.

    Args:
        endpoint: REST endpoint, e.g. ``https://api.kanuni.ai/api/v1``.

    Returns:
        The WebSocket URL, e.g. ``wss://api.kanuni.ai/api/v1/ws``.

    Raises:
        ConfigurationError: If the endpoint is not an http(s) URL.
    """
    parts = urlsplit(endpoint.rstrip("/"))
    schemes = {"http": "ws", "https": "wss"}
    if parts.scheme not in schemes or not parts.netloc:
        msg = f"API endpoint must be an http(s) URL, got {endpoint!r}"
        raise ConfigurationError(msg)

    path = parts.path
    if path.endswith("/api/v1"):
        path = f"{path}/ws"
    elif "/api/v1/" in path:
        path = path[: path.index("/api/v1/")] + "/api/v1/ws"
    else:
        path = f"{path}/api/v1/ws"

    return urlunsplit((schemes[parts.scheme], parts.netloc, path, "", ""))


# ---------------------------------------------------------------------------
# Environment Variable Interpolation
# ---------------------------------------------------------------------------

# Pattern for ${VAR} and ${VAR:-default} syntax
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


def _interpolate_env_vars(value: object) -> object:
    """Recursively interpolate ${VAR} and ${VAR:-default} in strings.

    Args:
        value: Value to interpolate (string, dict, list, or other).

    Returns:
        Value with environment variables interpolated.
    """
    if isinstance(value, str):

        def replace(match: re.Match[str]) -> str:
            env_value = os.environ.get(match.group(1))
            if env_value is not None:
                return env_value
            return match.group(2) or ""

        return _ENV_VAR_PATTERN.sub(replace, value)

    if isinstance(value, dict):
        return {k: _interpolate_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [_interpolate_env_vars(item) for item in value]

    return value


class _InterpolatingYamlConfigSettingsSource(YamlConfigSettingsSource):
    """YAML settings source with ${VAR} interpolation support."""

    def __init__(
        self,
        settings_cls: type[BaseSettings],
        yaml_file: Path | str | None = None,
    ) -> None:
        if yaml_file is not None:
            super().__init__(settings_cls, yaml_file=yaml_file)
        else:
            super().__init__(settings_cls)

    def _read_files(
        self,
        files: Path | str | Sequence[Path | str] | None,
    ) -> dict[str, Any]:
        raw_data = super()._read_files(files)
        interpolated = _interpolate_env_vars(raw_data)
        if not isinstance(interpolated, dict):  # pragma: no cover
            return {}
        return interpolated


# ---------------------------------------------------------------------------
# Settings Class
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    """Application settings loaded from YAML file and environment variables.

    Settings are loaded in priority order (highest to lowest):
    1. Constructor arguments
    2. Environment variables (``KANUNI_*``, nested with ``__``)
    3. YAML configuration file
    4. Default values

    Example:
        >>> settings = load_settings()
        >>> settings.stream_url
        'ws://localhost:8080/api/v1/ws'
    """

    model_config = SettingsConfigDict(
        yaml_file=None,
        yaml_file_encoding="utf-8",
        env_prefix="KANUNI_",
        env_nested_delimiter="__",
        extra="ignore",
        validate_default=True,
    )

    # Override for yaml_file path (set by load_settings before instantiation)
    _yaml_file_override: ClassVar[Path | str | None] = None

    api: ApiConfig = ApiConfig()
    stream: StreamConfig = StreamConfig()
    analysis: AnalysisConfig = AnalysisConfig()
    batch: BatchConfig = BatchConfig()
    output: OutputConfig = OutputConfig()
    auth: AuthConfig = AuthConfig()
    observability: ObservabilityConfig = ObservabilityConfig()

    @property
    def stream_url(self) -> str:
        """WebSocket URL for the progress stream."""
        if self.stream.url:
            return self.stream.url
        return derive_stream_url(self.api.endpoint)

    @property
    def credentials_path(self) -> Path:
        """Location of the persisted credential record."""
        if self.auth.credentials_file is not None:
            return self.auth.credentials_file
        return app_dir() / "auth.json"

    @classmethod
    def config_search_paths(cls) -> list[Path]:
        """Config file locations searched when none is given explicitly."""
        return [
            Path("kanuni.yaml"),
            Path("kanuni.yml"),
            default_config_path(),
        ]

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customize settings source priority.

        Priority order (highest to lowest): init kwargs, environment, YAML
        file (with interpolation), file secrets. dotenv is not used.
        """
        return (
            init_settings,
            env_settings,
            _InterpolatingYamlConfigSettingsSource(
                settings_cls,
                yaml_file=cls._yaml_file_override,
            ),
            file_secret_settings,
        )


# ---------------------------------------------------------------------------
# Settings Loading Functions
# ---------------------------------------------------------------------------

_cached_settings: Settings | None = None


def find_config_file(config_path: Path | str | None = None) -> Path | None:
    """Find the configuration file.

    Args:
        config_path: Explicit path to config file, or None to search
            default locations.

    Returns:
        Path to config file if found, None otherwise.
    """
    if config_path is not None:
        path = Path(config_path)
        return path if path.is_file() else None

    for search_path in Settings.config_search_paths():
        if search_path.is_file():
            return search_path

    return None


def _build_settings(config_file: Path | None, **overrides: Any) -> Settings:  # noqa: ANN401
    """Instantiate Settings reading from ``config_file``."""
    Settings._yaml_file_override = config_file  # noqa: SLF001
    try:
        return Settings(**overrides)
    finally:
        Settings._yaml_file_override = None  # noqa: SLF001


def load_settings(
    config_path: Path | str | None = None,
) -> Settings:
    """Load and validate application settings.

    The loaded settings are cached for subsequent calls to get_settings().

    Args:
        config_path: Path to YAML config file. If None, searches
            ./kanuni.yaml, ./kanuni.yml and the per-OS config directory.

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationFileNotFoundError: When an explicit path does not exist.
        ConfigurationValidationError: When configuration validation fails.
    """
    global _cached_settings  # noqa: PLW0603

    config_file = find_config_file(config_path)
    if config_file is None and config_path is not None:
        raise ConfigurationFileNotFoundError(path=str(config_path))

    try:
        settings = _build_settings(config_file)
    except ValidationError as exc:
        msg = f"Invalid configuration: {exc}"
        raise ConfigurationValidationError(
            msg,
            errors=[dict(err) for err in exc.errors()],
        ) from exc
    except (OSError, yaml.YAMLError) as exc:
        msg = f"Failed to load configuration: {exc}"
        raise ConfigurationValidationError(msg) from exc

    _cached_settings = settings
    return settings


def get_settings() -> Settings:
    """Get the cached settings instance, loading if necessary."""
    global _cached_settings  # noqa: PLW0603

    if _cached_settings is None:
        _cached_settings = load_settings()

    return _cached_settings


def clear_settings_cache() -> None:
    """Clear the cached settings instance."""
    global _cached_settings  # noqa: PLW0603
    _cached_settings = None


# ---------------------------------------------------------------------------
# Editing the config file
# ---------------------------------------------------------------------------


def _read_raw(path: Path) -> dict[str, Any]:
    """Read a YAML config file without interpolation."""
    if not path.is_file():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        msg = f"Failed to read configuration file {path}: {exc}"
        raise ConfigurationError(msg) from exc
    return data if isinstance(data, dict) else {}


def _write_raw(path: Path, data: dict[str, Any]) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            yaml.safe_dump(data, sort_keys=False, default_flow_style=False),
            encoding="utf-8",
        )
    except OSError as exc:
        msg = f"Failed to write configuration file {path}: {exc}"
        raise ConfigurationError(msg) from exc


def save_settings(settings: Settings, path: Path | None = None) -> Path:
    """Write the non-default values of ``settings`` to a YAML file.

    Args:
        settings: Settings to persist.
        path: Destination; defaults to the per-OS config file.

    Returns:
        The path written.
    """
    path = path or default_config_path()
    data = settings.model_dump(mode="json", exclude_defaults=True)
    _write_raw(path, data)
    clear_settings_cache()
    return path


def set_setting(key: str, value: str, path: Path | None = None) -> Any:  # noqa: ANN401
    """Set a single dotted key (e.g. ``stream.enabled``) in the config file.

    The value is validated against the schema before anything is written.

    Args:
        key: Dotted path of the setting.
        value: Raw value as typed on the command line.
        path: Config file to edit; defaults to the per-OS config file.

    Returns:
        The value as stored after validation.

    Raises:
        ConfigurationValidationError: If the key is unknown or the value invalid.
    """
    path = path or default_config_path()
    parts = key.split(".")
    if parts[0] not in Settings.model_fields or len(parts) < 2:  # noqa: PLR2004
        msg = f"Unknown configuration key: {key}"
        raise ConfigurationValidationError(msg)

    data = _read_raw(path)
    node = data
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = value

    try:
        validated = _build_settings(None, **data).model_dump(mode="json")
    except ValidationError as exc:
        msg = f"Invalid value for {key}: {value!r}"
        raise ConfigurationValidationError(
            msg,
            errors=[dict(err) for err in exc.errors()],
        ) from exc

    stored: Any = validated
    for part in parts:
        stored = stored[part]
    node[parts[-1]] = stored

    _write_raw(path, data)
    clear_settings_cache()
    return stored


def reset_settings(path: Path | None = None) -> bool:
    """Delete the config file so every setting falls back to its default.

    Returns:
        True if a file was removed.
    """
    path = path or default_config_path()
    clear_settings_cache()
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as exc:
        msg = f"Failed to remove configuration file {path}: {exc}"
        raise ConfigurationError(msg) from exc
    return True
