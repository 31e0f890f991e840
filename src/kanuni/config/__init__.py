"""Configuration module for kanuni.

Settings come from a YAML file, ``KANUNI_*`` environment variables and
defaults, validated by Pydantic. YAML values support ${VAR} and
${VAR:-default} interpolation.

Example:
    >>> from kanuni.config import load_settings
    >>> settings = load_settings()
    >>> settings.stream.reconnect_max_attempts
    5
"""

from __future__ import annotations

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
    ConfigBaseModel,
    LoggingConfig,
    ObservabilityConfig,
    OutputConfig,
    OutputFormat,
    StreamConfig,
)
from kanuni.config.settings import (
    APP_NAME,
    Settings,
    app_dir,
    clear_settings_cache,
    default_config_path,
    derive_stream_url,
    find_config_file,
    get_settings,
    load_settings,
    reset_settings,
    save_settings,
    set_setting,
)


__all__ = [
    "APP_NAME",
    "AnalysisConfig",
    "ApiConfig",
    "AuthConfig",
    "BatchConfig",
    "ConfigBaseModel",
    "ConfigurationError",
    "ConfigurationFileNotFoundError",
    "ConfigurationValidationError",
    "LoggingConfig",
    "ObservabilityConfig",
    "OutputConfig",
    "OutputFormat",
    "Settings",
    "StreamConfig",
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
