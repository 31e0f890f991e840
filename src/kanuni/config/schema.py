"""Configuration schema models for kanuni.

Each section of the YAML config file maps onto one model below. The models
are strict (unknown keys are rejected) so that typos in a config file are
reported instead of silently ignored.
"""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path  # noqa: TC003 - needed at runtime for Pydantic
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator

from kanuni.observability import LogLevel


__all__ = [
    "AnalysisConfig",
    "ApiConfig",
    "AuthConfig",
    "BatchConfig",
    "ConfigBaseModel",
    "LoggingConfig",
    "ObservabilityConfig",
    "OutputConfig",
    "OutputFormat",
    "StreamConfig",
]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class OutputFormat(StrEnum):
    """How command results are printed.

    Attributes:
        TEXT: Human-readable tables and panels.
        JSON: Raw JSON, suitable for piping into other tools.
        MARKDOWN: Markdown report (analysis results).
    """

    TEXT = "text"
    JSON = "json"
    MARKDOWN = "markdown"


# ---------------------------------------------------------------------------
# Base Configuration Model
# ---------------------------------------------------------------------------


class ConfigBaseModel(BaseModel):
    """Base model for all configuration sections."""

    model_config = ConfigDict(
        extra="forbid",
        str_strip_whitespace=True,
        validate_default=True,
    )


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


class ApiConfig(ConfigBaseModel):
    """REST API connection settings.

    Attributes:
        endpoint: Base URL of the REST API, including the ``/api/v1`` prefix.
        timeout: Request timeout in seconds.
        max_retries: Retry attempts for transient failures.
    """

    endpoint: str = Field(
        default="http://localhost:8080/api/v1",
        description="Base URL of the Kanuni REST API",
    )
    timeout: Annotated[float, Field(gt=0)] = 30.0
    max_retries: Annotated[int, Field(ge=0, le=10)] = 3

    @field_validator("endpoint")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Remove trailing slash from URL to avoid double slashes."""
        return v.rstrip("/")


class StreamConfig(ConfigBaseModel):
    """Real-time progress stream settings.

    Attributes:
        enabled: Follow live progress over the WebSocket stream.
        url: Explicit WebSocket URL; derived from the api endpoint when unset.
        reconnect_max_attempts: Connection attempts before giving up.
        reconnect_delay_ms: Delay before the first retry, doubled per attempt.
        reconnect_max_elapsed: Ceiling in seconds on total reconnect time.
        ping_interval: Seconds between heartbeat pings.
    """

    enabled: bool = True
    url: str | None = None
    reconnect_max_attempts: Annotated[int, Field(ge=1)] = 5
    reconnect_delay_ms: Annotated[int, Field(ge=0)] = 1000
    reconnect_max_elapsed: Annotated[float, Field(gt=0)] = 60.0
    ping_interval: Annotated[float, Field(gt=0)] = 30.0


class AnalysisConfig(ConfigBaseModel):
    """Defaults for waiting on analyses.

    Attributes:
        wait_timeout: Seconds to wait for an analysis before giving up.
        poll_interval: Seconds between REST status checks.
    """

    wait_timeout: Annotated[float, Field(gt=0)] = 300.0
    poll_interval: Annotated[float, Field(gt=0)] = 2.0


class BatchConfig(ConfigBaseModel):
    """Batch upload settings.

    Attributes:
        concurrency: Number of uploads running at once.
        continue_on_error: Keep going when a single file fails.
        job_timeout: Seconds allowed per file (upload plus optional analysis).
    """

    concurrency: Annotated[int, Field(ge=1, le=16)] = 2
    continue_on_error: bool = False
    job_timeout: Annotated[float, Field(gt=0)] = 600.0


class OutputConfig(ConfigBaseModel):
    """Output rendering settings.

    Attributes:
        format: Default output format.
        color: Colorize terminal output.
    """

    format: OutputFormat = OutputFormat.TEXT
    color: bool = True


class AuthConfig(ConfigBaseModel):
    """Credential storage settings.

    Attributes:
        credentials_file: Override for the location of ``auth.json``.
    """

    credentials_file: Path | None = None


class LoggingConfig(ConfigBaseModel):
    """Logging configuration.

    Attributes:
        level: Log verbosity level.
    """

    level: LogLevel = LogLevel.WARNING

    @field_validator("level", mode="before")
    @classmethod
    def lowercase_level(cls, v: object) -> object:
        """Accept ``INFO`` as well as ``info``."""
        return v.lower() if isinstance(v, str) else v


class ObservabilityConfig(ConfigBaseModel):
    """Observability configuration.

    Attributes:
        logging: Logging configuration.
    """

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
