"""Reconnect backoff policy."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from kanuni.config.schema import StreamConfig


__all__ = ["ReconnectPolicy"]


@dataclass(frozen=True, slots=True)
class ReconnectPolicy:
    """Bounded exponential backoff for stream reconnects.

    Attributes:
        max_attempts: Connection attempts before giving up.
        initial_delay: Seconds to wait after the first failed attempt.
        multiplier: Growth factor between consecutive delays.
        max_delay: Upper bound for a single delay.
        max_elapsed: Ceiling on total reconnect time; no attempt is started
            whose preceding delay would cross it.
    """

    max_attempts: int = 5
    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    max_elapsed: float = 60.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            msg = "max_attempts must be at least 1"
            raise ValueError(msg)
        if self.initial_delay < 0 or self.multiplier < 1:
            msg = "initial_delay must be >= 0 and multiplier >= 1"
            raise ValueError(msg)

    @classmethod
    def from_config(cls, config: StreamConfig) -> ReconnectPolicy:
        """Build a policy from the ``stream`` config section."""
        return cls(
            max_attempts=config.reconnect_max_attempts,
            initial_delay=config.reconnect_delay_ms / 1000,
            max_elapsed=config.reconnect_max_elapsed,
        )

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        if attempt < 1:
            msg = "attempt is 1-based"
            raise ValueError(msg)
        return min(self.initial_delay * self.multiplier ** (attempt - 1), self.max_delay)

    def schedule(self) -> list[float]:
        """Delays between consecutive attempts, ignoring the elapsed ceiling."""
        return [self.delay(n) for n in range(1, self.max_attempts)]
