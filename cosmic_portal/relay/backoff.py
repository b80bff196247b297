"""Reconnect backoff policy shared by the relay channel and the inventory watcher."""

import random
from dataclasses import dataclass


@dataclass(frozen=True)
class ReconnectPolicy:
    """
    Bounded exponential backoff.

    Attributes:
        max_attempts: Consecutive failed attempts allowed before giving up.
        initial_delay: Delay before the first attempt (seconds).
        backoff_multiplier: Growth factor applied per further attempt.
        max_delay: Ceiling for a single delay (seconds).
        jitter: Fraction of the delay added at random (0 disables).
    """
    max_attempts: int = 5
    initial_delay: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay: float = 30.0
    jitter: float = 0.1

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")
        if self.backoff_multiplier < 1.0:
            raise ValueError("backoff_multiplier must be >= 1.0")
        if self.jitter < 0:
            raise ValueError("jitter must be non-negative")

    def delay_for(self, attempt: int) -> float:
        """Calculates delay: min(max, initial * multiplier^(attempt-1)) + jitter."""
        exponent = max(attempt - 1, 0)
        delay = min(self.max_delay, self.initial_delay * (self.backoff_multiplier ** exponent))
        if self.jitter:
            delay += delay * self.jitter * random.random()
        return delay


__all__ = ["ReconnectPolicy"]
