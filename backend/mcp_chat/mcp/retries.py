"""Retry policy for tool server connection attempts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable

Sleep = Callable[[float], Awaitable[None]]

DEFAULT_BACKOFF_SECONDS = 1.0


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded attempt counter with a fixed backoff between attempts."""

    max_attempts: int
    backoff_seconds: float = DEFAULT_BACKOFF_SECONDS

    @classmethod
    def from_retries(
        cls, retries: int, backoff_seconds: float = DEFAULT_BACKOFF_SECONDS
    ) -> "RetryPolicy":
        """`retries` extra tries on top of the first one."""
        return cls(max_attempts=max(retries, 0) + 1, backoff_seconds=max(backoff_seconds, 0.0))

    def allows(self, attempt_number: int) -> bool:
        """Return True if another attempt is allowed after attempt_number."""
        return attempt_number < self.max_attempts
