"""Retry policy for queued operations.

Failed submissions are retried on later drains with exponential backoff
and jitter. After ``max_attempts`` failures an operation is moved to the
dead-letter table instead of being retried forever.
"""

from __future__ import annotations

import random
from dataclasses import dataclass


@dataclass
class RetryPolicy:
    """Configuration for retry with exponential backoff."""

    max_attempts: int | None = 10  # None disables dead-lettering
    backoff_base: float = 2.0  # seconds
    backoff_max: float = 300.0  # cap
    backoff_multiplier: float = 2.0
    jitter: float = 0.2  # +/- fraction of the computed delay

    def delay_for(self, attempts: int) -> float:
        """Seconds to wait after the ``attempts``-th consecutive failure."""
        if attempts <= 0 or self.backoff_base <= 0:
            return 0.0
        delay = min(
            self.backoff_base * (self.backoff_multiplier ** (attempts - 1)),
            self.backoff_max,
        )
        if self.jitter > 0:
            delay *= random.uniform(1.0 - self.jitter, 1.0 + self.jitter)
        return max(delay, 0.0)

    def next_attempt_at(self, attempts: int, now: float) -> float:
        return now + self.delay_for(attempts)

    def exhausted(self, attempts: int) -> bool:
        return self.max_attempts is not None and attempts >= self.max_attempts
