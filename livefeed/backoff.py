"""Exponential backoff with jitter for restarting the stream connection."""

import random


class ReconnectPolicy:
    """Delay schedule: min(min_delay * 2**(n-1), max_delay) plus up to 30% jitter.

    Args:
        max_attempts: Max consecutive attempts before giving up (0 = unlimited).
    """

    def __init__(
        self,
        min_delay: float = 1.0,
        max_delay: float = 60.0,
        max_attempts: int = 0,
        rand=random.uniform,
    ):
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self._rand = rand
        self.attempts = 0

    @property
    def exhausted(self) -> bool:
        return self.max_attempts > 0 and self.attempts >= self.max_attempts

    def next_delay(self) -> float | None:
        """Return the delay before the next attempt, or None if attempts are exhausted."""
        if self.exhausted:
            return None
        self.attempts += 1
        delay = min(self.min_delay * (2 ** (self.attempts - 1)), self.max_delay)
        return delay + self._rand(0, delay * 0.3)

    def reset(self):
        self.attempts = 0
