"""
Poll backoff strategies.

Workers poll the store instead of waiting for notifications; the strategy
decides how long each idle, busy or error pause lasts.
"""

import random
from typing import Protocol


class BackoffStrategy(Protocol):
    def next_delay(self) -> float:
        """Seconds to wait before the next poll."""
        ...

    def reset(self) -> None:
        """Called after a productive poll."""
        ...


class ConstantBackoff:
    def __init__(self, delay: float):
        if delay < 0:
            raise ValueError("delay must be >= 0")
        self.delay = delay

    def next_delay(self) -> float:
        return self.delay

    def reset(self) -> None:
        pass


class NoBackoff(ConstantBackoff):
    """Zero-delay strategy; still yields to the event loop on every poll."""

    def __init__(self):
        super().__init__(0.0)


class ExponentialBackoff:
    """Exponential backoff with jitter, capped at `maximum`."""

    def __init__(self, base: float, maximum: float, jitter: float = 0.25):
        if base <= 0 or maximum < base:
            raise ValueError("require 0 < base <= maximum")
        self.base = base
        self.maximum = maximum
        self.jitter = jitter
        self._attempt = 0

    def next_delay(self) -> float:
        delay = min(self.maximum, self.base * (2**self._attempt))
        self._attempt += 1

        # Add jitter (±25% random variation by default)
        spread = delay * self.jitter * (2 * random.random() - 1)
        return max(0.0, min(self.maximum, delay + spread))

    def reset(self) -> None:
        self._attempt = 0
