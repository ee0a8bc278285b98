"""
Exponential backoff for resilient market data access.

Used by:
- Market data sources (reconnect scheduling after stream failures)
- The REST klines client (transient HTTP / network errors)
"""

import random
from typing import List


class ExponentialBackoff:
    """
    Exponential backoff calculator with optional jitter.

    delay(attempt) = min(base * multiplier ** attempt, max_delay)

    Jitter is off by default so reconnect schedules are reproducible;
    enable it when many clients share one upstream.

    Args:
        base: Base delay in seconds (default: 1.0)
        multiplier: Exponential growth factor (default: 1.5)
        max_delay: Maximum delay cap in seconds (default: 30.0)
        jitter: Add up to ±25% random jitter (default: False)

    Example:
        >>> backoff = ExponentialBackoff()
        >>> backoff.calculate(0)
        1.0
        >>> backoff.calculate(2)
        2.25
        >>> backoff.calculate(20)
        30.0
    """

    def __init__(
        self,
        base: float = 1.0,
        multiplier: float = 1.5,
        max_delay: float = 30.0,
        jitter: bool = False,
    ):
        if base < 0 or max_delay < 0:
            raise ValueError("base and max_delay must be non-negative")
        if multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")
        self.base = base
        self.multiplier = multiplier
        self.max_delay = max_delay
        self.jitter = jitter

    def calculate(self, attempt: int) -> float:
        """
        Calculate delay for given retry attempt.

        Args:
            attempt: Retry attempt number (0-indexed)

        Returns:
            Delay in seconds
        """
        delay = min(self.base * (self.multiplier ** max(attempt, 0)), self.max_delay)

        if self.jitter:
            jitter_amount = delay * 0.25
            delay += random.uniform(-jitter_amount, jitter_amount)
            delay = min(delay, self.max_delay)

        return max(0.0, delay)

    def schedule(self, attempts: int) -> List[float]:
        """Delays for the first `attempts` consecutive failures."""
        return [self.calculate(i) for i in range(attempts)]
