"""
Retry policy: a fixed backoff ladder plus a terminal-failure threshold.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Sequence


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of applying the policy to one failed attempt."""

    retry: bool
    retry_count: int
    scheduled_at: datetime | None = None
    delay_s: float | None = None


class RetryPolicy:
    """
    Backoff ladder indexed by retry number.

    The n-th retry waits ``delays[n - 1]`` seconds; retries beyond the end of
    the ladder reuse its last entry. A job is failed for good once the
    incremented retry count would exceed ``max_retries``.
    """

    def __init__(self, delays_s: Sequence[float]):
        if not delays_s:
            raise ValueError("Retry ladder must contain at least one delay")
        self.delays_s = tuple(float(d) for d in delays_s)

    def delay_for(self, retry_count: int) -> float:
        """Delay before the given retry (1-based)."""
        if retry_count < 1:
            raise ValueError("retry_count must be >= 1")
        index = min(retry_count - 1, len(self.delays_s) - 1)
        return self.delays_s[index]

    def decide(
        self, retry_count: int, max_retries: int, now: datetime
    ) -> RetryDecision:
        next_count = retry_count + 1
        if next_count <= max_retries:
            delay = self.delay_for(next_count)
            return RetryDecision(
                retry=True,
                retry_count=next_count,
                scheduled_at=now + timedelta(seconds=delay),
                delay_s=delay,
            )
        # Terminal: the stored retry_count keeps its last value
        return RetryDecision(retry=False, retry_count=retry_count)
