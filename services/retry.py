"""Bounded exponential backoff for calls to external collaborators."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """
    max_attempts counts the first call: max_attempts=3 means one call plus two retries.
    """

    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    multiplier: float = 2.0
    max_delay_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay_seconds < 0 or self.max_delay_seconds < 0:
            raise ValueError("delays must not be negative")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")

    def delay_for(self, retry_number: int) -> float:
        """Delay before retry N (1-based)."""

        delay = self.base_delay_seconds * (self.multiplier ** (retry_number - 1))
        return min(delay, self.max_delay_seconds)

    def delays(self) -> Iterator[float]:
        """Delays between consecutive calls; yields max_attempts - 1 values."""

        for retry_number in range(1, self.max_attempts):
            yield self.delay_for(retry_number)


NO_RETRY = RetryPolicy(max_attempts=1, base_delay_seconds=0.0)
