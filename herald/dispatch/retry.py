"""
Retry policy for side-effect dispatch.

Delays are applied after a failed attempt `k` (1-based) when another attempt
follows. Both schedules never decrease from one attempt to the next.

    linear:       min(base_delay * k, max_delay)          1s, 2s, 3s, ...
    exponential:  min(base_delay * 2 ** (k - 1), max_delay)  1s, 2s, 4s, ...
"""

import os
from dataclasses import dataclass
from enum import Enum

from herald.core.exceptions import ConfigurationError


class BackoffStrategy(Enum):
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


@dataclass
class RetryPolicy:
    """
    Bounded retry schedule.

    Attributes:
        max_attempts: Total attempts per envelope, including the first
        backoff: Delay growth strategy
        base_delay_seconds: Delay after the first failed attempt
        max_delay_seconds: Upper bound for any single delay
    """

    max_attempts: int = 3
    backoff: BackoffStrategy = BackoffStrategy.LINEAR
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0

    def __post_init__(self):
        if isinstance(self.backoff, str):
            try:
                self.backoff = BackoffStrategy(self.backoff.lower())
            except ValueError as e:
                msg = f"Unknown backoff strategy: {self.backoff!r}"
                raise ConfigurationError(msg) from e

    @classmethod
    def from_env(cls) -> "RetryPolicy":
        return cls(
            max_attempts=int(os.getenv("MAX_RETRIES", 3)),
            backoff=os.getenv("RETRY_BACKOFF") or BackoffStrategy.LINEAR,
            base_delay_seconds=float(os.getenv("RETRY_BASE_DELAY", 1.0)),
            max_delay_seconds=float(os.getenv("RETRY_MAX_DELAY", 30.0)),
        )

    def validate(self) -> None:
        if self.max_attempts < 1:
            msg = f"max_attempts must be >= 1, got {self.max_attempts}"
            raise ConfigurationError(msg)
        if self.base_delay_seconds < 0 or self.max_delay_seconds < 0:
            msg = "retry delays must be non-negative"
            raise ConfigurationError(msg)

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number `attempt` (1-based)."""
        if attempt < 1:
            return 0.0
        if self.backoff is BackoffStrategy.EXPONENTIAL:
            delay = self.base_delay_seconds * 2 ** (attempt - 1)
        else:
            delay = self.base_delay_seconds * attempt
        return min(delay, self.max_delay_seconds)

    def schedule(self) -> list[float]:
        """Every delay a fully failing envelope sleeps through."""
        return [self.delay_for(k) for k in range(1, self.max_attempts)]
