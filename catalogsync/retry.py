"""
Exponential backoff for retrying scheduled work after transient failures.

The job facility asks the policy how long to wait before re-running an
occurrence that asked for a retry, and when to give up on it.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

DEFAULT_BASE_DELAY = 30.0
DEFAULT_MAX_DELAY = 5 * 60 * 60.0


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""
    pass


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Exponential backoff settings.

    Args:
        base_delay: Delay before the first retry, in seconds
        max_delay: Upper bound for any single delay, in seconds
        exponential_base: Factor applied per attempt (delay *= base)
        max_attempts: Retries allowed per occurrence (None = unbounded)
    """

    base_delay: float = DEFAULT_BASE_DELAY
    max_delay: float = DEFAULT_MAX_DELAY
    exponential_base: float = 2.0
    max_attempts: Optional[int] = 10

    def __post_init__(self):
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if self.exponential_base < 1:
            raise ValueError("exponential_base must be >= 1")
        if self.max_attempts is not None and self.max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")

    def delay_for(self, attempt: int) -> timedelta:
        """
        Delay before retry number `attempt` (1-based).

        Raises:
            RetryError: If attempt exceeds max_attempts
        """
        if attempt < 1:
            raise ValueError("attempt is 1-based")
        if self.exhausted(attempt):
            raise RetryError(f"Retry {attempt} exceeds max_attempts={self.max_attempts}")

        # Cap the exponent so huge attempt counts cannot overflow float
        exponent = min(attempt - 1, 64)
        seconds = min(self.base_delay * (self.exponential_base ** exponent), self.max_delay)
        return timedelta(seconds=seconds)

    def exhausted(self, attempt: int) -> bool:
        """True if retry number `attempt` is beyond the allowed budget."""
        return self.max_attempts is not None and attempt > self.max_attempts
