"""
Retry policy for message consumers.

    delay(attempt) = min(base * 2 ** (attempt - 1), max) + jitter
    jitter         = random() * jitter_ratio * delay

Retryability is decided by error type: validation, conflict and integrity
failures are permanent and go straight to the dead-letter queue; transport
and unclassified failures are retried until ``max_retries`` attempts.
"""

import math
import random
from collections.abc import Callable
from dataclasses import dataclass, field

from payment_kernel.exceptions import ConflictError, DataIntegrityError, ValidationError

PERMANENT_ERRORS: tuple[type[BaseException], ...] = (
    ValidationError,
    ConflictError,
    DataIntegrityError,
)


def is_permanent_error(error: BaseException) -> bool:
    return isinstance(error, PERMANENT_ERRORS)


@dataclass(frozen=True)
class RetryPolicy:
    base_delay_ms: int = 5000
    max_delay_ms: int = 300_000
    jitter_ratio: float = 0.3
    random_source: Callable[[], float] = field(default=random.random, compare=False)

    def __post_init__(self) -> None:
        if self.base_delay_ms <= 0:
            raise ValueError("base_delay_ms must be positive")
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("max_delay_ms must be >= base_delay_ms")
        if not 0 <= self.jitter_ratio <= 1:
            raise ValueError("jitter_ratio must be within [0, 1]")

    def delay_ms(self, attempt: int) -> int:
        """Backoff before retry number ``attempt`` (1-based)."""
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")
        delay = min(self.base_delay_ms * 2 ** (attempt - 1), self.max_delay_ms)
        jitter = self.random_source() * self.jitter_ratio * delay
        return math.floor(delay + jitter)

    def should_retry(self, error: BaseException, attempt: int, max_retries: int) -> bool:
        if attempt >= max_retries:
            return False
        return not is_permanent_error(error)
