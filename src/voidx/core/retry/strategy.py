"""Delays between retry attempts.

Two callers retry: ``create_with_retry`` while a collection is still loading
or Milvus is briefly unreachable, and the embedding adapter on rate limits and
transport errors. Both back off exponentially; ``FixedDelay`` serves callers
that want a constant pause, tests included.
"""

import random
from typing import Protocol, runtime_checkable

DEFAULT_BASE_DELAY_MS = 200
DEFAULT_MAX_DELAY_MS = 10_000


@runtime_checkable
class RetryStrategy(Protocol):
    def get_delay(self, attempt: int) -> int:
        """Milliseconds to sleep after failed attempt ``attempt`` (0-based)."""
        ...


class ExponentialBackoff(RetryStrategy):
    """``base * multiplier**attempt`` plus up to ``jitter_ratio`` of it, capped."""

    def __init__(
        self,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        multiplier: float = 2.0,
        max_delay_ms: int = DEFAULT_MAX_DELAY_MS,
        jitter_ratio: float = 0.1,
    ):
        if base_delay_ms < 0 or max_delay_ms < 0:
            raise ValueError("Retry delays must not be negative")
        self.base_delay_ms = base_delay_ms
        self.multiplier = multiplier
        self.max_delay_ms = max_delay_ms
        self.jitter_ratio = jitter_ratio

    def get_delay(self, attempt: int) -> int:
        delay = self.base_delay_ms * (self.multiplier**attempt)
        # concurrent creators of one collection must not retry in lockstep
        delay += random.uniform(0, self.jitter_ratio * delay)
        return int(min(delay, self.max_delay_ms))


class FixedDelay(RetryStrategy):
    def __init__(self, delay_ms: int = 1000):
        self.delay_ms = delay_ms

    def get_delay(self, attempt: int) -> int:
        return self.delay_ms
