import logging
import time
from typing import Any, Callable, Optional, TypeVar

from .strategy import ExponentialBackoff, RetryStrategy

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryWrapper:
    """Calls a function again while ``retry_on`` accepts the raised error."""

    def __init__(
        self,
        strategy: Optional[RetryStrategy] = None,
        max_retries: int = 3,
        retry_on: Callable[[Exception], bool] = lambda _: True,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.strategy = strategy or ExponentialBackoff()
        self.max_retries = max_retries
        self.retry_on = retry_on
        self._sleep = sleep

    def invoke(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        last_exception: Optional[Exception] = None

        for attempt in range(self.max_retries):
            try:
                return fn(*args, **kwargs)
            except Exception as e:
                if not self.retry_on(e):
                    raise

                last_exception = e
                if attempt < self.max_retries - 1:
                    delay = self.strategy.get_delay(attempt) / 1000.0
                    logger.warning(
                        "Attempt %d of %s failed: %s. Retrying in %.2fs...",
                        attempt + 1,
                        getattr(fn, "__name__", "call"),
                        e,
                        delay,
                    )
                    (self._sleep or time.sleep)(delay)

        if last_exception:
            raise last_exception
        raise RuntimeError("Retry failed with no exception")


def call_with_retry(
    fn: Callable[..., T],
    *args: Any,
    retry_on: Callable[[Exception], bool] = lambda _: True,
    strategy: Optional[RetryStrategy] = None,
    max_retries: int = 3,
    **kwargs: Any,
) -> T:
    """Run ``fn(*args, **kwargs)`` with retries."""
    wrapper = RetryWrapper(
        strategy=strategy, max_retries=max_retries, retry_on=retry_on
    )
    return wrapper.invoke(fn, *args, **kwargs)
