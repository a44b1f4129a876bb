from .strategy import ExponentialBackoff, FixedDelay, RetryStrategy
from .wrapper import RetryWrapper, call_with_retry

__all__ = [
    "RetryWrapper",
    "RetryStrategy",
    "ExponentialBackoff",
    "FixedDelay",
    "call_with_retry",
]
