"""Deduplicating, rate-limited work queue."""

from kubemirror.workqueue.queue import WorkQueue
from kubemirror.workqueue.rate_limiter import (
    ExponentialFailureRateLimiter,
    MaxOfRateLimiter,
    RateLimiter,
    TokenBucketRateLimiter,
    default_controller_rate_limiter,
)

__all__ = [
    "ExponentialFailureRateLimiter",
    "MaxOfRateLimiter",
    "RateLimiter",
    "TokenBucketRateLimiter",
    "WorkQueue",
    "default_controller_rate_limiter",
]
