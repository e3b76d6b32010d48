"""Rate limiters that decide how long a re-added key must wait.

The controller default combines a per-key exponential failure backoff with
an overall token bucket and waits for whichever is longer.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Callable

_DEFAULT_BASE_DELAY_S: float = 0.005
_DEFAULT_MAX_DELAY_S: float = 1000.0
_DEFAULT_QPS: float = 10.0
_DEFAULT_BURST: int = 100

# 2**62 overflows any sane delay; stop doubling well before that
_MAX_EXPONENT: int = 62


class RateLimiter(ABC):
    """Per-key delay policy used by :meth:`WorkQueue.add_rate_limited`."""

    @abstractmethod
    def when(self, key: str) -> float:
        """Return the delay in seconds before ``key`` may be processed again."""

    @abstractmethod
    def forget(self, key: str) -> None:
        """Drop all failure history for ``key``."""

    @abstractmethod
    def num_requeues(self, key: str) -> int:
        """Return how many times ``key`` has been rate-limited since the last forget."""


class ExponentialFailureRateLimiter(RateLimiter):
    """``base * 2**failures`` per key, capped at ``max_delay_s``."""

    def __init__(
        self,
        base_delay_s: float = _DEFAULT_BASE_DELAY_S,
        max_delay_s: float = _DEFAULT_MAX_DELAY_S,
    ) -> None:
        if base_delay_s <= 0 or max_delay_s < base_delay_s:
            raise ValueError("require 0 < base_delay_s <= max_delay_s")
        self._base = base_delay_s
        self._max = max_delay_s
        self._failures: dict[str, int] = {}

    def when(self, key: str) -> float:
        exp = self._failures.get(key, 0)
        self._failures[key] = exp + 1
        if exp > _MAX_EXPONENT:
            return self._max
        return min(self._base * (2**exp), self._max)

    def forget(self, key: str) -> None:
        self._failures.pop(key, None)

    def num_requeues(self, key: str) -> int:
        return self._failures.get(key, 0)


class TokenBucketRateLimiter(RateLimiter):
    """Overall limiter: ``qps`` sustained rate with bursts of up to ``burst``.

    Each call to :meth:`when` reserves one token; if the bucket is empty the
    returned delay is the time until that reservation matures.  This limiter
    has no per-key state.
    """

    def __init__(
        self,
        qps: float = _DEFAULT_QPS,
        burst: int = _DEFAULT_BURST,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if qps <= 0 or burst < 1:
            raise ValueError("require qps > 0 and burst >= 1")
        self._qps = qps
        self._burst = float(burst)
        self._clock = clock
        self._tokens = float(burst)
        self._last = clock()

    def when(self, key: str) -> float:
        now = self._clock()
        elapsed = max(0.0, now - self._last)
        self._tokens = min(self._burst, self._tokens + elapsed * self._qps)
        self._last = now
        self._tokens -= 1.0
        if self._tokens >= 0:
            return 0.0
        return -self._tokens / self._qps

    def forget(self, key: str) -> None:
        return None

    def num_requeues(self, key: str) -> int:
        return 0


class MaxOfRateLimiter(RateLimiter):
    """Combine limiters, always waiting for the longest of them."""

    def __init__(self, *limiters: RateLimiter) -> None:
        if not limiters:
            raise ValueError("MaxOfRateLimiter needs at least one limiter")
        self._limiters = limiters

    def when(self, key: str) -> float:
        # Every limiter must see the call so its own state advances
        return max(limiter.when(key) for limiter in self._limiters)

    def forget(self, key: str) -> None:
        for limiter in self._limiters:
            limiter.forget(key)

    def num_requeues(self, key: str) -> int:
        return max(limiter.num_requeues(key) for limiter in self._limiters)


def default_controller_rate_limiter(
    base_delay_s: float = _DEFAULT_BASE_DELAY_S,
    max_delay_s: float = _DEFAULT_MAX_DELAY_S,
    qps: float = _DEFAULT_QPS,
    burst: int = _DEFAULT_BURST,
) -> RateLimiter:
    """Per-key exponential backoff combined with an overall token bucket."""
    return MaxOfRateLimiter(
        ExponentialFailureRateLimiter(base_delay_s, max_delay_s),
        TokenBucketRateLimiter(qps, burst),
    )
