"""
Token-bucket rate limiting.

TokenBucketLimiter is one quota scope (e.g. "global"). LimiterRegistry maps
scope keys (client addresses) to their own limiters and evicts idle ones.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_IDLE_TTL = 30 * 60.0
DEFAULT_MAX_SIZE = 5000
DEFAULT_PRUNE_INTERVAL = 60.0


@dataclass(frozen=True)
class RateLimiterState:
    """Point-in-time view of a limiter, for inspection and tests."""

    tokens: float
    capacity: float
    refill_rate_per_second: float
    last_refill_at: float
    last_seen_at: float


class TokenBucketLimiter:
    """
    Continuous-refill token bucket.

    Capacity is ``rate + burst`` and the bucket starts full. Tokens refill
    fractionally at ``rate`` per second, so there is no window boundary.
    """

    def __init__(
        self,
        rate: float,
        burst: float,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._rate = max(0.0, float(rate or 0))
        self._capacity = self._rate + max(0.0, float(burst or 0))
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()

        now = self._clock()
        self._tokens = self._capacity
        self._last_refill_at = now
        self._last_seen_at = now

    @property
    def last_seen_at(self) -> float:
        return self._last_seen_at

    def take_token(self) -> bool:
        """Refill, then consume one token if available."""
        with self._lock:
            now = self._clock()
            self._last_seen_at = now
            self._refill(now)
            if self._tokens >= 1:
                self._tokens -= 1
                return True
            return False

    def snapshot(self) -> RateLimiterState:
        with self._lock:
            return RateLimiterState(
                tokens=self._tokens,
                capacity=self._capacity,
                refill_rate_per_second=self._rate,
                last_refill_at=self._last_refill_at,
                last_seen_at=self._last_seen_at,
            )

    def _refill(self, now: float) -> None:
        elapsed = now - self._last_refill_at
        if elapsed <= 0:
            return
        self._tokens = min(self._capacity, self._tokens + elapsed * self._rate)
        self._last_refill_at = now


class LimiterRegistry:
    """
    Per-scope limiters created lazily on first use.

    Idle scopes (no request for ``idle_ttl`` seconds) are dropped, and the
    registry is capped at ``max_size`` by evicting the least recently seen
    scopes. Pruning runs lazily from take().
    """

    def __init__(
        self,
        rate: float,
        burst: float,
        idle_ttl: float = DEFAULT_IDLE_TTL,
        max_size: int = DEFAULT_MAX_SIZE,
        prune_interval: float = DEFAULT_PRUNE_INTERVAL,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._rate = rate
        self._burst = burst
        self._idle_ttl = idle_ttl
        self._max_size = max_size
        self._prune_interval = prune_interval
        self._clock = clock or time.monotonic
        self._limiters: dict[str, TokenBucketLimiter] = {}
        self._lock = threading.Lock()
        self._last_prune_at = self._clock()

    def take(self, scope_key: str) -> bool:
        """Take a token from the limiter for ``scope_key``."""
        with self._lock:
            limiter = self._limiters.get(scope_key)
            if limiter is None:
                limiter = TokenBucketLimiter(self._rate, self._burst, clock=self._clock)
                self._limiters[scope_key] = limiter
            due = (
                0 < self._max_size < len(self._limiters)
                or self._clock() - self._last_prune_at >= self._prune_interval
            )

        allowed = limiter.take_token()
        if due:
            self.prune()
        return allowed

    def prune(
        self, idle_ttl: Optional[float] = None, max_size: Optional[int] = None
    ) -> int:
        """
        Drop idle scopes, then the oldest scopes beyond ``max_size``.

        A zero ``idle_ttl`` or ``max_size`` disables that check. Returns the
        number of scopes removed.
        """
        if idle_ttl is None:
            idle_ttl = self._idle_ttl
        if max_size is None:
            max_size = self._max_size
        idle_ttl = max(0.0, idle_ttl)
        max_size = max(0, max_size)

        with self._lock:
            now = self._clock()
            self._last_prune_at = now
            before = len(self._limiters)

            if idle_ttl > 0:
                idle = [
                    key
                    for key, limiter in self._limiters.items()
                    if now - limiter.last_seen_at > idle_ttl
                ]
                for key in idle:
                    del self._limiters[key]

            overflow = len(self._limiters) - max_size
            if max_size > 0 and overflow > 0:
                oldest = sorted(
                    self._limiters.items(), key=lambda item: item[1].last_seen_at
                )
                for key, _ in oldest[:overflow]:
                    del self._limiters[key]

            removed = before - len(self._limiters)

        if removed:
            logger.debug("Pruned %d limiter scopes (%d left)", removed, len(self))
        return removed

    def get(self, scope_key: str) -> Optional[TokenBucketLimiter]:
        with self._lock:
            return self._limiters.get(scope_key)

    def __len__(self) -> int:
        return len(self._limiters)

    def __contains__(self, scope_key: str) -> bool:
        return scope_key in self._limiters
