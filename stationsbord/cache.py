"""
In-memory TTL cache with validator tokens and stale retention.

Generic cache -- not iRail-specific. Expired entries are kept so they can be
served in degraded mode or revalidated with a conditional request; they only
disappear when overwritten or pruned.
"""

from __future__ import annotations

import math
import re
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

DEFAULT_TTL = 30.0
MIN_TTL = 1.0

_MAX_AGE_RE = re.compile(r"max-age=(\d+)", re.IGNORECASE)


@dataclass
class CacheEntry:
    """A cached value with its validator and expiry (monotonic seconds)."""

    key: str
    value: Any
    validator: Optional[str]
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        return now <= self.expires_at


class TTLCache:
    """
    Simple in-memory cache keyed by string.

    - get(): returns the value only while the entry is fresh.
    - peek(): returns the raw entry, fresh or stale.
    - set(): stores a value with validator and TTL (seconds).
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._default_ttl = default_ttl
        self._store: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._clock = clock or time.monotonic  # overridable for testing

    def get(self, key: str) -> Optional[Any]:
        """Return the value if the entry exists and has not expired."""
        entry = self.get_fresh(key)
        return entry.value if entry is not None else None

    def get_fresh(self, key: str) -> Optional[CacheEntry]:
        """Return the entry only while it is fresh; tells a cached None from a miss."""
        with self._lock:
            entry = self._store.get(key)
        if entry is None or not entry.is_fresh(self._clock()):
            return None
        return entry

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Return the entry irrespective of freshness."""
        with self._lock:
            return self._store.get(key)

    def set(
        self,
        key: str,
        value: Any,
        validator: Optional[str] = None,
        ttl: Optional[float] = None,
    ) -> CacheEntry:
        """Store a value, expiring ``ttl`` seconds from now."""
        entry = CacheEntry(
            key=key,
            value=value,
            validator=validator,
            expires_at=self._clock() + self._effective_ttl(ttl),
        )
        with self._lock:
            self._store[key] = entry
        return entry

    def prune_expired(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._store.items() if not e.is_fresh(now)]
            for key in expired:
                del self._store[key]
        return len(expired)

    def clear(self) -> None:
        """Remove all entries."""
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: str) -> bool:
        return key in self._store

    def _effective_ttl(self, ttl: Optional[float]) -> float:
        if ttl is None or not math.isfinite(ttl):
            ttl = self._default_ttl
        return max(MIN_TTL, ttl)


def parse_max_age_seconds(cache_control: Optional[str]) -> Optional[int]:
    """Extract ``max-age`` from a Cache-Control value, or None."""
    if not cache_control:
        return None
    match = _MAX_AGE_RE.search(str(cache_control))
    if match is None:
        return None
    try:
        seconds = int(match.group(1))
        float(seconds)
    except (ValueError, OverflowError):
        # too many digits for int() or float()
        return None
    return seconds


def ttl_from_cache_control(
    cache_control: Optional[str], fallback_seconds: float = DEFAULT_TTL
) -> float:
    """
    Derive a cache TTL in seconds from a Cache-Control header value.

    Missing or unparseable max-age uses ``fallback_seconds``. The result is
    never below one second.
    """
    max_age = parse_max_age_seconds(cache_control)
    seconds = float(max_age) if max_age is not None else float(fallback_seconds)
    return max(MIN_TTL, seconds)
