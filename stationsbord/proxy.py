"""
Revalidating proxy: orchestrates the cache, rate limiters and iRail client.

Per request it serves a fresh hit, revalidates with the cached validator,
degrades to stale data, or fails. Concurrent misses for the same key are not
coalesced; each one goes upstream.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional
from urllib.parse import quote

from stationsbord.cache import TTLCache
from stationsbord.irail_client import (
    Fresh,
    IRailClient,
    NotModified,
    Permanent,
    Transient,
    UpstreamRejected,
)
from stationsbord.rate_limit import LimiterRegistry, TokenBucketLimiter

logger = logging.getLogger(__name__)

HIT = "HIT"
MISS = "MISS"
REVALIDATED = "REVALIDATED(304)"
STALE_RATE_LIMIT = "STALE(local-rate-limit)"

# Characters encodeURIComponent leaves alone.
_URI_COMPONENT_SAFE = "-_.!~*'()"


def stale_upstream_tag(status_code: Optional[int]) -> str:
    return f"STALE(upstream-{status_code or 'err'})"


class RateLimitExceeded(Exception):
    """Local quota exhausted and nothing cached to fall back on."""

    def __init__(self, message: str = "Local rate limit reached"):
        super().__init__(message)


@dataclass(frozen=True)
class ProxyResult:
    """A value and the tag saying which path produced it."""

    value: Any
    tag: str

    @property
    def stale(self) -> bool:
        return self.tag.startswith("STALE(")


def stable_params_key(params: Mapping[str, Any]) -> str:
    """Serialize params as sorted ``k=v`` pairs with percent-encoded values."""
    pairs = sorted((str(k), str(v)) for k, v in params.items())
    return "&".join(f"{k}={quote(v, safe=_URI_COMPONENT_SAFE)}" for k, v in pairs)


def build_cache_key(kind: str, params: Mapping[str, Any]) -> str:
    return f"{kind}:{stable_params_key(params)}"


class RevalidatingProxy:
    """
    Serves iRail resources through the cache.

    Owns the cache and limiters for its lifetime; handlers receive the proxy
    instance rather than reaching for module state.
    """

    def __init__(
        self,
        cache: TTLCache,
        client: IRailClient,
        global_limiter: TokenBucketLimiter,
        client_limiters: LimiterRegistry,
    ) -> None:
        self._cache = cache
        self._client = client
        self._global_limiter = global_limiter
        self._client_limiters = client_limiters

    @property
    def cache(self) -> TTLCache:
        return self._cache

    @property
    def client_limiters(self) -> LimiterRegistry:
        return self._client_limiters

    async def fetch(
        self,
        key: str,
        path: str,
        client_scope: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> ProxyResult:
        """
        Resolve ``key`` from cache or upstream ``path``.

        ``client_scope`` selects the per-client limiter; when None only the
        global limiter is consulted. Raises RateLimitExceeded or an
        UpstreamError subclass when no cached value can stand in.
        """
        # 1. Fresh hit short-circuits limiters and upstream
        fresh = self._cache.get_fresh(key)
        if fresh is not None:
            return ProxyResult(fresh.value, HIT)

        # 2. Stale material for fallback and revalidation
        entry = self._cache.peek(key)
        has_fallback = entry is not None
        fallback = entry.value if has_fallback else None
        validator = entry.validator if has_fallback else None

        # 3. Local quota
        if not self._admit(client_scope):
            if has_fallback:
                logger.info("Rate limited, serving stale %s", key)
                return ProxyResult(fallback, STALE_RATE_LIMIT)
            raise RateLimitExceeded()

        outcome = await self._client.fetch(path, validator=validator, timeout=timeout)

        # 4. Channel trouble: stale if we have it
        if isinstance(outcome, Transient):
            if has_fallback:
                tag = stale_upstream_tag(outcome.error.status_code)
                logger.warning("Upstream failed for %s (%s), serving %s", key, outcome.error, tag)
                return ProxyResult(fallback, tag)
            raise outcome.error

        # 5. The request itself is bad; never masked
        if isinstance(outcome, Permanent):
            raise outcome.error

        # 6. Unchanged upstream: keep the value, refresh expiry
        if isinstance(outcome, NotModified):
            if not has_fallback:
                raise UpstreamRejected(
                    f"iRail answered 304 for {path} but nothing is cached", status_code=502
                )
            self._cache.set(key, fallback, validator=outcome.validator or validator, ttl=outcome.ttl)
            return ProxyResult(fallback, REVALIDATED)

        # 7. New data
        assert isinstance(outcome, Fresh)
        self._cache.set(key, outcome.value, validator=outcome.validator, ttl=outcome.ttl)
        logger.debug("Cached %s for %.0fs", key, outcome.ttl)
        return ProxyResult(outcome.value, MISS)

    def _admit(self, client_scope: Optional[str]) -> bool:
        """Client scope first, then global; both must admit."""
        if client_scope is not None and not self._client_limiters.take(client_scope):
            return False
        return self._global_limiter.take_token()

