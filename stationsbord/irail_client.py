"""
Async iRail API client.

Thin wrapper around httpx performing conditional GETs. Never raises for
upstream trouble: every call returns a classified outcome (Fresh,
NotModified, Transient, Permanent) and the caller decides what to do.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional, Union

import httpx

from stationsbord.cache import DEFAULT_TTL, ttl_from_cache_control

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 25.0
TRANSIENT_STATUSES = frozenset({502, 503, 504})


class UpstreamError(Exception):
    """Raised when an iRail API call fails."""

    transient = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class UpstreamTimeout(UpstreamError):
    """The bounded upstream call did not complete in time."""

    transient = True

    def __init__(self, message: str):
        super().__init__(message, status_code=504)


class UpstreamUnavailable(UpstreamError):
    """Upstream answered 502/503/504 or could not be reached at all."""

    transient = True


class UpstreamRejected(UpstreamError):
    """Upstream refused the request or answered with an unusable body."""


@dataclass(frozen=True)
class Fresh:
    value: Any
    validator: Optional[str]
    ttl: float


@dataclass(frozen=True)
class NotModified:
    validator: Optional[str]
    ttl: float


@dataclass(frozen=True)
class Transient:
    error: UpstreamError


@dataclass(frozen=True)
class Permanent:
    error: UpstreamError


Outcome = Union[Fresh, NotModified, Transient, Permanent]


def build_user_agent(app_name: str, app_version: str, website: str, email: str) -> str:
    """Identify this proxy to iRail as ``name/version (website; email)``."""

    def safe(part: Optional[str]) -> str:
        return re.sub(r"[()]", "", str(part or "")).strip()

    return f"{safe(app_name)}/{safe(app_version)} ({safe(website)}; {safe(email)})"


def _raw_etag(response: httpx.Response) -> Optional[str]:
    """The ETag exactly as sent, bytes mapped 1:1 through latin-1."""
    for name, value in response.headers.raw:
        if name.lower() == b"etag":
            return value.decode("latin-1")
    return None


def _snippet(text: str, limit: int = 300) -> str:
    return re.sub(r"\s+", " ", text or "").strip()[:limit]


class IRailClient:
    """Async client for the iRail API."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        user_agent: str,
        default_timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._http = http_client
        self._base_url = base_url.rstrip("/")
        self._user_agent = user_agent
        self._default_timeout = default_timeout

    def _headers(self, validator: Optional[str]) -> dict[str, Union[str, bytes]]:
        headers: dict[str, Union[str, bytes]] = {
            "Accept": "application/json",
            "User-Agent": self._user_agent,
        }
        if validator:
            # ETags may carry obs-text (0x80-0xFF); send the original bytes back
            try:
                headers["If-None-Match"] = validator.encode("latin-1")
            except UnicodeEncodeError:
                logger.warning("Dropping unsendable validator %r", validator)
        return headers

    async def fetch(
        self,
        path: str,
        validator: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Outcome:
        """
        Conditionally GET ``path`` (relative to the base URL, query included).

        The whole call, including reading the body, is bounded by ``timeout``
        seconds and cancelled when it runs out.
        """
        url = f"{self._base_url}{path}"
        effective_timeout = timeout or self._default_timeout

        try:
            response = await asyncio.wait_for(
                self._http.get(
                    url, headers=self._headers(validator), timeout=effective_timeout
                ),
                timeout=effective_timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.warning("iRail timeout after %.1fs for %s", effective_timeout, path)
            return Transient(
                UpstreamTimeout(f"iRail timeout after {effective_timeout:g}s for {path}")
            )
        except httpx.HTTPError as exc:
            logger.error("iRail request failed: %s %s -> %s", "GET", url, exc)
            return Transient(UpstreamUnavailable(f"Connection error: {exc}"))

        return self._classify(path, validator, response)

    def _classify(
        self, path: str, validator: Optional[str], response: httpx.Response
    ) -> Outcome:
        status = response.status_code
        new_validator = _raw_etag(response)
        ttl = ttl_from_cache_control(response.headers.get("cache-control"), DEFAULT_TTL)
        content_type = response.headers.get("content-type", "").lower()
        ct_hint = f" ({content_type})" if content_type else ""

        if status == 304:
            return NotModified(validator=new_validator or validator, ttl=ttl)

        if not response.is_success:
            message = f"iRail error {status}{ct_hint} for {path}: {_snippet(response.text)}"
            if status in TRANSIENT_STATUSES:
                logger.warning("%s", message)
                return Transient(UpstreamUnavailable(message, status_code=status))
            return Permanent(UpstreamRejected(message, status_code=status))

        if "application/json" not in content_type:
            return Permanent(
                UpstreamRejected(
                    f"iRail returned non-JSON{ct_hint} for {path}: {_snippet(response.text)}",
                    status_code=status,
                )
            )

        try:
            value = response.json()
        except ValueError as exc:
            return Permanent(
                UpstreamRejected(
                    f"iRail returned malformed JSON for {path}: {exc}", status_code=status
                )
            )

        return Fresh(value=value, validator=new_validator, ttl=ttl)
