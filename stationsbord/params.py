"""
Query parameter normalization.

Keeps accepted values strict so junk parameters cannot fragment the cache.
"""

from __future__ import annotations

import re
from typing import Optional

LANGUAGES = frozenset({"en", "nl", "fr", "de"})

_DDMMYY_RE = re.compile(r"^\d{6}$")
_HHMM_RE = re.compile(r"^\d{4}$")


def normalize_lang(raw: Optional[str]) -> str:
    value = str(raw or "en").strip().lower()
    return value if value in LANGUAGES else "en"


def normalize_arrdep(raw: Optional[str]) -> str:
    value = str(raw or "departure").strip().lower()
    return "arrival" if value == "arrival" else "departure"


def normalize_alerts(raw: Optional[str]) -> str:
    value = str(raw if raw is not None else "false").strip().lower()
    return "true" if value == "true" else "false"


def normalize_date_ddmmyy(raw: Optional[str]) -> Optional[str]:
    """Return a DDMMYY date string, or None when absent or malformed."""
    if raw is None or raw == "":
        return None
    value = str(raw).strip()
    return value if _DDMMYY_RE.match(value) else None


def normalize_time_hhmm(raw: Optional[str]) -> Optional[str]:
    """Return a valid 24h HHMM string, or None when absent or malformed."""
    if raw is None or raw == "":
        return None
    value = str(raw).strip()
    if not _HHMM_RE.match(value):
        return None
    hours, minutes = int(value[:2]), int(value[2:])
    if hours > 23 or minutes > 59:
        return None
    return value
