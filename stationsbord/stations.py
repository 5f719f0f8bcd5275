"""
Station list: extraction from iRail payloads and a simple search index.

The iRail stations payload is loosely shaped (``station`` may be an object or
a list, sometimes nested under ``stations``; ids appear as ``id`` and
``@id``). Each field has its own extraction function with an explicit default.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from stationsbord.models import Station
from stationsbord.proxy import MISS, RevalidatingProxy, build_cache_key

logger = logging.getLogger(__name__)

STATIONS_PARAMS = {"format": "json", "lang": "en"}
STATIONS_PATH = "/stations/?format=json&lang=en"
DEFAULT_SEARCH_LIMIT = 15


def station_id(raw: dict) -> Optional[str]:
    """``id``, default None."""
    value = raw.get("id")
    return str(value) if value else None


def station_uri(raw: dict) -> Optional[str]:
    """``@id``, default None."""
    return raw.get("@id") or None


def station_name(raw: dict) -> Optional[str]:
    """``name``, else ``standardname``, default None."""
    return raw.get("name") or raw.get("standardname") or None


def station_standard_name(raw: dict) -> Optional[str]:
    """``standardname``, else ``name``, default None."""
    return raw.get("standardname") or raw.get("name") or None


def station_location_x(raw: dict) -> Optional[str]:
    """``locationX`` (longitude), default None."""
    value = raw.get("locationX")
    return None if value is None else str(value)


def station_location_y(raw: dict) -> Optional[str]:
    """``locationY`` (latitude), default None."""
    value = raw.get("locationY")
    return None if value is None else str(value)


def normalize_station(raw: dict) -> Station:
    return Station(
        id=station_id(raw),
        uri=station_uri(raw),
        name=station_name(raw),
        standardname=station_standard_name(raw),
        locationX=station_location_x(raw),
        locationY=station_location_y(raw),
    )


def _raw_stations(payload: Any) -> Any:
    if not isinstance(payload, dict):
        return None
    if payload.get("station") is not None:
        return payload["station"]
    stations = payload.get("stations")
    if isinstance(stations, dict) and stations.get("station") is not None:
        return stations["station"]
    return stations


def extract_stations(payload: Any) -> list[Station]:
    """Return the usable stations (with id and name) from a stations payload."""
    raw = _raw_stations(payload)
    if isinstance(raw, dict):
        raw = [raw]
    if not isinstance(raw, list):
        return []
    stations = [normalize_station(item) for item in raw if isinstance(item, dict)]
    return [s for s in stations if s.id and s.name]


class StationIndex:
    """In-memory list sorted by name, searched by substring."""

    def __init__(self, stations: list[Station]) -> None:
        self._stations = sorted(stations, key=lambda s: (s.name or "").lower())

    @property
    def all(self) -> list[Station]:
        return list(self._stations)

    def __len__(self) -> int:
        return len(self._stations)

    def search(self, query: str, limit: int = DEFAULT_SEARCH_LIMIT) -> list[Station]:
        needle = (query or "").strip().lower()
        if not needle or limit <= 0:
            return []
        hits = []
        for station in self._stations:
            name = (station.name or "").lower()
            standard = (station.standardname or "").lower()
            if needle in name or needle in standard:
                hits.append(station)
                if len(hits) >= limit:
                    break
        return hits


class StationDirectory:
    """
    Station list loaded through the proxy.

    Uses only the global limiter scope: the list is shared by all clients.
    """

    def __init__(self, proxy: RevalidatingProxy) -> None:
        self._proxy = proxy
        self._index = StationIndex([])

    @property
    def index(self) -> StationIndex:
        return self._index

    async def refresh(self) -> list[Station]:
        """Load the station list, rebuilding the index when it changed."""
        result = await self._proxy.fetch(
            build_cache_key("stations", STATIONS_PARAMS), STATIONS_PATH
        )
        if result.tag == MISS or not len(self._index):
            self._index = StationIndex(extract_stations(result.value))
            logger.info("Station index rebuilt: %d stations", len(self._index))
        return self._index.all

    async def search(self, query: str, limit: int = DEFAULT_SEARCH_LIMIT) -> list[Station]:
        if not len(self._index):
            await self.refresh()
        return self._index.search(query, limit)
