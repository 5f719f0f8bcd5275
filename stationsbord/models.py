"""
Pydantic response models for the stationsbord API.

Proxied iRail payloads are passed through untouched; only the endpoints the
service answers itself have models.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class Station(BaseModel):
    """One iRail station, normalized."""

    id: Optional[str] = Field(default=None, description="iRail station id, e.g. BE.NMBS.008821006")
    uri: Optional[str] = Field(default=None, description="Station URI (the payload's @id)")
    name: Optional[str] = None
    standardname: Optional[str] = None
    locationX: Optional[str] = Field(default=None, description="Longitude")
    locationY: Optional[str] = Field(default=None, description="Latitude")


class StationSearchResponse(BaseModel):
    q: str
    results: list[Station]


class StationRefreshResponse(BaseModel):
    count: int = Field(ge=0)


class HealthResponse(BaseModel):
    status: str = "healthy"
    name: str
    version: str
