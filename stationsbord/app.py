"""
FastAPI application for stationsbord.

Lifespan builds the httpx client, cache, rate limiters, iRail client, proxy
and station directory and keeps them on ``app.state``.
Routes: /api/liveboard, /api/disturbances, /api/vehicle,
/api/stations/search, /api/stations/refresh, /health.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Optional
from urllib.parse import urlencode

import httpx
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from stationsbord.cache import TTLCache
from stationsbord.config import AppConfig, load_config
from stationsbord.irail_client import (
    IRailClient,
    UpstreamError,
    UpstreamRejected,
    UpstreamTimeout,
    build_user_agent,
)
from stationsbord.models import HealthResponse, StationRefreshResponse, StationSearchResponse
from stationsbord.params import (
    normalize_alerts,
    normalize_arrdep,
    normalize_date_ddmmyy,
    normalize_lang,
    normalize_time_hhmm,
)
from stationsbord.proxy import RateLimitExceeded, RevalidatingProxy, build_cache_key
from stationsbord.rate_limit import LimiterRegistry, TokenBucketLimiter
from stationsbord.stations import DEFAULT_SEARCH_LIMIT, StationDirectory

logger = logging.getLogger(__name__)

NO_STORE = {"Cache-Control": "no-store"}
MAX_SEARCH_LIMIT = 50


def build_proxy(config: AppConfig, http_client: httpx.AsyncClient) -> RevalidatingProxy:
    """Wire the proxy and everything it owns from configuration."""
    user_agent = build_user_agent(
        config.app_name, config.app_version, config.app_website, config.app_email
    )
    client = IRailClient(
        http_client=http_client,
        base_url=config.irail_base_url,
        user_agent=user_agent,
        default_timeout=config.default_timeout,
    )
    return RevalidatingProxy(
        cache=TTLCache(default_ttl=config.default_ttl),
        client=client,
        global_limiter=TokenBucketLimiter(
            config.global_limit.rate, config.global_limit.burst
        ),
        client_limiters=LimiterRegistry(
            config.client_limit.rate,
            config.client_limit.burst,
            idle_ttl=config.limiter_idle_ttl,
            max_size=config.limiter_max_size,
        ),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: load config, create HTTP client, proxy and station directory."""
    # Configure logging
    log_level = os.environ.get("LOG_LEVEL", "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_config()
    logger.info(
        "Loaded config: %s %s, irail_base_url=%s, default_timeout=%.0fs",
        config.app_name,
        config.app_version,
        config.irail_base_url,
        config.default_timeout,
    )

    async with httpx.AsyncClient() as http_client:
        proxy = build_proxy(config, http_client)
        app.state.config = config
        app.state.proxy = proxy
        app.state.stations = StationDirectory(proxy)
        logger.info("Stationsbord ready")
        yield

    app.state.proxy = None
    app.state.stations = None


app = FastAPI(
    title="Stationsbord API",
    version="0.1.0",
    description="Caching proxy in front of the iRail API (liveboards, disturbances, vehicles, stations).",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "irail", "description": "Cached iRail resources"},
        {"name": "stations", "description": "Station search"},
        {"name": "health", "description": "Service health check"},
    ],
)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_config(request: Request) -> AppConfig:
    config = getattr(request.app.state, "config", None)
    if config is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return config


def get_proxy(request: Request) -> RevalidatingProxy:
    proxy = getattr(request.app.state, "proxy", None)
    if proxy is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return proxy


def get_stations(request: Request) -> StationDirectory:
    stations = getattr(request.app.state, "stations", None)
    if stations is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return stations


def client_scope(request: Request) -> str:
    """Per-client limiter key: the peer address."""
    return request.client.host if request.client else "unknown"


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


def to_http_exception(exc: Exception) -> HTTPException:
    """Map proxy failures onto HTTP status codes."""
    if isinstance(exc, RateLimitExceeded):
        status = 429
    elif isinstance(exc, UpstreamTimeout):
        status = 504
    elif isinstance(exc, UpstreamRejected):
        code = exc.status_code or 0
        status = code if 400 <= code < 500 else 502
    elif isinstance(exc, UpstreamError):
        status = exc.status_code if exc.status_code in (502, 503, 504) else 502
    else:
        status = 500
    return HTTPException(status_code=status, detail=str(exc), headers=NO_STORE)


async def proxied(
    proxy: RevalidatingProxy,
    kind: str,
    params: dict[str, str],
    scope: str,
    timeout: Optional[float] = None,
) -> JSONResponse:
    """Fetch ``/<kind>/?params`` through the proxy and tag the response."""
    path = f"/{kind}/?{urlencode(params)}"
    try:
        result = await proxy.fetch(
            build_cache_key(kind, params), path, client_scope=scope, timeout=timeout
        )
    except (RateLimitExceeded, UpstreamError) as exc:
        logger.warning("%s request failed: %s", kind, exc)
        raise to_http_exception(exc) from exc
    return JSONResponse(content=result.value, headers={**NO_STORE, "X-Cache": result.tag})


def _bad_request(message: str) -> HTTPException:
    return HTTPException(status_code=400, detail=message, headers=NO_STORE)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@app.get("/health", response_model=HealthResponse, tags=["health"], summary="Health check")
async def health(config: AppConfig = Depends(get_config)):
    """Always 200 once the service has started."""
    return HealthResponse(name=config.app_name, version=config.app_version)


@app.get("/api/liveboard", tags=["irail"], summary="Departures or arrivals at a station")
async def liveboard(
    request: Request,
    id: Optional[str] = None,
    station: Optional[str] = None,
    lang: Optional[str] = None,
    arrdep: Optional[str] = None,
    alerts: Optional[str] = None,
    date: Optional[str] = None,
    time: Optional[str] = None,
    proxy: RevalidatingProxy = Depends(get_proxy),
):
    """
    Proxy iRail's liveboard for one station, by ``id`` or by ``station`` name.

    The ``X-Cache`` header tells whether the data came from the cache (HIT),
    upstream (MISS), a 304 revalidation, or stale fallback.
    """
    if id and station:
        raise _bad_request("Use either id OR station, not both.")
    if not id and not station:
        raise _bad_request("Missing required parameter: id or station")

    time_norm = normalize_time_hhmm(time)
    if time and not time_norm:
        raise _bad_request("Invalid time format. Expected HHMM.")
    date_norm = normalize_date_ddmmyy(date)
    if date and not date_norm:
        raise _bad_request("Invalid date format. Expected DDMMYY.")

    params = {
        "format": "json",
        "lang": normalize_lang(lang),
        "arrdep": normalize_arrdep(arrdep),
        "alerts": normalize_alerts(alerts),
    }
    if id:
        params["id"] = id
    if station:
        params["station"] = station
    if date_norm:
        params["date"] = date_norm
    if time_norm:
        params["time"] = time_norm

    return await proxied(proxy, "liveboard", params, client_scope(request))


@app.get("/api/disturbances", tags=["irail"], summary="Current service disturbances")
async def disturbances(
    request: Request,
    lang: Optional[str] = None,
    line_break_character: Optional[str] = Query(default=None, alias="lineBreakCharacter"),
    proxy: RevalidatingProxy = Depends(get_proxy),
):
    params = {"format": "json", "lang": normalize_lang(lang)}
    if line_break_character and line_break_character.strip():
        params["lineBreakCharacter"] = line_break_character

    return await proxied(proxy, "disturbances", params, client_scope(request))


@app.get("/api/vehicle", tags=["irail"], summary="Stops of one train")
async def vehicle(
    request: Request,
    id: Optional[str] = None,
    lang: Optional[str] = None,
    alerts: Optional[str] = None,
    date: Optional[str] = None,
    proxy: RevalidatingProxy = Depends(get_proxy),
    config: AppConfig = Depends(get_config),
):
    """Vehicle lookups are slow upstream, so they get their own timeout."""
    if not id:
        raise _bad_request("Missing required parameter: id")

    date_norm = normalize_date_ddmmyy(date)
    if date and not date_norm:
        raise _bad_request("Invalid date format. Expected DDMMYY.")

    params = {
        "format": "json",
        "lang": normalize_lang(lang),
        "alerts": normalize_alerts(alerts),
        "id": id,
    }
    if date_norm:
        params["date"] = date_norm

    return await proxied(
        proxy, "vehicle", params, client_scope(request), timeout=config.vehicle_timeout
    )


@app.get(
    "/api/stations/search",
    response_model=StationSearchResponse,
    tags=["stations"],
    summary="Search stations by name",
)
async def search_stations(
    q: str = "",
    limit: int = DEFAULT_SEARCH_LIMIT,
    stations: StationDirectory = Depends(get_stations),
) -> Any:
    try:
        results = await stations.search(
            q, max(1, min(MAX_SEARCH_LIMIT, limit or DEFAULT_SEARCH_LIMIT))
        )
    except (RateLimitExceeded, UpstreamError) as exc:
        raise to_http_exception(exc) from exc
    body = StationSearchResponse(q=q, results=results)
    return JSONResponse(content=body.model_dump(), headers=NO_STORE)


@app.get(
    "/api/stations/refresh",
    response_model=StationRefreshResponse,
    tags=["stations"],
    summary="Reload the station list",
)
async def refresh_stations(stations: StationDirectory = Depends(get_stations)) -> Any:
    try:
        loaded = await stations.refresh()
    except (RateLimitExceeded, UpstreamError) as exc:
        raise to_http_exception(exc) from exc
    body = StationRefreshResponse(count=len(loaded))
    return JSONResponse(content=body.model_dump(), headers=NO_STORE)
