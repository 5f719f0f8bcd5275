"""
Configuration loading for stationsbord.

Loads settings from config.yaml; the iRail address and timeout may be
overridden from environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field


class ConfigurationError(Exception):
    """A required setting is missing; the service cannot start."""


class LimiterConfig(BaseModel):
    """Token bucket settings for one rate limit scope."""

    rate: float = Field(ge=0, description="Tokens refilled per second")
    burst: float = Field(ge=0, description="Extra tokens on top of one second's worth")


class AppConfig(BaseModel):
    """Application configuration."""

    # Identity, sent to iRail in the User-Agent
    app_name: str = "Stationsbord"
    app_version: str = "0.1.0"
    app_website: str = "https://example.invalid"
    app_email: str = "hello@example.invalid"

    # iRail settings
    irail_base_url: str
    default_timeout: float = Field(default=25.0, gt=0)
    vehicle_timeout: float = Field(default=25.0, gt=0)

    # Cache settings
    default_ttl: float = Field(default=30.0, ge=1)

    # Rate limits
    global_limit: LimiterConfig = LimiterConfig(rate=3, burst=5)
    client_limit: LimiterConfig = LimiterConfig(rate=1.5, burst=3)
    limiter_idle_ttl: float = Field(default=30 * 60, ge=0)
    limiter_max_size: int = Field(default=5000, ge=0)


def load_config(config_path: str | None = None) -> AppConfig:
    """
    Load configuration from YAML file + environment variables.

    Args:
        config_path: Path to config.yaml. If None, reads CONFIG_PATH env var
                     (default: config.yaml in current directory).

    Returns:
        Validated AppConfig instance.

    Raises:
        ConfigurationError: when no iRail base URL is configured.
    """
    if config_path is None:
        config_path = os.environ.get("CONFIG_PATH", "config.yaml")

    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path) as f:
        raw = yaml.safe_load(f)

    if raw is None:
        raw = {}

    config_data = dict(raw)
    base_url: Optional[str] = os.environ.get("IRAIL_BASE_URL") or raw.get("irail_base_url")
    if not base_url:
        raise ConfigurationError(
            "Missing required setting: irail_base_url (or IRAIL_BASE_URL)"
        )
    config_data["irail_base_url"] = base_url

    timeout = os.environ.get("IRAIL_TIMEOUT")
    if timeout:
        config_data["default_timeout"] = timeout

    return AppConfig(**config_data)
