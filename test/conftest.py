"""
Shared test fixtures for stationsbord.

Provides:
- A controllable clock for cache and limiter tests
- Temporary config files pointing at a fake iRail server
- A running stationsbord server for E2E tests

The fake iRail server itself is pytest-httpserver's ``httpserver`` fixture.
"""

import os
import socket
import time
from threading import Thread

import httpx
import pytest
import uvicorn


class FakeClock:
    """Controllable monotonic clock for deterministic tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture(scope="session")
def httpserver_listen_address():
    """Bind the fake iRail server to IPv4 loopback on a free port."""
    return ("127.0.0.1", 0)


# ---------------------------------------------------------------------------
# Config / E2E fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def config_file(httpserver, tmp_path):
    """
    Write a temporary config.yaml that points at the fake iRail server.
    Returns the path to the config file.
    """
    irail_url = httpserver.url_for("/").rstrip("/")
    config_content = f"""\
irail_base_url: "{irail_url}"
app_name: "Stationsbord"
app_version: "9.9.9"
default_timeout: 2
vehicle_timeout: 3

global_limit:
  rate: 3
  burst: 5
client_limit:
  rate: 1.5
  burst: 3
"""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_content)
    return str(config_path)


def _find_free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture()
def stationsbord_url(config_file, monkeypatch):
    """
    Start the real stationsbord app (real lifespan) on a free port.
    Yields the base URL (e.g. http://127.0.0.1:9123).
    """
    monkeypatch.setenv("CONFIG_PATH", config_file)
    monkeypatch.delenv("IRAIL_BASE_URL", raising=False)
    monkeypatch.delenv("IRAIL_TIMEOUT", raising=False)

    from stationsbord.app import app

    port = _find_free_port()
    config = uvicorn.Config(app, host="127.0.0.1", port=port, log_level="warning")
    server = uvicorn.Server(config)
    thread = Thread(target=server.run, daemon=True)
    thread.start()

    base_url = f"http://127.0.0.1:{port}"
    for _ in range(100):
        try:
            httpx.get(f"{base_url}/health", timeout=1.0)
            break
        except (httpx.ConnectError, httpx.ReadError, httpx.ConnectTimeout):
            time.sleep(0.1)
    else:
        pytest.fail("Stationsbord server did not start in time")

    yield base_url

    server.should_exit = True
    thread.join(timeout=5)
