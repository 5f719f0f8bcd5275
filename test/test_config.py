"""Tests for config loading."""

import pytest
from pydantic import ValidationError

from stationsbord.config import AppConfig, ConfigurationError, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("IRAIL_BASE_URL", raising=False)
    monkeypatch.delenv("IRAIL_TIMEOUT", raising=False)
    monkeypatch.delenv("CONFIG_PATH", raising=False)


@pytest.fixture()
def valid_config_yaml(tmp_path):
    """Write a minimal valid config.yaml and return its path."""
    content = """\
irail_base_url: "https://api.irail.be"
default_timeout: 10
vehicle_timeout: 40

global_limit:
  rate: 5
  burst: 10
client_limit:
  rate: 2
  burst: 2
limiter_idle_ttl: 600
limiter_max_size: 100
"""
    p = tmp_path / "config.yaml"
    p.write_text(content)
    return str(p)


class TestLoadConfig:
    def test_loads_valid_config(self, valid_config_yaml):
        config = load_config(valid_config_yaml)
        assert config.irail_base_url == "https://api.irail.be"
        assert config.default_timeout == 10
        assert config.vehicle_timeout == 40
        assert config.global_limit.rate == 5
        assert config.global_limit.burst == 10
        assert config.client_limit.rate == 2
        assert config.limiter_idle_ttl == 600
        assert config.limiter_max_size == 100

    def test_defaults_applied(self, tmp_path):
        p = tmp_path / "config.yaml"
        p.write_text('irail_base_url: "https://api.irail.be"\n')
        config = load_config(str(p))
        assert config.app_name == "Stationsbord"
        assert config.default_timeout == 25
        assert config.vehicle_timeout == 25
        assert config.default_ttl == 30
        assert config.global_limit.rate == 3
        assert config.global_limit.burst == 5
        assert config.client_limit.rate == 1.5
        assert config.client_limit.burst == 3
        assert config.limiter_idle_ttl == 1800
        assert config.limiter_max_size == 5000

    def test_missing_base_url_is_fatal(self, tmp_path):
        p = tmp_path / "config.yaml"
        p.write_text("default_timeout: 10\n")
        with pytest.raises(ConfigurationError, match="irail_base_url"):
            load_config(str(p))

    def test_empty_file_is_fatal(self, tmp_path):
        p = tmp_path / "config.yaml"
        p.write_text("")
        with pytest.raises(ConfigurationError):
            load_config(str(p))

    def test_base_url_from_env(self, tmp_path, monkeypatch):
        p = tmp_path / "config.yaml"
        p.write_text("default_timeout: 10\n")
        monkeypatch.setenv("IRAIL_BASE_URL", "http://localhost:9999")
        config = load_config(str(p))
        assert config.irail_base_url == "http://localhost:9999"

    def test_env_overrides_yaml(self, valid_config_yaml, monkeypatch):
        monkeypatch.setenv("IRAIL_BASE_URL", "http://localhost:9999")
        monkeypatch.setenv("IRAIL_TIMEOUT", "7.5")
        config = load_config(valid_config_yaml)
        assert config.irail_base_url == "http://localhost:9999"
        assert config.default_timeout == 7.5

    def test_file_not_found(self):
        with pytest.raises(FileNotFoundError):
            load_config("/nonexistent/config.yaml")

    def test_config_path_from_env(self, valid_config_yaml, monkeypatch):
        monkeypatch.setenv("CONFIG_PATH", valid_config_yaml)
        config = load_config()
        assert config.vehicle_timeout == 40

    def test_negative_rate_raises(self, tmp_path):
        content = """\
irail_base_url: "https://api.irail.be"
client_limit:
  rate: -1
  burst: 3
"""
        p = tmp_path / "config.yaml"
        p.write_text(content)
        with pytest.raises(ValidationError):
            load_config(str(p))

    def test_zero_timeout_raises(self):
        with pytest.raises(ValidationError):
            AppConfig(irail_base_url="http://x", default_timeout=0)
