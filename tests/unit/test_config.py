"""
Unit tests for connection settings and polling settings.
"""

import logging
from unittest.mock import patch

import pytest

from deploy_client.config import get_api_key, get_server_url, read_config_value
from deploy_tracker.config import TrackerSettings


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config"
    path.write_text("# deploy settings\napi_key = ignored\napi_key=file-key\nserver_url=http://from-file:5000\n")
    return path


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "DEPLOY_SERVER_URL",
        "DEPLOY_API_KEY",
        "DEPLOY_POLL_INTERVAL",
        "DEPLOY_MAX_POLL_INTERVAL",
        "DEPLOY_BACKOFF_AFTER",
        "DEPLOY_BACKOFF_FACTOR",
        "DEPLOY_MAX_ERRORS",
        "DEPLOY_REQUEST_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestConfigFile:
    """Test suite for ~/.deploy/config parsing."""

    def test_reads_key(self, config_file):
        """Test reading a key=value entry."""
        assert read_config_value("api_key", config_file) == "file-key"
        assert read_config_value("server_url", config_file) == "http://from-file:5000"

    def test_missing_key(self, config_file):
        """Test that an absent key reads as None."""
        assert read_config_value("domain", config_file) is None

    def test_missing_file(self, tmp_path):
        """Test that a missing config file reads as None."""
        assert read_config_value("api_key", tmp_path / "nope") is None


class TestConnectionSettings:
    """Test suite for server URL and API key resolution."""

    def test_api_key_priority(self, clean_env, config_file):
        """Test that CLI argument beats env var, which beats the file."""
        with patch("deploy_client.config.get_config_path", return_value=config_file):
            assert get_api_key() == "file-key"
            clean_env.setenv("DEPLOY_API_KEY", "env-key")
            assert get_api_key() == "env-key"
            assert get_api_key("cli-key") == "cli-key"

    def test_no_api_key(self, clean_env, tmp_path):
        """Test that no key anywhere means anonymous access."""
        with patch("deploy_client.config.get_config_path", return_value=tmp_path / "none"):
            assert get_api_key() is None

    def test_server_url_priority(self, clean_env, config_file, tmp_path):
        """Test server URL lookup order and default."""
        with patch("deploy_client.config.get_config_path", return_value=tmp_path / "none"):
            assert get_server_url() == "http://localhost:5000"
        with patch("deploy_client.config.get_config_path", return_value=config_file):
            assert get_server_url() == "http://from-file:5000"
            clean_env.setenv("DEPLOY_SERVER_URL", "http://from-env")
            assert get_server_url() == "http://from-env"
            assert get_server_url("http://from-cli") == "http://from-cli"


class TestTrackerSettings:
    """Test suite for TrackerSettings.from_env."""

    def test_defaults(self, clean_env):
        """Test the default polling settings."""
        settings = TrackerSettings.from_env()

        assert settings == TrackerSettings()
        assert settings.base_interval == 2.0
        assert settings.max_interval == 8.0
        assert settings.backoff_after == 6
        assert settings.max_consecutive_errors == 5

    def test_overrides(self, clean_env):
        """Test reading every setting from the environment."""
        clean_env.setenv("DEPLOY_POLL_INTERVAL", "1")
        clean_env.setenv("DEPLOY_MAX_POLL_INTERVAL", "30")
        clean_env.setenv("DEPLOY_BACKOFF_AFTER", "3")
        clean_env.setenv("DEPLOY_BACKOFF_FACTOR", "1.5")
        clean_env.setenv("DEPLOY_MAX_ERRORS", "10")

        settings = TrackerSettings.from_env()

        assert settings.base_interval == 1.0
        assert settings.max_interval == 30.0
        assert settings.backoff_after == 3
        assert settings.backoff_factor == 1.5
        assert settings.max_consecutive_errors == 10

    @pytest.mark.parametrize("raw", ["abc", "0", "-2"])
    def test_invalid_values_fall_back(self, clean_env, caplog, raw):
        """Test that unusable values are logged and replaced by defaults."""
        clean_env.setenv("DEPLOY_POLL_INTERVAL", raw)

        with caplog.at_level(logging.WARNING, logger="deploy_tracker.config"):
            settings = TrackerSettings.from_env()

        assert settings.base_interval == 2.0
        assert "DEPLOY_POLL_INTERVAL" in caplog.text

    def test_max_below_base_is_raised(self, clean_env):
        """Test that the backoff ceiling is never below the base interval."""
        clean_env.setenv("DEPLOY_POLL_INTERVAL", "5")
        clean_env.setenv("DEPLOY_MAX_POLL_INTERVAL", "1")

        settings = TrackerSettings.from_env()

        assert settings.max_interval == 5.0

    def test_integer_setting_rejects_float(self, clean_env):
        """Test that integer settings fall back on non-integer text."""
        clean_env.setenv("DEPLOY_BACKOFF_AFTER", "2.5")

        assert TrackerSettings.from_env().backoff_after == 6
