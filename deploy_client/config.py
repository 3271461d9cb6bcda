"""
Connection settings for the deploy API.

Values are looked up in priority order: explicit argument, environment
variable, then the ``~/.deploy/config`` file (``key=value`` lines).
"""

import logging
import os
from pathlib import Path

from .client import DEFAULT_SERVER_URL

logger = logging.getLogger(__name__)


def get_config_path() -> Path:
    return Path.home() / ".deploy" / "config"


def read_config_value(key: str, config_path: Path | None = None) -> str | None:
    """
    Read one ``key=value`` entry from the config file.

    Returns:
        The value if the file exists and defines the key, None otherwise
    """
    path = config_path or get_config_path()
    if not path.exists():
        return None
    try:
        content = path.read_text()
    except OSError as e:
        logger.warning(f"Could not read config file {path}: {e}")
        return None
    prefix = f"{key}="
    for line in content.splitlines():
        line = line.strip()
        if line.startswith(prefix):
            return line[len(prefix) :].strip()
    return None


def get_server_url(cli_arg: str | None = None) -> str:
    """
    Get the deploy API URL.

    Environment variables:
    - DEPLOY_SERVER_URL: Custom server URL
    """
    if cli_arg:
        return cli_arg
    env_url = os.environ.get("DEPLOY_SERVER_URL")
    if env_url:
        return env_url
    return read_config_value("server_url") or DEFAULT_SERVER_URL


def get_api_key(cli_arg: str | None = None) -> str | None:
    """
    Get the auth token from multiple sources in priority order.

    Priority (highest to lowest):
    1. Command line argument (--api-key)
    2. Environment variable (DEPLOY_API_KEY)
    3. Config file (~/.deploy/config, line ``api_key=...``)
    """
    if cli_arg:
        return cli_arg
    env_key = os.environ.get("DEPLOY_API_KEY")
    if env_key:
        return env_key
    return read_config_value("api_key")
