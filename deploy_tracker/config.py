"""
Polling settings for the progress tracker.

Environment Variables:
    DEPLOY_POLL_INTERVAL: Base seconds between ticks (default: 2.0)
    DEPLOY_MAX_POLL_INTERVAL: Upper bound once backed off (default: 8.0)
    DEPLOY_BACKOFF_AFTER: Unchanged ticks before slowing down (default: 6)
    DEPLOY_BACKOFF_FACTOR: Interval multiplier per slowed tick (default: 2.0)
    DEPLOY_MAX_ERRORS: Failing ticks in a row before giving up (default: 5)
    DEPLOY_REQUEST_TIMEOUT: HTTP timeout in seconds (default: 10.0)
"""

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)


def _positive_env(name: str, default: float, cast=float):
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = cast(raw)
    except ValueError:
        logger.warning(f"Invalid {name}={raw}, using default {default}")
        return default
    if value <= 0:
        logger.warning(f"Invalid {name}={value}, using default {default}")
        return default
    return value


@dataclass
class TrackerSettings:
    base_interval: float = 2.0
    max_interval: float = 8.0
    backoff_after: int = 6
    backoff_factor: float = 2.0
    max_consecutive_errors: int = 5
    request_timeout: float = 10.0

    @classmethod
    def from_env(cls) -> "TrackerSettings":
        defaults = cls()
        base = _positive_env("DEPLOY_POLL_INTERVAL", defaults.base_interval)
        max_interval = _positive_env("DEPLOY_MAX_POLL_INTERVAL", defaults.max_interval)
        if max_interval < base:
            logger.warning(
                f"DEPLOY_MAX_POLL_INTERVAL={max_interval} is below the base "
                f"interval {base}, using {base}"
            )
            max_interval = base
        return cls(
            base_interval=base,
            max_interval=max_interval,
            backoff_after=_positive_env(
                "DEPLOY_BACKOFF_AFTER", defaults.backoff_after, int
            ),
            backoff_factor=_positive_env(
                "DEPLOY_BACKOFF_FACTOR", defaults.backoff_factor
            ),
            max_consecutive_errors=_positive_env(
                "DEPLOY_MAX_ERRORS", defaults.max_consecutive_errors, int
            ),
            request_timeout=_positive_env(
                "DEPLOY_REQUEST_TIMEOUT", defaults.request_timeout
            ),
        )
