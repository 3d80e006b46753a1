"""
Runtime settings, read from CATALOGSYNC_* environment variables.

The refresh period is deliberately absent: it is fixed in the scheduler.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .network import DEFAULT_API_URL, DEFAULT_TIMEOUT
from .retry import DEFAULT_BASE_DELAY, DEFAULT_MAX_DELAY, BackoffPolicy

ENV_PREFIX = "CATALOGSYNC_"
LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class ConfigError(ValueError):
    """Raised when an environment variable holds an unusable value."""
    pass


@dataclass(frozen=True)
class Settings:
    api_url: str = DEFAULT_API_URL
    db_path: Path = Path("data/catalog.db")
    request_timeout: float = DEFAULT_TIMEOUT
    poll_interval: float = 60.0
    retry_base_delay: float = DEFAULT_BASE_DELAY
    retry_max_delay: float = DEFAULT_MAX_DELAY
    retry_max_attempts: Optional[int] = 10
    log_level: str = "INFO"
    log_dir: Path = Path("logs")

    def backoff_policy(self) -> BackoffPolicy:
        return BackoffPolicy(
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            max_attempts=self.retry_max_attempts,
        )


def _get(env: Mapping[str, str], key: str) -> Optional[str]:
    raw = env.get(ENV_PREFIX + key)
    if raw is None or not raw.strip():
        return None
    return raw.strip()


def _get_float(env: Mapping[str, str], key: str, default: float, minimum: float = 0.0) -> float:
    raw = _get(env, key)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{ENV_PREFIX}{key} must be a number, got {raw!r}")
    if value < minimum:
        raise ConfigError(f"{ENV_PREFIX}{key} must be >= {minimum}, got {value}")
    return value


def _get_attempts(env: Mapping[str, str], default: Optional[int]) -> Optional[int]:
    raw = _get(env, "RETRY_MAX_ATTEMPTS")
    if raw is None:
        return default
    if raw.lower() in ("none", "unlimited"):
        return None
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{ENV_PREFIX}RETRY_MAX_ATTEMPTS must be an integer, got {raw!r}")
    if value < 0:
        raise ConfigError(f"{ENV_PREFIX}RETRY_MAX_ATTEMPTS must be >= 0, got {value}")
    return value


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from the environment.

    Args:
        env: Mapping to read instead of os.environ (useful for tests)

    Raises:
        ConfigError: On malformed values
    """
    env = os.environ if env is None else env
    defaults = Settings()

    log_level = (_get(env, "LOG_LEVEL") or defaults.log_level).upper()
    if log_level not in LOG_LEVELS:
        raise ConfigError(f"{ENV_PREFIX}LOG_LEVEL must be one of {sorted(LOG_LEVELS)}, got {log_level!r}")

    db_path = _get(env, "DB_PATH")
    log_dir = _get(env, "LOG_DIR")

    settings = Settings(
        api_url=_get(env, "API_URL") or defaults.api_url,
        db_path=Path(db_path) if db_path else defaults.db_path,
        request_timeout=_get_float(env, "REQUEST_TIMEOUT", defaults.request_timeout, minimum=0.1),
        poll_interval=_get_float(env, "POLL_INTERVAL", defaults.poll_interval, minimum=0.1),
        retry_base_delay=_get_float(env, "RETRY_BASE_DELAY", defaults.retry_base_delay),
        retry_max_delay=_get_float(env, "RETRY_MAX_DELAY", defaults.retry_max_delay),
        retry_max_attempts=_get_attempts(env, defaults.retry_max_attempts),
        log_level=log_level,
        log_dir=Path(log_dir) if log_dir else defaults.log_dir,
    )
    try:
        settings.backoff_policy()
    except ValueError as e:
        raise ConfigError(f"Invalid retry settings: {e}")
    return settings
