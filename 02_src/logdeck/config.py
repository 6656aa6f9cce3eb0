"""Project-level configuration and path helpers."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from dotenv import load_dotenv

from .errors import ConfigError

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
LOGS_DIR = PROJECT_ROOT / "04_logs"
DEFAULT_LOG_PATH = LOGS_DIR / "logdeck.log"
DEFAULT_ENV_FILE = PROJECT_ROOT / ".env"


PathLike = Union[str, Path]


@dataclass(frozen=True)
class Settings:
    """Tunables read from the environment."""

    log_level: str = "INFO"
    cache_ttl: float = 300.0
    rpc_timeout: float = 30.0
    retry_max_attempts: int = 3
    retry_initial_delay: float = 0.1
    retry_max_delay: float = 10.0
    retry_budget: float | None = None
    stream_interval_ms: int = 2000


def _read(name: str, cast, default):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw.strip())
    except ValueError as e:
        raise ConfigError(f"{name} has invalid value {raw!r}") from e
    if isinstance(value, (int, float)) and value < 0:
        raise ConfigError(f"{name} must not be negative, got {raw!r}")
    return value


def load_settings(env_file: PathLike | None = None) -> Settings:
    """
    Build Settings from environment variables.

    Args:
        env_file: Optional .env file merged into the environment first.
                  Defaults to .env at the project root when it exists.

    Returns:
        Settings instance
    """
    path = Path(env_file) if env_file else DEFAULT_ENV_FILE
    if path.exists():
        load_dotenv(path)

    defaults = Settings()
    settings = Settings(
        log_level=_read("LOG_LEVEL", str, defaults.log_level).upper(),
        cache_ttl=_read("LOGDECK_CACHE_TTL", float, defaults.cache_ttl),
        rpc_timeout=_read("LOGDECK_RPC_TIMEOUT", float, defaults.rpc_timeout),
        retry_max_attempts=_read(
            "LOGDECK_RETRY_MAX_ATTEMPTS", int, defaults.retry_max_attempts
        ),
        retry_initial_delay=_read(
            "LOGDECK_RETRY_INITIAL_DELAY", float, defaults.retry_initial_delay
        ),
        retry_max_delay=_read(
            "LOGDECK_RETRY_MAX_DELAY", float, defaults.retry_max_delay
        ),
        retry_budget=_read("LOGDECK_RETRY_BUDGET", float, defaults.retry_budget),
        stream_interval_ms=_read(
            "LOGDECK_STREAM_INTERVAL_MS", int, defaults.stream_interval_ms
        ),
    )

    if settings.retry_max_attempts < 1:
        raise ConfigError("LOGDECK_RETRY_MAX_ATTEMPTS must be at least 1")
    if settings.retry_budget is not None and settings.retry_budget <= 0:
        raise ConfigError("LOGDECK_RETRY_BUDGET must be positive")
    if settings.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise ConfigError(f"LOG_LEVEL has invalid value {settings.log_level!r}")
    return settings
