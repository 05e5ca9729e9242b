"""
Environment-driven settings.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from .cache import DEFAULT_BATCH_SIZE, DEFAULT_MAX_SIZE, DEFAULT_TTL_MS, CacheConfig

logger = logging.getLogger(__name__)

API_KEY_ENV_VARS = ("TOGGL_API_KEY", "TOGGL_API_TOKEN", "TOGGL_TOKEN")


class ConfigError(RuntimeError):
    """Raised when required configuration is missing."""


def _parse_int_env(var_name: str, default: int | None) -> int | None:
    raw = os.getenv(var_name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s value %r", var_name, raw)
        return default


def _parse_bool_env(var_name: str) -> bool:
    return os.getenv(var_name, "").strip().lower() == "true"


@dataclass(frozen=True)
class Settings:
    api_key: str
    default_workspace_id: int | None = None
    cache: CacheConfig = field(default_factory=CacheConfig)
    debug: bool = False
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, *, load_env_file: bool = True) -> "Settings":
        if load_env_file:
            load_dotenv()

        api_key = ""
        for var_name in API_KEY_ENV_VARS:
            api_key = os.getenv(var_name, "").strip()
            if api_key:
                if var_name != "TOGGL_API_KEY":
                    logger.warning(
                        "Using %s. Prefer TOGGL_API_KEY going forward.", var_name
                    )
                break
        if not api_key:
            raise ConfigError(
                "Missing required environment variable: TOGGL_API_KEY "
                "(also accepted: TOGGL_API_TOKEN or TOGGL_TOKEN)"
            )

        debug = _parse_bool_env("TOGGL_DEBUG")
        return cls(
            api_key=api_key,
            default_workspace_id=_parse_int_env("TOGGL_DEFAULT_WORKSPACE_ID", None),
            cache=CacheConfig(
                ttl_ms=_parse_int_env("TOGGL_CACHE_TTL", DEFAULT_TTL_MS),
                max_size=_parse_int_env("TOGGL_CACHE_SIZE", DEFAULT_MAX_SIZE),
                batch_size=_parse_int_env("TOGGL_BATCH_SIZE", DEFAULT_BATCH_SIZE),
            ),
            debug=debug,
            log_level="DEBUG" if debug else os.getenv("TOGGL_LOG_LEVEL", "WARNING").upper(),
        )
