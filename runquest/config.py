"""Application configuration with environment-specific profiles.

Supports dev, test, staging, and production environments via APP_ENV.
All values can be overridden by environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


@dataclass(frozen=True)
class Settings:
    """Immutable application settings resolved from environment."""

    database_url: str
    app_env: str = "dev"
    log_level: str = "INFO"

    # Progression rules
    max_level: int = 10
    progress_write_retries: int = 3

    # Reference tables: optional JSON overlay on the embedded defaults
    catalog_path: Optional[str] = None
    default_locale: str = "pt"

    request_id_header_name: str = "X-Request-ID"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"


# -- Environment profiles --

_ENV_PROFILES: dict[str, dict] = {
    "dev": {
        "log_level": "DEBUG",
    },
    "test": {
        "log_level": "WARNING",
        "progress_write_retries": 2,
    },
    "staging": {
        "log_level": "INFO",
    },
    "production": {
        "log_level": "WARNING",
        "progress_write_retries": 5,
    },
}


def get_database_url() -> str:
    """Resolve database URL from env var or local default.

    Resolution order:
    1. DATABASE_URL environment variable
    2. Local sqlite file for dev setups
    """
    env_url = os.getenv("DATABASE_URL")
    if env_url:
        return env_url
    return "sqlite+pysqlite:///runquest.db"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build Settings by merging environment profile with env-var overrides."""
    app_env = os.getenv("APP_ENV", "dev")
    profile = _ENV_PROFILES.get(app_env, _ENV_PROFILES["dev"])

    return Settings(
        database_url=get_database_url(),
        app_env=app_env,
        log_level=os.getenv("LOG_LEVEL", profile.get("log_level", "INFO")),
        max_level=int(os.getenv("MAX_LEVEL", "10")),
        progress_write_retries=int(
            os.getenv("PROGRESS_WRITE_RETRIES", str(profile.get("progress_write_retries", 3)))
        ),
        catalog_path=os.getenv("RUNQUEST_CATALOG_PATH") or None,
        default_locale=os.getenv("DEFAULT_LOCALE", "pt"),
        request_id_header_name=os.getenv("REQUEST_ID_HEADER", "X-Request-ID"),
    )
