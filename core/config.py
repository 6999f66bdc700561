"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the grade book happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. database_url -> DATABASE_URL). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. A missing DATABASE_URL is a hard startup
      failure -- there is no fallback store.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("gradebook.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    Every field except database_url has a default so local development needs
    exactly one variable. Environment variable name mapping: field names are
    uppercased automatically (database_url reads DATABASE_URL).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured"; the validator
    # below refuses to start with it.
    database_url: str = ""

    # ------------------------------------------------------------------
    # Deployment
    # ------------------------------------------------------------------

    # Production switches the session cookie to the __Secure- prefixed name
    # and adds the Secure attribute.
    production: bool = False
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    # Backstop sweep for sessions nobody presents again after expiry.
    session_purge_interval_seconds: int = 3600

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_database_url(self) -> "Settings":
        """Refuse to start without a store connection string.

        Every request resolves its session against the durable store, so
        there is no meaningful degraded mode without one.
        """
        if not self.database_url:
            raise ValueError(
                "DATABASE_URL is required. "
                "Set DATABASE_URL in your environment or .env file "
                "(e.g. sqlite:///gradebook.db or postgresql://user:pw@host/db)."
            )
        if self.session_purge_interval_seconds <= 0:
            raise ValueError("SESSION_PURGE_INTERVAL_SECONDS must be positive.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    settings = Settings()
    logger.debug("Settings loaded (production=%s)", settings.production)
    return settings
