"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for permgate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Only the edges (api/main.py lifespan and the main.py CLI) call get_settings().
The auth core receives plain values through constructors, so tests can build
any number of stores and authorities side by side without touching the
environment.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. db_driver -> DB_DRIVER). Type coercion and validation are built in.
      dict fields (route_permissions) are parsed from a JSON string.

  @model_validator(mode="after"): cross-field validation once all fields are
      resolved. Rejects unknown storage backends, bcrypt costs outside the
      range the library accepts, and session tokens too short to make
      collisions negligible.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("permgate.config")

# Backend names accepted in DB_DRIVER. auth.store.build_db_url() maps each one
# to a SQLAlchemy dialect.
KNOWN_DB_DRIVERS = ("sqlite", "sqlserver", "postgresql")

# 32 chars from a 36-symbol alphabet is ~165 bits of entropy.
MIN_SESSION_TOKEN_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    # "sqlite": db_url is a file path (or ":memory:").
    # "sqlserver" / "postgresql": db_url is a connection string.
    db_driver: str = "sqlite"
    db_url: str = "permgate_auth.db"

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    # bcrypt cost factor. 10 matches the hashes produced by earlier deployments.
    bcrypt_rounds: int = 10
    session_token_length: int = MIN_SESSION_TOKEN_LENGTH

    cookie_name: str = "SESSIONID"
    cookie_expire_days: int = 3650  # 10 years
    secure_cookies: bool = True

    # Static route -> required permission table, keyed "METHOD_/path".
    # Routes missing from the table are public.
    # Example: ROUTE_PERMISSIONS='{"GET_/api/v1/auth/session": "session.read"}'
    route_permissions: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_auth_settings(self) -> "Settings":
        """Fail fast on settings that would break storage or weaken tokens."""
        self.db_driver = self.db_driver.lower()
        if self.db_driver not in KNOWN_DB_DRIVERS:
            raise ValueError(f"Unknown DB_DRIVER {self.db_driver!r}. Expected one of: {', '.join(KNOWN_DB_DRIVERS)}.")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        if self.session_token_length < MIN_SESSION_TOKEN_LENGTH:
            raise ValueError(f"SESSION_TOKEN_LENGTH must be at least {MIN_SESSION_TOKEN_LENGTH}.")
        if not self.secure_cookies:
            if self.debug:
                logger.warning("WARNING: session cookies are not marked Secure (DEBUG mode).")
            else:
                raise ValueError("SECURE_COOKIES=false is only allowed with DEBUG=true.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
