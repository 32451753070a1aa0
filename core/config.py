"""
core/config.py -- Centralized configuration for the auth service via pydantic-settings.

All environment variable reads happen here. No module should call os.getenv()
or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET). Type coercion and validation are built in.

  @model_validator(mode="after"): cross-field validation after all fields are
      resolved. Dev mode generates a signing key with a warning; production
      mode refuses to start without one.

Security notes:
  [M6] JWT_SECRET shorter than 32 chars is rejected outright. HS256 signing
       relies on key entropy -- a short key makes offline brute-force feasible.

  [M7] In production mode (DEBUG not set or false), a missing JWT_SECRET is a
       hard startup failure. A random key would silently invalidate every
       issued token on restart.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("bookmarket.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'bookmarket_auth.db'}"


class Settings(BaseSettings):
    """Auth service settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (DEBUG=true supplies the secret).
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
    database_url: str = _DEFAULT_DB_URL
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:3001"]
    # Only enable behind a reverse proxy that overwrites X-Forwarded-For;
    # otherwise clients choose the ip_address recorded on their sessions.
    trust_proxy_headers: bool = False

    # ------------------------------------------------------------------
    # Tokens and sessions
    # ------------------------------------------------------------------

    # Empty string is the "not configured" sentinel; the validator below
    # either generates a dev key or raises, so callers never see "".
    jwt_secret: str = ""
    jwt_expiration: int = 3600  # access token lifetime, seconds
    refresh_token_expiration: int = 2592000  # 30 days
    # Seconds between background expiry sweeps. 0 disables the in-process
    # loop (use `python main.py sweep-sessions` from cron instead).
    session_sweep_interval: int = 3600

    # ------------------------------------------------------------------
    # Credential hashing
    # ------------------------------------------------------------------

    bcrypt_cost: int = 12

    # ------------------------------------------------------------------
    # Rate limiting (enforced by slowapi on register/login/refresh)
    # ------------------------------------------------------------------

    rate_limit_requests: int = 100
    rate_limit_window: int = 60  # seconds

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_and_lifetimes(self) -> "Settings":
        """Enforce the JWT_SECRET policy [M7] and sane token lifetimes.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
        Production mode: refuse to start if JWT_SECRET is missing.
        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.jwt_secret:
            if self.debug:
                self.jwt_secret = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated JWT_SECRET. Tokens will not survive a restart.")
            else:
                raise ValueError(
                    "JWT_SECRET is required in production mode. "
                    "Set JWT_SECRET in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.jwt_secret) < 32:
            raise ValueError("JWT_SECRET must be at least 32 characters.")
        if self.jwt_expiration <= 0 or self.refresh_token_expiration <= 0:
            raise ValueError("JWT_EXPIRATION and REFRESH_TOKEN_EXPIRATION must be positive.")
        if not 4 <= self.bcrypt_cost <= 31:
            raise ValueError("BCRYPT_COST must be between 4 and 31.")
        if self.rate_limit_requests <= 0 or self.rate_limit_window <= 0:
            raise ValueError("RATE_LIMIT_REQUESTS and RATE_LIMIT_WINDOW must be positive.")
        return self

    @property
    def rate_limit(self) -> str:
        """Rate limit in the `limits` string syntax, e.g. "100/60 seconds"."""
        return f"{self.rate_limit_requests}/{self.rate_limit_window} seconds"


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
