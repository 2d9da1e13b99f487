"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Keyward happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. Used for the DEBUG-conditional JWT_SECRET policy: dev mode
      generates a key with a warning, production mode refuses to start without one.

Security notes:
  [K1] JWT_SECRET is base64-encoded key material. It must decode to at least
       32 bytes -- HS256 needs a 256-bit key to reach its rated strength.

  [K2] In production mode (DEBUG not set or false), a missing JWT_SECRET is a
       hard startup failure. A random per-process key would silently invalidate
       every issued token on restart.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import base64
import binascii
import logging
import secrets
from datetime import timedelta
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("keyward.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'keyward.db'}"

# HS256 key floor, in bytes [K1]
MIN_SECRET_BYTES = 32


def decode_secret(secret: str) -> bytes:
    """Decode a base64 JWT secret, rejecting malformed or short key material."""
    try:
        material = base64.b64decode(secret, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("JWT_SECRET must be valid base64.") from exc
    if len(material) < MIN_SECRET_BYTES:
        raise ValueError(f"JWT_SECRET must decode to at least {MIN_SECRET_BYTES} bytes.")
    return material


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
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
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    jwt_secret: str = ""

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # 10 hours. No refresh flow -- the client logs in again after expiry.
    token_expire_seconds: int = Field(default=36000, gt=0)
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Credentials and lockout
    # ------------------------------------------------------------------

    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    max_failed_attempts: int = Field(default=5, ge=1)
    lockout_minutes: int = Field(default=30, ge=1)
    # When false, a locked account stays LOCKED until an admin unlocks it,
    # even after the lockout window has passed.
    lockout_auto_unlock: bool = True

    # ------------------------------------------------------------------
    # Registration and rate limiting
    # ------------------------------------------------------------------

    self_registration_enabled: bool = True
    default_role: str = "USER"
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_jwt_secret(self) -> "Settings":
        """Enforce the JWT_SECRET policy [K1][K2].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
        Production mode: refuse to start if JWT_SECRET is missing.
        Both modes: the key must be base64 and decode to >= 32 bytes.
        """
        if not self.jwt_secret:
            if self.debug:
                self.jwt_secret = base64.b64encode(secrets.token_bytes(MIN_SECRET_BYTES)).decode("ascii")
                logger.warning("WARNING: Using auto-generated JWT_SECRET. Tokens will not survive a restart.")
            else:
                raise ValueError(
                    "JWT_SECRET is required in production mode. "
                    "Set JWT_SECRET (base64) in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        decode_secret(self.jwt_secret)
        return self

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def token_lifetime(self) -> timedelta:
        return timedelta(seconds=self.token_expire_seconds)

    @property
    def lockout_window(self) -> timedelta:
        return timedelta(minutes=self.lockout_minutes)


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
