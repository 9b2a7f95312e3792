"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for authsession happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead,
or better, accept a Settings instance as an argument.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. Only the
      application entry point (api/main.py lifespan) calls it; everything
      below that receives the instance explicitly.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. access_token_secret -> ACCESS_TOKEN_SECRET).

  @model_validator(mode="after"): Cross-field checks on the two signing secrets.

Security notes:
  [M6] Secrets shorter than 32 chars are rejected outright. HS256 signing
       relies on key entropy -- a short key weakens every issued token.

  [M7] In production mode (DEBUG not set or false), a missing secret is a hard
       startup failure. A random per-process key would silently log every user
       out on restart.

  The access and refresh secrets must differ. A refresh token must never verify
  as an access token and vice versa.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import re
import secrets
from datetime import timedelta
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authsession.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'authsession.db'}"

# "15m", "7d", "3600s", "12h" -- the shorthand used by the token TTL env vars.
_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd])\s*$", re.IGNORECASE)
_DURATION_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days"}


def parse_duration(value):
    """Turn the TTL shorthand into a timedelta; leave anything else to pydantic.

    Plain integers (or digit strings) are seconds. Values pydantic already
    understands (ISO 8601 durations, "HH:MM:SS", timedelta instances) pass
    through untouched.
    """
    if isinstance(value, str):
        match = _DURATION_RE.match(value)
        if match:
            amount, unit = match.groups()
            return timedelta(**{_DURATION_UNITS[unit.lower()]: int(amount)})
        if value.strip().isdigit():
            return timedelta(seconds=int(value.strip()))
    if isinstance(value, int) and not isinstance(value, bool):
        return timedelta(seconds=value)
    return value


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (with DEBUG=true). The validators
    enforce production-safety rules at startup.
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

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    access_token_secret: str = ""
    access_token_ttl: timedelta = timedelta(minutes=15)
    refresh_token_secret: str = ""
    refresh_token_ttl: timedelta = timedelta(days=7)

    # ------------------------------------------------------------------
    # Cookies
    # ------------------------------------------------------------------

    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("access_token_ttl", "refresh_token_ttl", mode="before")
    @classmethod
    def normalize_ttl(cls, value):
        return parse_duration(value)

    @field_validator("access_token_ttl", "refresh_token_ttl")
    @classmethod
    def require_positive_ttl(cls, value: timedelta) -> timedelta:
        if value.total_seconds() <= 0:
            raise ValueError("Token TTL must be positive.")
        return value

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing-secret policy [M6][M7].

        Dev mode (DEBUG=true): auto-generate each missing secret with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if either secret is missing.

        Both modes: reject secrets shorter than 32 characters and reject a
            configuration where both token classes share one secret.
        """
        for field_name in ("access_token_secret", "refresh_token_secret"):
            value = getattr(self, field_name)
            env_name = field_name.upper()
            if not value:
                if self.debug:
                    setattr(self, field_name, secrets.token_hex(32))
                    logger.warning(
                        "Using auto-generated %s. Issued tokens will not survive a restart.",
                        env_name,
                    )
                else:
                    raise ValueError(
                        f"{env_name} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
            elif len(value) < 32:
                raise ValueError(f"{env_name} must be at least 32 characters.")
        if self.access_token_secret == self.refresh_token_secret:
            raise ValueError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must differ.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
