"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for SessionGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. access_token_secret -> ACCESS_TOKEN_SECRET).

  @model_validator(mode="after"): Runs cross-field validation once all fields
      are resolved. Dev mode generates missing signing keys with a warning;
      production mode refuses to start without them.

Security notes:
  [K1] Every signing key shorter than 32 chars is rejected outright.
  [K2] Access and refresh tokens are signed with different keys. Identical
       values are rejected, otherwise a leaked access key could mint refresh
       tokens.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or notify/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("sessiongate.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'sessiongate.db'}"

# Fields that hold signing material. Validated together in validate_keys().
_KEY_FIELDS = ("secret_key", "access_token_secret", "refresh_token_secret")


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
    # Empty string is the sentinel for "not configured" on every key below.
    secret_key: str = ""  # SessionMiddleware (OAuth state cookie)
    access_token_secret: str = ""
    refresh_token_secret: str = ""

    # ------------------------------------------------------------------
    # Token and OTP lifetimes
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = 15 * 60
    refresh_token_expire_seconds: int = 7 * 24 * 3600
    signup_otp_expire_minutes: int = 30
    reset_otp_expire_minutes: int = 15
    # Off by default: a refresh leaves the presented refresh token usable.
    rotate_refresh_tokens: bool = False

    # ------------------------------------------------------------------
    # Outbound email (Brevo transactional API). Empty key = log only.
    # ------------------------------------------------------------------

    email_api_key: str = ""
    email_api_url: str = "https://api.brevo.com/v3/smtp/email"
    email_sender_address: str = "no-reply@sessiongate.local"
    email_sender_name: str = "SessionGate"

    # ------------------------------------------------------------------
    # External identity provider (optional -- empty string disables it)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    signup_rate_limit: str = "5/minute"
    otp_rate_limit: str = "5/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # Background reaper for expired OTP and revocation rows.
    purge_interval_seconds: int = 6 * 60 * 60

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_keys(self) -> "Settings":
        """Enforce signing-key policy [K1] [K2].

        Dev mode (DEBUG=true): auto-generate each missing key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if any key is missing.
        """
        for name in _KEY_FIELDS:
            value = getattr(self, name)
            if not value:
                if not self.debug:
                    raise ValueError(
                        f"{name.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
                setattr(self, name, secrets.token_hex(32))
                logger.warning("Using auto-generated %s. Tokens will not survive a restart.", name.upper())
            elif len(value) < 32:
                raise ValueError(f"{name.upper()} must be at least 32 characters.")
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
