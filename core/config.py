"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for rolegate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.
      Complex fields (retired_signing_keys, roles) are read as JSON.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Implements the DEBUG-conditional
      SECRET_KEY logic: dev mode generates a key with warning, production
      mode refuses to start without one.

Security notes:
  [M6] SECRET_KEY and SIGNING_KEY shorter than 32 chars are rejected outright.
       HMAC-SHA256 refresh hashing and JWT signing both rely on key entropy.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

  [T1] ACCESS_TOKEN_TTL_SECONDS is bounded to 1 minute .. 1 hour. Access tokens
       are never looked up server-side, so a disabled identity keeps a working
       access token until it expires.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("rolegate.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'rolegate.db'}"

# HMAC family only: the key ring holds shared secrets, not key pairs.
_SUPPORTED_ALGORITHMS = {"HS256", "HS384", "HS512"}


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (with DEBUG=true). The
    model_validator enforces production-safety rules at startup.
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
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL
    # Host header allow-list (TrustedHostMiddleware) and browser origins (CORS).
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Access tokens
    # ------------------------------------------------------------------

    jwt_algorithm: str = "HS256"
    token_issuer: str = "rolegate"
    signing_key_id: str = "k1"
    # Empty means "sign with SECRET_KEY".
    signing_key: str = ""
    # kid -> key material still accepted for verification. JSON in the env:
    #   RETIRED_SIGNING_KEYS='{"k0": "old-key-material..."}'
    retired_signing_keys: dict[str, str] = {}
    key_rotation_grace_seconds: int = 3600
    access_token_ttl_seconds: int = 900
    clock_skew_leeway_seconds: int = 5

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    refresh_token_ttl_seconds: int = 14 * 24 * 3600
    # Closed and expired records are kept this long for breach forensics
    # before purge_expired() removes them.
    refresh_retention_seconds: int = 30 * 24 * 3600
    purge_interval_seconds: int = 6 * 3600

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    roles: list[str] = ["admin", "moderator", "member"]
    # Platform-global roles carry no tenant; every other role requires one.
    global_roles: list[str] = ["admin"]

    # ------------------------------------------------------------------
    # Password hashing (argon2id)
    # ------------------------------------------------------------------

    argon2_time_cost: int = 3
    argon2_memory_cost: int = 65536  # KiB
    argon2_parallelism: int = 4

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    refresh_rate_limit: str = "30/minute"

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    self_registration_enabled: bool = True
    # Roles a caller may join without an operator. Platform-global roles
    # are created with the CLI (main.py create-identity).
    registration_roles: list[str] = ["moderator", "member"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Refresh tokens and access tokens will not survive restart.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Sessions will not persist across restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_token_policy(self) -> "Settings":
        """Reject token settings that would break the session invariants [T1]."""
        if self.jwt_algorithm not in _SUPPORTED_ALGORITHMS:
            raise ValueError(f"JWT_ALGORITHM must be one of {sorted(_SUPPORTED_ALGORITHMS)}.")
        if self.signing_key and len(self.signing_key) < 32:
            raise ValueError("SIGNING_KEY must be at least 32 characters.")
        for kid, material in self.retired_signing_keys.items():
            if len(material) < 32:
                raise ValueError(f"Retired signing key {kid!r} must be at least 32 characters.")
        if self.signing_key_id in self.retired_signing_keys:
            raise ValueError("SIGNING_KEY_ID must not also appear in RETIRED_SIGNING_KEYS.")
        if not 60 <= self.access_token_ttl_seconds <= 3600:
            raise ValueError("ACCESS_TOKEN_TTL_SECONDS must be between 60 and 3600.")
        if self.refresh_token_ttl_seconds <= self.access_token_ttl_seconds:
            raise ValueError("REFRESH_TOKEN_TTL_SECONDS must exceed ACCESS_TOKEN_TTL_SECONDS.")
        if not 0 <= self.clock_skew_leeway_seconds <= 60:
            raise ValueError("CLOCK_SKEW_LEEWAY_SECONDS must be between 0 and 60.")
        return self

    @model_validator(mode="after")
    def validate_roles(self) -> "Settings":
        """The role set is closed: global roles must be a subset of roles."""
        if not self.roles:
            raise ValueError("ROLES must name at least one role.")
        unknown = set(self.global_roles) - set(self.roles)
        if unknown:
            raise ValueError(f"GLOBAL_ROLES contains undeclared roles: {sorted(unknown)!r}")
        unknown = set(self.registration_roles) - set(self.roles)
        if unknown:
            raise ValueError(f"REGISTRATION_ROLES contains undeclared roles: {sorted(unknown)!r}")
        return self

    @property
    def active_signing_key(self) -> str:
        """Key material for new access tokens (SIGNING_KEY, else SECRET_KEY)."""
        return self.signing_key or self.secret_key


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings() directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
