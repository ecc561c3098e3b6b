"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for lockgate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() or
get_lockout_config() instead.

Three settings objects live here:

  StorageSettings: database URL and storage timeout. Needs no secrets, so
      maintenance commands can load it on a host without SECRET_KEY.

  Settings: StorageSettings plus service-level settings (secret key, token
      lifetime, cleanup interval). Startup fails on an unsafe SECRET_KEY in
      production mode.

  LockoutConfig: the account lockout thresholds. Frozen after construction.
      Bad values never stop the process -- they are replaced by the documented
      defaults and a warning is logged so operators can spot the typo.

All are built once via lru_cache. In tests, construct them directly with
keyword arguments or call .cache_clear() after changing the environment.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from typing import Any

from pydantic import AliasChoices, Field, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("lockgate.config")

_TRUE_VALUES = {"true", "1", "yes"}
_FALSE_VALUES = {"false", "0", "no"}


class StorageSettings(BaseSettings):
    """Database settings, readable without a SECRET_KEY.

    The maintenance CLI only needs these. Settings extends them for the API.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Empty string means "use the SQLite file next to auth/store.py".
    database_url: str = ""
    # Upper bound on how long a single storage call may wait for a lock.
    # The revocation check sits on every request and must not hang.
    db_timeout_seconds: float = 5.0


class Settings(StorageSettings):
    """Service settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. Field names map to upper-cased
    env var names (e.g. secret_key -> SECRET_KEY).
    """

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    token_expire_seconds: int = 3600

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    revocation_cleanup_interval_seconds: int = 6 * 60 * 60

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Tokens will not survive a restart.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


class LockoutConfig(BaseSettings):
    """Account lockout thresholds.

    Environment variables:
      ACCOUNT_LOCKOUT_ENABLED            enable/disable lockout (default: true)
      ACCOUNT_LOCKOUT_MAX_ATTEMPTS       failures before the account locks (default: 5)
      ACCOUNT_LOCKOUT_DURATION_MINUTES   lock length in minutes (default: 15)
      ACCOUNT_LOCKOUT_RESET_ON_SUCCESS   zero the counter on successful login (default: true)

    Parsing never fails: an unset or empty variable takes its default, and an
    unparseable or non-positive value takes its default with a warning.
    """

    model_config = SettingsConfigDict(
        env_prefix="ACCOUNT_LOCKOUT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    enabled: bool = True
    max_attempts: int = 5
    lock_duration_minutes: int = Field(
        default=15,
        validation_alias=AliasChoices("ACCOUNT_LOCKOUT_DURATION_MINUTES", "lock_duration_minutes"),
    )
    reset_on_success: bool = True

    @field_validator("enabled", "reset_on_success", mode="before")
    @classmethod
    def parse_boolean(cls, value: Any, info: ValidationInfo) -> bool:
        default = cls.model_fields[info.field_name].default
        if value is None or isinstance(value, bool):
            return default if value is None else value
        normalized = str(value).strip().lower()
        if normalized == "":
            return default
        if normalized in _TRUE_VALUES:
            return True
        if normalized in _FALSE_VALUES:
            return False
        logger.warning(
            "%s must be one of true/false/1/0/yes/no, got %r -- using default: %s",
            _env_name(info.field_name),
            value,
            default,
        )
        return default

    @field_validator("max_attempts", "lock_duration_minutes", mode="before")
    @classmethod
    def parse_positive_integer(cls, value: Any, info: ValidationInfo) -> int:
        default = cls.model_fields[info.field_name].default
        if value is None or (isinstance(value, str) and value.strip() == ""):
            return default
        try:
            if isinstance(value, bool):
                raise ValueError("booleans are not counts")
            parsed = int(str(value).strip())
        except ValueError:
            parsed = 0
        if parsed <= 0:
            logger.warning(
                "%s must be a positive integer, got %r -- using default: %d",
                _env_name(info.field_name),
                value,
                default,
            )
            return default
        return parsed


def _env_name(field_name: str) -> str:
    if field_name == "lock_duration_minutes":
        return "ACCOUNT_LOCKOUT_DURATION_MINUTES"
    return f"ACCOUNT_LOCKOUT_{field_name.upper()}"


@lru_cache
def get_storage_settings() -> StorageSettings:
    """Return the database settings without touching SECRET_KEY."""
    return StorageSettings()


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()


@lru_cache
def get_lockout_config() -> LockoutConfig:
    """Return the process-wide LockoutConfig, parsed once at first call.

    Callers pass the returned value into LockoutPolicy explicitly; nothing in
    auth/ reads it as ambient state.
    """
    config = LockoutConfig()
    logger.info(
        "Account lockout configured (enabled=%s, max_attempts=%d, lock_duration_minutes=%d, reset_on_success=%s)",
        config.enabled,
        config.max_attempts,
        config.lock_duration_minutes,
        config.reset_on_success,
    )
    return config
