"""
Central configuration using Pydantic BaseSettings.

Validates all env vars at startup (fail-fast). The signing secret is
required in production but gets a safe default in TESTING mode.

Usage:
    from config.settings import get_settings

    settings = get_settings()
    print(settings.auth.jwt_secret.get_secret_value())

Lazy initialization: get_settings() creates the singleton on first call.
Tests can reset via get_settings.cache_clear().
"""

import os
from functools import lru_cache

from pydantic import SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings

HMAC_ALGORITHMS = ("HS256", "HS384", "HS512")
TOTP_ALGORITHMS = ("SHA1", "SHA256", "SHA512")


def _is_testing() -> bool:
    """Check if running in test mode."""
    return os.getenv("TESTING", "").lower() in ("true", "1")


# =============================================================================
# Nested Settings Groups
# =============================================================================


class AuthSettings(BaseSettings):
    """Bearer token and revocation configuration."""

    model_config = {"env_prefix": "", "extra": "ignore"}

    jwt_secret: SecretStr = SecretStr("")
    jwt_algorithm: str = "HS256"
    jwt_access_expiration_minutes: int = 15
    jwt_refresh_expiration_days: int = 7

    # Revocation store
    use_redis_blacklist: bool = False
    redis_blacklist_fail_closed: bool = True
    revocation_store_timeout_seconds: float = 2.0

    @field_validator("jwt_algorithm")
    @classmethod
    def _hmac_only(cls, value: str) -> str:
        value = value.upper()
        if value not in HMAC_ALGORITHMS:
            raise ValueError(f"jwt_algorithm must be one of {', '.join(HMAC_ALGORITHMS)}")
        return value

    @field_validator("jwt_access_expiration_minutes", "jwt_refresh_expiration_days")
    @classmethod
    def _positive_duration(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("token lifetimes must be positive")
        return value


class TOTPSettings(BaseSettings):
    """Second-factor (TOTP) configuration. Defaults follow RFC 6238."""

    model_config = {"env_prefix": "TOTP_", "extra": "ignore"}

    secret_size: int = 20
    digits: int = 6
    period: int = 30
    algorithm: str = "SHA1"
    issuer: str = "tokenauth"
    skew_steps: int = 1
    backup_code_count: int = 10

    @field_validator("algorithm")
    @classmethod
    def _known_digest(cls, value: str) -> str:
        value = value.upper()
        if value not in TOTP_ALGORITHMS:
            raise ValueError(f"TOTP algorithm must be one of {', '.join(TOTP_ALGORITHMS)}")
        return value

    @field_validator("secret_size")
    @classmethod
    def _min_secret_size(cls, value: int) -> int:
        if value < 20:
            raise ValueError("TOTP secret_size must be at least 20 bytes (160 bits)")
        return value

    @field_validator("digits")
    @classmethod
    def _digit_range(cls, value: int) -> int:
        # 31-bit truncation yields at most 10 significant digits
        if not 6 <= value <= 10:
            raise ValueError("TOTP digits must be between 6 and 10")
        return value


class RedisSettings(BaseSettings):
    """Redis connection configuration."""

    model_config = {"env_prefix": "", "extra": "ignore"}

    redis_url: str = "redis://localhost:6379/0"


# =============================================================================
# Root Settings
# =============================================================================


class AppSettings(BaseSettings):
    """Root application settings composing all sub-settings."""

    model_config = {"env_prefix": "", "extra": "ignore", "env_file": ".env", "env_file_encoding": "utf-8"}

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"
    log_file: str = ""

    # Nested groups (initialized separately to support env_prefix)
    auth: AuthSettings = None  # type: ignore[assignment]
    totp: TOTPSettings = None  # type: ignore[assignment]
    redis: RedisSettings = None  # type: ignore[assignment]

    @model_validator(mode="before")
    @classmethod
    def _init_nested(cls, values):
        """Initialize nested settings from environment."""
        if values.get("auth") is None:
            values["auth"] = AuthSettings()
        if values.get("totp") is None:
            values["totp"] = TOTPSettings()
        if values.get("redis") is None:
            values["redis"] = RedisSettings()
        return values

    @model_validator(mode="after")
    def _validate_required_secrets(self):
        """Require JWT_SECRET in production; bypass only in TESTING mode."""
        if _is_testing():
            return self

        if not self.auth.jwt_secret.get_secret_value():
            raise ValueError(
                "JWT_SECRET env var is required. "
                "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
            )

        return self


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """
    Get the application settings singleton.

    Lazy-initialized on first call. Validates all env vars (fail-fast).
    Tests can reset via: get_settings.cache_clear()
    """
    return AppSettings()
