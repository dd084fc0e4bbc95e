"""
Auth configuration constants - no dependencies on other tokenauth modules.

All auth configuration is centralized here for easy auditing.
Values are sourced from config.settings (Pydantic BaseSettings).
"""
from datetime import timedelta

from config.settings import get_settings

_settings = get_settings()
_auth = _settings.auth
_totp = _settings.totp

# =============================================================================
# JWT Configuration
# =============================================================================

JWT_SECRET = _auth.jwt_secret.get_secret_value()
JWT_ALGORITHM = _auth.jwt_algorithm
ACCESS_TOKEN_LIFETIME = timedelta(minutes=_auth.jwt_access_expiration_minutes)
REFRESH_TOKEN_LIFETIME = timedelta(days=_auth.jwt_refresh_expiration_days)

TOKEN_TYPE = "Bearer"

# =============================================================================
# Revocation Store Configuration
# =============================================================================

USE_REDIS_BLACKLIST = _auth.use_redis_blacklist
REDIS_BLACKLIST_FAIL_CLOSED = _auth.redis_blacklist_fail_closed
REVOCATION_STORE_TIMEOUT = _auth.revocation_store_timeout_seconds

# =============================================================================
# TOTP Configuration (RFC 6238 defaults)
# =============================================================================

TOTP_SECRET_SIZE = _totp.secret_size
TOTP_DIGITS = _totp.digits
TOTP_PERIOD = _totp.period
TOTP_ALGORITHM = _totp.algorithm
TOTP_ISSUER = _totp.issuer
TOTP_SKEW_STEPS = _totp.skew_steps
BACKUP_CODE_COUNT = _totp.backup_code_count
