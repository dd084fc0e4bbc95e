"""
Centralized error handling for token authentication.

Error Hierarchy:
- APIError (4xx/503): Expected errors with messages safe to expose to clients
- InternalError (5xx): Unexpected errors - never expose internal details

Every error here must end in a rejected request at the authorization
boundary. Nothing in this module maps an error to a 2xx status.

Usage:
    from core.errors import error_response, TokenRevokedError

    try:
        claims = token_manager.validate_token(token)
    except Exception as e:
        body, status = error_response(e, "validate token")
"""

import logging
import uuid
from typing import Any, Tuple

logger = logging.getLogger(__name__)


# =============================================================================
# Exception Classes (4xx - Expected Errors)
# =============================================================================

class APIError(Exception):
    """
    Base class for expected API errors.
    Messages are safe to expose to clients.
    """
    status_code = 400

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class ValidationError(APIError):
    """Request validation failed (400)."""
    status_code = 400


class AuthenticationError(APIError):
    """Authentication failed (401)."""
    status_code = 401


class ServiceUnavailableError(APIError):
    """Service temporarily unavailable (503)."""
    status_code = 503


# =============================================================================
# Token Errors (401)
# =============================================================================

class TokenError(AuthenticationError):
    """Base class for bearer tokens that must not be accepted."""


class InvalidSignatureError(TokenError):
    """Bad HMAC, tampered token, or a non-HMAC algorithm in the header."""

    def __init__(self, message: str = "Token signature is invalid"):
        super().__init__(message)


class TokenExpiredError(TokenError):
    """The exp claim is in the past."""

    def __init__(self, message: str = "Token has expired"):
        super().__init__(message)


class TokenRevokedError(TokenError):
    """The token id is present in the revocation store."""

    def __init__(self, message: str = "Token has been revoked"):
        super().__init__(message)


class MalformedTokenError(TokenError):
    """Structurally invalid JWT or missing required claims."""

    def __init__(self, message: str = "Token is malformed"):
        super().__init__(message)


class PrincipalInactiveError(AuthenticationError):
    """The principal behind a refresh token no longer exists or is disabled."""

    def __init__(self, message: str = "Account is not active"):
        super().__init__(message)


class SecretDecodeError(ValidationError):
    """A TOTP secret is not valid unpadded base32."""

    def __init__(self, message: str = "TOTP secret is not valid base32"):
        super().__init__(message)


# =============================================================================
# Dependency Errors (503)
# =============================================================================

class StoreUnavailableError(ServiceUnavailableError):
    """The revocation store could not be reached within its timeout."""

    def __init__(self, message: str = "Revocation store unavailable"):
        super().__init__(message)


class RotationError(ServiceUnavailableError):
    """Refresh aborted because the old token id could not be revoked.

    old_token_still_valid tells the caller whether the presented refresh
    token may still be accepted elsewhere, so it can retry or deny.
    """

    def __init__(self, message: str = "Token rotation failed", old_token_still_valid: bool = True):
        super().__init__(message)
        self.old_token_still_valid = old_token_still_valid


# =============================================================================
# Internal Errors (5xx - Never Expose)
# =============================================================================

class InternalError(Exception):
    """
    Unexpected internal errors (5xx status codes).
    Message should NEVER be exposed to clients.
    """
    pass


class RandomSourceError(InternalError):
    """The operating system CSPRNG is unavailable."""


class TokenSigningError(InternalError):
    """A token could not be signed (bad key or unserializable claims)."""


# =============================================================================
# Safe Error Response Helper
# =============================================================================

def error_response(
    e: Exception,
    operation: str,
    include_error_id: bool = True
) -> Tuple[dict[str, Any], int]:
    """
    Create a safe error body for the web layer.

    For APIError subclasses (expected errors):
        - Returns the error message (safe to expose)
        - Uses the exception's status_code
        - Logs at WARNING level

    For all other exceptions (unexpected errors):
        - Returns generic message (never exposes internal details)
        - Returns 500 status code
        - Logs full exception at ERROR level

    Args:
        e: The exception that was caught
        operation: Human-readable description of what failed (e.g., "refresh tokens")
        include_error_id: Whether to include error_id for support reference

    Returns:
        Tuple of (response body dict, status_code)
    """
    error_id = str(uuid.uuid4())[:8] if include_error_id else None
    log_extra = {'error_id': error_id, 'operation': operation} if error_id else {'operation': operation}

    if isinstance(e, APIError):
        logger.warning(f"{operation}: {e}", extra=log_extra)

        response = {"error": str(e)}
        if isinstance(e, RotationError):
            response["old_token_still_valid"] = e.old_token_still_valid
        if error_id:
            response["error_id"] = error_id

        return response, e.status_code

    logger.exception(f"{operation} failed", extra=log_extra)

    response = {"error": f"{operation} failed"}
    if error_id:
        response["error_id"] = error_id

    return response, 500
