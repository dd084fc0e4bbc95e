"""
JWT token pair issuance, validation, revocation and rotation.

Handles:
- Access/refresh pair creation sharing one token id (tid)
- Validation: HMAC signature, hard exp boundary, revocation lookup
- Revocation by token id, and logout by token string
- Refresh with rotate-on-use via compare-and-revoke

Revocation state lives entirely in the injected RevocationStore, so a
TokenManager has no mutable state of its own and can be shared freely
across threads.
"""
import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

import jwt

from core.errors import (
    InvalidSignatureError,
    MalformedTokenError,
    PrincipalInactiveError,
    RandomSourceError,
    RotationError,
    StoreUnavailableError,
    TokenExpiredError,
    TokenRevokedError,
    TokenSigningError,
)

from .config import (
    ACCESS_TOKEN_LIFETIME,
    JWT_ALGORITHM,
    JWT_SECRET,
    REDIS_BLACKLIST_FAIL_CLOSED,
    REFRESH_TOKEN_LIFETIME,
    TOKEN_TYPE,
)
from .revocation import RevocationStore, get_revocation_store
from .types import Claims, Principal, TokenPair

logger = logging.getLogger(__name__)

REQUIRED_CLAIMS = ["exp", "iat", "sub", "tid", "username", "role"]


class PrincipalLookup(Protocol):
    """Account lookup used to re-verify a principal before refresh."""

    def __call__(self, username: str) -> Optional[Principal]: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_token_id() -> str:
    try:
        return str(uuid.uuid4())
    except (NotImplementedError, OSError) as e:
        raise RandomSourceError("secure random source unavailable for token id") from e


def _new_csrf_token() -> str:
    try:
        return secrets.token_urlsafe(32)
    except (NotImplementedError, OSError) as e:
        raise RandomSourceError("secure random source unavailable for CSRF token") from e


class TokenManager:
    """Issues, validates, revokes and rotates bearer token pairs.

    Args:
        secret: HMAC signing key
        access_lifetime: Access token lifetime
        refresh_lifetime: Refresh token lifetime
        store: Revocation store
        algorithm: HS256, HS384 or HS512
        fail_closed: Deny when the revocation store cannot be reached
        principal_lookup: Optional account lookup consulted on refresh
        clock: Returns the current aware UTC datetime
    """

    def __init__(
        self,
        secret: str | bytes,
        access_lifetime: timedelta,
        refresh_lifetime: timedelta,
        store: RevocationStore,
        algorithm: str = "HS256",
        fail_closed: bool = True,
        principal_lookup: Optional[PrincipalLookup] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if not secret:
            raise ValueError("JWT signing secret cannot be empty")
        if not algorithm.upper().startswith("HS"):
            raise ValueError("only HMAC signing algorithms are supported")
        if access_lifetime <= timedelta(0) or refresh_lifetime <= timedelta(0):
            raise ValueError("token lifetimes must be positive")

        self._secret = secret
        self._algorithm = algorithm.upper()
        self.access_lifetime = access_lifetime
        self.refresh_lifetime = refresh_lifetime
        self._store = store
        self._fail_closed = fail_closed
        self._principal_lookup = principal_lookup
        self._clock = clock

    def _now(self) -> datetime:
        # JWT NumericDate has whole-second resolution
        return self._clock().replace(microsecond=0)

    # =========================================================================
    # Issuance
    # =========================================================================

    def generate_token_pair(self, principal: Principal) -> TokenPair:
        """Mint an access + refresh pair sharing a fresh token id.

        Raises:
            ValueError: principal has no username or role
            RandomSourceError: CSPRNG unavailable
            TokenSigningError: signing failed
        """
        if not principal.username or not principal.role:
            raise ValueError("principal needs a username and a role")

        token_id = _new_token_id()
        now = self._now()
        access_claims = Claims(
            username=principal.username,
            role=principal.role,
            token_id=token_id,
            issued_at=now,
            expires_at=now + self.access_lifetime,
            subject=principal.username,
        )
        refresh_claims = Claims(
            username=principal.username,
            role=principal.role,
            token_id=token_id,
            issued_at=now,
            expires_at=now + self.refresh_lifetime,
            subject=principal.username,
        )

        access_token = self._sign(access_claims)
        refresh_token = self._sign(refresh_claims)
        csrf_token = _new_csrf_token()

        logger.info("Issued token pair", extra={'token_id': token_id, 'username': principal.username})
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            csrf_token=csrf_token,
            expires_in=int(self.access_lifetime.total_seconds()),
            token_type=TOKEN_TYPE,
            token_id=token_id,
            expires_at=access_claims.expires_at,
        )

    def _sign(self, claims: Claims) -> str:
        try:
            return jwt.encode(claims.to_payload(), self._secret, algorithm=self._algorithm)
        except (jwt.PyJWTError, TypeError, ValueError) as e:
            raise TokenSigningError(f"failed to sign token: {e}") from e

    # =========================================================================
    # Validation
    # =========================================================================

    def _decode(self, token: str, verify_exp: bool = True) -> Claims:
        """Verify the signature and decode claims.

        PyJWT's own time checks are disabled so exp is compared against
        the injected clock.
        """
        if not isinstance(token, str) or not token:
            raise MalformedTokenError("Token is empty")
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                    "require": REQUIRED_CLAIMS,
                },
            )
        except (jwt.InvalidSignatureError, jwt.InvalidAlgorithmError) as e:
            raise InvalidSignatureError(f"Token signature is invalid: {e}") from e
        except jwt.InvalidTokenError as e:
            raise MalformedTokenError(f"Token is malformed: {e}") from e

        try:
            claims = Claims.from_payload(payload)
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            raise MalformedTokenError(f"Malformed token payload: {e}") from e

        if verify_exp and claims.expires_at <= self._now():
            raise TokenExpiredError()
        return claims

    def validate_token(self, token: str) -> Claims:
        """Validate a token and return its claims.

        Checks, in order: signature and algorithm, exp, revocation.
        Has no side effects.

        Raises:
            InvalidSignatureError, MalformedTokenError, TokenExpiredError,
            TokenRevokedError, StoreUnavailableError (fail-closed only)
        """
        try:
            claims = self._decode(token)
        except (InvalidSignatureError, MalformedTokenError, TokenExpiredError) as e:
            logger.debug(f"Token validation failed: {e}")
            raise

        if self._is_revoked(claims.token_id):
            logger.debug("Token validation failed: revoked", extra={'token_id': claims.token_id})
            raise TokenRevokedError()
        return claims

    def _is_revoked(self, token_id: str) -> bool:
        try:
            return self._store.exists(token_id)
        except StoreUnavailableError:
            if self._fail_closed:
                raise
            logger.warning("Revocation store unreachable - admitting token (fail-open)",
                           extra={'token_id': token_id})
            return False

    # =========================================================================
    # Revocation
    # =========================================================================

    def blacklist_token(self, token_id: str, not_after: datetime) -> None:
        """Revoke token_id until not_after.

        A not_after already in the past is a no-op: every token carrying
        the id is unusable anyway. Revoking twice is not an error.

        Raises:
            StoreUnavailableError: the write did not land
        """
        if not_after.tzinfo is None:
            not_after = not_after.replace(tzinfo=timezone.utc)
        ttl = not_after - self._now()
        if ttl <= timedelta(0):
            logger.debug("Skipping revocation of expired token id", extra={'token_id': token_id})
            return
        self._store.put(token_id, ttl)
        logger.info("Token id revoked", extra={'token_id': token_id})

    def is_token_blacklisted(self, token_id: str) -> bool:
        """Check the revocation store.

        Under the fail-closed policy an unreachable store reports the id as
        blacklisted; under fail-open it reports it as not blacklisted.
        """
        try:
            return self._store.exists(token_id)
        except StoreUnavailableError:
            if self._fail_closed:
                return True
            logger.warning("Revocation store unreachable - reporting not blacklisted (fail-open)",
                           extra={'token_id': token_id})
            return False

    def revoke_token(self, token: str) -> str:
        """Log out: revoke the pair a token belongs to.

        The signature must verify, but expired tokens are accepted. The
        entry lives until the longest-lived token of the pair expires.

        Returns:
            The revoked token id.
        """
        claims = self._decode(token, verify_exp=False)
        self.blacklist_token(claims.token_id, self._pair_not_after(claims))
        return claims.token_id

    def _pair_not_after(self, claims: Claims) -> datetime:
        # Either half may be presented; the refresh half always outlives it
        return max(claims.expires_at, claims.issued_at + self.refresh_lifetime)

    # =========================================================================
    # Rotation
    # =========================================================================

    def refresh_tokens(self, refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a new pair with a new token id.

        The old token id is revoked with an atomic compare-and-revoke, so of
        two concurrent refreshes with the same token only one succeeds.

        Raises:
            All validate_token errors
            PrincipalInactiveError: lookup configured and principal missing/disabled
            TokenRevokedError: a concurrent refresh already rotated this id
            RotationError: the old id could not be revoked; no pair issued
        """
        claims = self.validate_token(refresh_token)
        principal = self._resolve_principal(claims)

        ttl = self._pair_not_after(claims) - self._now()
        try:
            claimed = self._store.put_if_absent(claims.token_id, ttl)
        except StoreUnavailableError as e:
            logger.warning("Refresh aborted: old token id could not be revoked",
                           extra={'token_id': claims.token_id})
            raise RotationError("Could not revoke the old refresh token", old_token_still_valid=True) from e

        if not claimed:
            logger.warning("Refresh token reused during rotation", extra={'token_id': claims.token_id})
            raise TokenRevokedError()

        logger.info("Refresh token rotated", extra={'token_id': claims.token_id, 'username': principal.username})
        return self.generate_token_pair(principal)

    def _resolve_principal(self, claims: Claims) -> Principal:
        if self._principal_lookup is None:
            return Principal(username=claims.username, role=claims.role)

        principal = self._principal_lookup(claims.username)
        if principal is None or not principal.is_active:
            logger.warning("Refresh denied for inactive principal", extra={'username': claims.username})
            raise PrincipalInactiveError()
        return principal

    def store_status(self) -> dict:
        """Revocation store health for monitoring."""
        return self._store.status()


# Singleton instance
_token_manager: Optional[TokenManager] = None


def get_token_manager() -> TokenManager:
    """Get or create TokenManager singleton from settings."""
    global _token_manager
    if _token_manager is None:
        _token_manager = TokenManager(
            secret=JWT_SECRET,
            access_lifetime=ACCESS_TOKEN_LIFETIME,
            refresh_lifetime=REFRESH_TOKEN_LIFETIME,
            store=get_revocation_store(),
            algorithm=JWT_ALGORITHM,
            fail_closed=REDIS_BLACKLIST_FAIL_CLOSED,
        )
    return _token_manager
