"""
Auth domain types - no dependencies on other tokenauth modules.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass(frozen=True)
class Principal:
    """Identity a token pair is minted for (immutable)."""
    username: str
    role: str
    is_active: bool = True


@dataclass(frozen=True)
class Claims:
    """Decoded JWT payload (immutable).

    Access and refresh tokens from one issuance carry identical claims
    except expires_at.
    """
    username: str
    role: str
    token_id: str  # tid, the unit of revocation
    issued_at: datetime
    expires_at: datetime
    subject: str = ""

    def to_payload(self) -> dict:
        return {
            "username": self.username,
            "role": self.role,
            "tid": self.token_id,
            "sub": self.subject or self.username,
            "iat": self.issued_at,
            "exp": self.expires_at,
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "Claims":
        """Build claims from a verified payload.

        Raises:
            KeyError, TypeError or ValueError on missing or mistyped claims.
        """
        username = payload["username"]
        role = payload["role"]
        token_id = payload["tid"]
        for value in (username, role, token_id):
            if not isinstance(value, str) or not value:
                raise ValueError("username, role and tid must be non-empty strings")
        return cls(
            username=username,
            role=role,
            token_id=token_id,
            issued_at=datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc),
            expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
            subject=payload.get("sub", username),
        )


@dataclass(frozen=True)
class TokenPair:
    """Result of one issuance: access + refresh token sharing a token id."""
    access_token: str
    refresh_token: str
    csrf_token: str
    expires_in: int
    token_type: str = "Bearer"
    # Internal only, never serialized to clients
    token_id: str = field(default="", repr=False)
    expires_at: datetime = field(default=None, repr=False)

    def to_dict(self) -> dict:
        """Wire shape returned to clients."""
        return {
            "token": self.access_token,
            "refresh_token": self.refresh_token,
            "csrf_token": self.csrf_token,
            "expires_in": self.expires_in,
            "token_type": self.token_type,
        }
