"""
Token authentication core.

Public API:
- Tokens: TokenManager, get_token_manager, Claims, TokenPair, Principal
- Revocation: RevocationStore, RedisRevocationStore, InMemoryRevocationStore
- Second factor: TOTPManager, get_totp_manager, backup codes

Import Rules:
- External callers: Use `from tokenauth import X` (this facade)
- Internal tokenauth modules: Use `from .submodule import X` (direct imports)
"""

# =============================================================================
# Types
# =============================================================================
from .types import Claims, Principal, TokenPair

# =============================================================================
# Tokens
# =============================================================================
from .tokens import (
    PrincipalLookup,
    TokenManager,
    get_token_manager,
)

# =============================================================================
# Revocation
# =============================================================================
from .revocation import (
    InMemoryRevocationStore,
    RedisRevocationStore,
    RevocationStore,
    get_revocation_store,
    reset_revocation_store,
)

# =============================================================================
# Second Factor
# =============================================================================
from .totp import (
    TOTPManager,
    dynamic_truncate,
    format_code,
    get_totp_manager,
)

from .backup_codes import (
    consume_backup_code,
    generate_backup_codes,
    hash_backup_code,
)

# =============================================================================
# Public API
# =============================================================================

__all__ = [
    # Types
    "Claims",
    "Principal",
    "TokenPair",

    # Tokens
    "PrincipalLookup",
    "TokenManager",
    "get_token_manager",

    # Revocation
    "InMemoryRevocationStore",
    "RedisRevocationStore",
    "RevocationStore",
    "get_revocation_store",
    "reset_revocation_store",

    # Second factor
    "TOTPManager",
    "dynamic_truncate",
    "format_code",
    "get_totp_manager",
    "consume_backup_code",
    "generate_backup_codes",
    "hash_backup_code",
]
