"""
One-time backup codes for the second factor.

Codes look like ``abcd-efgh-ijkl`` and are handed to the user once at
enrollment. Only SHA-256 digests are meant to be stored; consuming a code
removes its digest so it cannot be used again.
"""
import hashlib
import hmac
import secrets

from core.errors import RandomSourceError

from .config import BACKUP_CODE_COUNT

BACKUP_CODE_ALPHABET = "abcdefghijklmnopqrstuvwxyz0123456789"
GROUP_LENGTH = 4
GROUP_COUNT = 3


def _random_group() -> str:
    return "".join(secrets.choice(BACKUP_CODE_ALPHABET) for _ in range(GROUP_LENGTH))


def generate_backup_codes(count: int = BACKUP_CODE_COUNT) -> list[str]:
    """Generate fresh backup codes (~62 bits each).

    Raises:
        RandomSourceError: the OS random source is unavailable
    """
    if count <= 0:
        raise ValueError("count must be positive")
    try:
        return ["-".join(_random_group() for _ in range(GROUP_COUNT)) for _ in range(count)]
    except (NotImplementedError, OSError) as e:
        raise RandomSourceError("secure random source unavailable for backup codes") from e


def normalize_backup_code(code: str) -> str:
    return code.strip().lower()


def hash_backup_code(code: str) -> str:
    """Digest for storage."""
    return hashlib.sha256(normalize_backup_code(code).encode()).hexdigest()


def consume_backup_code(code_hashes: list[str], code: str) -> tuple[bool, list[str]]:
    """Verify a code against stored digests and consume it.

    Args:
        code_hashes: Stored digests of unused codes
        code: Code entered by the user

    Returns:
        Tuple of (matched, digests still unused). On a miss the list is
        returned unchanged.
    """
    if not isinstance(code, str) or not code.strip():
        return False, list(code_hashes)

    candidate = hash_backup_code(code)
    matched_index = None
    for index, stored in enumerate(code_hashes):
        if hmac.compare_digest(stored, candidate) and matched_index is None:
            matched_index = index

    if matched_index is None:
        return False, list(code_hashes)
    return True, code_hashes[:matched_index] + code_hashes[matched_index + 1:]
