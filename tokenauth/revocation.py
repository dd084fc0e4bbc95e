"""
Revocation store for token ids.

A revoked token id is a key with a TTL; entries expire on their own once
every token carrying the id is past its exp, so no cleanup job is needed.

Two backends:
- RedisRevocationStore: shared across workers, per-key atomic writes,
  SET NX for compare-and-revoke
- InMemoryRevocationStore: process-local, for tests and single-worker dev

Backend failures surface as StoreUnavailableError; the fail-open/closed
policy is applied by TokenManager, not here.
"""
import heapq
import logging
import math
import threading
import time
from datetime import timedelta
from typing import Callable, Optional, Protocol

import redis

from config.redis_client import CacheKeys, get_redis
from core.errors import StoreUnavailableError

from .config import USE_REDIS_BLACKLIST

logger = logging.getLogger(__name__)


class RevocationStore(Protocol):
    """TTL-capable key-value store consumed by TokenManager."""

    def put(self, token_id: str, ttl: timedelta) -> None: ...

    def put_if_absent(self, token_id: str, ttl: timedelta) -> bool: ...

    def exists(self, token_id: str) -> bool: ...

    def status(self) -> dict: ...


def _ttl_milliseconds(ttl: timedelta) -> int:
    if ttl <= timedelta(0):
        raise ValueError("revocation TTL must be positive")
    return max(1, math.ceil(ttl.total_seconds() * 1000))


# =============================================================================
# In-memory backend
# =============================================================================

class InMemoryRevocationStore:
    """Process-local store. Not shared between workers.

    Expired entries are purged on every write, so ids that are never
    looked up again do not accumulate.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, float] = {}
        self._deadlines: list[tuple[float, str]] = []
        self._lock = threading.Lock()

    def _live(self, token_id: str, now: float) -> bool:
        deadline = self._entries.get(token_id)
        if deadline is None:
            return False
        if deadline <= now:
            del self._entries[token_id]
            return False
        return True

    def _purge(self, now: float) -> None:
        while self._deadlines and self._deadlines[0][0] <= now:
            deadline, token_id = heapq.heappop(self._deadlines)
            # Skip heap items superseded by a later put
            if self._entries.get(token_id) == deadline:
                del self._entries[token_id]

    def _store(self, token_id: str, deadline: float) -> None:
        self._entries[token_id] = deadline
        heapq.heappush(self._deadlines, (deadline, token_id))

    def put(self, token_id: str, ttl: timedelta) -> None:
        ttl_ms = _ttl_milliseconds(ttl)
        with self._lock:
            now = self._clock()
            self._purge(now)
            deadline = now + ttl_ms / 1000
            if deadline > self._entries.get(token_id, 0.0):
                self._store(token_id, deadline)

    def put_if_absent(self, token_id: str, ttl: timedelta) -> bool:
        ttl_ms = _ttl_milliseconds(ttl)
        with self._lock:
            now = self._clock()
            self._purge(now)
            if self._live(token_id, now):
                return False
            self._store(token_id, now + ttl_ms / 1000)
            return True

    def exists(self, token_id: str) -> bool:
        with self._lock:
            return self._live(token_id, self._clock())

    def __len__(self) -> int:
        with self._lock:
            now = self._clock()
            return sum(1 for deadline in self._entries.values() if deadline > now)

    def status(self) -> dict:
        return {
            "available": True,
            "backend": "in-memory",
            "entries": len(self),
            "warning": "Token blacklist not distributed across workers",
        }


# =============================================================================
# Redis backend
# =============================================================================

class RedisRevocationStore:
    """Redis-backed store. Keys are blacklist:token:<tid> with a PX expiry."""

    def __init__(self, client: Optional["redis.Redis"] = None):
        self._client = client if client is not None else get_redis()

    def put(self, token_id: str, ttl: timedelta) -> None:
        px = _ttl_milliseconds(ttl)
        try:
            self._client.set(CacheKeys.revoked_token(token_id), "revoked", px=px)
        except redis.RedisError as e:
            logger.warning(f"Redis blacklist write failed: {e}", extra={'token_id': token_id})
            raise StoreUnavailableError(f"Redis blacklist write failed: {e}") from e

    def put_if_absent(self, token_id: str, ttl: timedelta) -> bool:
        """Atomically revoke token_id unless already revoked.

        Returns:
            True if this call created the entry, False if it existed.
        """
        px = _ttl_milliseconds(ttl)
        try:
            created = self._client.set(CacheKeys.revoked_token(token_id), "revoked", px=px, nx=True)
        except redis.RedisError as e:
            logger.warning(f"Redis blacklist write failed: {e}", extra={'token_id': token_id})
            raise StoreUnavailableError(f"Redis blacklist write failed: {e}") from e
        return bool(created)

    def exists(self, token_id: str) -> bool:
        try:
            return self._client.exists(CacheKeys.revoked_token(token_id)) > 0
        except redis.RedisError as e:
            logger.warning(f"Redis blacklist read failed: {e}", extra={'token_id': token_id})
            raise StoreUnavailableError(f"Redis blacklist read failed: {e}") from e

    def status(self) -> dict:
        """Return Redis blacklist health status for monitoring."""
        try:
            info = self._client.info("server")
            return {
                "available": True,
                "backend": "redis",
                "redis_version": info.get("redis_version"),
                "connected_clients": self._client.info("clients").get("connected_clients"),
            }
        except redis.RedisError as e:
            logger.warning(f"Redis blacklist status check failed: {e}")
            return {
                "available": False,
                "backend": "redis",
                "error": str(e),
            }


# =============================================================================
# Factory
# =============================================================================

_store: Optional[RevocationStore] = None


def get_revocation_store() -> RevocationStore:
    """Get or create the configured revocation store singleton."""
    global _store
    if _store is None:
        if USE_REDIS_BLACKLIST:
            _store = RedisRevocationStore()
        else:
            logger.warning("USE_REDIS_BLACKLIST is off - revocations are process-local")
            _store = InMemoryRevocationStore()
    return _store


def reset_revocation_store():
    """Drop the cached store (tests, reconnection)."""
    global _store
    _store = None
