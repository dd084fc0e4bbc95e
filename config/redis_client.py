"""
Redis client configuration for the token revocation store.

Usage:
    from config.redis_client import get_redis, CacheKeys

    redis = get_redis()
    redis.set(CacheKeys.revoked_token(token_id), "revoked", px=60_000)
"""

import logging

from config.settings import get_settings

logger = logging.getLogger(__name__)

# Global Redis client instance
_redis_client = None


def get_redis():
    """
    Get the Redis client instance.

    Every command is bounded by the configured revocation store timeout,
    so a stalled Redis surfaces as redis.TimeoutError instead of hanging
    a request.

    Returns:
        redis.Redis: Redis client (connects lazily on first command)
    """
    global _redis_client

    if _redis_client is None:
        import redis

        settings = get_settings()
        timeout = settings.auth.revocation_store_timeout_seconds
        _redis_client = redis.from_url(
            settings.redis.redis_url,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        logger.info(f"Redis client configured (timeout {timeout}s)")

    return _redis_client


def reset_redis_connection():
    """Reset the Redis connection (useful for testing or reconnection)."""
    global _redis_client
    _redis_client = None


class CacheKeys:
    """Standard key prefixes."""

    # Revoked token ids (TTL: remaining lifetime of the longest-lived token)
    REVOKED_TOKEN = "blacklist:token:{token_id}"

    @classmethod
    def revoked_token(cls, token_id: str) -> str:
        return cls.REVOKED_TOKEN.format(token_id=token_id)
