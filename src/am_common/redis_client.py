"""Redis client factory.

Used for the advisory price cache, the cross-process broadcast channel, and
(when STORE_BACKEND=redis) as the authoritative key-value store. Redis is
optional: when REDIS_URL is unset every caller gets None and degrades.
"""

import logging

import redis.asyncio as aioredis

from config.settings import settings

logger = logging.getLogger(__name__)

_redis_pool: aioredis.Redis | None = None


async def get_redis() -> aioredis.Redis | None:
    """Get or create the Redis connection pool; None when Redis is not configured."""
    global _redis_pool  # noqa: PLW0603
    if _redis_pool is None and settings.REDIS_URL:
        _redis_pool = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
        )
    return _redis_pool


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis_pool  # noqa: PLW0603
    if _redis_pool is not None:
        try:
            await _redis_pool.aclose()
        except Exception:  # noqa: BLE001
            logger.warning("Redis pool close failed", exc_info=True)
        _redis_pool = None
