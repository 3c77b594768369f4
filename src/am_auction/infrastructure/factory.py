"""Store factory: picks the AuctionStore backend once at startup."""

import logging

import redis.asyncio as aioredis

from config.settings import Settings
from src.am_auction.domain.repository import AuctionStoreProtocol
from src.am_auction.infrastructure.memory_store import MemoryAuctionStore
from src.am_auction.infrastructure.redis_store import RedisAuctionStore
from src.am_auction.infrastructure.rest_store import RestAuctionStore
from src.am_auction.infrastructure.sql_store import SqlAuctionStore
from src.am_common.database import get_session_factory
from src.am_common.datetime_utils import Clock, utc_now
from src.am_common.errors import StoreUnconfiguredError

logger = logging.getLogger(__name__)

STORE_BACKENDS = ("sql", "rest", "redis", "memory")


def build_store(
    config: Settings,
    redis: aioredis.Redis | None = None,
    clock: Clock = utc_now,
) -> AuctionStoreProtocol:
    """Instantiate the configured backend.

    Raises StoreUnconfiguredError when the chosen backend lacks its
    connection settings, so a misconfigured process fails at startup rather
    than on the first bid.
    """
    backend = config.STORE_BACKEND.lower()
    if backend == "sql":
        logger.info("Auction store backend: sql")
        return SqlAuctionStore(get_session_factory())
    if backend == "rest":
        if not config.REST_STORE_URL:
            raise StoreUnconfiguredError("REST_STORE_URL missing for rest backend")
        logger.info("Auction store backend: rest (%s)", config.REST_STORE_URL)
        return RestAuctionStore(
            config.REST_STORE_URL,
            api_key=config.REST_STORE_KEY,
            timeout=config.REST_STORE_TIMEOUT_SECONDS,
            clock=clock,
        )
    if backend == "redis":
        if redis is None:
            raise StoreUnconfiguredError("REDIS_URL missing for redis backend")
        logger.info("Auction store backend: redis")
        return RedisAuctionStore(
            redis,
            lock_ttl_seconds=config.BID_LOCK_TTL_SECONDS,
            lock_retries=config.BID_LOCK_RETRIES,
            lock_retry_delay_seconds=config.BID_LOCK_RETRY_DELAY_SECONDS,
            clock=clock,
        )
    if backend == "memory":
        logger.warning("Auction store backend: memory (single process, not durable)")
        return MemoryAuctionStore(clock=clock)
    raise StoreUnconfiguredError(
        f"unknown STORE_BACKEND {config.STORE_BACKEND!r}, expected one of {', '.join(STORE_BACKENDS)}"
    )
