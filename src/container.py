"""Composition root: builds the long-lived collaborators once per process.

The lifespan in src.main creates one Container and stores it on
app.state.container; routers reach it through get_container(). Tests build a
Container around a MemoryAuctionStore and a fixed clock.
"""

import logging
from dataclasses import dataclass

import redis.asyncio as aioredis
from starlette.requests import HTTPConnection

from config.settings import Settings
from src.am_auction.domain.repository import AuctionStoreProtocol
from src.am_auction.infrastructure.factory import build_store
from src.am_bidding.engine import BidEngine
from src.am_broadcast.registry import BroadcastRegistry
from src.am_cache.price_cache import PriceCache
from src.am_common.background import BackgroundTasks
from src.am_common.datetime_utils import Clock, utc_now
from src.am_lifecycle.service import AuctionLifecycleService
from src.am_lifecycle.sweeper import AuctionSweeper
from src.am_notification.channels import (
    ContactDirectory,
    OutboundChannels,
    build_contact_directory,
)
from src.am_notification.dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)


@dataclass
class Container:
    config: Settings
    store: AuctionStoreProtocol
    redis: aioredis.Redis | None
    cache: PriceCache
    registry: BroadcastRegistry
    tasks: BackgroundTasks
    dispatcher: NotificationDispatcher
    channels: OutboundChannels
    engine: BidEngine
    lifecycle: AuctionLifecycleService
    sweeper: AuctionSweeper

    async def start(self) -> None:
        self.registry.start()
        self.sweeper.start()

    async def close(self) -> None:
        """Stop producers first, then let in-flight side effects finish."""
        await self.sweeper.stop()
        await self.tasks.drain(timeout=10.0)
        await self.registry.close()
        await self.channels.close()
        await self.store.close()


def build_container(
    config: Settings,
    redis: aioredis.Redis | None = None,
    store: AuctionStoreProtocol | None = None,
    clock: Clock = utc_now,
    directory: ContactDirectory | None = None,
) -> Container:
    store = store or build_store(config, redis=redis, clock=clock)
    cache = PriceCache(redis if config.PRICE_CACHE_ENABLED else None)
    registry = BroadcastRegistry(redis=redis, channel=config.BROADCAST_CHANNEL, clock=clock)
    tasks = BackgroundTasks()
    dispatcher = NotificationDispatcher(store, registry, clock=clock)
    channels = OutboundChannels(config, directory=directory or build_contact_directory(config))
    if (channels.email_configured or channels.sms_configured) and not channels.directory_configured:
        logger.warning("Email/SMS configured but USER_DIRECTORY_URL is not; receipts will be skipped")
    engine = BidEngine(
        store,
        cache,
        dispatcher,
        registry,
        tasks,
        clock=clock,
        fanout_cap=config.BID_UPDATE_FANOUT_CAP,
    )
    lifecycle = AuctionLifecycleService(
        store,
        cache,
        dispatcher,
        registry,
        tasks,
        channels=channels,
        clock=clock,
        admin_user_id=config.ADMIN_USER_ID,
        default_run_minutes=config.DEFAULT_RUN_MINUTES,
        sweep_batch_size=config.SWEEP_BATCH_SIZE,
    )
    sweeper = AuctionSweeper(lifecycle, interval_seconds=config.SWEEP_INTERVAL_SECONDS)
    logger.info(
        "Container built: backend=%s cache=%s broadcast=%s",
        config.STORE_BACKEND,
        "on" if cache.enabled else "off",
        "redis" if redis is not None else "local",
    )
    return Container(
        config=config,
        store=store,
        redis=redis,
        cache=cache,
        registry=registry,
        tasks=tasks,
        dispatcher=dispatcher,
        channels=channels,
        engine=engine,
        lifecycle=lifecycle,
        sweeper=sweeper,
    )


def get_container(conn: HTTPConnection) -> Container:
    """FastAPI dependency for both HTTP and WebSocket routes."""
    return conn.app.state.container
