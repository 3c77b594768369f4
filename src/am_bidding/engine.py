"""BidEngine: validates a bid, commits it atomically, then fans it out.

Order of checks:
  1. amount shape (no I/O)
  2. Price Cache fast reject (optional, advisory)
  3. auction exists, is open and live, amount >= current + increment
  4. store.place_bid: conditional raise + Bid insert, atomic per backend

A failed conditional write is re-read only to explain the rejection; the
decision itself is the write's. Side effects run after commit as tracked
background tasks and never undo or delay the accepted bid.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace

from src.am_auction.domain.models import Auction, Bid
from src.am_auction.domain.repository import AuctionStoreProtocol
from src.am_bidding.rules import (
    check_amount,
    check_auction_accepts,
    check_snapshot,
    classify_rejection,
)
from src.am_broadcast import events
from src.am_broadcast.registry import BroadcastRegistry
from src.am_cache.price_cache import PriceCache
from src.am_common.background import BackgroundTasks
from src.am_common.datetime_utils import Clock, utc_now
from src.am_common.errors import AuctionNotFoundError
from src.am_common.id_generator import generate_id
from src.am_notification import fanout
from src.am_notification.dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlacedBid:
    bid: Bid
    auction: Auction            # state right after this bid committed
    previous_price_cents: int


class BidEngine:
    def __init__(
        self,
        store: AuctionStoreProtocol,
        cache: PriceCache,
        dispatcher: NotificationDispatcher,
        registry: BroadcastRegistry,
        tasks: BackgroundTasks,
        clock: Clock = utc_now,
        fanout_cap: int = 100,
        id_factory: Callable[[], str] = generate_id,
    ) -> None:
        self._store = store
        self._cache = cache
        self._dispatcher = dispatcher
        self._registry = registry
        self._tasks = tasks
        self._clock = clock
        self._fanout_cap = fanout_cap
        self._id_factory = id_factory

    async def place_bid(self, auction_id: str, bidder_id: str, amount_cents: int) -> PlacedBid:
        check_amount(amount_cents)
        now = self._clock()

        snapshot = await self._cache.get(auction_id)
        if snapshot is not None:
            check_snapshot(auction_id, snapshot, amount_cents, now)

        auction = await self._store.get_auction(auction_id)
        if auction is None:
            raise AuctionNotFoundError(auction_id)
        check_auction_accepts(auction, amount_cents, now)

        bid = Bid(
            id=self._id_factory(),
            auction_id=auction_id,
            bidder_id=bidder_id,
            amount_cents=amount_cents,
            created_at=now,
        )
        if not await self._store.place_bid(bid, now):
            latest = await self._store.get_auction(auction_id)
            error = classify_rejection(auction_id, latest, amount_cents, now)
            logger.info(
                "Bid lost at write time: auction=%s bidder=%s amount=%s reason=%s",
                auction_id, bidder_id, amount_cents, type(error).__name__,
            )
            raise error

        accepted = replace(auction, current_price_cents=amount_cents, updated_at=now)
        logger.info(
            "Bid accepted: auction=%s bidder=%s amount=%s (was %s)",
            auction_id, bidder_id, amount_cents, auction.current_price_cents,
        )
        self._tasks.spawn(self._after_commit(accepted, bid), name=f"bid-fanout:{bid.id}")
        return PlacedBid(bid=bid, auction=accepted, previous_price_cents=auction.current_price_cents)

    async def _after_commit(self, auction: Auction, bid: Bid) -> None:
        await self._cache.set_price(auction.id, bid.amount_cents, auction.ends_at)
        try:
            await self._registry.broadcast(
                events.bid_accepted(auction.id, bid.amount_cents, bid.bidder_id, self._clock())
            )
        except Exception:  # noqa: BLE001
            logger.warning("bid:accepted broadcast failed for %s", auction.id, exc_info=True)

        try:
            previous = await self._store.top_bid(auction.id, exclude_bidder_id=bid.bidder_id)
            prior = await self._store.prior_bidder_ids(auction.id, bid.bidder_id, self._fanout_cap)
        except Exception:  # noqa: BLE001
            logger.warning("Fan-out lookup failed for auction %s", auction.id, exc_info=True)
            previous, prior = None, []

        # Only someone strictly below this bid was outbid by it
        outbid_user = (
            previous.bidder_id
            if previous is not None and previous.amount_cents < bid.amount_cents
            else None
        )
        intents = fanout.for_bid(auction, bid.bidder_id, bid.amount_cents, outbid_user, prior)
        await self._dispatcher.deliver(intents)
