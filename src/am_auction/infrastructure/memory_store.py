"""MemoryAuctionStore: single-process backend for local development and tests.

Atomicity comes from one asyncio.Lock per auction: every read-check-write on
an auction row happens while holding that auction's lock. Counter offers are
serialised on their auction's lock too.
"""

import asyncio
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime

from src.am_auction.domain.models import Auction, Bid, CounterOffer, Notification
from src.am_auction.domain.repository import (
    AuctionGuard,
    AuctionPatch,
    apply_patch,
    can_raise_price,
)
from src.am_common.datetime_utils import Clock, utc_now
from src.am_common.enums import AuctionStatus, CounterOfferStatus, enum_value
from src.am_common.errors import CounterOfferPendingError


class MemoryAuctionStore:
    """Concrete store: all state in dicts, guarded by per-auction locks."""

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._auctions: dict[str, Auction] = {}
        self._bids: dict[str, list[Bid]] = defaultdict(list)
        self._counters: dict[str, CounterOffer] = {}
        self._notifications: dict[str, list[Notification]] = defaultdict(list)
        self._auction_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _lock(self, auction_id: str) -> asyncio.Lock:
        return self._auction_locks[auction_id]

    # --- auctions ---

    async def create_auction(self, auction: Auction) -> Auction:
        self._auctions[auction.id] = replace(auction)
        return replace(auction)

    async def get_auction(self, auction_id: str) -> Auction | None:
        auction = self._auctions.get(auction_id)
        return replace(auction) if auction else None

    async def list_auctions(
        self,
        statuses: Sequence[str] | None,
        seller_id: str | None,
        offset: int,
        limit: int,
    ) -> list[Auction]:
        rows = [
            a for a in self._auctions.values()
            if (not statuses or a.status in statuses)
            and (seller_id is None or a.seller_id == seller_id)
        ]
        rows.sort(key=lambda a: (a.created_at, a.id), reverse=True)
        return [replace(a) for a in rows[offset:offset + limit]]

    async def update_auction(
        self, auction_id: str, patch: AuctionPatch, guard: AuctionGuard
    ) -> Auction | None:
        async with self._lock(auction_id):
            auction = self._auctions.get(auction_id)
            if auction is None or not guard.holds(auction):
                return None
            updated = apply_patch(auction, patch, self._clock())
            self._auctions[auction_id] = updated
            return replace(updated)

    async def list_expired(self, now: datetime, limit: int) -> list[Auction]:
        rows = [
            a for a in self._auctions.values()
            if a.status in (AuctionStatus.LIVE, AuctionStatus.SCHEDULED) and a.ends_at <= now
        ]
        rows.sort(key=lambda a: a.ends_at)
        return [replace(a) for a in rows[:limit]]

    async def list_due_to_start(self, now: datetime, limit: int) -> list[Auction]:
        rows = [
            a for a in self._auctions.values()
            if a.status == AuctionStatus.SCHEDULED and a.go_live_at <= now < a.ends_at
        ]
        rows.sort(key=lambda a: a.go_live_at)
        return [replace(a) for a in rows[:limit]]

    # --- bids ---

    async def conditionally_raise_price(
        self, auction_id: str, amount_cents: int, now: datetime
    ) -> bool:
        async with self._lock(auction_id):
            return self._raise_locked(auction_id, amount_cents, now)

    def _raise_locked(self, auction_id: str, amount_cents: int, now: datetime) -> bool:
        auction = self._auctions.get(auction_id)
        if auction is None or not can_raise_price(auction, amount_cents, now):
            return False
        self._auctions[auction_id] = replace(
            auction, current_price_cents=amount_cents, updated_at=now
        )
        return True

    async def insert_bid(self, bid: Bid) -> Bid:
        self._bids[bid.auction_id].append(bid)
        return bid

    async def place_bid(self, bid: Bid, now: datetime) -> bool:
        async with self._lock(bid.auction_id):
            if not self._raise_locked(bid.auction_id, bid.amount_cents, now):
                return False
            self._bids[bid.auction_id].append(bid)
            return True

    async def top_bid(
        self, auction_id: str, exclude_bidder_id: str | None = None
    ) -> Bid | None:
        candidates = [
            b for b in self._bids.get(auction_id, [])
            if exclude_bidder_id is None or b.bidder_id != exclude_bidder_id
        ]
        if not candidates:
            return None
        # Highest amount wins; ties go to the earliest bid
        return min(candidates, key=lambda b: (-b.amount_cents, b.created_at))

    async def list_bids(self, auction_id: str, offset: int, limit: int) -> list[Bid]:
        rows = sorted(
            self._bids.get(auction_id, []), key=lambda b: b.created_at, reverse=True
        )
        return rows[offset:offset + limit]

    async def prior_bidder_ids(
        self, auction_id: str, exclude_bidder_id: str, limit: int
    ) -> list[str]:
        seen: list[str] = []
        for bid in sorted(self._bids.get(auction_id, []), key=lambda b: b.created_at):
            if bid.bidder_id != exclude_bidder_id and bid.bidder_id not in seen:
                seen.append(bid.bidder_id)
        return seen[:limit]

    # --- counter offers ---

    async def create_counter_offer(self, offer: CounterOffer) -> CounterOffer:
        async with self._lock(offer.auction_id):
            if offer.status == CounterOfferStatus.PENDING and any(
                c.auction_id == offer.auction_id and c.status == CounterOfferStatus.PENDING
                for c in self._counters.values()
            ):
                raise CounterOfferPendingError(offer.auction_id)
            stored = replace(offer, created_at=offer.created_at or self._clock())
            self._counters[offer.id] = stored
            return replace(stored)

    async def get_counter_offer(self, counter_id: str) -> CounterOffer | None:
        offer = self._counters.get(counter_id)
        return replace(offer) if offer else None

    async def get_pending_counter_offer(self, auction_id: str) -> CounterOffer | None:
        pending = [
            c for c in self._counters.values()
            if c.auction_id == auction_id and c.status == CounterOfferStatus.PENDING
        ]
        if not pending:
            return None
        return replace(max(pending, key=lambda c: c.created_at or self._clock()))

    async def settle_counter_offer(
        self, counter_id: str, status: str, final_price_cents: int | None
    ) -> bool:
        offer = self._counters.get(counter_id)
        if offer is None:
            return False
        async with self._lock(offer.auction_id):
            offer = self._counters[counter_id]
            auction = self._auctions.get(offer.auction_id)
            if offer.status != CounterOfferStatus.PENDING:
                return False
            if auction is None or auction.status != AuctionStatus.ENDED:
                return False
            if not offer.belongs_to(auction):
                return False
            self._counters[counter_id] = replace(offer, status=enum_value(status))
            self._auctions[auction.id] = apply_patch(
                auction,
                AuctionPatch(status=AuctionStatus.CLOSED, current_price_cents=final_price_cents),
                self._clock(),
            )
            return True

    async def withdraw_counter_offers(self, auction_id: str) -> int:
        async with self._lock(auction_id):
            pending = [
                c for c in self._counters.values()
                if c.auction_id == auction_id and c.status == CounterOfferStatus.PENDING
            ]
            for offer in pending:
                self._counters[offer.id] = replace(
                    offer, status=CounterOfferStatus.REJECTED.value
                )
            return len(pending)

    # --- notifications ---

    async def insert_notifications(self, notifications: Sequence[Notification]) -> None:
        for n in notifications:
            stored = replace(n, created_at=n.created_at or self._clock())
            self._notifications[n.user_id].append(stored)

    async def list_notifications(self, user_id: str, limit: int) -> list[Notification]:
        rows = sorted(
            self._notifications.get(user_id, []),
            key=lambda n: n.created_at or self._clock(),
            reverse=True,
        )
        return rows[:limit]

    # --- lifecycle ---

    async def ping(self) -> None:
        return None

    async def close(self) -> None:
        return None
