"""AuctionStore Protocol: the one storage contract every backend implements.

The engine and lifecycle service only ever see this Protocol; which backend
sits behind it is decided once at startup (see infrastructure/factory.py).
Unit tests inject a mock or the in-memory backend.

Unlike a per-request repository, a store owns its connections: relational
sessions, HTTP clients and Redis pools are not passed through the contract,
because the REST and key-value backends have no session to pass.

Atomicity obligations (every backend):
  - place_bid: the conditional raise and the Bid insert commit together or
    not at all, and the raise succeeds only if, at write time, status is
    live, ends_at > now and current_price <= amount - bid_increment.
  - update_auction: the patch applies only if the guard holds at write time.
  - settle_counter_offer: counter pending -> resolved and auction
    ended -> closed commit together or not at all, and only while the
    auction is still in the bidding window the counter was made for
    (auction.ends_at == counter.round_ends_at).
"""

from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Protocol

from src.am_auction.domain.models import Auction, Bid, CounterOffer, Notification
from src.am_common.enums import AuctionStatus, enum_value


@dataclass
class AuctionPatch:
    """Fields to change on an auction row. None means unchanged."""

    status: str | None = None
    go_live_at: datetime | None = None
    ends_at: datetime | None = None
    current_price_cents: int | None = None
    reset_price: bool = False   # current_price := starting_price


@dataclass
class AuctionGuard:
    """Write-time preconditions for update_auction."""

    statuses: tuple[str, ...]
    ended_by: datetime | None = None   # require ends_at <= ended_by
    open_at: datetime | None = None    # require go_live_at <= open_at < ends_at

    def holds(self, auction: Auction) -> bool:
        if auction.status not in self.statuses:
            return False
        if self.ended_by is not None and auction.ends_at > self.ended_by:
            return False
        if self.open_at is not None and not (
            auction.go_live_at <= self.open_at < auction.ends_at
        ):
            return False
        return True


def apply_patch(auction: Auction, patch: AuctionPatch, now: datetime) -> Auction:
    """Return a copy of auction with the patch applied, for backends that evaluate in Python."""
    changes: dict[str, object] = {"updated_at": now}
    if patch.status is not None:
        changes["status"] = enum_value(patch.status)
    if patch.go_live_at is not None:
        changes["go_live_at"] = patch.go_live_at
    if patch.ends_at is not None:
        changes["ends_at"] = patch.ends_at
    if patch.reset_price:
        changes["current_price_cents"] = auction.starting_price_cents
    elif patch.current_price_cents is not None:
        changes["current_price_cents"] = patch.current_price_cents
    return replace(auction, **changes)  # type: ignore[arg-type]


def can_raise_price(auction: Auction, amount_cents: int, now: datetime) -> bool:
    """The compare-and-set predicate of place_bid, for backends that evaluate it in Python."""
    return (
        auction.status == AuctionStatus.LIVE
        and auction.ends_at > now
        and auction.current_price_cents <= amount_cents - auction.bid_increment_cents
    )


class AuctionStoreProtocol(Protocol):
    # --- auctions ---
    async def create_auction(self, auction: Auction) -> Auction: ...

    async def get_auction(self, auction_id: str) -> Auction | None: ...

    async def list_auctions(
        self,
        statuses: Sequence[str] | None,
        seller_id: str | None,
        offset: int,
        limit: int,
    ) -> list[Auction]: ...

    async def update_auction(
        self, auction_id: str, patch: AuctionPatch, guard: AuctionGuard
    ) -> Auction | None: ...

    async def list_expired(self, now: datetime, limit: int) -> list[Auction]: ...

    async def list_due_to_start(self, now: datetime, limit: int) -> list[Auction]: ...

    # --- bids ---
    async def conditionally_raise_price(
        self, auction_id: str, amount_cents: int, now: datetime
    ) -> bool: ...

    async def insert_bid(self, bid: Bid) -> Bid: ...

    async def place_bid(self, bid: Bid, now: datetime) -> bool: ...

    async def top_bid(
        self, auction_id: str, exclude_bidder_id: str | None = None
    ) -> Bid | None: ...

    async def list_bids(self, auction_id: str, offset: int, limit: int) -> list[Bid]: ...

    async def prior_bidder_ids(
        self, auction_id: str, exclude_bidder_id: str, limit: int
    ) -> list[str]: ...

    # --- counter offers ---
    async def create_counter_offer(self, offer: CounterOffer) -> CounterOffer: ...

    async def get_counter_offer(self, counter_id: str) -> CounterOffer | None: ...

    async def get_pending_counter_offer(self, auction_id: str) -> CounterOffer | None: ...

    async def settle_counter_offer(
        self, counter_id: str, status: str, final_price_cents: int | None
    ) -> bool: ...

    async def withdraw_counter_offers(self, auction_id: str) -> int: ...

    # --- notifications ---
    async def insert_notifications(self, notifications: Sequence[Notification]) -> None: ...

    async def list_notifications(self, user_id: str, limit: int) -> list[Notification]: ...

    # --- lifecycle ---
    async def ping(self) -> None: ...

    async def close(self) -> None: ...
