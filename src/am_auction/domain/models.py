"""Domain models for am_auction: pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class Auction:
    id: str
    seller_id: str
    title: str
    description: str | None
    starting_price_cents: int
    bid_increment_cents: int
    go_live_at: datetime
    ends_at: datetime
    current_price_cents: int
    status: str                 # AuctionStatus value
    created_at: datetime
    updated_at: datetime

    @property
    def min_next_bid_cents(self) -> int:
        return self.current_price_cents + self.bid_increment_cents

    def is_open_at(self, now: datetime) -> bool:
        """Bidding window check only; status is checked separately."""
        return now < self.ends_at


@dataclass
class Bid:
    id: str
    auction_id: str
    bidder_id: str
    amount_cents: int
    created_at: datetime


@dataclass
class CounterOffer:
    id: str
    auction_id: str
    seller_id: str
    buyer_id: str
    amount_cents: int
    status: str                 # CounterOfferStatus value
    created_at: datetime | None = None
    round_ends_at: datetime | None = None   # auction.ends_at when the counter was made

    def belongs_to(self, auction: Auction) -> bool:
        """False once the auction has been restarted into a new bidding window."""
        return self.round_ends_at is None or self.round_ends_at == auction.ends_at


@dataclass
class Notification:
    id: str
    user_id: str
    type: str                   # NotificationType value (free-form tag)
    payload: dict[str, Any] = field(default_factory=dict)
    read: bool = False
    created_at: datetime | None = None
