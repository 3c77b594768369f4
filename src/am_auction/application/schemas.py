"""Pydantic schemas for the auction HTTP surface.

Requests carry only types; range checks live in the lifecycle service and
the bid engine so they surface as 400 AppErrors in the ApiResponse envelope.
All money fields are integer cents with a *_display companion on output.
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, field_validator

from src.am_auction.domain.models import Auction, Bid, CounterOffer, Notification
from src.am_bidding.engine import PlacedBid
from src.am_common.cents import cents_to_display
from src.am_common.datetime_utils import to_iso
from src.am_common.enums import DecisionAction, enum_value
from src.am_lifecycle.service import CounterReplyResult, DecisionResult, NewAuction

# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class CreateAuctionRequest(BaseModel):
    title: str
    description: str | None = None
    starting_price_cents: int
    bid_increment_cents: int
    go_live_at: datetime
    duration_minutes: int

    @field_validator("go_live_at")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        return v.replace(tzinfo=timezone.utc) if v.tzinfo is None else v.astimezone(timezone.utc)

    def to_command(self) -> NewAuction:
        return NewAuction(
            title=self.title,
            description=self.description,
            starting_price_cents=self.starting_price_cents,
            bid_increment_cents=self.bid_increment_cents,
            go_live_at=self.go_live_at,
            duration_minutes=self.duration_minutes,
        )


class PlaceBidRequest(BaseModel):
    amount_cents: int


class RunWindowRequest(BaseModel):
    minutes: int | None = None


class DecisionRequest(BaseModel):
    action: DecisionAction
    amount_cents: int | None = None


class CounterReplyRequest(BaseModel):
    accept: bool


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class AuctionOut(BaseModel):
    id: str
    seller_id: str
    title: str
    description: str | None
    status: str
    starting_price_cents: int
    bid_increment_cents: int
    current_price_cents: int
    current_price_display: str
    min_next_bid_cents: int
    go_live_at: str
    ends_at: str
    created_at: str
    updated_at: str

    @classmethod
    def from_domain(cls, a: Auction) -> "AuctionOut":
        return cls(
            id=a.id,
            seller_id=a.seller_id,
            title=a.title,
            description=a.description,
            status=enum_value(a.status),
            starting_price_cents=a.starting_price_cents,
            bid_increment_cents=a.bid_increment_cents,
            current_price_cents=a.current_price_cents,
            current_price_display=cents_to_display(a.current_price_cents),
            min_next_bid_cents=a.min_next_bid_cents,
            go_live_at=to_iso(a.go_live_at),
            ends_at=to_iso(a.ends_at),
            created_at=to_iso(a.created_at),
            updated_at=to_iso(a.updated_at),
        )


class AuctionListOut(BaseModel):
    items: list[AuctionOut]
    offset: int
    limit: int


class BidOut(BaseModel):
    id: str
    auction_id: str
    bidder_id: str
    amount_cents: int
    amount_display: str
    created_at: str

    @classmethod
    def from_domain(cls, b: Bid) -> "BidOut":
        return cls(
            id=b.id,
            auction_id=b.auction_id,
            bidder_id=b.bidder_id,
            amount_cents=b.amount_cents,
            amount_display=cents_to_display(b.amount_cents),
            created_at=to_iso(b.created_at),
        )


class BidListOut(BaseModel):
    items: list[BidOut]
    offset: int
    limit: int


class PlaceBidOut(BaseModel):
    bid: BidOut
    current_price_cents: int
    min_next_bid_cents: int
    previous_price_cents: int

    @classmethod
    def from_result(cls, placed: PlacedBid) -> "PlaceBidOut":
        return cls(
            bid=BidOut.from_domain(placed.bid),
            current_price_cents=placed.auction.current_price_cents,
            min_next_bid_cents=placed.auction.min_next_bid_cents,
            previous_price_cents=placed.previous_price_cents,
        )


class WinnerOut(BaseModel):
    auction_id: str
    status: str
    top_bid: BidOut | None


class CounterOfferOut(BaseModel):
    id: str
    auction_id: str
    seller_id: str
    buyer_id: str
    amount_cents: int
    amount_display: str
    status: str
    created_at: str | None

    @classmethod
    def from_domain(cls, c: CounterOffer) -> "CounterOfferOut":
        return cls(
            id=c.id,
            auction_id=c.auction_id,
            seller_id=c.seller_id,
            buyer_id=c.buyer_id,
            amount_cents=c.amount_cents,
            amount_display=cents_to_display(c.amount_cents),
            status=enum_value(c.status),
            created_at=to_iso(c.created_at) if c.created_at else None,
        )


class DecisionOut(BaseModel):
    action: str
    auction: AuctionOut
    winner_id: str | None
    amount_cents: int | None
    counter_offer: CounterOfferOut | None

    @classmethod
    def from_result(cls, result: DecisionResult) -> "DecisionOut":
        accepted = result.action == DecisionAction.ACCEPT
        return cls(
            action=result.action.value,
            auction=AuctionOut.from_domain(result.auction),
            winner_id=result.top_bid.bidder_id if accepted else None,
            amount_cents=result.top_bid.amount_cents if accepted else None,
            counter_offer=(
                CounterOfferOut.from_domain(result.counter_offer)
                if result.counter_offer
                else None
            ),
        )


class CounterReplyOut(BaseModel):
    counter_offer: CounterOfferOut
    auction: AuctionOut

    @classmethod
    def from_result(cls, result: CounterReplyResult) -> "CounterReplyOut":
        return cls(
            counter_offer=CounterOfferOut.from_domain(result.counter_offer),
            auction=AuctionOut.from_domain(result.auction),
        )


class NotificationOut(BaseModel):
    id: str
    user_id: str
    type: str
    payload: dict[str, Any]
    read: bool
    created_at: str | None

    @classmethod
    def from_domain(cls, n: Notification) -> "NotificationOut":
        return cls(
            id=n.id,
            user_id=n.user_id,
            type=enum_value(n.type),
            payload=n.payload,
            read=n.read,
            created_at=to_iso(n.created_at) if n.created_at else None,
        )
