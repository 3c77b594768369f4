"""Broadcast event builders.

Every event is a flat JSON object with a stable ``type`` tag and an ``at``
timestamp (ISO-8601, milliseconds, Z). Amounts are integer cents.
"""

from datetime import datetime
from typing import Any

from src.am_auction.domain.models import Auction
from src.am_common.datetime_utils import to_iso
from src.am_common.enums import BroadcastType, enum_value

Event = dict[str, Any]


def hello(now: datetime) -> Event:
    return {"type": BroadcastType.HELLO.value, "at": to_iso(now)}


def bid_accepted(auction_id: str, amount_cents: int, bidder_id: str, now: datetime) -> Event:
    return {
        "type": BroadcastType.BID_ACCEPTED.value,
        "auctionId": auction_id,
        "amount": amount_cents,
        "bidderId": bidder_id,
        "at": to_iso(now),
    }


def _window(tag: BroadcastType, auction: Auction, now: datetime) -> Event:
    return {
        "type": tag.value,
        "auctionId": auction.id,
        "status": enum_value(auction.status),
        "currentPrice": auction.current_price_cents,
        "goLiveAt": to_iso(auction.go_live_at),
        "endsAt": to_iso(auction.ends_at),
        "at": to_iso(now),
    }


def auction_started(auction: Auction, now: datetime) -> Event:
    return _window(BroadcastType.AUCTION_STARTED, auction, now)


def auction_reset(auction: Auction, now: datetime) -> Event:
    return _window(BroadcastType.AUCTION_RESET, auction, now)


def auction_ended(auction_id: str, final_cents: int, now: datetime) -> Event:
    return {
        "type": BroadcastType.AUCTION_ENDED.value,
        "auctionId": auction_id,
        "final": final_cents,
        "at": to_iso(now),
    }


def auction_accepted(auction_id: str, winner_id: str, amount_cents: int, now: datetime) -> Event:
    return {
        "type": BroadcastType.AUCTION_ACCEPTED.value,
        "auctionId": auction_id,
        "winnerId": winner_id,
        "amount": amount_cents,
        "at": to_iso(now),
    }


def auction_rejected(auction_id: str, now: datetime) -> Event:
    return {
        "type": BroadcastType.AUCTION_REJECTED.value,
        "auctionId": auction_id,
        "at": to_iso(now),
    }


def offer_counter(
    auction_id: str, counter_id: str, amount_cents: int, buyer_id: str, now: datetime
) -> Event:
    return {
        "type": BroadcastType.OFFER_COUNTER.value,
        "auctionId": auction_id,
        "counterId": counter_id,
        "amount": amount_cents,
        "buyerId": buyer_id,
        "at": to_iso(now),
    }


def offer_resolved(
    accepted: bool, auction_id: str, counter_id: str, amount_cents: int, now: datetime
) -> Event:
    tag = BroadcastType.OFFER_ACCEPTED if accepted else BroadcastType.OFFER_REJECTED
    event: Event = {
        "type": tag.value,
        "auctionId": auction_id,
        "counterId": counter_id,
        "at": to_iso(now),
    }
    if accepted:
        event["amount"] = amount_cents
    return event


def notify(user_id: str, notification_type: str, payload: dict[str, Any], now: datetime) -> Event:
    """Per-user notice; viewers filter on userId."""
    return {
        "type": BroadcastType.NOTIFY.value,
        "userId": user_id,
        "payload": {"type": enum_value(notification_type), **payload},
        "at": to_iso(now),
    }
