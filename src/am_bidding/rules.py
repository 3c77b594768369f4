"""Bid acceptance rules: pure checks that raise the matching domain error."""

from datetime import datetime

from src.am_auction.domain.models import Auction
from src.am_cache.price_cache import PriceSnapshot
from src.am_common.cents import validate_amount
from src.am_common.enums import AuctionStatus
from src.am_common.errors import (
    AppError,
    AuctionEndedError,
    AuctionNotFoundError,
    AuctionNotLiveError,
    BidTooLowError,
    BidValidationError,
)


def check_amount(amount_cents: int) -> None:
    """Raise BidValidationError unless amount is a positive integer number of cents."""
    try:
        validate_amount(amount_cents)
    except ValueError as exc:
        raise BidValidationError(str(exc)) from exc


def check_snapshot(
    auction_id: str, snapshot: PriceSnapshot, amount_cents: int, now: datetime
) -> None:
    """Fast reject from the advisory cache. Passing proves nothing."""
    if now >= snapshot.ends_at:
        raise AuctionEndedError(auction_id)
    if amount_cents < snapshot.min_next_bid_cents:
        raise BidTooLowError(amount_cents, snapshot.min_next_bid_cents)


def check_auction_accepts(auction: Auction, amount_cents: int, now: datetime) -> None:
    """Authoritative pre-check against a freshly read auction row."""
    if auction.status in (AuctionStatus.ENDED, AuctionStatus.CLOSED) or not auction.is_open_at(now):
        raise AuctionEndedError(auction.id)
    if auction.status != AuctionStatus.LIVE:
        raise AuctionNotLiveError(auction.id)
    if amount_cents < auction.min_next_bid_cents:
        raise BidTooLowError(amount_cents, auction.min_next_bid_cents)


def classify_rejection(
    auction_id: str, auction: Auction | None, amount_cents: int, now: datetime
) -> AppError:
    """Name the reason a conditional write matched no row, from a re-read."""
    if auction is None:
        return AuctionNotFoundError(auction_id)
    try:
        check_auction_accepts(auction, amount_cents, now)
    except AppError as exc:
        return exc
    # Lost a race to a bid that has since been undone by a reset
    return BidTooLowError(amount_cents, auction.min_next_bid_cents)
