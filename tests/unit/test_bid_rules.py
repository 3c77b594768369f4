"""Tests for am_bidding.rules."""

from datetime import datetime, timedelta, timezone

import pytest

from src.am_auction.domain.models import Auction
from src.am_bidding.rules import (
    check_amount,
    check_auction_accepts,
    check_snapshot,
    classify_rejection,
)
from src.am_cache.price_cache import PriceSnapshot
from src.am_common.errors import (
    AuctionEndedError,
    AuctionNotFoundError,
    AuctionNotLiveError,
    BidTooLowError,
    BidValidationError,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
ENDS = NOW + timedelta(minutes=10)


def _make_auction(**kwargs) -> Auction:
    defaults = dict(
        id="A-1", seller_id="u_seller", title="Lamp", description=None,
        starting_price_cents=10000, bid_increment_cents=500,
        go_live_at=NOW, ends_at=ENDS, current_price_cents=10000,
        status="live", created_at=NOW, updated_at=NOW,
    )
    defaults.update(kwargs)
    return Auction(**defaults)


class TestCheckAmount:
    @pytest.mark.parametrize("bad", [0, -500, 10500.5])
    def test_rejects(self, bad) -> None:
        with pytest.raises(BidValidationError):
            check_amount(bad)


class TestCheckSnapshot:
    def test_too_low_from_cache(self) -> None:
        snap = PriceSnapshot(current_price_cents=10500, bid_increment_cents=500, ends_at=ENDS)
        with pytest.raises(BidTooLowError) as exc:
            check_snapshot("A-1", snap, 10999, NOW)
        assert exc.value.min_next_cents == 11000

    def test_ended_from_cache(self) -> None:
        snap = PriceSnapshot(current_price_cents=10500, bid_increment_cents=500, ends_at=ENDS)
        with pytest.raises(AuctionEndedError):
            check_snapshot("A-1", snap, 20000, ENDS)

    def test_pass_is_silent(self) -> None:
        snap = PriceSnapshot(current_price_cents=10500, bid_increment_cents=500, ends_at=ENDS)
        check_snapshot("A-1", snap, 11000, NOW)


class TestCheckAuctionAccepts:
    def test_exact_increment_ok(self) -> None:
        check_auction_accepts(_make_auction(), 10500, NOW)

    def test_one_cent_short(self) -> None:
        with pytest.raises(BidTooLowError):
            check_auction_accepts(_make_auction(), 10499, NOW)

    def test_just_before_end_ok(self) -> None:
        check_auction_accepts(_make_auction(), 10500, ENDS - timedelta(milliseconds=1))

    def test_just_after_end(self) -> None:
        with pytest.raises(AuctionEndedError):
            check_auction_accepts(_make_auction(), 10500, ENDS + timedelta(milliseconds=1))

    @pytest.mark.parametrize("status", ["ended", "closed"])
    def test_finished_statuses_are_ended(self, status: str) -> None:
        with pytest.raises(AuctionEndedError):
            check_auction_accepts(_make_auction(status=status), 10500, NOW)

    def test_scheduled_is_not_live(self) -> None:
        with pytest.raises(AuctionNotLiveError):
            check_auction_accepts(_make_auction(status="scheduled"), 10500, NOW)

    def test_ended_wins_over_too_low(self) -> None:
        with pytest.raises(AuctionEndedError):
            check_auction_accepts(_make_auction(status="ended"), 1, NOW)


class TestClassifyRejection:
    def test_missing(self) -> None:
        assert isinstance(classify_rejection("A-1", None, 10500, NOW), AuctionNotFoundError)

    def test_price_moved(self) -> None:
        err = classify_rejection("A-1", _make_auction(current_price_cents=10500), 10500, NOW)
        assert isinstance(err, BidTooLowError)
        assert err.min_next_cents == 11000

    def test_ended_in_between(self) -> None:
        err = classify_rejection("A-1", _make_auction(status="ended"), 10500, NOW)
        assert isinstance(err, AuctionEndedError)

    def test_still_acceptable_on_reread_is_too_low(self) -> None:
        err = classify_rejection("A-1", _make_auction(), 10500, NOW)
        assert isinstance(err, BidTooLowError)
