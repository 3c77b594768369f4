"""Tests for am_notification.fanout: who hears about what."""

from datetime import datetime, timedelta, timezone

from src.am_auction.domain.models import Auction, CounterOffer
from src.am_notification import fanout
from src.am_notification.fanout import NotificationIntent, dedupe

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _make_auction(**kwargs) -> Auction:
    defaults = dict(
        id="A-1", seller_id="u_seller", title="Lamp", description=None,
        starting_price_cents=10000, bid_increment_cents=500,
        go_live_at=NOW, ends_at=NOW + timedelta(minutes=10),
        current_price_cents=10500, status="live", created_at=NOW, updated_at=NOW,
    )
    defaults.update(kwargs)
    return Auction(**defaults)


def _pairs(intents: list[NotificationIntent]) -> list[tuple[str, str]]:
    return [(i.user_id, i.type) for i in intents]


class TestDedupe:
    def test_first_intent_per_user_wins(self) -> None:
        out = dedupe([
            NotificationIntent("u1", "a"),
            NotificationIntent("u2", "b"),
            NotificationIntent("u1", "c"),
        ])
        assert _pairs(out) == [("u1", "a"), ("u2", "b")]

    def test_excluded_and_blank_users_dropped(self) -> None:
        out = dedupe(
            [NotificationIntent("", "a"), NotificationIntent("u1", "b"), NotificationIntent("u2", "c")],
            exclude_user_id="u1",
        )
        assert _pairs(out) == [("u2", "c")]


class TestForBid:
    def test_outbid_seller_then_others(self) -> None:
        out = fanout.for_bid(_make_auction(), "u3", 11000, "u2", ["u1", "u2"])
        assert _pairs(out) == [
            ("u2", "bid:outbid"),
            ("u_seller", "bid:new"),
            ("u1", "bid:update"),
        ]

    def test_bidder_never_notified(self) -> None:
        out = fanout.for_bid(_make_auction(), "u1", 11000, None, ["u1", "u2"])
        assert "u1" not in [i.user_id for i in out]

    def test_seller_bid_notice_names_bidder(self) -> None:
        out = fanout.for_bid(_make_auction(), "u3", 11000, None, [])
        [seller] = out
        assert seller.payload == {
            "auctionId": "A-1", "amount": 11000, "title": "Lamp", "bidderId": "u3",
        }

    def test_outbid_payload_has_no_bidder(self) -> None:
        out = fanout.for_bid(_make_auction(), "u3", 11000, "u2", [])
        assert "bidderId" not in out[0].payload


class TestLifecycleNotices:
    def test_ended_goes_to_seller_with_final_price(self) -> None:
        [notice] = fanout.for_auction_ended(_make_auction(current_price_cents=20000))
        assert (notice.user_id, notice.type) == ("u_seller", "auction:ended")
        assert notice.payload["final"] == 20000

    def test_accept_notifies_winner_and_seller(self) -> None:
        out = fanout.for_decision_accept(_make_auction(), "u2", 20000)
        assert _pairs(out) == [("u2", "offer:accepted"), ("u_seller", "offer:accepted")]

    def test_reject_notifies_top_bidder(self) -> None:
        out = fanout.for_decision_reject(_make_auction(), "u2")
        assert _pairs(out) == [("u2", "offer:rejected")]

    def test_counter_and_replies(self) -> None:
        offer = CounterOffer(
            id="C-1", auction_id="A-1", seller_id="u_seller", buyer_id="u2",
            amount_cents=15000, status="pending",
        )
        [counter] = fanout.for_counter(_make_auction(), offer)
        assert (counter.user_id, counter.type) == ("u2", "offer:counter")
        assert counter.payload["counterId"] == "C-1"

        accepted = fanout.for_counter_reply(_make_auction(), offer, accepted=True)
        assert _pairs(accepted) == [("u2", "offer:accepted"), ("u_seller", "offer:accepted")]
        rejected = fanout.for_counter_reply(_make_auction(), offer, accepted=False)
        assert _pairs(rejected) == [("u2", "offer:rejected")]
