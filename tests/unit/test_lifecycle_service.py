"""AuctionLifecycleService against the in-memory store."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.am_auction.domain.models import CounterOffer
from src.am_common.enums import DecisionAction
from src.am_common.errors import (
    AuctionClosedError,
    AuctionNotEndedError,
    AuctionNotFoundError,
    AuctionNotLiveError,
    AuctionValidationError,
    BidTooLowError,
    CounterOfferNotFoundError,
    CounterOfferPendingError,
    CounterOfferResolvedError,
    NoBidsError,
    NotBuyerError,
    NotSellerError,
)
from src.am_lifecycle.service import AuctionLifecycleService, NewAuction
from tests.fakes import ADMIN, SELLER


async def _ended_with_bids(container, make_auction, clock, *bids):
    auction = await make_auction()
    for bidder, amount in bids:
        clock.advance(seconds=1)
        await container.engine.place_bid(auction.id, bidder, amount)
    clock.advance(minutes=10)
    await container.lifecycle.expire_due()
    await container.tasks.drain()
    return auction


class TestScenario:
    @pytest.mark.asyncio
    async def test_full_run_to_accepted_sale(self, container, make_auction, clock) -> None:
        auction = await make_auction(
            starting_price_cents=10000, bid_increment_cents=500, duration_minutes=10
        )
        assert (auction.status, auction.current_price_cents) == ("live", 10000)

        placed = await container.engine.place_bid(auction.id, "u1", 10500)
        assert placed.auction.current_price_cents == 10500
        with pytest.raises(BidTooLowError):
            await container.engine.place_bid(auction.id, "u2", 10300)
        clock.advance(seconds=1)
        placed = await container.engine.place_bid(auction.id, "u2", 20000)
        assert placed.auction.current_price_cents == 20000

        clock.advance(minutes=10)
        ended = await container.lifecycle.expire_due()
        assert [a.id for a in ended] == [auction.id]
        assert (await container.lifecycle.get_auction(auction.id)).status == "ended"

        result = await container.lifecycle.decide(auction.id, SELLER, DecisionAction.ACCEPT)
        assert result.auction.status == "closed"
        assert result.top_bid.bidder_id == "u2"
        assert (await container.lifecycle.top_bid(auction.id)).amount_cents == 20000


class TestCreate:
    @pytest.mark.asyncio
    async def test_future_start_is_scheduled(self, make_auction) -> None:
        auction = await make_auction(starts_in_minutes=30, duration_minutes=15)
        assert auction.status == "scheduled"
        assert auction.ends_at - auction.go_live_at == timedelta(minutes=15)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides",
        [
            {"title": "   "},
            {"title": "x" * 121},
            {"starting_price_cents": -1},
            {"bid_increment_cents": 0},
            {"duration_minutes": 0},
            {"duration_minutes": 7 * 24 * 60 + 1},
        ],
    )
    async def test_validation(self, container, clock, overrides) -> None:
        fields = dict(
            title="Lamp", starting_price_cents=10000, bid_increment_cents=500,
            go_live_at=clock(), duration_minutes=10,
        )
        fields.update(overrides)
        with pytest.raises(AuctionValidationError):
            await container.lifecycle.create_auction(SELLER, NewAuction(**fields))

    @pytest.mark.asyncio
    async def test_free_starting_price_allowed(self, make_auction) -> None:
        auction = await make_auction(starting_price_cents=0)
        assert auction.current_price_cents == 0


class TestStartAndReset:
    @pytest.mark.asyncio
    async def test_start_reopens_window(self, container, make_auction, clock, viewer) -> None:
        auction = await make_auction(starts_in_minutes=60)
        clock.advance(minutes=1)
        started = await container.lifecycle.start(auction.id, SELLER, 5)
        await container.tasks.drain()
        assert started.status == "live"
        assert started.go_live_at == clock()
        assert started.ends_at == clock() + timedelta(minutes=5)
        assert viewer.types() == ["auction:started"]

    @pytest.mark.asyncio
    async def test_start_default_minutes(self, container, make_auction, clock) -> None:
        auction = await make_auction(starts_in_minutes=60)
        started = await container.lifecycle.start(auction.id, SELLER)
        assert started.ends_at == clock() + timedelta(minutes=10)

    @pytest.mark.asyncio
    async def test_start_after_end_keeps_price(self, container, make_auction, clock) -> None:
        auction = await _ended_with_bids(container, make_auction, clock, ("u1", 10500))
        started = await container.lifecycle.start(auction.id, SELLER, 5)
        assert (started.status, started.current_price_cents) == ("live", 10500)

    @pytest.mark.asyncio
    async def test_admin_may_start_others_may_not(self, container, make_auction) -> None:
        auction = await make_auction(starts_in_minutes=60)
        with pytest.raises(NotSellerError):
            await container.lifecycle.start(auction.id, "u_stranger", 5)
        assert (await container.lifecycle.start(auction.id, ADMIN, 5)).status == "live"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("minutes", [0, -5, 10081])
    async def test_minutes_range(self, container, make_auction, minutes) -> None:
        auction = await make_auction()
        with pytest.raises(AuctionValidationError):
            await container.lifecycle.start(auction.id, SELLER, minutes)

    @pytest.mark.asyncio
    async def test_reset_restores_starting_price(self, container, make_auction, clock, viewer) -> None:
        auction = await make_auction()
        await container.engine.place_bid(auction.id, "u1", 15000)
        await container.tasks.drain()
        viewer.sent.clear()

        reset = await container.lifecycle.reset(auction.id, SELLER, 20)
        await container.tasks.drain()
        assert (reset.status, reset.current_price_cents) == ("scheduled", 10000)
        assert reset.ends_at == clock() + timedelta(minutes=20)
        assert viewer.types() == ["auction:reset"]
        assert viewer.sent[0]["currentPrice"] == 10000
        # Bid history survives a reset
        assert len(await container.lifecycle.list_bids(auction.id)) == 1

        with pytest.raises(AuctionNotLiveError):
            await container.engine.place_bid(auction.id, "u2", 10500)
        assert len(await container.lifecycle.promote_due()) == 1
        await container.engine.place_bid(auction.id, "u2", 10500)

    @pytest.mark.asyncio
    async def test_closed_auction_cannot_restart(self, container, make_auction, clock) -> None:
        auction = await _ended_with_bids(container, make_auction, clock, ("u1", 10500))
        await container.lifecycle.decide(auction.id, SELLER, "reject")
        with pytest.raises(AuctionClosedError):
            await container.lifecycle.reset(auction.id, SELLER, 5)
        with pytest.raises(AuctionClosedError):
            await container.lifecycle.start(auction.id, ADMIN, 5)


class TestEnd:
    @pytest.mark.asyncio
    async def test_seller_ends_early(self, container, make_auction, viewer) -> None:
        auction = await make_auction()
        ended = await container.lifecycle.end(auction.id, SELLER)
        await container.tasks.drain()
        assert ended.status == "ended"
        assert viewer.types()[0] == "auction:ended"
        assert viewer.notices(SELLER)[0]["payload"]["type"] == "auction:ended"

    @pytest.mark.asyncio
    async def test_only_seller(self, container, make_auction) -> None:
        auction = await make_auction()
        with pytest.raises(NotSellerError):
            await container.lifecycle.end(auction.id, ADMIN)

    @pytest.mark.asyncio
    async def test_end_after_sweep_is_a_no_op(self, container, make_auction, clock) -> None:
        auction = await make_auction()
        clock.advance(minutes=10)
        await container.lifecycle.expire_due()
        await container.tasks.drain()
        again = await container.lifecycle.end(auction.id, SELLER)
        await container.tasks.drain()
        assert again.status == "ended"
        notices = await container.store.list_notifications(SELLER, 50)
        assert [n.type for n in notices].count("auction:ended") == 1

    @pytest.mark.asyncio
    async def test_end_closed_conflicts(self, container, make_auction, clock) -> None:
        auction = await _ended_with_bids(container, make_auction, clock, ("u1", 10500))
        await container.lifecycle.decide(auction.id, SELLER, "accept")
        with pytest.raises(AuctionClosedError):
            await container.lifecycle.end(auction.id, SELLER)

    @pytest.mark.asyncio
    async def test_unknown_auction(self, container) -> None:
        with pytest.raises(AuctionNotFoundError):
            await container.lifecycle.end("nope", SELLER)


class TestSweep:
    @pytest.mark.asyncio
    async def test_idempotent(self, container, make_auction, clock) -> None:
        auction = await make_auction()
        clock.advance(minutes=10)
        first = await container.lifecycle.expire_due()
        second = await container.lifecycle.expire_due()
        await container.tasks.drain()
        assert [a.id for a in first] == [auction.id]
        assert second == []
        notices = await container.store.list_notifications(SELLER, 50)
        assert [n.type for n in notices] == ["auction:ended"]

    @pytest.mark.asyncio
    async def test_open_auctions_untouched(self, container, make_auction, clock) -> None:
        auction = await make_auction(duration_minutes=10)
        clock.advance(minutes=9, seconds=59)
        assert await container.lifecycle.expire_due() == []
        assert (await container.lifecycle.get_auction(auction.id)).status == "live"

    @pytest.mark.asyncio
    async def test_scheduled_past_its_window_ends(self, container, make_auction, clock) -> None:
        auction = await make_auction(starts_in_minutes=5, duration_minutes=10)
        clock.advance(minutes=30)
        assert await container.lifecycle.promote_due() == []
        assert [a.id for a in await container.lifecycle.expire_due()] == [auction.id]

    @pytest.mark.asyncio
    async def test_promotes_when_start_time_comes(self, container, make_auction, clock, viewer) -> None:
        auction = await make_auction(starts_in_minutes=5)
        assert await container.lifecycle.promote_due() == []
        clock.advance(minutes=5)
        promoted = await container.lifecycle.promote_due()
        await container.tasks.drain()
        assert [a.status for a in promoted] == ["live"]
        assert viewer.types() == ["auction:started"]
        await container.engine.place_bid(auction.id, "u1", 10500)

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_the_batch(self, container, make_auction, clock) -> None:
        a1 = await make_auction(title="first")
        a2 = await make_auction(title="second")
        clock.advance(minutes=10)
        real_update = container.store.update_auction

        async def _flaky(auction_id, patch, guard):
            if auction_id == a1.id:
                raise RuntimeError("db hiccup")
            return await real_update(auction_id, patch, guard)

        container.store.update_auction = _flaky
        ended = await container.lifecycle.expire_due()
        assert [a.id for a in ended] == [a2.id]


class TestDecision:
    @pytest.mark.asyncio
    async def test_exclusive(self, container, make_auction, clock) -> None:
        auction = await _ended_with_bids(container, make_auction, clock, ("u1", 10500))
        await container.lifecycle.decide(auction.id, SELLER, "accept")
        with pytest.raises(AuctionClosedError):
            await container.lifecycle.decide(auction.id, SELLER, "reject")

    @pytest.mark.asyncio
    async def test_requires_end(self, container, make_auction) -> None:
        auction = await make_auction()
        await container.engine.place_bid(auction.id, "u1", 10500)
        with pytest.raises(AuctionNotEndedError):
            await container.lifecycle.decide(auction.id, SELLER, "accept")

    @pytest.mark.asyncio
    async def test_requires_bids(self, container, make_auction, clock) -> None:
        auction = await _ended_with_bids(container, make_auction, clock)
        with pytest.raises(NoBidsError):
            await container.lifecycle.decide(auction.id, SELLER, "accept")

    @pytest.mark.asyncio
    async def test_seller_only(self, container, make_auction, clock) -> None:
        auction = await _ended_with_bids(container, make_auction, clock, ("u1", 10500))
        with pytest.raises(NotSellerError):
            await container.lifecycle.decide(auction.id, "u1", "accept")

    @pytest.mark.asyncio
    async def test_unknown_action(self, container, make_auction, clock) -> None:
        auction = await _ended_with_bids(container, make_auction, clock, ("u1", 10500))
        with pytest.raises(AuctionValidationError):
            await container.lifecycle.decide(auction.id, SELLER, "maybe")

    @pytest.mark.asyncio
    async def test_accept_notices(self, container, make_auction, clock, viewer) -> None:
        auction = await _ended_with_bids(
            container, make_auction, clock, ("u1", 10500), ("u2", 11000)
        )
        viewer.sent.clear()
        await container.lifecycle.decide(auction.id, SELLER, "accept")
        await container.tasks.drain()
        accepted = [e for e in viewer.sent if e["type"] == "auction:accepted"]
        assert accepted[0]["winnerId"] == "u2"
        assert accepted[0]["amount"] == 11000
        assert {n["userId"] for n in viewer.notices()} == {"u2", SELLER}

    @pytest.mark.asyncio
    async def test_reject_notices(self, container, make_auction, clock, viewer) -> None:
        auction = await _ended_with_bids(container, make_auction, clock, ("u1", 10500))
        viewer.sent.clear()
        result = await container.lifecycle.decide(auction.id, SELLER, "reject")
        await container.tasks.drain()
        assert result.auction.status == "closed"
        assert "auction:rejected" in viewer.types()
        assert [n["payload"]["type"] for n in viewer.notices("u1")] == ["offer:rejected"]

    @pytest.mark.asyncio
    async def test_accept_sends_receipts(self, container, make_auction, clock) -> None:
        auction = await _ended_with_bids(container, make_auction, clock, ("u1", 10500))
        channels = MagicMock()
        channels.send_sale_receipts = AsyncMock()
        service = AuctionLifecycleService(
            container.store, container.cache, container.dispatcher, container.registry,
            container.tasks, channels=channels, clock=clock,
        )
        await service.decide(auction.id, SELLER, "accept")
        await container.tasks.drain()
        channels.send_sale_receipts.assert_awaited_once_with(
            auction.id, auction.title, "u1", SELLER, 10500
        )


class TestCounterOffer:
    @pytest.mark.asyncio
    async def test_counter_then_accept(self, container, make_auction, clock, viewer) -> None:
        auction = await _ended_with_bids(container, make_auction, clock, ("u1", 10500))
        viewer.sent.clear()
        result = await container.lifecycle.decide(auction.id, SELLER, "counter", 15000)
        await container.tasks.drain()
        offer = result.counter_offer
        assert (offer.buyer_id, offer.amount_cents, offer.status) == ("u1", 15000, "pending")
        assert result.auction.status == "ended"
        assert "offer:counter" in viewer.types()
        assert viewer.notices("u1")[0]["payload"]["counterId"] == offer.id

        reply = await container.lifecycle.reply_to_counter(offer.id, "u1", accept=True)
        await container.tasks.drain()
        assert reply.counter_offer.status == "accepted"
        stored = await container.lifecycle.get_auction(auction.id)
        assert (stored.status, stored.current_price_cents) == ("closed", 15000)
        assert "offer:accepted" in viewer.types()

        with pytest.raises(CounterOfferResolvedError):
            await container.lifecycle.reply_to_counter(offer.id, "u1", accept=False)

    @pytest.mark.asyncio
    async def test_counter_then_reject(self, container, make_auction, clock) -> None:
        auction = await _ended_with_bids(container, make_auction, clock, ("u1", 10500))
        result = await container.lifecycle.decide(auction.id, SELLER, "counter", 15000)
        reply = await container.lifecycle.reply_to_counter(result.counter_offer.id, "u1", False)
        assert reply.counter_offer.status == "rejected"
        stored = await container.lifecycle.get_auction(auction.id)
        assert (stored.status, stored.current_price_cents) == ("closed", 10500)

    @pytest.mark.asyncio
    async def test_one_pending_counter(self, container, make_auction, clock) -> None:
        auction = await _ended_with_bids(container, make_auction, clock, ("u1", 10500))
        await container.lifecycle.decide(auction.id, SELLER, "counter", 15000)
        with pytest.raises(CounterOfferPendingError):
            await container.lifecycle.decide(auction.id, SELLER, "counter", 14000)

    @pytest.mark.asyncio
    async def test_counter_needs_amount(self, container, make_auction, clock) -> None:
        auction = await _ended_with_bids(container, make_auction, clock, ("u1", 10500))
        with pytest.raises(AuctionValidationError):
            await container.lifecycle.decide(auction.id, SELLER, "counter")
        with pytest.raises(AuctionValidationError):
            await container.lifecycle.decide(auction.id, SELLER, "counter", -1)

    @pytest.mark.asyncio
    async def test_only_addressed_buyer_replies(self, container, make_auction, clock) -> None:
        auction = await _ended_with_bids(container, make_auction, clock, ("u1", 10500))
        result = await container.lifecycle.decide(auction.id, SELLER, "counter", 15000)
        with pytest.raises(NotBuyerError):
            await container.lifecycle.reply_to_counter(result.counter_offer.id, SELLER, True)

    @pytest.mark.asyncio
    async def test_unknown_counter(self, container) -> None:
        with pytest.raises(CounterOfferNotFoundError):
            await container.lifecycle.reply_to_counter("nope", "u1", True)

    @pytest.mark.asyncio
    async def test_accept_and_reject_wait_for_pending_counter(
        self, container, make_auction, clock
    ) -> None:
        auction = await _ended_with_bids(container, make_auction, clock, ("u1", 10500))
        result = await container.lifecycle.decide(auction.id, SELLER, "counter", 15000)
        for action in ("accept", "reject"):
            with pytest.raises(CounterOfferPendingError):
                await container.lifecycle.decide(auction.id, SELLER, action)
        assert (await container.lifecycle.get_auction(auction.id)).status == "ended"

        reply = await container.lifecycle.reply_to_counter(result.counter_offer.id, "u1", True)
        assert reply.auction.status == "closed"

    @pytest.mark.asyncio
    async def test_restart_withdraws_pending_counter(
        self, container, make_auction, clock, store
    ) -> None:
        auction = await _ended_with_bids(container, make_auction, clock, ("u1", 10500))
        offer = (await container.lifecycle.decide(auction.id, SELLER, "counter", 15000)).counter_offer

        await container.lifecycle.start(auction.id, SELLER, 10)
        assert (await store.get_counter_offer(offer.id)).status == "rejected"
        clock.advance(seconds=1)
        await container.engine.place_bid(auction.id, "u2", 50000)
        clock.advance(minutes=10)
        await container.lifecycle.expire_due()

        with pytest.raises(CounterOfferResolvedError):
            await container.lifecycle.reply_to_counter(offer.id, "u1", True)
        stored = await container.lifecycle.get_auction(auction.id)
        assert (stored.status, stored.current_price_cents) == ("ended", 50000)

        result = await container.lifecycle.decide(auction.id, SELLER, "accept")
        assert (result.top_bid.bidder_id, result.auction.current_price_cents) == ("u2", 50000)

    @pytest.mark.asyncio
    async def test_counter_from_earlier_round_cannot_close(
        self, container, make_auction, clock, store
    ) -> None:
        auction = await _ended_with_bids(container, make_auction, clock, ("u1", 10500))
        first_round_end = (await store.get_auction(auction.id)).ends_at
        await container.lifecycle.start(auction.id, SELLER, 10)
        clock.advance(seconds=1)
        await container.engine.place_bid(auction.id, "u2", 50000)
        clock.advance(minutes=10)
        await container.lifecycle.expire_due()
        # A counter whose withdrawal never ran
        await store.create_counter_offer(
            CounterOffer(
                id="C-old", auction_id=auction.id, seller_id=SELLER, buyer_id="u1",
                amount_cents=15000, status="pending", round_ends_at=first_round_end,
            )
        )

        with pytest.raises(CounterOfferResolvedError):
            await container.lifecycle.reply_to_counter("C-old", "u1", True)
        assert (await container.lifecycle.get_auction(auction.id)).status == "ended"
        assert await store.get_pending_counter_offer(auction.id) is None

        result = await container.lifecycle.decide(auction.id, SELLER, "counter", 60000)
        assert result.counter_offer.buyer_id == "u2"
        assert result.counter_offer.round_ends_at == result.auction.ends_at
