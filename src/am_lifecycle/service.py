"""AuctionLifecycleService: every status change an auction goes through.

Write paths follow one shape: read to authorise and to name the error,
guarded store update to decide, then spawn the side effects (cache,
notifications, broadcast, receipts) as tracked background tasks. The guarded
update is the only arbiter; the read before it just produces better errors.
"""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from src.am_auction.domain.models import Auction, Bid, CounterOffer, Notification
from src.am_auction.domain.repository import AuctionStoreProtocol
from src.am_broadcast import events
from src.am_broadcast.registry import BroadcastRegistry
from src.am_cache.price_cache import PriceCache
from src.am_common.background import BackgroundTasks
from src.am_common.cents import validate_amount
from src.am_common.datetime_utils import Clock, utc_now
from src.am_common.enums import AuctionStatus, CounterOfferStatus, DecisionAction
from src.am_common.errors import (
    AuctionClosedError,
    AuctionNotEndedError,
    AuctionNotFoundError,
    AuctionValidationError,
    CounterOfferNotFoundError,
    CounterOfferPendingError,
    CounterOfferResolvedError,
    NoBidsError,
    NotBuyerError,
    NotSellerError,
)
from src.am_common.id_generator import generate_id
from src.am_lifecycle import transitions
from src.am_notification import fanout
from src.am_notification.channels import OutboundChannels
from src.am_notification.dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)

NOTIFICATION_LIST_LIMIT = 50


@dataclass(frozen=True)
class NewAuction:
    title: str
    starting_price_cents: int
    bid_increment_cents: int
    go_live_at: datetime
    duration_minutes: int
    description: str | None = None


@dataclass(frozen=True)
class DecisionResult:
    action: DecisionAction
    auction: Auction
    top_bid: Bid
    counter_offer: CounterOffer | None = None


@dataclass(frozen=True)
class CounterReplyResult:
    counter_offer: CounterOffer
    auction: Auction


class AuctionLifecycleService:
    def __init__(
        self,
        store: AuctionStoreProtocol,
        cache: PriceCache,
        dispatcher: NotificationDispatcher,
        registry: BroadcastRegistry,
        tasks: BackgroundTasks,
        channels: OutboundChannels | None = None,
        clock: Clock = utc_now,
        admin_user_id: str | None = None,
        default_run_minutes: int = 10,
        sweep_batch_size: int = 200,
        id_factory: Callable[[], str] = generate_id,
    ) -> None:
        self._store = store
        self._cache = cache
        self._dispatcher = dispatcher
        self._registry = registry
        self._tasks = tasks
        self._channels = channels
        self._clock = clock
        self._admin_user_id = admin_user_id
        self._default_run_minutes = default_run_minutes
        self._sweep_batch_size = sweep_batch_size
        self._id_factory = id_factory

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_auction(self, auction_id: str) -> Auction:
        auction = await self._store.get_auction(auction_id)
        if auction is None:
            raise AuctionNotFoundError(auction_id)
        return auction

    async def list_auctions(
        self,
        statuses: Sequence[str] | None = None,
        seller_id: str | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> list[Auction]:
        return await self._store.list_auctions(statuses, seller_id, offset, limit)

    async def list_bids(self, auction_id: str, offset: int = 0, limit: int = 50) -> list[Bid]:
        await self.get_auction(auction_id)
        return await self._store.list_bids(auction_id, offset, limit)

    async def top_bid(self, auction_id: str) -> Bid | None:
        await self.get_auction(auction_id)
        return await self._store.top_bid(auction_id)

    async def list_notifications(self, user_id: str) -> list[Notification]:
        return await self._store.list_notifications(user_id, NOTIFICATION_LIST_LIMIT)

    # ------------------------------------------------------------------
    # Create / start / reset
    # ------------------------------------------------------------------

    async def create_auction(self, seller_id: str, new: NewAuction) -> Auction:
        transitions.check_new_auction(
            new.title,
            new.description,
            new.starting_price_cents,
            new.bid_increment_cents,
            new.duration_minutes,
        )
        now = self._clock()
        auction = Auction(
            id=self._id_factory(),
            seller_id=seller_id,
            title=new.title.strip(),
            description=new.description,
            starting_price_cents=new.starting_price_cents,
            bid_increment_cents=new.bid_increment_cents,
            go_live_at=new.go_live_at,
            ends_at=new.go_live_at + timedelta(minutes=new.duration_minutes),
            current_price_cents=new.starting_price_cents,
            status=transitions.initial_status(new.go_live_at, now).value,
            created_at=now,
            updated_at=now,
        )
        created = await self._store.create_auction(auction)
        logger.info(
            "Auction created: id=%s seller=%s status=%s ends_at=%s",
            created.id, seller_id, created.status, created.ends_at,
        )
        await self._cache.seed(created)
        return created

    async def start(self, auction_id: str, actor_id: str, minutes: int | None = None) -> Auction:
        return await self._restart(auction_id, actor_id, minutes, reset=False)

    async def reset(self, auction_id: str, actor_id: str, minutes: int | None = None) -> Auction:
        return await self._restart(auction_id, actor_id, minutes, reset=True)

    async def _restart(
        self, auction_id: str, actor_id: str, minutes: int | None, reset: bool
    ) -> Auction:
        auction = await self.get_auction(auction_id)
        self._require_seller_or_admin(auction, actor_id)
        if auction.status == AuctionStatus.CLOSED:
            raise AuctionClosedError(auction_id)
        run = transitions.check_run_minutes(
            self._default_run_minutes if minutes is None else minutes
        )
        now = self._clock()
        patch, guard = (
            transitions.reset_update(now, run) if reset else transitions.start_update(now, run)
        )

        # Drop the old snapshot first so no request fast-rejects against the old window
        await self._cache.invalidate(auction_id)
        updated = await self._store.update_auction(auction_id, patch, guard)
        if updated is None:
            raise await self._explain_missing_or_closed(auction_id)
        await self._cache.seed(updated)
        # A counter offer belongs to the window that just closed
        withdrawn = await self._store.withdraw_counter_offers(auction_id)
        if withdrawn:
            logger.info("Withdrew %d pending counter offer(s): auction=%s", withdrawn, auction_id)

        logger.info(
            "Auction %s: id=%s by=%s ends_at=%s",
            "reset" if reset else "started", auction_id, actor_id, updated.ends_at,
        )
        event = events.auction_reset(updated, now) if reset else events.auction_started(updated, now)
        self._tasks.spawn(self._registry.broadcast(event), name=f"broadcast:{event['type']}:{auction_id}")
        return updated

    # ------------------------------------------------------------------
    # End / sweep
    # ------------------------------------------------------------------

    async def end(self, auction_id: str, actor_id: str) -> Auction:
        auction = await self.get_auction(auction_id)
        self._require_seller(auction, actor_id)
        if auction.status == AuctionStatus.ENDED:
            return auction
        if auction.status == AuctionStatus.CLOSED:
            raise AuctionClosedError(auction_id)

        patch, guard = transitions.end_update()
        updated = await self._store.update_auction(auction_id, patch, guard)
        if updated is None:
            latest = await self.get_auction(auction_id)
            if latest.status == AuctionStatus.ENDED:
                # The sweep got there first and already announced it
                return latest
            raise AuctionClosedError(auction_id)

        logger.info("Auction ended by seller: id=%s final=%s", auction_id, updated.current_price_cents)
        await self._after_end(updated)
        return updated

    async def expire_due(self) -> list[Auction]:
        """End every auction whose window has passed. Safe to run concurrently."""
        now = self._clock()
        ended: list[Auction] = []
        for auction in await self._store.list_expired(now, self._sweep_batch_size):
            patch, guard = transitions.expire_update(now)
            try:
                updated = await self._store.update_auction(auction.id, patch, guard)
            except Exception:  # noqa: BLE001
                logger.exception("Sweep failed to end auction %s", auction.id)
                continue
            if updated is None:
                continue
            ended.append(updated)
            await self._after_end(updated)
        if ended:
            logger.info("Sweep ended %d auctions", len(ended))
        return ended

    async def promote_due(self) -> list[Auction]:
        """Turn scheduled auctions whose start time has come live."""
        now = self._clock()
        started: list[Auction] = []
        for auction in await self._store.list_due_to_start(now, self._sweep_batch_size):
            patch, guard = transitions.promote_update(now)
            try:
                updated = await self._store.update_auction(auction.id, patch, guard)
            except Exception:  # noqa: BLE001
                logger.exception("Sweep failed to start auction %s", auction.id)
                continue
            if updated is None:
                continue
            started.append(updated)
            await self._cache.seed(updated)
            self._tasks.spawn(
                self._registry.broadcast(events.auction_started(updated, now)),
                name=f"broadcast:auction:started:{updated.id}",
            )
        if started:
            logger.info("Sweep started %d auctions", len(started))
        return started

    async def _after_end(self, auction: Auction) -> None:
        await self._cache.invalidate(auction.id)
        self._tasks.spawn(self._announce_end(auction), name=f"end-fanout:{auction.id}")

    async def _announce_end(self, auction: Auction) -> None:
        await self._registry.broadcast(
            events.auction_ended(auction.id, auction.current_price_cents, self._clock())
        )
        await self._dispatcher.deliver(fanout.for_auction_ended(auction))

    # ------------------------------------------------------------------
    # Decision / counter offer
    # ------------------------------------------------------------------

    async def decide(
        self,
        auction_id: str,
        actor_id: str,
        action: DecisionAction | str,
        amount_cents: int | None = None,
    ) -> DecisionResult:
        try:
            action = DecisionAction(action)
        except ValueError as exc:
            raise AuctionValidationError(f"unknown decision {action!r}") from exc

        auction = await self.get_auction(auction_id)
        self._require_seller(auction, actor_id)
        if auction.status == AuctionStatus.CLOSED:
            raise AuctionClosedError(auction_id)
        if auction.status != AuctionStatus.ENDED:
            raise AuctionNotEndedError(auction_id, auction.status)
        top = await self._store.top_bid(auction_id)
        if top is None:
            raise NoBidsError(auction_id)
        await self._check_no_pending_counter(auction)

        if action == DecisionAction.COUNTER:
            return await self._counter(auction, top, amount_cents)

        patch, guard = transitions.close_update()
        closed = await self._store.update_auction(auction_id, patch, guard)
        if closed is None:
            latest = await self.get_auction(auction_id)
            if latest.status == AuctionStatus.CLOSED:
                raise AuctionClosedError(auction_id)
            raise AuctionNotEndedError(auction_id, latest.status)

        now = self._clock()
        if action == DecisionAction.ACCEPT:
            logger.info(
                "Auction accepted: id=%s winner=%s amount=%s",
                auction_id, top.bidder_id, top.amount_cents,
            )
            self._tasks.spawn(
                self._announce_accept(closed, top, now), name=f"accept-fanout:{auction_id}"
            )
        else:
            logger.info("Auction rejected: id=%s top_bidder=%s", auction_id, top.bidder_id)
            self._tasks.spawn(
                self._announce_reject(closed, top, now), name=f"reject-fanout:{auction_id}"
            )
        return DecisionResult(action=action, auction=closed, top_bid=top)

    async def _counter(
        self, auction: Auction, top: Bid, amount_cents: int | None
    ) -> DecisionResult:
        if amount_cents is None:
            raise AuctionValidationError("amount_cents is required for a counter offer")
        try:
            validate_amount(amount_cents)
        except ValueError as exc:
            raise AuctionValidationError(str(exc)) from exc

        now = self._clock()
        offer = await self._store.create_counter_offer(
            CounterOffer(
                id=self._id_factory(),
                auction_id=auction.id,
                seller_id=auction.seller_id,
                buyer_id=top.bidder_id,
                amount_cents=amount_cents,
                status=CounterOfferStatus.PENDING.value,
                created_at=now,
                round_ends_at=auction.ends_at,
            )
        )
        logger.info(
            "Counter offer made: id=%s auction=%s buyer=%s amount=%s",
            offer.id, auction.id, offer.buyer_id, amount_cents,
        )
        self._tasks.spawn(self._announce_counter(auction, offer, now), name=f"counter-fanout:{offer.id}")
        return DecisionResult(
            action=DecisionAction.COUNTER, auction=auction, top_bid=top, counter_offer=offer
        )

    async def reply_to_counter(
        self, counter_id: str, actor_id: str, accept: bool
    ) -> CounterReplyResult:
        offer = await self._store.get_counter_offer(counter_id)
        if offer is None:
            raise CounterOfferNotFoundError(counter_id)
        if offer.buyer_id != actor_id:
            raise NotBuyerError(counter_id)
        if offer.status != CounterOfferStatus.PENDING:
            raise CounterOfferResolvedError(counter_id, offer.status)
        auction = await self.get_auction(offer.auction_id)
        if auction.status == AuctionStatus.CLOSED:
            raise AuctionClosedError(auction.id)
        if auction.status != AuctionStatus.ENDED:
            raise AuctionNotEndedError(auction.id, auction.status)
        if not offer.belongs_to(auction):
            await self._store.withdraw_counter_offers(auction.id)
            raise CounterOfferResolvedError(counter_id, CounterOfferStatus.REJECTED.value)

        status = CounterOfferStatus.ACCEPTED if accept else CounterOfferStatus.REJECTED
        final_price = offer.amount_cents if accept else None
        if not await self._store.settle_counter_offer(counter_id, status.value, final_price):
            latest = await self._store.get_counter_offer(counter_id)
            if latest is not None and latest.status != CounterOfferStatus.PENDING:
                raise CounterOfferResolvedError(counter_id, latest.status)
            current = await self.get_auction(auction.id)
            if current.status == AuctionStatus.CLOSED:
                raise AuctionClosedError(auction.id)
            if current.status != AuctionStatus.ENDED:
                raise AuctionNotEndedError(auction.id, current.status)
            # Restarted and ended again since the counter was made
            raise CounterOfferResolvedError(counter_id, CounterOfferStatus.REJECTED.value)

        now = self._clock()
        resolved = replace(offer, status=status.value)
        closed = replace(
            auction,
            status=AuctionStatus.CLOSED.value,
            current_price_cents=final_price if accept else auction.current_price_cents,
            updated_at=now,
        )
        logger.info(
            "Counter offer %s: id=%s auction=%s amount=%s",
            status.value, counter_id, auction.id, offer.amount_cents,
        )
        self._tasks.spawn(
            self._announce_counter_reply(closed, resolved, accept, now),
            name=f"counter-reply-fanout:{counter_id}",
        )
        return CounterReplyResult(counter_offer=resolved, auction=closed)

    async def _announce_accept(self, auction: Auction, top: Bid, now: datetime) -> None:
        await self._registry.broadcast(
            events.auction_accepted(auction.id, top.bidder_id, top.amount_cents, now)
        )
        await self._dispatcher.deliver(
            fanout.for_decision_accept(auction, top.bidder_id, top.amount_cents)
        )
        if self._channels is not None:
            await self._channels.send_sale_receipts(
                auction.id, auction.title, top.bidder_id, auction.seller_id, top.amount_cents
            )

    async def _announce_reject(self, auction: Auction, top: Bid, now: datetime) -> None:
        await self._registry.broadcast(events.auction_rejected(auction.id, now))
        await self._dispatcher.deliver(fanout.for_decision_reject(auction, top.bidder_id))

    async def _announce_counter(self, auction: Auction, offer: CounterOffer, now: datetime) -> None:
        await self._registry.broadcast(
            events.offer_counter(auction.id, offer.id, offer.amount_cents, offer.buyer_id, now)
        )
        await self._dispatcher.deliver(fanout.for_counter(auction, offer))

    async def _announce_counter_reply(
        self, auction: Auction, offer: CounterOffer, accepted: bool, now: datetime
    ) -> None:
        await self._registry.broadcast(
            events.offer_resolved(accepted, auction.id, offer.id, offer.amount_cents, now)
        )
        await self._dispatcher.deliver(fanout.for_counter_reply(auction, offer, accepted))
        if accepted and self._channels is not None:
            await self._channels.send_sale_receipts(
                auction.id,
                auction.title,
                offer.buyer_id,
                auction.seller_id,
                offer.amount_cents,
                via_counter=True,
            )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_seller(self, auction: Auction, actor_id: str) -> None:
        if actor_id != auction.seller_id:
            raise NotSellerError(auction.id)

    def _require_seller_or_admin(self, auction: Auction, actor_id: str) -> None:
        if actor_id == auction.seller_id:
            return
        if self._admin_user_id and actor_id == self._admin_user_id:
            return
        raise NotSellerError(auction.id)

    async def _check_no_pending_counter(self, auction: Auction) -> None:
        pending = await self._store.get_pending_counter_offer(auction.id)
        if pending is None:
            return
        if pending.belongs_to(auction):
            raise CounterOfferPendingError(auction.id)
        withdrawn = await self._store.withdraw_counter_offers(auction.id)
        logger.info(
            "Withdrew %d counter offer(s) left from an earlier round: auction=%s",
            withdrawn, auction.id,
        )

    async def _explain_missing_or_closed(self, auction_id: str) -> Exception:
        latest = await self._store.get_auction(auction_id)
        if latest is None:
            return AuctionNotFoundError(auction_id)
        return AuctionClosedError(auction_id)
