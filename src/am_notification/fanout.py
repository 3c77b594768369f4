"""Notification fan-out: pure builders of (recipient, type, payload) intents.

Nothing here touches storage or the network; the dispatcher delivers what
these functions return. Within one fan-out a recipient is addressed at most
once: the first intent for a user wins and later ones are dropped, so a
previous top bidder gets ``bid:outbid`` and not also ``bid:update``. The
bidder is never notified about their own bid.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from src.am_auction.domain.models import Auction, CounterOffer
from src.am_common.enums import NotificationType


@dataclass(frozen=True)
class NotificationIntent:
    user_id: str
    type: str
    payload: dict[str, Any] = field(default_factory=dict)


def dedupe(
    intents: Iterable[NotificationIntent], exclude_user_id: str | None = None
) -> list[NotificationIntent]:
    """Keep the first intent per recipient, dropping the excluded user."""
    seen: set[str] = set()
    result: list[NotificationIntent] = []
    for intent in intents:
        if not intent.user_id or intent.user_id == exclude_user_id or intent.user_id in seen:
            continue
        seen.add(intent.user_id)
        result.append(intent)
    return result


def for_bid(
    auction: Auction,
    bidder_id: str,
    amount_cents: int,
    outbid_user_id: str | None,
    prior_bidder_ids: Sequence[str],
) -> list[NotificationIntent]:
    """Intents for one accepted bid, in priority order: outbid, seller, other bidders."""
    base = {"auctionId": auction.id, "amount": amount_cents, "title": auction.title}
    intents: list[NotificationIntent] = []
    if outbid_user_id:
        intents.append(NotificationIntent(outbid_user_id, NotificationType.BID_OUTBID.value, base))
    intents.append(
        NotificationIntent(
            auction.seller_id,
            NotificationType.BID_NEW.value,
            {**base, "bidderId": bidder_id},
        )
    )
    intents.extend(
        NotificationIntent(uid, NotificationType.BID_UPDATE.value, base) for uid in prior_bidder_ids
    )
    return dedupe(intents, exclude_user_id=bidder_id)


def for_auction_ended(auction: Auction) -> list[NotificationIntent]:
    return [
        NotificationIntent(
            auction.seller_id,
            NotificationType.AUCTION_ENDED.value,
            {"auctionId": auction.id, "final": auction.current_price_cents, "title": auction.title},
        )
    ]


def for_decision_accept(
    auction: Auction, winner_id: str, amount_cents: int
) -> list[NotificationIntent]:
    payload = {"auctionId": auction.id, "amount": amount_cents, "title": auction.title}
    return dedupe(
        [
            NotificationIntent(winner_id, NotificationType.OFFER_ACCEPTED.value, payload),
            NotificationIntent(auction.seller_id, NotificationType.OFFER_ACCEPTED.value, payload),
        ]
    )


def for_decision_reject(auction: Auction, top_bidder_id: str) -> list[NotificationIntent]:
    return [
        NotificationIntent(
            top_bidder_id,
            NotificationType.OFFER_REJECTED.value,
            {"auctionId": auction.id, "title": auction.title},
        )
    ]


def for_counter(auction: Auction, offer: CounterOffer) -> list[NotificationIntent]:
    return [
        NotificationIntent(
            offer.buyer_id,
            NotificationType.OFFER_COUNTER.value,
            {
                "auctionId": auction.id,
                "amount": offer.amount_cents,
                "counterId": offer.id,
                "title": auction.title,
            },
        )
    ]


def for_counter_reply(
    auction: Auction, offer: CounterOffer, accepted: bool
) -> list[NotificationIntent]:
    if accepted:
        payload = {"auctionId": auction.id, "amount": offer.amount_cents, "title": auction.title}
        return dedupe(
            [
                NotificationIntent(offer.buyer_id, NotificationType.OFFER_ACCEPTED.value, payload),
                NotificationIntent(auction.seller_id, NotificationType.OFFER_ACCEPTED.value, payload),
            ]
        )
    return [
        NotificationIntent(
            offer.buyer_id,
            NotificationType.OFFER_REJECTED.value,
            {"auctionId": auction.id, "counterId": offer.id, "title": auction.title},
        )
    ]
