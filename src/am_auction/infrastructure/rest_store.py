"""RestAuctionStore: document-store-over-HTTP backend (PostgREST / Supabase REST).

Talks to the same four tables as the relational backend through a PostgREST
endpoint using httpx. The compare-and-set is a filtered PATCH with
``Prefer: return=representation``: an empty representation means no row
matched the filters, i.e. the write-time guard failed.

PostgREST filters compare a column with a literal only, so guards that
depend on another column (current_price <= amount - bid_increment) read the
immutable column first and bake it into the filter. place_bid cannot be
expressed as filtered writes at all, since the raise and the bid row must
commit together; it calls the place_bid() database function over /rpc.

Transport failures and non-2xx answers surface as StoreUnavailableError.
"""

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any

import httpx

from src.am_auction.domain.models import Auction, Bid, CounterOffer, Notification
from src.am_auction.domain.repository import AuctionGuard, AuctionPatch
from src.am_common.datetime_utils import Clock, parse_iso, to_iso, utc_now
from src.am_common.enums import AuctionStatus, CounterOfferStatus, enum_value
from src.am_common.errors import CounterOfferPendingError, StoreUnavailableError

logger = logging.getLogger(__name__)

_RETURN_ROWS = {"Prefer": "return=representation"}
_RETURN_NONE = {"Prefer": "return=minimal"}

Params = list[tuple[str, str]]


class _ConflictError(StoreUnavailableError):
    """PostgREST answered 409: a unique or check constraint rejected the write."""


def _in(values: Sequence[str]) -> str:
    return "in.(" + ",".join(enum_value(v) for v in values) + ")"


def _ts(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return parse_iso(value)


def _doc_to_auction(doc: dict[str, Any]) -> Auction:
    return Auction(
        id=doc["id"],
        seller_id=doc["seller_id"],
        title=doc["title"],
        description=doc.get("description"),
        starting_price_cents=int(doc["starting_price_cents"]),
        bid_increment_cents=int(doc["bid_increment_cents"]),
        current_price_cents=int(doc["current_price_cents"]),
        go_live_at=_ts(doc["go_live_at"]),
        ends_at=_ts(doc["ends_at"]),
        status=doc["status"],
        created_at=_ts(doc["created_at"]),
        updated_at=_ts(doc["updated_at"]),
    )


def _doc_to_bid(doc: dict[str, Any]) -> Bid:
    return Bid(
        id=doc["id"],
        auction_id=doc["auction_id"],
        bidder_id=doc["bidder_id"],
        amount_cents=int(doc["amount_cents"]),
        created_at=_ts(doc["created_at"]),
    )


def _doc_to_counter(doc: dict[str, Any]) -> CounterOffer:
    return CounterOffer(
        id=doc["id"],
        auction_id=doc["auction_id"],
        seller_id=doc["seller_id"],
        buyer_id=doc["buyer_id"],
        amount_cents=int(doc["amount_cents"]),
        status=doc["status"],
        created_at=_ts(doc.get("created_at")),
        round_ends_at=_ts(doc.get("round_ends_at")),
    )


def _doc_to_notification(doc: dict[str, Any]) -> Notification:
    return Notification(
        id=doc["id"],
        user_id=doc["user_id"],
        type=doc["type"],
        payload=doc.get("payload") or {},
        read=bool(doc.get("read", False)),
        created_at=_ts(doc.get("created_at")),
    )


class RestAuctionStore:
    """Concrete store: every guarded write is one filtered PATCH."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
        clock: Clock = utc_now,
    ) -> None:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), headers=headers, timeout=timeout
        )
        self._clock = clock

    async def _request(
        self,
        method: str,
        table: str,
        params: Params | None = None,
        body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        try:
            resp = await self._client.request(
                method, f"/{table}", params=params, json=body, headers=headers
            )
        except httpx.HTTPError as exc:
            logger.warning("REST store %s /%s failed: %s", method, table, exc)
            raise StoreUnavailableError(f"REST store unreachable: {exc}") from exc
        if resp.status_code == 409:
            raise _ConflictError(f"REST store conflict on /{table}: {resp.text}")
        if resp.status_code >= 400:
            logger.warning(
                "REST store %s /%s returned %s: %s", method, table, resp.status_code, resp.text
            )
            raise StoreUnavailableError(f"REST store error {resp.status_code} on /{table}")
        if not resp.content:
            return []
        data = resp.json()
        return data if isinstance(data, list) else [data]

    # --- auctions ---

    async def create_auction(self, auction: Auction) -> Auction:
        docs = await self._request(
            "POST",
            "auctions",
            body={
                "id": auction.id,
                "seller_id": auction.seller_id,
                "title": auction.title,
                "description": auction.description,
                "starting_price_cents": auction.starting_price_cents,
                "bid_increment_cents": auction.bid_increment_cents,
                "current_price_cents": auction.current_price_cents,
                "go_live_at": to_iso(auction.go_live_at),
                "ends_at": to_iso(auction.ends_at),
                "status": enum_value(auction.status),
                "created_at": to_iso(auction.created_at),
                "updated_at": to_iso(auction.updated_at),
            },
            headers=_RETURN_ROWS,
        )
        return _doc_to_auction(docs[0])

    async def get_auction(self, auction_id: str) -> Auction | None:
        docs = await self._request(
            "GET", "auctions", params=[("id", f"eq.{auction_id}"), ("limit", "1")]
        )
        return _doc_to_auction(docs[0]) if docs else None

    async def list_auctions(
        self,
        statuses: Sequence[str] | None,
        seller_id: str | None,
        offset: int,
        limit: int,
    ) -> list[Auction]:
        params: Params = [
            ("order", "created_at.desc,id.desc"),
            ("offset", str(offset)),
            ("limit", str(limit)),
        ]
        if statuses:
            params.append(("status", _in(statuses)))
        if seller_id is not None:
            params.append(("seller_id", f"eq.{seller_id}"))
        return [_doc_to_auction(d) for d in await self._request("GET", "auctions", params=params)]

    async def update_auction(
        self, auction_id: str, patch: AuctionPatch, guard: AuctionGuard
    ) -> Auction | None:
        body: dict[str, Any] = {"updated_at": to_iso(self._clock())}
        if patch.status is not None:
            body["status"] = enum_value(patch.status)
        if patch.go_live_at is not None:
            body["go_live_at"] = to_iso(patch.go_live_at)
        if patch.ends_at is not None:
            body["ends_at"] = to_iso(patch.ends_at)
        if patch.reset_price:
            current = await self.get_auction(auction_id)
            if current is None:
                return None
            body["current_price_cents"] = current.starting_price_cents
        elif patch.current_price_cents is not None:
            body["current_price_cents"] = patch.current_price_cents

        params: Params = [("id", f"eq.{auction_id}"), ("status", _in(guard.statuses))]
        if guard.ended_by is not None:
            params.append(("ends_at", f"lte.{to_iso(guard.ended_by)}"))
        if guard.open_at is not None:
            params.append(("go_live_at", f"lte.{to_iso(guard.open_at)}"))
            params.append(("ends_at", f"gt.{to_iso(guard.open_at)}"))

        docs = await self._request(
            "PATCH", "auctions", params=params, body=body, headers=_RETURN_ROWS
        )
        return _doc_to_auction(docs[0]) if docs else None

    async def list_expired(self, now: datetime, limit: int) -> list[Auction]:
        params: Params = [
            ("status", _in((AuctionStatus.LIVE, AuctionStatus.SCHEDULED))),
            ("ends_at", f"lte.{to_iso(now)}"),
            ("order", "ends_at.asc"),
            ("limit", str(limit)),
        ]
        return [_doc_to_auction(d) for d in await self._request("GET", "auctions", params=params)]

    async def list_due_to_start(self, now: datetime, limit: int) -> list[Auction]:
        params: Params = [
            ("status", f"eq.{AuctionStatus.SCHEDULED.value}"),
            ("go_live_at", f"lte.{to_iso(now)}"),
            ("ends_at", f"gt.{to_iso(now)}"),
            ("order", "go_live_at.asc"),
            ("limit", str(limit)),
        ]
        return [_doc_to_auction(d) for d in await self._request("GET", "auctions", params=params)]

    # --- bids ---

    async def conditionally_raise_price(
        self, auction_id: str, amount_cents: int, now: datetime
    ) -> bool:
        auction = await self.get_auction(auction_id)
        if auction is None:
            return False
        params: Params = [
            ("id", f"eq.{auction_id}"),
            ("status", f"eq.{AuctionStatus.LIVE.value}"),
            ("ends_at", f"gt.{to_iso(now)}"),
            ("current_price_cents", f"lte.{amount_cents - auction.bid_increment_cents}"),
        ]
        docs = await self._request(
            "PATCH",
            "auctions",
            params=params,
            body={"current_price_cents": amount_cents, "updated_at": to_iso(now)},
            headers=_RETURN_ROWS,
        )
        return bool(docs)

    async def insert_bid(self, bid: Bid) -> Bid:
        docs = await self._request(
            "POST",
            "bids",
            body={
                "id": bid.id,
                "auction_id": bid.auction_id,
                "bidder_id": bid.bidder_id,
                "amount_cents": bid.amount_cents,
                "created_at": to_iso(bid.created_at),
            },
            headers=_RETURN_ROWS,
        )
        return _doc_to_bid(docs[0]) if docs else bid

    async def place_bid(self, bid: Bid, now: datetime) -> bool:
        docs = await self._request(
            "POST",
            "rpc/place_bid",
            body={
                "p_bid_id": bid.id,
                "p_auction_id": bid.auction_id,
                "p_bidder_id": bid.bidder_id,
                "p_amount_cents": bid.amount_cents,
                "p_now": to_iso(now),
            },
        )
        return bool(docs and docs[0] is True)

    async def top_bid(
        self, auction_id: str, exclude_bidder_id: str | None = None
    ) -> Bid | None:
        params: Params = [
            ("auction_id", f"eq.{auction_id}"),
            ("order", "amount_cents.desc,created_at.asc"),
            ("limit", "1"),
        ]
        if exclude_bidder_id is not None:
            params.append(("bidder_id", f"neq.{exclude_bidder_id}"))
        docs = await self._request("GET", "bids", params=params)
        return _doc_to_bid(docs[0]) if docs else None

    async def list_bids(self, auction_id: str, offset: int, limit: int) -> list[Bid]:
        params: Params = [
            ("auction_id", f"eq.{auction_id}"),
            ("order", "created_at.desc,id.desc"),
            ("offset", str(offset)),
            ("limit", str(limit)),
        ]
        return [_doc_to_bid(d) for d in await self._request("GET", "bids", params=params)]

    async def prior_bidder_ids(
        self, auction_id: str, exclude_bidder_id: str, limit: int
    ) -> list[str]:
        params: Params = [
            ("select", "bidder_id,created_at"),
            ("auction_id", f"eq.{auction_id}"),
            ("bidder_id", f"neq.{exclude_bidder_id}"),
            ("order", "created_at.asc"),
        ]
        seen: list[str] = []
        for doc in await self._request("GET", "bids", params=params):
            if doc["bidder_id"] not in seen:
                seen.append(doc["bidder_id"])
                if len(seen) >= limit:
                    break
        return seen

    # --- counter offers ---

    async def create_counter_offer(self, offer: CounterOffer) -> CounterOffer:
        body = {
            "id": offer.id,
            "auction_id": offer.auction_id,
            "seller_id": offer.seller_id,
            "buyer_id": offer.buyer_id,
            "amount_cents": offer.amount_cents,
            "status": enum_value(offer.status),
        }
        if offer.created_at is not None:
            body["created_at"] = to_iso(offer.created_at)
        if offer.round_ends_at is not None:
            body["round_ends_at"] = offer.round_ends_at.isoformat()
        try:
            docs = await self._request(
                "POST", "counter_offers", body=body, headers=_RETURN_ROWS
            )
        except _ConflictError as exc:
            raise CounterOfferPendingError(offer.auction_id) from exc
        return _doc_to_counter(docs[0])

    async def get_counter_offer(self, counter_id: str) -> CounterOffer | None:
        docs = await self._request(
            "GET", "counter_offers", params=[("id", f"eq.{counter_id}"), ("limit", "1")]
        )
        return _doc_to_counter(docs[0]) if docs else None

    async def get_pending_counter_offer(self, auction_id: str) -> CounterOffer | None:
        params: Params = [
            ("auction_id", f"eq.{auction_id}"),
            ("status", f"eq.{CounterOfferStatus.PENDING.value}"),
            ("order", "created_at.desc"),
            ("limit", "1"),
        ]
        docs = await self._request("GET", "counter_offers", params=params)
        return _doc_to_counter(docs[0]) if docs else None

    async def settle_counter_offer(
        self, counter_id: str, status: str, final_price_cents: int | None
    ) -> bool:
        resolved = await self._request(
            "PATCH",
            "counter_offers",
            params=[
                ("id", f"eq.{counter_id}"),
                ("status", f"eq.{CounterOfferStatus.PENDING.value}"),
            ],
            body={"status": enum_value(status)},
            headers=_RETURN_ROWS,
        )
        if not resolved:
            return False
        auction_id = resolved[0]["auction_id"]
        # Raw text from the row so the equality filter keeps full precision
        round_ends_at = resolved[0].get("round_ends_at")
        body: dict[str, Any] = {
            "status": AuctionStatus.CLOSED.value,
            "updated_at": to_iso(self._clock()),
        }
        if final_price_cents is not None:
            body["current_price_cents"] = final_price_cents
        params: Params = [("id", f"eq.{auction_id}"), ("status", f"eq.{AuctionStatus.ENDED.value}")]
        if round_ends_at is not None:
            params.append(("ends_at", f"eq.{round_ends_at}"))
        closed = await self._request(
            "PATCH",
            "auctions",
            params=params,
            body=body,
            headers=_RETURN_ROWS,
        )
        if closed:
            return True
        # Auction moved on in between: put the counter back so the pair stays consistent
        logger.warning(
            "Counter %s resolved but auction %s was not ended in its round, reverting counter",
            counter_id, auction_id,
        )
        await self._request(
            "PATCH",
            "counter_offers",
            params=[("id", f"eq.{counter_id}")],
            body={"status": CounterOfferStatus.PENDING.value},
            headers=_RETURN_NONE,
        )
        return False

    async def withdraw_counter_offers(self, auction_id: str) -> int:
        docs = await self._request(
            "PATCH",
            "counter_offers",
            params=[
                ("auction_id", f"eq.{auction_id}"),
                ("status", f"eq.{CounterOfferStatus.PENDING.value}"),
            ],
            body={"status": CounterOfferStatus.REJECTED.value},
            headers=_RETURN_ROWS,
        )
        return len(docs)

    # --- notifications ---

    async def insert_notifications(self, notifications: Sequence[Notification]) -> None:
        if not notifications:
            return
        await self._request(
            "POST",
            "notifications",
            body=[
                {
                    "id": n.id,
                    "user_id": n.user_id,
                    "type": enum_value(n.type),
                    "payload": n.payload,
                    "read": n.read,
                }
                for n in notifications
            ],
            headers=_RETURN_NONE,
        )

    async def list_notifications(self, user_id: str, limit: int) -> list[Notification]:
        params: Params = [
            ("user_id", f"eq.{user_id}"),
            ("order", "created_at.desc,id.desc"),
            ("limit", str(limit)),
        ]
        return [
            _doc_to_notification(d)
            for d in await self._request("GET", "notifications", params=params)
        ]

    # --- lifecycle ---

    async def ping(self) -> None:
        await self._request("GET", "auctions", params=[("select", "id"), ("limit", "1")])

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
