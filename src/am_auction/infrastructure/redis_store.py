"""RedisAuctionStore: key-value backend on redis.asyncio.

Key layout:
  auction:{id}              hash, one field per Auction attribute
  auctions:index            sorted set of auction ids scored by created_at
  auctions:ending           sorted set of scheduled/live auction ids scored by ends_at
  auctions:scheduled        sorted set of scheduled auction ids scored by go_live_at
  auction:{id}:bids         list of JSON-encoded bids, append order
  auction:{id}:counters     set of counter-offer ids
  counter:{id}              hash, one field per CounterOffer attribute
  notifications:{user_id}   list of JSON-encoded notifications, newest first
  lock:auction:{id}         advisory write lock (SET NX EX, token value)

Every guarded write takes the auction's advisory lock, re-reads, checks the
guard, writes, and releases with a compare-and-delete script in a finally
block. Lock contention after the last retry raises AuctionBusyError; the
caller may simply retry.

The two sweep sets are rewritten in the same MULTI/EXEC as every status or
window change, so the sweep reads only the auctions that are due. Redis
client errors surface as StoreUnavailableError.
"""

import asyncio
import functools
import json
import logging
import uuid
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from src.am_auction.domain.models import Auction, Bid, CounterOffer, Notification
from src.am_auction.domain.repository import (
    AuctionGuard,
    AuctionPatch,
    apply_patch,
    can_raise_price,
)
from src.am_common.datetime_utils import Clock, parse_iso, to_iso, utc_now
from src.am_common.enums import AuctionStatus, CounterOfferStatus, enum_value
from src.am_common.errors import (
    AuctionBusyError,
    CounterOfferPendingError,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)

_INDEX_KEY = "auctions:index"
_ENDING_KEY = "auctions:ending"
_SCHEDULED_KEY = "auctions:scheduled"

# Delete the lock only if we still own it
_RELEASE_LOCK_LUA = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""


def _store_call(fn):
    """Re-raise redis client failures as StoreUnavailableError."""

    @functools.wraps(fn)
    async def wrapper(self, *args, **kwargs):
        try:
            return await fn(self, *args, **kwargs)
        except RedisError as exc:
            logger.warning("Redis store %s failed: %s", fn.__name__, exc)
            raise StoreUnavailableError(f"Redis store unavailable: {exc}") from exc

    return wrapper


def _auction_key(auction_id: str) -> str:
    return f"auction:{auction_id}"


def _bids_key(auction_id: str) -> str:
    return f"auction:{auction_id}:bids"


def _counters_key(auction_id: str) -> str:
    return f"auction:{auction_id}:counters"


def _counter_key(counter_id: str) -> str:
    return f"counter:{counter_id}"


def _notifications_key(user_id: str) -> str:
    return f"notifications:{user_id}"


def _lock_key(auction_id: str) -> str:
    return f"lock:auction:{auction_id}"


def _auction_to_hash(auction: Auction) -> dict[str, str]:
    return {
        "id": auction.id,
        "seller_id": auction.seller_id,
        "title": auction.title,
        "description": auction.description or "",
        "starting_price_cents": str(auction.starting_price_cents),
        "bid_increment_cents": str(auction.bid_increment_cents),
        "current_price_cents": str(auction.current_price_cents),
        "go_live_at": to_iso(auction.go_live_at),
        "ends_at": to_iso(auction.ends_at),
        "status": enum_value(auction.status),
        "created_at": to_iso(auction.created_at),
        "updated_at": to_iso(auction.updated_at),
    }


def _hash_to_auction(data: dict[str, str]) -> Auction:
    return Auction(
        id=data["id"],
        seller_id=data["seller_id"],
        title=data["title"],
        description=data.get("description") or None,
        starting_price_cents=int(data["starting_price_cents"]),
        bid_increment_cents=int(data["bid_increment_cents"]),
        current_price_cents=int(data["current_price_cents"]),
        go_live_at=parse_iso(data["go_live_at"]),
        ends_at=parse_iso(data["ends_at"]),
        status=data["status"],
        created_at=parse_iso(data["created_at"]),
        updated_at=parse_iso(data["updated_at"]),
    )


def _bid_to_json(bid: Bid) -> str:
    return json.dumps(
        {
            "id": bid.id,
            "auction_id": bid.auction_id,
            "bidder_id": bid.bidder_id,
            "amount_cents": bid.amount_cents,
            "created_at": to_iso(bid.created_at),
        }
    )


def _json_to_bid(raw: str) -> Bid:
    doc = json.loads(raw)
    return Bid(
        id=doc["id"],
        auction_id=doc["auction_id"],
        bidder_id=doc["bidder_id"],
        amount_cents=int(doc["amount_cents"]),
        created_at=parse_iso(doc["created_at"]),
    )


def _counter_to_hash(offer: CounterOffer) -> dict[str, str]:
    return {
        "id": offer.id,
        "auction_id": offer.auction_id,
        "seller_id": offer.seller_id,
        "buyer_id": offer.buyer_id,
        "amount_cents": str(offer.amount_cents),
        "status": enum_value(offer.status),
        "created_at": to_iso(offer.created_at) if offer.created_at else "",
        "round_ends_at": offer.round_ends_at.isoformat() if offer.round_ends_at else "",
    }


def _hash_to_counter(data: dict[str, str]) -> CounterOffer:
    return CounterOffer(
        id=data["id"],
        auction_id=data["auction_id"],
        seller_id=data["seller_id"],
        buyer_id=data["buyer_id"],
        amount_cents=int(data["amount_cents"]),
        status=data["status"],
        created_at=parse_iso(data["created_at"]) if data.get("created_at") else None,
        round_ends_at=(
            parse_iso(data["round_ends_at"]) if data.get("round_ends_at") else None
        ),
    )


def _queue_sweep_index(pipe: Any, auction: Auction) -> None:
    if auction.status in (AuctionStatus.SCHEDULED, AuctionStatus.LIVE):
        pipe.zadd(_ENDING_KEY, {auction.id: auction.ends_at.timestamp()})
    else:
        pipe.zrem(_ENDING_KEY, auction.id)
    if auction.status == AuctionStatus.SCHEDULED:
        pipe.zadd(_SCHEDULED_KEY, {auction.id: auction.go_live_at.timestamp()})
    else:
        pipe.zrem(_SCHEDULED_KEY, auction.id)


def _notification_to_json(n: Notification) -> str:
    return json.dumps(
        {
            "id": n.id,
            "user_id": n.user_id,
            "type": enum_value(n.type),
            "payload": n.payload,
            "read": n.read,
            "created_at": to_iso(n.created_at) if n.created_at else None,
        }
    )


def _json_to_notification(raw: str) -> Notification:
    doc = json.loads(raw)
    return Notification(
        id=doc["id"],
        user_id=doc["user_id"],
        type=doc["type"],
        payload=doc.get("payload") or {},
        read=bool(doc.get("read", False)),
        created_at=parse_iso(doc["created_at"]) if doc.get("created_at") else None,
    )


class RedisAuctionStore:
    """Concrete store: guarded writes serialised by a per-auction advisory lock."""

    def __init__(
        self,
        redis: aioredis.Redis,
        lock_ttl_seconds: int = 5,
        lock_retries: int = 3,
        lock_retry_delay_seconds: float = 0.05,
        clock: Clock = utc_now,
    ) -> None:
        self._redis = redis
        self._lock_ttl = lock_ttl_seconds
        self._lock_retries = lock_retries
        self._lock_retry_delay = lock_retry_delay_seconds
        self._clock = clock

    @asynccontextmanager
    async def _locked(self, auction_id: str) -> AsyncIterator[None]:
        key = _lock_key(auction_id)
        token = uuid.uuid4().hex
        for attempt in range(self._lock_retries + 1):
            if await self._redis.set(key, token, nx=True, ex=self._lock_ttl):
                break
            if attempt < self._lock_retries:
                await asyncio.sleep(self._lock_retry_delay)
        else:
            logger.info("Lock contention on auction %s, giving up", auction_id)
            raise AuctionBusyError(auction_id)
        try:
            yield
        finally:
            try:
                await self._redis.eval(_RELEASE_LOCK_LUA, 1, key, token)
            except Exception:  # noqa: BLE001
                # The lock expires on its own after the TTL
                logger.warning("Lock release failed for auction %s", auction_id, exc_info=True)

    async def _load_auction(self, auction_id: str) -> Auction | None:
        data = await self._redis.hgetall(_auction_key(auction_id))
        return _hash_to_auction(data) if data else None

    async def _load_auctions(self, ids: Sequence[str]) -> list[Auction]:
        if not ids:
            return []
        pipe = self._redis.pipeline()
        for auction_id in ids:
            pipe.hgetall(_auction_key(auction_id))
        return [_hash_to_auction(data) for data in await pipe.execute() if data]

    async def _load_due(self, key: str, now: datetime, limit: int) -> list[Auction]:
        ids = await self._redis.zrangebyscore(key, "-inf", now.timestamp(), start=0, num=limit)
        return await self._load_auctions(ids)

    async def _load_bids(self, auction_id: str) -> list[Bid]:
        return [_json_to_bid(raw) for raw in await self._redis.lrange(_bids_key(auction_id), 0, -1)]

    async def _write_auction(self, auction: Auction, *extra: tuple[str, str]) -> None:
        pipe = self._redis.pipeline(transaction=True)
        pipe.hset(_auction_key(auction.id), mapping=_auction_to_hash(auction))
        _queue_sweep_index(pipe, auction)
        for counter_id, status in extra:
            pipe.hset(_counter_key(counter_id), mapping={"status": status})
        await pipe.execute()

    # --- auctions ---

    @_store_call
    async def create_auction(self, auction: Auction) -> Auction:
        pipe = self._redis.pipeline(transaction=True)
        pipe.hset(_auction_key(auction.id), mapping=_auction_to_hash(auction))
        pipe.zadd(_INDEX_KEY, {auction.id: auction.created_at.timestamp()})
        _queue_sweep_index(pipe, auction)
        await pipe.execute()
        return replace(auction)

    @_store_call
    async def get_auction(self, auction_id: str) -> Auction | None:
        return await self._load_auction(auction_id)

    @_store_call
    async def list_auctions(
        self,
        statuses: Sequence[str] | None,
        seller_id: str | None,
        offset: int,
        limit: int,
    ) -> list[Auction]:
        rows = [
            a for a in await self._load_auctions(await self._redis.zrevrange(_INDEX_KEY, 0, -1))
            if (not statuses or a.status in statuses)
            and (seller_id is None or a.seller_id == seller_id)
        ]
        return rows[offset:offset + limit]

    @_store_call
    async def update_auction(
        self, auction_id: str, patch: AuctionPatch, guard: AuctionGuard
    ) -> Auction | None:
        async with self._locked(auction_id):
            auction = await self._load_auction(auction_id)
            if auction is None or not guard.holds(auction):
                return None
            updated = apply_patch(auction, patch, self._clock())
            await self._write_auction(updated)
            return updated

    @_store_call
    async def list_expired(self, now: datetime, limit: int) -> list[Auction]:
        # The set can trail a concurrent write; re-check each hash
        return [
            a for a in await self._load_due(_ENDING_KEY, now, limit)
            if a.status in (AuctionStatus.LIVE, AuctionStatus.SCHEDULED) and a.ends_at <= now
        ]

    @_store_call
    async def list_due_to_start(self, now: datetime, limit: int) -> list[Auction]:
        return [
            a for a in await self._load_due(_SCHEDULED_KEY, now, limit)
            if a.status == AuctionStatus.SCHEDULED and a.go_live_at <= now < a.ends_at
        ]

    # --- bids ---

    @_store_call
    async def conditionally_raise_price(
        self, auction_id: str, amount_cents: int, now: datetime
    ) -> bool:
        async with self._locked(auction_id):
            auction = await self._load_auction(auction_id)
            if auction is None or not can_raise_price(auction, amount_cents, now):
                return False
            await self._redis.hset(
                _auction_key(auction_id),
                mapping={"current_price_cents": str(amount_cents), "updated_at": to_iso(now)},
            )
            return True

    @_store_call
    async def insert_bid(self, bid: Bid) -> Bid:
        await self._redis.rpush(_bids_key(bid.auction_id), _bid_to_json(bid))
        return bid

    @_store_call
    async def place_bid(self, bid: Bid, now: datetime) -> bool:
        async with self._locked(bid.auction_id):
            auction = await self._load_auction(bid.auction_id)
            if auction is None or not can_raise_price(auction, bid.amount_cents, now):
                return False
            pipe = self._redis.pipeline(transaction=True)
            pipe.hset(
                _auction_key(bid.auction_id),
                mapping={"current_price_cents": str(bid.amount_cents), "updated_at": to_iso(now)},
            )
            pipe.rpush(_bids_key(bid.auction_id), _bid_to_json(bid))
            await pipe.execute()
            return True

    @_store_call
    async def top_bid(
        self, auction_id: str, exclude_bidder_id: str | None = None
    ) -> Bid | None:
        candidates = [
            b for b in await self._load_bids(auction_id)
            if exclude_bidder_id is None or b.bidder_id != exclude_bidder_id
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda b: (-b.amount_cents, b.created_at))

    @_store_call
    async def list_bids(self, auction_id: str, offset: int, limit: int) -> list[Bid]:
        rows = sorted(await self._load_bids(auction_id), key=lambda b: b.created_at, reverse=True)
        return rows[offset:offset + limit]

    @_store_call
    async def prior_bidder_ids(
        self, auction_id: str, exclude_bidder_id: str, limit: int
    ) -> list[str]:
        seen: list[str] = []
        for bid in sorted(await self._load_bids(auction_id), key=lambda b: b.created_at):
            if bid.bidder_id != exclude_bidder_id and bid.bidder_id not in seen:
                seen.append(bid.bidder_id)
        return seen[:limit]

    # --- counter offers ---

    async def _load_counters(self, auction_id: str) -> list[CounterOffer]:
        offers: list[CounterOffer] = []
        for counter_id in await self._redis.smembers(_counters_key(auction_id)):
            data = await self._redis.hgetall(_counter_key(counter_id))
            if data:
                offers.append(_hash_to_counter(data))
        return offers

    @_store_call
    async def create_counter_offer(self, offer: CounterOffer) -> CounterOffer:
        stored = replace(offer, created_at=offer.created_at or self._clock())
        async with self._locked(offer.auction_id):
            if stored.status == CounterOfferStatus.PENDING and any(
                c.status == CounterOfferStatus.PENDING
                for c in await self._load_counters(offer.auction_id)
            ):
                raise CounterOfferPendingError(offer.auction_id)
            pipe = self._redis.pipeline(transaction=True)
            pipe.hset(_counter_key(stored.id), mapping=_counter_to_hash(stored))
            pipe.sadd(_counters_key(stored.auction_id), stored.id)
            await pipe.execute()
        return stored

    @_store_call
    async def get_counter_offer(self, counter_id: str) -> CounterOffer | None:
        data = await self._redis.hgetall(_counter_key(counter_id))
        return _hash_to_counter(data) if data else None

    @_store_call
    async def get_pending_counter_offer(self, auction_id: str) -> CounterOffer | None:
        pending = [
            c for c in await self._load_counters(auction_id)
            if c.status == CounterOfferStatus.PENDING
        ]
        if not pending:
            return None
        return max(pending, key=lambda c: c.created_at or self._clock())

    @_store_call
    async def settle_counter_offer(
        self, counter_id: str, status: str, final_price_cents: int | None
    ) -> bool:
        data = await self._redis.hgetall(_counter_key(counter_id))
        if not data:
            return False
        auction_id = data["auction_id"]
        async with self._locked(auction_id):
            offer = _hash_to_counter(await self._redis.hgetall(_counter_key(counter_id)))
            auction = await self._load_auction(auction_id)
            if offer.status != CounterOfferStatus.PENDING:
                return False
            if auction is None or auction.status != AuctionStatus.ENDED:
                return False
            if not offer.belongs_to(auction):
                return False
            closed = apply_patch(
                auction,
                AuctionPatch(status=AuctionStatus.CLOSED, current_price_cents=final_price_cents),
                self._clock(),
            )
            await self._write_auction(closed, (counter_id, enum_value(status)))
            return True

    @_store_call
    async def withdraw_counter_offers(self, auction_id: str) -> int:
        async with self._locked(auction_id):
            pending = [
                c for c in await self._load_counters(auction_id)
                if c.status == CounterOfferStatus.PENDING
            ]
            if not pending:
                return 0
            pipe = self._redis.pipeline(transaction=True)
            for offer in pending:
                pipe.hset(
                    _counter_key(offer.id),
                    mapping={"status": CounterOfferStatus.REJECTED.value},
                )
            await pipe.execute()
            return len(pending)

    # --- notifications ---

    @_store_call
    async def insert_notifications(self, notifications: Sequence[Notification]) -> None:
        if not notifications:
            return
        pipe = self._redis.pipeline()
        for n in notifications:
            stored = replace(n, created_at=n.created_at or self._clock())
            pipe.lpush(_notifications_key(n.user_id), _notification_to_json(stored))
        await pipe.execute()

    @_store_call
    async def list_notifications(self, user_id: str, limit: int) -> list[Notification]:
        raws = await self._redis.lrange(_notifications_key(user_id), 0, limit - 1)
        return [_json_to_notification(raw) for raw in raws]

    # --- lifecycle ---

    @_store_call
    async def ping(self) -> None:
        await self._redis.ping()

    async def close(self) -> None:
        # The connection pool is shared and closed by am_common.redis_client
        return None
