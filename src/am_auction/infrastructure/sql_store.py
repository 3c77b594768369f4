"""SqlAuctionStore: relational backend (PostgreSQL via SQLAlchemy async + asyncpg).

All queries use raw text() SQL (no ORM).
All state-changing operations are single conditional UPDATE ... RETURNING
statements; a result of 0 rows means the write-time guard failed (price
raced past, window closed, status moved on).

Transaction ownership: each store method opens its own session and
transaction. place_bid and settle_counter_offer run their two statements in
one transaction so the pair commits together or not at all.

Driver and connection failures surface as StoreUnavailableError; unique
violations stay IntegrityError so callers can map them to a domain conflict.

asyncpg NULL parameter pattern: CAST(:param AS TYPE) IS NULL required for None values.
"""

import json
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.am_auction.domain.models import Auction, Bid, CounterOffer, Notification
from src.am_auction.domain.repository import AuctionGuard, AuctionPatch
from src.am_common.enums import enum_value
from src.am_common.errors import CounterOfferPendingError, StoreUnavailableError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# SQL: auctions
# ---------------------------------------------------------------------------

_AUCTION_COLUMNS = """
    id, seller_id, title, description,
    starting_price_cents, bid_increment_cents, current_price_cents,
    go_live_at, ends_at, status, created_at, updated_at
"""

_INSERT_AUCTION_SQL = text(f"""
    INSERT INTO auctions
        (id, seller_id, title, description,
         starting_price_cents, bid_increment_cents, current_price_cents,
         go_live_at, ends_at, status, created_at, updated_at)
    VALUES
        (:id, :seller_id, :title, :description,
         :starting_price_cents, :bid_increment_cents, :current_price_cents,
         :go_live_at, :ends_at, :status, :created_at, :updated_at)
    RETURNING {_AUCTION_COLUMNS}
""")

_GET_AUCTION_SQL = text(f"""
    SELECT {_AUCTION_COLUMNS}
    FROM auctions
    WHERE id = :auction_id
""")

_LIST_AUCTIONS_SQL = text(f"""
    SELECT {_AUCTION_COLUMNS}
    FROM auctions
    WHERE
        (CAST(:statuses AS TEXT[]) IS NULL OR status = ANY(CAST(:statuses AS TEXT[])))
        AND (CAST(:seller_id AS TEXT) IS NULL OR seller_id = CAST(:seller_id AS TEXT))
    ORDER BY created_at DESC, id DESC
    OFFSET :offset
    LIMIT :limit
""")

_LIST_EXPIRED_SQL = text(f"""
    SELECT {_AUCTION_COLUMNS}
    FROM auctions
    WHERE status IN ('live', 'scheduled')
      AND ends_at <= :now
    ORDER BY ends_at
    LIMIT :limit
""")

_LIST_DUE_TO_START_SQL = text(f"""
    SELECT {_AUCTION_COLUMNS}
    FROM auctions
    WHERE status = 'scheduled'
      AND go_live_at <= :now
      AND ends_at > :now
    ORDER BY go_live_at
    LIMIT :limit
""")

# Compare-and-set: the only way current_price_cents moves upward.
_RAISE_PRICE_SQL = text("""
    UPDATE auctions
    SET current_price_cents = :amount,
        updated_at = NOW()
    WHERE id = :auction_id
      AND status = 'live'
      AND ends_at > :now
      AND current_price_cents <= :amount - bid_increment_cents
    RETURNING id
""")

# ---------------------------------------------------------------------------
# SQL: bids
# ---------------------------------------------------------------------------

_BID_COLUMNS = "id, auction_id, bidder_id, amount_cents, created_at"

_INSERT_BID_SQL = text(f"""
    INSERT INTO bids (id, auction_id, bidder_id, amount_cents, created_at)
    VALUES (:id, :auction_id, :bidder_id, :amount_cents, :created_at)
    RETURNING {_BID_COLUMNS}
""")

_TOP_BID_SQL = text(f"""
    SELECT {_BID_COLUMNS}
    FROM bids
    WHERE auction_id = :auction_id
      AND (CAST(:exclude AS TEXT) IS NULL OR bidder_id <> CAST(:exclude AS TEXT))
    ORDER BY amount_cents DESC, created_at ASC
    LIMIT 1
""")

_LIST_BIDS_SQL = text(f"""
    SELECT {_BID_COLUMNS}
    FROM bids
    WHERE auction_id = :auction_id
    ORDER BY created_at DESC, id DESC
    OFFSET :offset
    LIMIT :limit
""")

_PRIOR_BIDDERS_SQL = text("""
    SELECT bidder_id
    FROM bids
    WHERE auction_id = :auction_id
      AND bidder_id <> :exclude
    GROUP BY bidder_id
    ORDER BY MIN(created_at)
    LIMIT :limit
""")

# ---------------------------------------------------------------------------
# SQL: counter offers
# ---------------------------------------------------------------------------

_COUNTER_COLUMNS = (
    "id, auction_id, seller_id, buyer_id, amount_cents, status, created_at, round_ends_at"
)

_INSERT_COUNTER_SQL = text(f"""
    INSERT INTO counter_offers
        (id, auction_id, seller_id, buyer_id, amount_cents, status, round_ends_at)
    VALUES
        (:id, :auction_id, :seller_id, :buyer_id, :amount_cents, :status, :round_ends_at)
    RETURNING {_COUNTER_COLUMNS}
""")

_GET_COUNTER_SQL = text(f"""
    SELECT {_COUNTER_COLUMNS}
    FROM counter_offers
    WHERE id = :counter_id
""")

_GET_PENDING_COUNTER_SQL = text(f"""
    SELECT {_COUNTER_COLUMNS}
    FROM counter_offers
    WHERE auction_id = :auction_id
      AND status = 'pending'
    ORDER BY created_at DESC
    LIMIT 1
""")

_RESOLVE_COUNTER_SQL = text("""
    UPDATE counter_offers
    SET status = :status
    WHERE id = :counter_id
      AND status = 'pending'
    RETURNING auction_id
""")

_CLOSE_AFTER_COUNTER_SQL = text("""
    UPDATE auctions a
    SET status = 'closed',
        current_price_cents = COALESCE(CAST(:final_price AS BIGINT), a.current_price_cents),
        updated_at = NOW()
    FROM counter_offers c
    WHERE c.id = :counter_id
      AND a.id = c.auction_id
      AND a.status = 'ended'
      AND (c.round_ends_at IS NULL OR a.ends_at = c.round_ends_at)
    RETURNING a.id
""")

_WITHDRAW_COUNTERS_SQL = text("""
    UPDATE counter_offers
    SET status = 'rejected'
    WHERE auction_id = :auction_id
      AND status = 'pending'
    RETURNING id
""")

# ---------------------------------------------------------------------------
# SQL: notifications
# ---------------------------------------------------------------------------

_INSERT_NOTIFICATION_SQL = text("""
    INSERT INTO notifications (id, user_id, type, payload, read)
    VALUES (:id, :user_id, :type, CAST(:payload AS JSONB), :read)
""")

_LIST_NOTIFICATIONS_SQL = text("""
    SELECT id, user_id, type, payload, read, created_at
    FROM notifications
    WHERE user_id = :user_id
    ORDER BY created_at DESC, id DESC
    LIMIT :limit
""")

# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------

def _row_to_auction(row: Any) -> Auction:
    return Auction(
        id=row.id,
        seller_id=row.seller_id,
        title=row.title,
        description=row.description,
        starting_price_cents=row.starting_price_cents,
        bid_increment_cents=row.bid_increment_cents,
        current_price_cents=row.current_price_cents,
        go_live_at=row.go_live_at,
        ends_at=row.ends_at,
        status=row.status,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_bid(row: Any) -> Bid:
    return Bid(
        id=row.id,
        auction_id=row.auction_id,
        bidder_id=row.bidder_id,
        amount_cents=row.amount_cents,
        created_at=row.created_at,
    )


def _row_to_counter(row: Any) -> CounterOffer:
    return CounterOffer(
        id=row.id,
        auction_id=row.auction_id,
        seller_id=row.seller_id,
        buyer_id=row.buyer_id,
        amount_cents=row.amount_cents,
        status=row.status,
        created_at=row.created_at,
        round_ends_at=row.round_ends_at,
    )


def _row_to_notification(row: Any) -> Notification:
    # asyncpg hands JSONB back as text unless a codec is registered
    payload = row.payload
    if isinstance(payload, str):
        payload = json.loads(payload)
    return Notification(
        id=row.id,
        user_id=row.user_id,
        type=row.type,
        payload=payload or {},
        read=row.read,
        created_at=row.created_at,
    )


def _build_update_sql(patch: AuctionPatch, guard: AuctionGuard) -> tuple[Any, dict[str, Any]]:
    """Compose the guarded UPDATE for update_auction from a fixed column whitelist."""
    sets = ["updated_at = NOW()"]
    params: dict[str, Any] = {"statuses": [enum_value(s) for s in guard.statuses]}
    if patch.status is not None:
        sets.append("status = :status")
        params["status"] = enum_value(patch.status)
    if patch.go_live_at is not None:
        sets.append("go_live_at = :go_live_at")
        params["go_live_at"] = patch.go_live_at
    if patch.ends_at is not None:
        sets.append("ends_at = :ends_at")
        params["ends_at"] = patch.ends_at
    if patch.reset_price:
        sets.append("current_price_cents = starting_price_cents")
    elif patch.current_price_cents is not None:
        sets.append("current_price_cents = :current_price_cents")
        params["current_price_cents"] = patch.current_price_cents

    where = ["id = :auction_id", "status = ANY(CAST(:statuses AS TEXT[]))"]
    if guard.ended_by is not None:
        where.append("ends_at <= :ended_by")
        params["ended_by"] = guard.ended_by
    if guard.open_at is not None:
        where.append("go_live_at <= :open_at AND ends_at > :open_at")
        params["open_at"] = guard.open_at

    sql = text(
        "UPDATE auctions SET "
        + ", ".join(sets)
        + " WHERE "
        + " AND ".join(where)
        + f" RETURNING {_AUCTION_COLUMNS}"
    )
    return sql, params


class _GuardFailed(Exception):
    """Raised inside a transaction block to roll back a half-applied pair."""


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class SqlAuctionStore:
    """Concrete store: all operations atomic at the SQL level."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as db:
                yield db
        except IntegrityError:
            raise
        except (DBAPIError, PoolTimeoutError, OSError) as exc:
            logger.warning("SQL store call failed: %s", exc)
            raise StoreUnavailableError(f"SQL store unavailable: {exc}") from exc

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        async with self._session() as db, db.begin():
            yield db

    # --- auctions ---

    async def create_auction(self, auction: Auction) -> Auction:
        async with self._transaction() as db:
            result = await db.execute(
                _INSERT_AUCTION_SQL,
                {
                    "id": auction.id,
                    "seller_id": auction.seller_id,
                    "title": auction.title,
                    "description": auction.description,
                    "starting_price_cents": auction.starting_price_cents,
                    "bid_increment_cents": auction.bid_increment_cents,
                    "current_price_cents": auction.current_price_cents,
                    "go_live_at": auction.go_live_at,
                    "ends_at": auction.ends_at,
                    "status": enum_value(auction.status),
                    "created_at": auction.created_at,
                    "updated_at": auction.updated_at,
                },
            )
            return _row_to_auction(result.fetchone())

    async def get_auction(self, auction_id: str) -> Auction | None:
        async with self._session() as db:
            result = await db.execute(_GET_AUCTION_SQL, {"auction_id": auction_id})
            row = result.fetchone()
            return _row_to_auction(row) if row else None

    async def list_auctions(
        self,
        statuses: Sequence[str] | None,
        seller_id: str | None,
        offset: int,
        limit: int,
    ) -> list[Auction]:
        async with self._session() as db:
            result = await db.execute(
                _LIST_AUCTIONS_SQL,
                {
                    "statuses": [enum_value(s) for s in statuses] if statuses else None,
                    "seller_id": seller_id,
                    "offset": offset,
                    "limit": limit,
                },
            )
            return [_row_to_auction(row) for row in result.fetchall()]

    async def update_auction(
        self, auction_id: str, patch: AuctionPatch, guard: AuctionGuard
    ) -> Auction | None:
        sql, params = _build_update_sql(patch, guard)
        params["auction_id"] = auction_id
        async with self._transaction() as db:
            result = await db.execute(sql, params)
            row = result.fetchone()
            return _row_to_auction(row) if row else None

    async def list_expired(self, now: datetime, limit: int) -> list[Auction]:
        async with self._session() as db:
            result = await db.execute(_LIST_EXPIRED_SQL, {"now": now, "limit": limit})
            return [_row_to_auction(row) for row in result.fetchall()]

    async def list_due_to_start(self, now: datetime, limit: int) -> list[Auction]:
        async with self._session() as db:
            result = await db.execute(_LIST_DUE_TO_START_SQL, {"now": now, "limit": limit})
            return [_row_to_auction(row) for row in result.fetchall()]

    # --- bids ---

    async def conditionally_raise_price(
        self, auction_id: str, amount_cents: int, now: datetime
    ) -> bool:
        async with self._transaction() as db:
            result = await db.execute(
                _RAISE_PRICE_SQL,
                {"auction_id": auction_id, "amount": amount_cents, "now": now},
            )
            return result.fetchone() is not None

    async def insert_bid(self, bid: Bid) -> Bid:
        async with self._transaction() as db:
            result = await db.execute(_INSERT_BID_SQL, _bid_params(bid))
            return _row_to_bid(result.fetchone())

    async def place_bid(self, bid: Bid, now: datetime) -> bool:
        async with self._transaction() as db:
            result = await db.execute(
                _RAISE_PRICE_SQL,
                {"auction_id": bid.auction_id, "amount": bid.amount_cents, "now": now},
            )
            if result.fetchone() is None:
                return False
            await db.execute(_INSERT_BID_SQL, _bid_params(bid))
            return True

    async def top_bid(
        self, auction_id: str, exclude_bidder_id: str | None = None
    ) -> Bid | None:
        async with self._session() as db:
            result = await db.execute(
                _TOP_BID_SQL, {"auction_id": auction_id, "exclude": exclude_bidder_id}
            )
            row = result.fetchone()
            return _row_to_bid(row) if row else None

    async def list_bids(self, auction_id: str, offset: int, limit: int) -> list[Bid]:
        async with self._session() as db:
            result = await db.execute(
                _LIST_BIDS_SQL, {"auction_id": auction_id, "offset": offset, "limit": limit}
            )
            return [_row_to_bid(row) for row in result.fetchall()]

    async def prior_bidder_ids(
        self, auction_id: str, exclude_bidder_id: str, limit: int
    ) -> list[str]:
        async with self._session() as db:
            result = await db.execute(
                _PRIOR_BIDDERS_SQL,
                {"auction_id": auction_id, "exclude": exclude_bidder_id, "limit": limit},
            )
            return [row.bidder_id for row in result.fetchall()]

    # --- counter offers ---

    async def create_counter_offer(self, offer: CounterOffer) -> CounterOffer:
        try:
            async with self._transaction() as db:
                result = await db.execute(
                    _INSERT_COUNTER_SQL,
                    {
                        "id": offer.id,
                        "auction_id": offer.auction_id,
                        "seller_id": offer.seller_id,
                        "buyer_id": offer.buyer_id,
                        "amount_cents": offer.amount_cents,
                        "status": enum_value(offer.status),
                        "round_ends_at": offer.round_ends_at,
                    },
                )
                return _row_to_counter(result.fetchone())
        except IntegrityError as exc:
            # uq_counter_offers_one_pending: a concurrent counter won
            raise CounterOfferPendingError(offer.auction_id) from exc

    async def get_counter_offer(self, counter_id: str) -> CounterOffer | None:
        async with self._session() as db:
            result = await db.execute(_GET_COUNTER_SQL, {"counter_id": counter_id})
            row = result.fetchone()
            return _row_to_counter(row) if row else None

    async def get_pending_counter_offer(self, auction_id: str) -> CounterOffer | None:
        async with self._session() as db:
            result = await db.execute(_GET_PENDING_COUNTER_SQL, {"auction_id": auction_id})
            row = result.fetchone()
            return _row_to_counter(row) if row else None

    async def settle_counter_offer(
        self, counter_id: str, status: str, final_price_cents: int | None
    ) -> bool:
        try:
            async with self._transaction() as db:
                resolved = (
                    await db.execute(
                        _RESOLVE_COUNTER_SQL, {"counter_id": counter_id, "status": enum_value(status)}
                    )
                ).fetchone()
                if resolved is None:
                    raise _GuardFailed
                closed = (
                    await db.execute(
                        _CLOSE_AFTER_COUNTER_SQL,
                        {"counter_id": counter_id, "final_price": final_price_cents},
                    )
                ).fetchone()
                if closed is None:
                    raise _GuardFailed
        except _GuardFailed:
            return False
        return True

    async def withdraw_counter_offers(self, auction_id: str) -> int:
        async with self._transaction() as db:
            result = await db.execute(_WITHDRAW_COUNTERS_SQL, {"auction_id": auction_id})
            return len(result.fetchall())

    # --- notifications ---

    async def insert_notifications(self, notifications: Sequence[Notification]) -> None:
        if not notifications:
            return
        async with self._transaction() as db:
            await db.execute(
                _INSERT_NOTIFICATION_SQL,
                [
                    {
                        "id": n.id,
                        "user_id": n.user_id,
                        "type": enum_value(n.type),
                        "payload": json.dumps(n.payload),
                        "read": n.read,
                    }
                    for n in notifications
                ],
            )

    async def list_notifications(self, user_id: str, limit: int) -> list[Notification]:
        async with self._session() as db:
            result = await db.execute(
                _LIST_NOTIFICATIONS_SQL, {"user_id": user_id, "limit": limit}
            )
            return [_row_to_notification(row) for row in result.fetchall()]

    # --- lifecycle ---

    async def ping(self) -> None:
        async with self._session() as db:
            await db.execute(text("SELECT 1"))

    async def close(self) -> None:
        # The engine is shared and disposed by am_common.database at shutdown
        return None


def _bid_params(bid: Bid) -> dict[str, Any]:
    return {
        "id": bid.id,
        "auction_id": bid.auction_id,
        "bidder_id": bid.bidder_id,
        "amount_cents": bid.amount_cents,
        "created_at": bid.created_at,
    }
