"""Price Cache: advisory snapshot of an auction's bidding state in Redis.

Key: auction:{id}:price, a hash with fields
  current  current price in cents
  step     bid increment in cents
  endsAt   end of the bidding window, epoch milliseconds

The cache only ever short-circuits a request that the store would reject
anyway; it never accepts a bid. Every Redis failure is logged and swallowed:
a broken cache means every request falls through to the store.

Write-through after a committed bid only raises the cached price, and only
while the cached window (endsAt) is the one the bid was placed in, so a late
write from before a reset cannot resurrect the old price.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

import redis.asyncio as aioredis

from src.am_auction.domain.models import Auction

logger = logging.getLogger(__name__)

# Stale snapshots must not outlive a forgotten invalidate by much
_TTL_SECONDS = 24 * 60 * 60

_RAISE_IF_SAME_WINDOW_LUA = """
local cur = redis.call("HGET", KEYS[1], "current")
if not cur then
    return 0
end
if redis.call("HGET", KEYS[1], "endsAt") ~= ARGV[2] then
    return 0
end
if tonumber(ARGV[1]) > tonumber(cur) then
    redis.call("HSET", KEYS[1], "current", ARGV[1])
    return 1
end
return 0
"""


def _key(auction_id: str) -> str:
    return f"auction:{auction_id}:price"


def _epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


@dataclass(frozen=True)
class PriceSnapshot:
    current_price_cents: int
    bid_increment_cents: int
    ends_at: datetime

    @property
    def min_next_bid_cents(self) -> int:
        return self.current_price_cents + self.bid_increment_cents


class PriceCache:
    """Optional Redis-backed snapshot store. With no client every call is a no-op."""

    def __init__(self, redis: aioredis.Redis | None) -> None:
        self._redis = redis

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    async def get(self, auction_id: str) -> PriceSnapshot | None:
        if self._redis is None:
            return None
        try:
            data = await self._redis.hgetall(_key(auction_id))
        except Exception:  # noqa: BLE001
            logger.warning("Price cache read failed for %s", auction_id, exc_info=True)
            return None
        if not data:
            return None
        try:
            return PriceSnapshot(
                current_price_cents=int(data["current"]),
                bid_increment_cents=int(data["step"]),
                ends_at=datetime.fromtimestamp(int(data["endsAt"]) / 1000, tz=timezone.utc),
            )
        except (KeyError, ValueError):
            logger.warning("Malformed price cache entry for %s: %r", auction_id, data)
            return None

    async def seed(self, auction: Auction) -> None:
        """Overwrite the snapshot from an authoritative auction row."""
        if self._redis is None:
            return
        key = _key(auction.id)
        try:
            pipe = self._redis.pipeline(transaction=True)
            pipe.hset(
                key,
                mapping={
                    "current": str(auction.current_price_cents),
                    "step": str(auction.bid_increment_cents),
                    "endsAt": str(_epoch_ms(auction.ends_at)),
                },
            )
            pipe.expire(key, _TTL_SECONDS)
            await pipe.execute()
        except Exception:  # noqa: BLE001
            logger.warning("Price cache seed failed for %s", auction.id, exc_info=True)

    async def set_price(self, auction_id: str, amount_cents: int, ends_at: datetime) -> None:
        """Write-through after a committed bid."""
        if self._redis is None:
            return
        try:
            await self._redis.eval(
                _RAISE_IF_SAME_WINDOW_LUA,
                1,
                _key(auction_id),
                str(amount_cents),
                str(_epoch_ms(ends_at)),
            )
        except Exception:  # noqa: BLE001
            logger.warning("Price cache write-through failed for %s", auction_id, exc_info=True)

    async def invalidate(self, auction_id: str) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.delete(_key(auction_id))
        except Exception:  # noqa: BLE001
            logger.warning("Price cache invalidate failed for %s", auction_id, exc_info=True)
