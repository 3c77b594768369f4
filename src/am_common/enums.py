"""Global enums: must match DB CHECK constraints exactly."""

from enum import Enum


class AuctionStatus(str, Enum):
    SCHEDULED = "scheduled"
    LIVE = "live"
    ENDED = "ended"
    CLOSED = "closed"


class CounterOfferStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class DecisionAction(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    COUNTER = "counter"


class BroadcastType(str, Enum):
    """Stable event tags consumed by connected viewers."""
    HELLO = "hello"
    BID_ACCEPTED = "bid:accepted"
    AUCTION_STARTED = "auction:started"
    AUCTION_RESET = "auction:reset"
    AUCTION_ENDED = "auction:ended"
    AUCTION_ACCEPTED = "auction:accepted"
    AUCTION_REJECTED = "auction:rejected"
    OFFER_COUNTER = "offer:counter"
    OFFER_ACCEPTED = "offer:accepted"
    OFFER_REJECTED = "offer:rejected"
    NOTIFY = "notify"


class NotificationType(str, Enum):
    BID_OUTBID = "bid:outbid"
    BID_NEW = "bid:new"
    BID_UPDATE = "bid:update"
    AUCTION_ENDED = "auction:ended"
    OFFER_ACCEPTED = "offer:accepted"
    OFFER_REJECTED = "offer:rejected"
    OFFER_COUNTER = "offer:counter"


def enum_value(value: "str | Enum") -> str:
    """Plain string for a status or type tag, whether given as a member or a raw string."""
    return value.value if isinstance(value, Enum) else value
