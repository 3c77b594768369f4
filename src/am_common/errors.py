"""Unified error codes and custom exceptions.

Error code ranges:
  1xxx: Validation (400)
  2xxx: Not found (404)
  3xxx: Identity / authorization (401, 403)
  4xxx: Conflict with auction state (409)
  9xxx: System / configuration (5xx)

Side-channel failures (cache, notifications, broadcast, email, SMS) never
become an AppError; they are logged and swallowed where they happen.
"""


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)

    @property
    def details(self) -> dict[str, object] | None:
        """Machine-readable extras rendered as ApiResponse.data."""
        return None


# --- 1xxx: Validation ---

class BidValidationError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(1001, f"Invalid bid: {detail}", 400)


class AuctionValidationError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(1002, f"Invalid auction request: {detail}", 400)


# --- 2xxx: Not found ---

class AuctionNotFoundError(AppError):
    def __init__(self, auction_id: str) -> None:
        super().__init__(2001, f"Auction not found: {auction_id}", 404)


class CounterOfferNotFoundError(AppError):
    def __init__(self, counter_id: str) -> None:
        super().__init__(2002, f"Counter offer not found: {counter_id}", 404)


# --- 3xxx: Identity / authorization ---

class NotSellerError(AppError):
    def __init__(self, auction_id: str) -> None:
        super().__init__(3001, f"Only the seller may do this on auction {auction_id}", 403)


class NotBuyerError(AppError):
    def __init__(self, counter_id: str) -> None:
        super().__init__(
            3002, f"Only the addressed buyer may reply to counter offer {counter_id}", 403
        )


class MissingIdentityError(AppError):
    def __init__(self) -> None:
        super().__init__(3003, "Missing user identity", 401)


# --- 4xxx: Conflict ---

class AuctionEndedError(AppError):
    def __init__(self, auction_id: str) -> None:
        super().__init__(4001, f"Auction ended: {auction_id}", 409)


class BidTooLowError(AppError):
    def __init__(self, amount_cents: int, min_next_cents: int) -> None:
        self.amount_cents = amount_cents
        self.min_next_cents = min_next_cents
        super().__init__(
            4002,
            f"Bid too low: {amount_cents} cents, minimum next bid is {min_next_cents} cents",
            409,
        )

    @property
    def details(self) -> dict[str, object]:
        return {"amount_cents": self.amount_cents, "min_next_cents": self.min_next_cents}


class AuctionNotLiveError(AppError):
    def __init__(self, auction_id: str) -> None:
        super().__init__(4003, f"Auction is not live yet: {auction_id}", 409)


class AuctionBusyError(AppError):
    def __init__(self, auction_id: str) -> None:
        super().__init__(4004, f"Auction is busy, retry the bid: {auction_id}", 409)


class AuctionClosedError(AppError):
    def __init__(self, auction_id: str) -> None:
        super().__init__(4005, f"Auction already closed: {auction_id}", 409)


class AuctionNotEndedError(AppError):
    def __init__(self, auction_id: str, status: str) -> None:
        super().__init__(
            4006, f"Auction {auction_id} in status {status} has not ended", 409
        )


class NoBidsError(AppError):
    def __init__(self, auction_id: str) -> None:
        super().__init__(4007, f"No bids on auction {auction_id}", 409)


class CounterOfferResolvedError(AppError):
    def __init__(self, counter_id: str, status: str) -> None:
        super().__init__(
            4008, f"Counter offer {counter_id} already resolved ({status})", 409
        )


class CounterOfferPendingError(AppError):
    def __init__(self, auction_id: str) -> None:
        super().__init__(
            4009, f"Auction {auction_id} already has a pending counter offer", 409
        )


# --- 9xxx: System ---

class StoreUnconfiguredError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(9001, f"Storage backend not configured: {detail}", 503)


class StoreUnavailableError(AppError):
    def __init__(self, detail: str = "Storage backend unavailable") -> None:
        super().__init__(9002, detail, 503)
