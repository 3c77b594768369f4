"""Auction lifecycle transitions: allowed source states and request validation.

    scheduled --start/promote--> live --end/expire--> ended --decide/counter reply--> closed
    any non-closed --reset--> scheduled (price back to the starting price)
    any non-closed --start--> live (window restarted)

Each write-side transition is a guarded store update; the guard is what makes
concurrent transitions (manual end racing the sweep, two decisions) safe.
"""

from datetime import datetime, timedelta

from src.am_auction.domain.repository import AuctionGuard, AuctionPatch
from src.am_common.enums import AuctionStatus
from src.am_common.errors import AuctionValidationError

MIN_RUN_MINUTES = 1
MAX_RUN_MINUTES = 7 * 24 * 60
MAX_TITLE_LENGTH = 120
MAX_DESCRIPTION_LENGTH = 2000

NOT_CLOSED = (AuctionStatus.SCHEDULED, AuctionStatus.LIVE, AuctionStatus.ENDED)
ENDABLE = (AuctionStatus.SCHEDULED, AuctionStatus.LIVE)
DECIDABLE = (AuctionStatus.ENDED,)


def check_run_minutes(minutes: int) -> int:
    if isinstance(minutes, bool) or not isinstance(minutes, int):
        raise AuctionValidationError(f"minutes must be an integer, got {minutes!r}")
    if not (MIN_RUN_MINUTES <= minutes <= MAX_RUN_MINUTES):
        raise AuctionValidationError(
            f"minutes {minutes} out of range [{MIN_RUN_MINUTES}, {MAX_RUN_MINUTES}]"
        )
    return minutes


def check_new_auction(
    title: str,
    description: str | None,
    starting_price_cents: int,
    bid_increment_cents: int,
    duration_minutes: int,
) -> None:
    if not title or not title.strip():
        raise AuctionValidationError("title is required")
    if len(title) > MAX_TITLE_LENGTH:
        raise AuctionValidationError(f"title longer than {MAX_TITLE_LENGTH} characters")
    if description is not None and len(description) > MAX_DESCRIPTION_LENGTH:
        raise AuctionValidationError(
            f"description longer than {MAX_DESCRIPTION_LENGTH} characters"
        )
    if isinstance(starting_price_cents, bool) or not isinstance(starting_price_cents, int):
        raise AuctionValidationError("starting price must be integer cents")
    if starting_price_cents < 0:
        raise AuctionValidationError("starting price must be >= 0")
    if isinstance(bid_increment_cents, bool) or not isinstance(bid_increment_cents, int):
        raise AuctionValidationError("bid increment must be integer cents")
    if bid_increment_cents <= 0:
        raise AuctionValidationError("bid increment must be > 0")
    check_run_minutes(duration_minutes)


def initial_status(go_live_at: datetime, now: datetime) -> AuctionStatus:
    return AuctionStatus.SCHEDULED if go_live_at > now else AuctionStatus.LIVE


def start_update(now: datetime, minutes: int) -> tuple[AuctionPatch, AuctionGuard]:
    return (
        AuctionPatch(
            status=AuctionStatus.LIVE,
            go_live_at=now,
            ends_at=now + timedelta(minutes=minutes),
        ),
        AuctionGuard(statuses=NOT_CLOSED),
    )


def reset_update(now: datetime, minutes: int) -> tuple[AuctionPatch, AuctionGuard]:
    return (
        AuctionPatch(
            status=AuctionStatus.SCHEDULED,
            go_live_at=now,
            ends_at=now + timedelta(minutes=minutes),
            reset_price=True,
        ),
        AuctionGuard(statuses=NOT_CLOSED),
    )


def end_update() -> tuple[AuctionPatch, AuctionGuard]:
    return AuctionPatch(status=AuctionStatus.ENDED), AuctionGuard(statuses=ENDABLE)


def expire_update(now: datetime) -> tuple[AuctionPatch, AuctionGuard]:
    """Sweep: only rows whose window has really passed at write time."""
    return AuctionPatch(status=AuctionStatus.ENDED), AuctionGuard(statuses=ENDABLE, ended_by=now)


def promote_update(now: datetime) -> tuple[AuctionPatch, AuctionGuard]:
    return (
        AuctionPatch(status=AuctionStatus.LIVE),
        AuctionGuard(statuses=(AuctionStatus.SCHEDULED,), open_at=now),
    )


def close_update() -> tuple[AuctionPatch, AuctionGuard]:
    return AuctionPatch(status=AuctionStatus.CLOSED), AuctionGuard(statuses=DECIDABLE)
