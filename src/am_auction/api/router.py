"""Auction REST endpoints.

POST /auctions                              create (caller is the seller)
GET  /auctions                              list, filter by status / seller
GET  /auctions/{auction_id}                 detail
GET  /auctions/{auction_id}/bids            bid history, newest first
POST /auctions/{auction_id}/bids            place a bid
GET  /auctions/{auction_id}/winner          current top bid
POST /auctions/{auction_id}/start           (re)open the bidding window
POST /auctions/{auction_id}/reset           back to scheduled at the starting price
POST /auctions/{auction_id}/end             close bidding now
POST /auctions/{auction_id}/decision        accept / reject / counter the top bid
POST /counter-offers/{counter_id}/reply     buyer answers a counter offer
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request

from src.am_auction.application.schemas import (
    AuctionListOut,
    AuctionOut,
    BidListOut,
    BidOut,
    CounterReplyOut,
    CounterReplyRequest,
    CreateAuctionRequest,
    DecisionOut,
    DecisionRequest,
    PlaceBidOut,
    PlaceBidRequest,
    RunWindowRequest,
    WinnerOut,
)
from src.am_common.enums import AuctionStatus, enum_value
from src.am_common.errors import AuctionValidationError
from src.am_common.response import ApiResponse, success_response
from src.am_gateway.identity import get_current_user_id
from src.container import Container, get_container

router = APIRouter(prefix="/auctions", tags=["auctions"])
counter_router = APIRouter(prefix="/counter-offers", tags=["counter-offers"])

_VALID_STATUSES = {s.value for s in AuctionStatus}


def _ok(request: Request, data: object) -> ApiResponse:
    return success_response(data, request_id=getattr(request.state, "request_id", None))


def _parse_statuses(status: str | None) -> list[str] | None:
    if not status:
        return None
    statuses = [s.strip() for s in status.split(",") if s.strip()]
    unknown = [s for s in statuses if s not in _VALID_STATUSES]
    if unknown:
        raise AuctionValidationError(f"unknown status filter {', '.join(unknown)}")
    return statuses or None


@router.post("", status_code=201)
async def create_auction(
    req: CreateAuctionRequest,
    request: Request,
    user_id: Annotated[str, Depends(get_current_user_id)],
    container: Annotated[Container, Depends(get_container)],
) -> ApiResponse:
    auction = await container.lifecycle.create_auction(user_id, req.to_command())
    return _ok(request, AuctionOut.from_domain(auction).model_dump())


@router.get("")
async def list_auctions(
    request: Request,
    container: Annotated[Container, Depends(get_container)],
    status: str | None = Query(None, description="Comma-separated statuses, e.g. live,scheduled"),
    seller_id: str | None = Query(None),
    offset: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
) -> ApiResponse:
    auctions = await container.lifecycle.list_auctions(
        _parse_statuses(status), seller_id, offset, limit
    )
    out = AuctionListOut(
        items=[AuctionOut.from_domain(a) for a in auctions], offset=offset, limit=limit
    )
    return _ok(request, out.model_dump())


@router.get("/{auction_id}")
async def get_auction(
    auction_id: str,
    request: Request,
    container: Annotated[Container, Depends(get_container)],
) -> ApiResponse:
    auction = await container.lifecycle.get_auction(auction_id)
    return _ok(request, AuctionOut.from_domain(auction).model_dump())


@router.get("/{auction_id}/bids")
async def list_bids(
    auction_id: str,
    request: Request,
    container: Annotated[Container, Depends(get_container)],
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
) -> ApiResponse:
    bids = await container.lifecycle.list_bids(auction_id, offset, limit)
    out = BidListOut(items=[BidOut.from_domain(b) for b in bids], offset=offset, limit=limit)
    return _ok(request, out.model_dump())


@router.post("/{auction_id}/bids", status_code=201)
async def place_bid(
    auction_id: str,
    req: PlaceBidRequest,
    request: Request,
    user_id: Annotated[str, Depends(get_current_user_id)],
    container: Annotated[Container, Depends(get_container)],
) -> ApiResponse:
    placed = await container.engine.place_bid(auction_id, user_id, req.amount_cents)
    return _ok(request, PlaceBidOut.from_result(placed).model_dump())


@router.get("/{auction_id}/winner")
async def get_winner(
    auction_id: str,
    request: Request,
    container: Annotated[Container, Depends(get_container)],
) -> ApiResponse:
    auction = await container.lifecycle.get_auction(auction_id)
    top = await container.lifecycle.top_bid(auction_id)
    out = WinnerOut(
        auction_id=auction_id,
        status=enum_value(auction.status),
        top_bid=BidOut.from_domain(top) if top else None,
    )
    return _ok(request, out.model_dump())


@router.post("/{auction_id}/start")
async def start_auction(
    auction_id: str,
    request: Request,
    user_id: Annotated[str, Depends(get_current_user_id)],
    container: Annotated[Container, Depends(get_container)],
    req: RunWindowRequest | None = None,
) -> ApiResponse:
    minutes = req.minutes if req else None
    auction = await container.lifecycle.start(auction_id, user_id, minutes)
    return _ok(request, AuctionOut.from_domain(auction).model_dump())


@router.post("/{auction_id}/reset")
async def reset_auction(
    auction_id: str,
    request: Request,
    user_id: Annotated[str, Depends(get_current_user_id)],
    container: Annotated[Container, Depends(get_container)],
    req: RunWindowRequest | None = None,
) -> ApiResponse:
    minutes = req.minutes if req else None
    auction = await container.lifecycle.reset(auction_id, user_id, minutes)
    return _ok(request, AuctionOut.from_domain(auction).model_dump())


@router.post("/{auction_id}/end")
async def end_auction(
    auction_id: str,
    request: Request,
    user_id: Annotated[str, Depends(get_current_user_id)],
    container: Annotated[Container, Depends(get_container)],
) -> ApiResponse:
    auction = await container.lifecycle.end(auction_id, user_id)
    return _ok(request, AuctionOut.from_domain(auction).model_dump())


@router.post("/{auction_id}/decision")
async def decide(
    auction_id: str,
    req: DecisionRequest,
    request: Request,
    user_id: Annotated[str, Depends(get_current_user_id)],
    container: Annotated[Container, Depends(get_container)],
) -> ApiResponse:
    result = await container.lifecycle.decide(auction_id, user_id, req.action, req.amount_cents)
    return _ok(request, DecisionOut.from_result(result).model_dump())


@counter_router.post("/{counter_id}/reply")
async def reply_to_counter(
    counter_id: str,
    req: CounterReplyRequest,
    request: Request,
    user_id: Annotated[str, Depends(get_current_user_id)],
    container: Annotated[Container, Depends(get_container)],
) -> ApiResponse:
    result = await container.lifecycle.reply_to_counter(counter_id, user_id, req.accept)
    return _ok(request, CounterReplyOut.from_result(result).model_dump())
