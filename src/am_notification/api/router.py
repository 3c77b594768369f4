"""GET /notifications: the caller's latest notifications, newest first."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from src.am_auction.application.schemas import NotificationOut
from src.am_common.response import ApiResponse, success_response
from src.am_gateway.identity import get_current_user_id
from src.container import Container, get_container

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
async def list_notifications(
    request: Request,
    user_id: Annotated[str, Depends(get_current_user_id)],
    container: Annotated[Container, Depends(get_container)],
) -> ApiResponse:
    rows = await container.lifecycle.list_notifications(user_id)
    resp = success_response({"items": [NotificationOut.from_domain(n).model_dump() for n in rows]})
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp
