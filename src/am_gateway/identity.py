"""FastAPI dependency: get_current_user_id.

Authentication happens upstream; by the time a request reaches this service
the caller's identity is an opaque user id in the X-User-Id header.

Usage in any protected router:
    from src.am_gateway.identity import get_current_user_id

    @router.post("/protected")
    async def protected(user_id: Annotated[str, Depends(get_current_user_id)]):
        ...
"""

from typing import Annotated

from fastapi import Header

from src.am_common.errors import MissingIdentityError

USER_ID_HEADER = "X-User-Id"


async def get_current_user_id(
    x_user_id: Annotated[str | None, Header(alias=USER_ID_HEADER)] = None,
) -> str:
    """Return the caller's user id, or raise 401 MissingIdentityError."""
    if x_user_id is None or not x_user_id.strip():
        raise MissingIdentityError()
    return x_user_id.strip()
