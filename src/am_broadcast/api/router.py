"""WebSocket /ws: live event feed.

Every connected viewer receives every broadcast event; per-user ``notify``
events carry a userId and clients ignore the ones not addressed to them.
The server greets each socket with {"type": "hello", "at": ...}. Inbound
messages are read only to notice disconnects, except {"type": "ping"},
which is answered with {"type": "pong"}.
"""

import json
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from src.container import Container, get_container

logger = logging.getLogger(__name__)

router = APIRouter(tags=["live"])


@router.websocket("/ws")
async def live_feed(
    websocket: WebSocket,
    container: Annotated[Container, Depends(get_container)],
) -> None:
    registry = container.registry
    await websocket.accept()
    await registry.add(websocket)
    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                continue
            if isinstance(message, dict) and message.get("type") == "ping":
                await websocket.send_text(json.dumps({"type": "pong"}))
    except WebSocketDisconnect:
        pass
    except Exception:  # noqa: BLE001
        logger.warning("WebSocket session failed", exc_info=True)
    finally:
        registry.remove(websocket)
