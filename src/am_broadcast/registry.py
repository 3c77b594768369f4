"""BroadcastRegistry: fan-out of live events to every connected viewer.

One registry per process, created at app start and closed at shutdown.
Local delivery serialises each event once and sends it to every open
session; a session whose send fails is evicted.

With a Redis client the registry also publishes each event on a shared
channel, wrapped as {"origin": <instance id>, "event": {...}}, and a listener
task re-delivers locally every message whose origin is another instance.
Without Redis, or when the channel fails, delivery is local only.
"""

import asyncio
import json
import logging
from typing import Any, Protocol

import redis.asyncio as aioredis

from src.am_broadcast import events
from src.am_common.datetime_utils import Clock, utc_now
from src.am_common.id_generator import generate_instance_id

logger = logging.getLogger(__name__)

_RESUBSCRIBE_DELAY_SECONDS = 1.0


class Session(Protocol):
    """The slice of a WebSocket the registry needs."""

    async def send_text(self, data: str) -> None: ...


class BroadcastRegistry:
    def __init__(
        self,
        redis: aioredis.Redis | None = None,
        channel: str = "ws:broadcast",
        origin: str | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._redis = redis
        self._channel = channel
        self._origin = origin or generate_instance_id()
        self._clock = clock
        self._sessions: set[Session] = set()
        self._listener: asyncio.Task[None] | None = None

    @property
    def origin(self) -> str:
        return self._origin

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    async def add(self, session: Session) -> None:
        """Register an accepted session and greet it."""
        self._sessions.add(session)
        logger.info("Viewer connected (%d open)", len(self._sessions))
        await self._send(session, json.dumps(events.hello(self._clock())))

    def remove(self, session: Session) -> None:
        if session in self._sessions:
            self._sessions.discard(session)
            logger.info("Viewer disconnected (%d open)", len(self._sessions))

    async def broadcast(self, event: dict[str, Any]) -> None:
        """Deliver locally, then publish for the other instances. Never raises."""
        message = json.dumps(event)
        await self._deliver_local(message)
        await self._publish(event)

    async def _deliver_local(self, message: str) -> None:
        for session in list(self._sessions):
            await self._send(session, message)

    async def _send(self, session: Session, message: str) -> None:
        try:
            await session.send_text(message)
        except Exception as exc:  # noqa: BLE001
            logger.info("Evicting viewer after failed send: %s", exc)
            self.remove(session)

    async def _publish(self, event: dict[str, Any]) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.publish(
                self._channel, json.dumps({"origin": self._origin, "event": event})
            )
        except Exception:  # noqa: BLE001
            logger.warning("Broadcast publish failed, delivered locally only", exc_info=True)

    async def handle_channel_message(self, raw: str) -> bool:
        """Re-deliver one message from the shared channel. Returns False if skipped."""
        try:
            envelope = json.loads(raw)
            origin = envelope["origin"]
            event = envelope["event"]
        except (ValueError, KeyError, TypeError):
            logger.warning("Dropping malformed broadcast message: %r", raw)
            return False
        if origin == self._origin:
            return False
        await self._deliver_local(json.dumps(event))
        return True

    # --- listener lifecycle ---

    def start(self) -> None:
        """Start the cross-process listener when a Redis client is configured."""
        if self._redis is None or self._listener is not None:
            return
        self._listener = asyncio.create_task(self._listen(), name="broadcast-listener")
        logger.info("Broadcast listener started on %s (origin=%s)", self._channel, self._origin)

    async def _listen(self) -> None:
        while True:
            pubsub = self._redis.pubsub()
            try:
                await pubsub.subscribe(self._channel)
                async for message in pubsub.listen():
                    if message.get("type") != "message":
                        continue
                    await self.handle_channel_message(message["data"])
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001
                logger.warning("Broadcast listener lost its subscription, retrying", exc_info=True)
                await asyncio.sleep(_RESUBSCRIBE_DELAY_SECONDS)
            finally:
                try:
                    await pubsub.aclose()
                except Exception:  # noqa: BLE001
                    logger.debug("pubsub close failed", exc_info=True)

    async def close(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        self._sessions.clear()
        logger.info("Broadcast registry closed")
