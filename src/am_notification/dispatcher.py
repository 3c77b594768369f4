"""NotificationDispatcher: persists intents and pushes them live.

Delivery is at-least-once and best-effort: the batch insert and each live
push are attempted independently, and failures are logged, never raised.
"""

import logging
from collections.abc import Callable, Sequence

from src.am_auction.domain.models import Notification
from src.am_auction.domain.repository import AuctionStoreProtocol
from src.am_broadcast import events
from src.am_broadcast.registry import BroadcastRegistry
from src.am_common.datetime_utils import Clock, utc_now
from src.am_common.id_generator import generate_id
from src.am_notification.fanout import NotificationIntent

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    def __init__(
        self,
        store: AuctionStoreProtocol,
        registry: BroadcastRegistry,
        clock: Clock = utc_now,
        id_factory: Callable[[], str] = generate_id,
    ) -> None:
        self._store = store
        self._registry = registry
        self._clock = clock
        self._id_factory = id_factory

    async def deliver(self, intents: Sequence[NotificationIntent]) -> int:
        """Persist all intents as one batch, then broadcast one notify event each.

        Returns the number of notifications persisted (0 when the insert failed).
        """
        if not intents:
            return 0
        now = self._clock()
        rows = [
            Notification(
                id=self._id_factory(),
                user_id=intent.user_id,
                type=intent.type,
                payload=dict(intent.payload),
                created_at=now,
            )
            for intent in intents
        ]
        persisted = 0
        try:
            await self._store.insert_notifications(rows)
            persisted = len(rows)
        except Exception:  # noqa: BLE001
            logger.warning(
                "Notification insert failed for %d recipients", len(rows), exc_info=True
            )

        for intent in intents:
            try:
                await self._registry.broadcast(
                    events.notify(intent.user_id, intent.type, intent.payload, now)
                )
            except Exception:  # noqa: BLE001
                logger.warning("Notify push failed for user %s", intent.user_id, exc_info=True)
        return persisted
