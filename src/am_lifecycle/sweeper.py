"""AuctionSweeper: periodic driver of time-based lifecycle transitions.

Every interval it promotes scheduled auctions whose start time has come and
ends auctions whose window has passed. A failed pass is logged and the loop
carries on; it holds no lock across auctions, so running several sweepers
(one per process) is safe.
"""

import asyncio
import logging

from src.am_lifecycle.service import AuctionLifecycleService

logger = logging.getLogger(__name__)


class AuctionSweeper:
    def __init__(self, service: AuctionLifecycleService, interval_seconds: float = 5.0) -> None:
        self._service = service
        self._interval = interval_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> tuple[int, int]:
        """One pass. Returns (started, ended) counts."""
        started = await self._service.promote_due()
        ended = await self._service.expire_due()
        return len(started), len(ended)

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001
                logger.exception("Auction sweep pass failed")
            await asyncio.sleep(self._interval)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="auction-sweeper")
        logger.info("Auction sweeper started (every %.1fs)", self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Auction sweeper stopped")
