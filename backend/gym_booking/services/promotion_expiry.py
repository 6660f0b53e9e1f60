"""
Background sweeper that releases unanswered seat holds.

A promoted user who never answers would otherwise keep the seat forever.
accept_promotion checks the deadline lazily; this worker makes sure the
seat moves on even if the user never comes back.
"""

import asyncio
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gym_booking.core.logging import get_logger
from gym_booking.services.reservation_coordinator import expire_stale_promotions

logger = get_logger(__name__)


class PromotionExpiryWorker:
    """
    Periodically runs expire_stale_promotions in a fresh session.

    One sweep failing (database hiccup) is logged and the next sweep runs
    on schedule.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], interval_seconds: float):
        self._session_factory = session_factory
        self._interval = interval_seconds
        self._task: Optional[asyncio.Task[Any]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep_once(self) -> int:
        async with self._session_factory() as session:
            expired = await expire_stale_promotions(session)
        if expired:
            logger.info("promotion_sweep_completed", expired=expired)
        return expired

    async def _run(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._interval)
                await self.sweep_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("promotion_sweep_failed", error=str(e), exc_info=True)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="promotion-expiry-worker")
        logger.info("promotion_sweeper_started", interval_seconds=self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("promotion_sweeper_stopped")
