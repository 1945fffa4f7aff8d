"""
Background award deadline sweep.

Periodically declines award offers whose response deadline passed. Reads
already expire lazily; the sweep makes sure standbys get promoted even when
nobody looks at a requisition.
"""
import asyncio
import logging
from typing import Optional

from backend.services.award_service import AwardService, get_award_service

logger = logging.getLogger(__name__)


class DeadlineSweeper:
    """Runs ``AwardService.sweep_expired_awards`` every ``interval_seconds``."""

    def __init__(self, interval_seconds: int, service: Optional[AwardService] = None):
        self.interval_seconds = interval_seconds
        self.service = service or get_award_service()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.interval_seconds <= 0 or self.running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info("[DeadlineSweeper] Started (every %ds)", self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("[DeadlineSweeper] Stopped")

    async def sweep_once(self) -> int:
        # Services block on the database; keep them off the event loop
        return await asyncio.to_thread(self.service.sweep_expired_awards)

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.sweep_once()
            except Exception as e:
                logger.error(f"[DeadlineSweeper] Sweep failed: {e}", exc_info=True)
