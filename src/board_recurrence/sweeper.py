import asyncio
import logging
from datetime import date
from typing import Callable, List, Optional

from board_recurrence.config import RecurrenceSettings
from board_recurrence.controller import SeriesController
from board_recurrence.domain.task import FireResult

logger = logging.getLogger(__name__)


class RecurrenceSweeper:
    """
    Periodically generates due instances for every recurring template using asyncio.
    """

    def __init__(
        self,
        controller: SeriesController,
        settings: Optional[RecurrenceSettings] = None,
        clock: Optional[Callable[[], date]] = None,
    ):
        self.controller: SeriesController = controller
        self.settings: RecurrenceSettings = settings or controller.settings
        self.clock: Callable[[], date] = clock or controller.clock
        self.sweep_task: Optional[asyncio.Task] = None
        self.is_running: bool = False
        self.sweep_count: int = 0

    async def start(self):
        """
        Start the sweep loop.
        """
        if not self.is_running:
            self.is_running = True
            self.sweep_task = asyncio.create_task(self._sweep_loop())
            logger.info("RecurrenceSweeper started (every %ss)", self.settings.sweep_interval_seconds)

    async def stop(self):
        """
        Stop the sweep loop and wait for it to exit.
        """
        if self.is_running:
            self.is_running = False
            if self.sweep_task:
                self.sweep_task.cancel()
                try:
                    await self.sweep_task
                except asyncio.CancelledError:
                    pass
                self.sweep_task = None
            logger.info("RecurrenceSweeper stopped.")

    async def run_once(self) -> List[FireResult]:
        results = await self.controller.generate_due(today=self.clock())
        self.sweep_count += 1
        return results

    async def _sweep_loop(self):
        while self.is_running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error in recurrence sweep")
            await asyncio.sleep(self.settings.sweep_interval_seconds)
