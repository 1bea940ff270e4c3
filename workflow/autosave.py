"""Recurring auto-save of active reviews."""

import asyncio
import contextlib
import logging
from typing import Callable, Iterable, Optional

from workflow.controller import ReviewController

logger = logging.getLogger(__name__)


class AutoSaver:
    """
    Fires autosave_tick() on every controller at a fixed interval.

    There is no backoff: a failed save is simply retried on the next tick.
    """

    def __init__(
        self,
        controllers: Callable[[], Iterable[ReviewController]],
        interval: float = 30.0,
    ):
        self._controllers = controllers
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> int:
        """Run one firing. Returns the number of reviews saved."""
        saved = 0
        for controller in list(self._controllers()):
            if await controller.autosave_tick():
                saved += 1
        return saved

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                saved = await self.tick()
            except Exception:
                logger.exception("Auto-save tick failed")
                continue
            if saved:
                logger.debug("Auto-saved %d reviews", saved)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info("Auto-save started (every %ss)", self.interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Auto-save stopped")
