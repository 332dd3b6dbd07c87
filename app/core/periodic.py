"""Repeating background task with a cancellation handle."""

import asyncio
from typing import Awaitable, Callable, Optional

from app.core.logging import logger


class PeriodicTask:
    """
    Run an async callback every ``interval`` seconds on the running loop.

    A tick is skipped while the previous run is still in flight, so two runs
    of the callback never overlap.
    """

    def __init__(
        self,
        name: str,
        callback: Callable[[], Awaitable[object]],
        interval: float,
    ):
        self.name = name
        self.callback = callback
        self.interval = interval
        self._loop_task: Optional[asyncio.Task] = None
        self._current: Optional[asyncio.Task] = None
        self.skipped_ticks = 0

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def busy(self) -> bool:
        return self._current is not None and not self._current.done()

    def start(self) -> None:
        if self.running:
            return
        self._loop_task = asyncio.create_task(self._run(), name=f"periodic:{self.name}")
        logger.info(f"Periodic task '{self.name}' started (every {self.interval}s)")

    def stop(self) -> None:
        """Cancel the loop. An in-flight run is cancelled, not awaited."""
        if self._loop_task:
            self._loop_task.cancel()
            self._loop_task = None
        if self._current and not self._current.done():
            self._current.cancel()
        self._current = None
        logger.info(f"Periodic task '{self.name}' stopped")

    def tick(self) -> Optional[asyncio.Task]:
        """Launch one run unless the previous one is still going."""
        if self.busy:
            self.skipped_ticks += 1
            logger.warning(f"Periodic task '{self.name}' still running, skipping tick")
            return None
        self._current = asyncio.create_task(self._guarded())
        return self._current

    async def _guarded(self) -> None:
        try:
            await self.callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Periodic task '{self.name}' failed: {e}")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.tick()
