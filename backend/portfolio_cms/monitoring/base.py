import asyncio
import logging
from typing import Optional


class PeriodicMonitor:
    """
    Runs ``run_once`` every ``interval`` seconds on the event loop

    Errors raised by a round are logged and the loop keeps going.
    """

    def __init__(self, interval: float, name: Optional[str] = None):
        self.interval = interval
        self.name = name or self.__class__.__name__
        self.logger = logging.getLogger(self.__class__.__name__)
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=self.name)
        self.logger.info(f"{self.name} started (interval {self.interval:g}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self.logger.info(f"{self.name} stopped")

    async def run_once(self) -> None:
        raise NotImplementedError

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.run_once()
            except Exception as e:
                self.logger.exception(f"{self.name} round failed: {e}")
