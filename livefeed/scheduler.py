"""Cancellable periodic tasks owned by the component that starts them."""

import asyncio
import logging

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Run an async callback now and then every `interval` seconds until stopped.

    `sleep` is injectable so tests can drive the schedule without a real clock.
    """

    def __init__(self, name: str, interval: float, callback, sleep=asyncio.sleep):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self._callback = callback
        self._sleep = sleep
        self._task: asyncio.Task | None = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=f"periodic-{self.name}")

    async def stop(self):
        """Cancel the loop and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _loop(self):
        while True:
            try:
                await self._callback()
            except Exception:
                logger.exception("Periodic task %s failed", self.name)
            self.runs += 1
            await self._sleep(self.interval)
