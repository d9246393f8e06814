"""Cancellable waits and a periodic timer for the polling loops."""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class StopToken:
    """One-shot stop signal that loops can wait on instead of sleeping."""

    def __init__(self):
        self._event = asyncio.Event()

    def stop(self) -> None:
        self._event.set()

    @property
    def stopped(self) -> bool:
        return self._event.is_set()

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """Sleep up to `timeout` seconds. Returns True if stop was requested."""
        if timeout is not None and timeout <= 0:
            return self._event.is_set()
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True


class PeriodicTask:
    """Runs `action` every `interval` seconds until stopped.

    A failing tick is logged and the timer keeps going.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        action: Callable[[], Awaitable[None]],
        run_immediately: bool = False,
    ):
        self.name = name
        self.interval = interval
        self.action = action
        self.run_immediately = run_immediately
        self.ticks = 0
        self._token = StopToken()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._token = StopToken()
        self._task = asyncio.create_task(self._run(), name=f"periodic-{self.name}")
        logger.info(f"Started {self.name} timer (every {self.interval:.0f}s)")

    async def stop(self) -> None:
        self._token.stop()
        if self._task is not None:
            try:
                await self._task
            finally:
                self._task = None

    async def _run(self) -> None:
        if self.run_immediately:
            await self._tick()
        while not await self._token.wait(self.interval):
            await self._tick()

    async def _tick(self) -> None:
        self.ticks += 1
        try:
            await self.action()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{self.name} tick failed: {e}", exc_info=True)
