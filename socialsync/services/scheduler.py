"""
Polling scheduler.

Badge counts are refreshed on a fixed interval while a view is mounted.
Each timer is owned by a ``TimerHandle``; cancelling the handle (or leaving
a ``scope()`` block) stops it deterministically.
"""
import asyncio
import inspect
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, List, Optional

logger = logging.getLogger(__name__)


class TimerHandle:
    """One repeating timer."""

    def __init__(self, name: str, interval: float, callback: Callable[[], Any], run_immediately: bool = False):
        self.name = name
        self.interval = interval
        self._callback = callback
        self._run_immediately = run_immediately
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.runs = 0

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self):
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())

    async def cancel(self):
        """Stop the timer and wait for the loop to exit. Idempotent."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _tick(self):
        try:
            result = self._callback()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Timer {self.name} tick failed: {e}")
        self.runs += 1

    async def _run_loop(self):
        if self._run_immediately:
            await self._tick()
        while self._running:
            await asyncio.sleep(self.interval)
            if not self._running:
                break
            await self._tick()


class PollingScheduler:
    """Owns every timer started for mounted views."""

    def __init__(self):
        self._timers: List[TimerHandle] = []

    @property
    def active_count(self) -> int:
        return sum(1 for t in self._timers if t.is_running)

    def every(
        self,
        interval: float,
        callback: Callable[[], Any],
        *,
        name: str = "timer",
        run_immediately: bool = False,
    ) -> TimerHandle:
        """Start calling ``callback`` every ``interval`` seconds."""
        handle = TimerHandle(name, interval, callback, run_immediately)
        self._timers.append(handle)
        handle.start()
        logger.debug(f"⏱️ Timer {name} started (every {interval}s)")
        return handle

    async def cancel(self, handle: TimerHandle):
        await handle.cancel()
        if handle in self._timers:
            self._timers.remove(handle)

    @asynccontextmanager
    async def scope(
        self,
        interval: float,
        callback: Callable[[], Any],
        *,
        name: str = "timer",
        run_immediately: bool = False,
    ) -> AsyncIterator[TimerHandle]:
        """Timer bound to a block; cancelled on every exit path."""
        handle = self.every(interval, callback, name=name, run_immediately=run_immediately)
        try:
            yield handle
        finally:
            await self.cancel(handle)

    async def cancel_all(self):
        timers, self._timers = self._timers, []
        for handle in timers:
            await handle.cancel()
        if timers:
            logger.info(f"⏹️ Cancelled {len(timers)} polling timers")
