"""
Scheduled tasks on the asyncio event loop.

Heartbeats, playback ticks and the stale-session monitor all run as a
PeriodicTask: timer, then async callback, then state update. Once cancel() or
stop() has been called no further callback of that run fires.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Run an async callback every ``interval`` seconds until stopped."""

    def __init__(
        self,
        interval: float,
        callback: Callable[[], Awaitable[None]],
        name: str = "periodic",
        run_immediately: bool = False,
    ):
        """
        Args:
            interval: Seconds between runs
            callback: Coroutine function invoked on every run
            name: Label used in log messages and as the asyncio task name
            run_immediately: Invoke the callback once before the first sleep
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self.name = name
        self._callback = callback
        self._run_immediately = run_immediately
        self._task: Optional[asyncio.Task] = None
        # Bumped on every start/cancel; a run loop exits once it is stale.
        self._generation = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the loop on the running event loop. No-op if already running."""
        if self.running:
            return
        self._generation += 1
        self._task = asyncio.create_task(self._run(self._generation), name=self.name)
        logger.debug(f"Periodic task {self.name} started (interval {self.interval}s)")

    def cancel(self) -> Optional[asyncio.Task]:
        """Stop the loop without waiting. Returns the task that was running."""
        self._generation += 1
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        return task

    async def stop(self) -> None:
        """Cancel the loop and wait until it has finished."""
        task = self.cancel()
        if task is None or task is asyncio.current_task():
            # From inside the callback the loop exits once the callback returns.
            return
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug(f"Periodic task {self.name} stopped")

    async def _run(self, generation: int) -> None:
        if self._run_immediately:
            await self._invoke()
        while generation == self._generation:
            await asyncio.sleep(self.interval)
            if generation != self._generation:
                break
            await self._invoke()

    async def _invoke(self) -> None:
        try:
            await self._callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Periodic task {self.name} failed: {e}", exc_info=True)
