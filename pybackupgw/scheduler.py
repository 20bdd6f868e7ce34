# pyBackupGW Module - Scheduler
# -*- coding: utf-8 -*-
"""Delayed-task submission on the running event loop.

Timers here are single shot. A repeating timer is a callback that schedules
itself again once it has finished, so a slow callback can never overlap the
next run.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

log = logging.getLogger(__name__)

Callback = Callable[[], Awaitable[None]]


class ScheduledCall:
    """Handle for a pending call. cancel() has no effect once the callback started."""

    def __init__(self, scheduler: "Scheduler", delay: float, callback: Callback, name: Optional[str] = None):
        self.name = name or getattr(callback, '__name__', 'callback')
        self.delay = delay
        self.fired = False
        self.cancelled = False
        self._callback = callback
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)
        scheduler.track(self._task)

    async def _run(self):
        await asyncio.sleep(self.delay)
        self.fired = True
        try:
            await self._callback()
        except Exception:
            log.exception(f"Scheduled call {self.name} failed")

    def cancel(self) -> bool:
        if self.fired or self.cancelled:
            return False
        self.cancelled = True
        self._task.cancel()
        return True

    def done(self) -> bool:
        return self._task.done()


class Scheduler:

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def call_later(self, delay: float, callback: Callback, name: Optional[str] = None) -> ScheduledCall:
        return ScheduledCall(self, delay, callback, name)

    def track(self, task: asyncio.Task) -> None:
        # The loop only keeps weak references to tasks
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def shutdown(self) -> None:
        tasks = [task for task in self._tasks if task is not asyncio.current_task()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
