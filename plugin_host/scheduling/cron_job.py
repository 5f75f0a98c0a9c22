"""
Cron job runner.

A CronJob owns one asyncio loop that sleeps until the next firing instant
of its expression and then invokes a synchronous callback. The callback is
expected to hand work off (e.g. spawn a task) and return quickly; the loop
never waits for the work itself.
"""

import asyncio
import logging
from datetime import datetime, tzinfo
from typing import Callable, Optional

from ..utils.task_tracker import TaskTracker
from .clock import Clock
from .cron import next_fire_time, normalize_cron

logger = logging.getLogger(__name__)


class CronJob:
    """Invokes callback at every firing instant of a cron expression."""

    def __init__(
        self,
        name: str,
        expression: str,
        callback: Callable[[], None],
        clock: Clock,
        tracker: TaskTracker,
        tz: Optional[tzinfo] = None,
    ) -> None:
        self.name = name
        self.expression = normalize_cron(expression)
        self._callback = callback
        self._clock = clock
        self._tracker = tracker
        self._tz = tz or clock.tz
        self._task: Optional[asyncio.Task] = None
        self._last_fired: Optional[datetime] = None
        self.next_fire_at: Optional[datetime] = None
        self.tick_count = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the firing loop. No-op if already running."""
        if self.running:
            return
        self._task = self._tracker.create_tracked_task(
            self._run(), name=f"cron:{self.name}"
        )

    def stop(self) -> None:
        """Stop the firing loop. Work already handed off is not affected."""
        task, self._task = self._task, None
        self.next_fire_at = None
        if task is not None and not task.done():
            task.cancel()

    def restart(self) -> None:
        self.stop()
        self.start()

    async def _run(self) -> None:
        while True:
            now = self._clock.now()
            # Never fire the same instant twice if a sleep wakes up early
            reference = now
            if self._last_fired is not None and self._last_fired > now:
                reference = self._last_fired
            fire_at = next_fire_time(self.expression, reference, self._tz)
            self.next_fire_at = fire_at

            await self._clock.sleep((fire_at - now).total_seconds())

            self._last_fired = fire_at
            self.tick_count += 1
            try:
                self._callback()
            except Exception as e:
                logger.error(f"Cron callback for {self.name} failed: {e}", exc_info=True)

    def __repr__(self) -> str:
        return (
            f"<CronJob name={self.name!r} expression={self.expression!r} "
            f"running={self.running}>"
        )
