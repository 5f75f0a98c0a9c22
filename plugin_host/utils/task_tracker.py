"""
Task Tracker for Graceful Shutdown

Tracks background asyncio tasks (cron loops, scheduled fires, monitor
loops) so the host can cancel them on shutdown and give in-flight work a
grace period.
"""

import asyncio
import logging
from typing import Coroutine, Optional, Set

logger = logging.getLogger(__name__)


class TaskTracker:
    """Registry of asyncio tasks owned by one host instance."""

    def __init__(self) -> None:
        self._active_tasks: Set[asyncio.Task] = set()

    def create_tracked_task(
        self,
        coro: Coroutine,
        name: Optional[str] = None,
    ) -> asyncio.Task:
        """
        Create an asyncio task and track it until it finishes.

        Args:
            coro: The coroutine to run as a task
            name: Optional name for the task (for debugging)

        Returns:
            The created task
        """
        task = asyncio.create_task(coro, name=name)
        self._active_tasks.add(task)

        def _on_done(t: asyncio.Task) -> None:
            self._active_tasks.discard(t)
            task_name = t.get_name()
            if t.cancelled():
                logger.debug(f"Task cancelled: {task_name}")
            elif t.exception():
                exc = t.exception()
                assert exc is not None  # guarded by elif above
                logger.error(
                    f"Task failed: {task_name}",
                    exc_info=(type(exc), exc, exc.__traceback__),
                )
            else:
                logger.debug(f"Task completed: {task_name}")

        task.add_done_callback(_on_done)
        return task

    def get_active_tasks(self) -> Set[asyncio.Task]:
        """Get the set of currently active tracked tasks."""
        return self._active_tasks.copy()

    def get_active_task_count(self) -> int:
        """Get the count of active tasks."""
        return len(self._active_tasks)

    async def wait_for_tasks(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for all tracked tasks to complete.

        Args:
            timeout: Maximum time to wait (None = wait forever)

        Returns:
            True if every task finished within the timeout
        """
        tasks = [t for t in self._active_tasks if t is not asyncio.current_task()]
        if not tasks:
            return True

        logger.info(f"Waiting for {len(tasks)} tasks to complete...")
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            logger.warning(f"Timeout waiting for tasks. Remaining: {len(pending)}")
            return False
        return True

    async def cancel_all_tasks(self, timeout: float = 5.0) -> int:
        """
        Cancel all tracked tasks and wait for them to complete.

        Args:
            timeout: Maximum time to wait for tasks to cancel

        Returns:
            Number of tasks that were cancelled
        """
        current = asyncio.current_task()
        tasks_to_cancel = [t for t in self._active_tasks if t is not current]
        if not tasks_to_cancel:
            return 0

        count = len(tasks_to_cancel)
        logger.info(f"Cancelling {count} active tasks...")

        for task in tasks_to_cancel:
            if not task.done():
                task.cancel()

        try:
            await asyncio.wait_for(
                asyncio.gather(*tasks_to_cancel, return_exceptions=True),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Timeout waiting for tasks to cancel. "
                f"Remaining: {len([t for t in tasks_to_cancel if not t.done()])}"
            )

        cancelled = sum(1 for t in tasks_to_cancel if t.cancelled())
        logger.info(f"Cancelled {cancelled}/{count} tasks")
        return cancelled
