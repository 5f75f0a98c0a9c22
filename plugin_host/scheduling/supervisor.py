"""
Scheduled Task Supervisor.

Owns every plugin's cron tasks: registers them, runs each firing, counts
consecutive failures and quarantines a task whose error streak exceeds
the threshold. Fires of one task never overlap; a firing that arrives
while the previous one is still running is dropped.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Set

from ..core.typed_config import HostLimits
from ..domain.errors import (
    FailureKind,
    InvalidCronExpression,
    TaskRegistrationFailure,
)
from ..utils.invoke import Handler, call_handler, read_field, summarize_error
from ..utils.logging import log_plugin_event
from ..utils.task_tracker import TaskTracker
from .clock import Clock
from .cron import validate_cron
from .cron_job import CronJob

if TYPE_CHECKING:
    from ..plugins.metrics import MetricsStore
    from ..plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)


class TaskState(Enum):
    """Scheduled task lifecycle states."""

    SCHEDULED = "scheduled"
    RUNNING = "running"
    QUARANTINED = "quarantined"
    CANCELLED = "cancelled"


def task_key(plugin_name: str, task_name: str) -> str:
    return f"{plugin_name}/{task_name}"


@dataclass
class ScheduledTask:
    """One cron task belonging to exactly one plugin."""

    plugin_name: str
    name: str
    cron: str
    handler: Handler
    registered_at: datetime
    description: str = ""
    last_run: Optional[datetime] = None
    last_fired_at: Optional[datetime] = None
    last_error: Optional[str] = None
    error_streak: int = 0
    state: TaskState = TaskState.SCHEDULED
    job: Optional[CronJob] = field(default=None, repr=False)

    @property
    def key(self) -> str:
        return task_key(self.plugin_name, self.name)

    @property
    def active(self) -> bool:
        return self.job is not None and self.job.running

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "plugin": self.plugin_name,
            "name": self.name,
            "schedule": self.cron,
            "description": self.description,
            "state": self.state.value,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_fired_at": (
                self.last_fired_at.isoformat() if self.last_fired_at else None
            ),
            "last_error": self.last_error,
            "error_streak": self.error_streak,
            "active": self.active,
            "next_fire_at": (
                self.job.next_fire_at.isoformat()
                if self.job is not None and self.job.next_fire_at
                else None
            ),
        }


class TaskSupervisor:
    """
    Registers, fires and supervises plugin cron tasks.

    Cron loops only run after start(); before that, tasks can still be
    fired manually via fire().
    """

    def __init__(
        self,
        registry: "PluginRegistry",
        metrics: "MetricsStore",
        clock: Clock,
        tracker: TaskTracker,
        limits: Optional[HostLimits] = None,
    ) -> None:
        self._registry = registry
        self._metrics = metrics
        self._clock = clock
        self._tracker = tracker
        self._limits = limits or HostLimits()
        self._tasks: Dict[str, ScheduledTask] = {}
        # Keys whose tick-spawned fire has not started running yet
        self._pending: Set[str] = set()
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    # === Registration ===

    def register_tasks(self, plugin_name: str, descriptors: Iterable[Any]) -> List[str]:
        """
        Register a plugin's task descriptors.

        Invalid descriptors are skipped with a warning; the rest are
        registered in state `scheduled`.

        Returns:
            Keys of the registered tasks
        """
        if descriptors is None:
            return []
        if isinstance(descriptors, (str, bytes)) or not hasattr(descriptors, "__iter__"):
            logger.warning(
                f"Plugin {plugin_name} scheduled tasks must be a list, "
                f"got {type(descriptors).__name__}"
            )
            return []

        registered = []
        for descriptor in descriptors:
            try:
                task = self._build_task(plugin_name, descriptor)
            except TaskRegistrationFailure as e:
                logger.warning(str(e))
                log_plugin_event(
                    "task_registration_failed",
                    level="warning",
                    kind=FailureKind.TASK_REGISTRATION.value,
                    plugin=plugin_name,
                    task=e.task_name,
                    reason=e.reason,
                )
                continue

            task.job = CronJob(
                name=task.key,
                expression=task.cron,
                callback=lambda key=task.key: self._on_tick(key),
                clock=self._clock,
                tracker=self._tracker,
            )
            self._tasks[task.key] = task
            if self._started:
                task.job.start()

            registered.append(task.key)
            logger.info(f"Scheduled task: {task.key} - {task.cron}")

        return registered

    def _build_task(self, plugin_name: str, descriptor: Any) -> ScheduledTask:
        name = read_field(descriptor, "name")
        schedule = read_field(descriptor, "schedule")
        handler = read_field(descriptor, "handler")

        if not name:
            raise TaskRegistrationFailure(plugin_name, None, "missing name")
        name = str(name)
        if not schedule:
            raise TaskRegistrationFailure(plugin_name, name, "missing schedule")
        if handler is None or not callable(handler):
            raise TaskRegistrationFailure(plugin_name, name, "missing handler")
        if not validate_cron(schedule):
            raise InvalidCronExpression(plugin_name, name, str(schedule))

        key = task_key(plugin_name, name)
        if key in self._tasks:
            raise TaskRegistrationFailure(plugin_name, name, "duplicate task name")

        return ScheduledTask(
            plugin_name=plugin_name,
            name=name,
            cron=" ".join(str(schedule).split()),
            handler=handler,
            registered_at=self._clock.now(),
            description=str(read_field(descriptor, "description", default="")),
        )

    # === Firing ===

    def _on_tick(self, key: str) -> None:
        """Cron callback: start a fire unless the previous one is still running."""
        task = self._tasks.get(key)
        if task is None:
            return
        if task.state is TaskState.RUNNING or key in self._pending:
            logger.info(f"Dropping firing of {key}: previous run still in progress")
            log_plugin_event(
                "scheduled_fire_dropped",
                kind=FailureKind.OVERLAP_SKIP.value,
                plugin=task.plugin_name,
                task=task.name,
            )
            return

        self._pending.add(key)
        self._tracker.create_tracked_task(self._fire_from_tick(task), name=f"fire:{key}")

    async def _fire_from_tick(self, task: ScheduledTask) -> None:
        try:
            if self._tasks.get(task.key) is not task:
                # Re-registered (e.g. by a reload) after this tick was spawned
                logger.info(f"Skipping stale firing of {task.key}")
                return
            await self._fire_task(task)
        finally:
            if self._tasks.get(task.key) is task:
                self._pending.discard(task.key)

    async def fire(self, plugin_name: str, task_name: str) -> bool:
        """
        Run one firing of a task.

        Skips (returning False) when the task is unknown, its plugin is
        missing or disabled, the task is quarantined or cancelled, or a
        previous fire is still running.

        Returns:
            True if the handler ran and succeeded
        """
        key = task_key(plugin_name, task_name)
        task = self._tasks.get(key)
        if task is None:
            logger.warning(f"Scheduled task {key} not registered, skipping")
            return False
        return await self._fire_task(task)

    async def _fire_task(self, task: ScheduledTask) -> bool:
        key = task.key
        if not self._registry.is_enabled(task.plugin_name):
            logger.info(f"Skipping scheduled task {key}: plugin missing or disabled")
            return False

        if task.state is TaskState.QUARANTINED or task.state is TaskState.CANCELLED:
            logger.info(f"Skipping scheduled task {key}: {task.state.value}")
            return False

        if task.state is TaskState.RUNNING:
            logger.info(f"Skipping scheduled task {key}: previous run still in progress")
            return False

        return await self._execute(task)

    async def _execute(self, task: ScheduledTask) -> bool:
        task.state = TaskState.RUNNING
        task.last_fired_at = self._clock.now()
        logger.info(f"Executing scheduled task: {task.key}")

        try:
            await call_handler(task.handler)
        except Exception as e:
            task.error_streak += 1
            task.last_error = summarize_error(e)
            self._metrics.record_scheduled_error(task.plugin_name)
            logger.error(
                f"Scheduled task error {task.key} "
                f"(streak {task.error_streak}): {task.last_error}",
                exc_info=True,
            )

            if task.state is not TaskState.RUNNING:
                # Cancelled while running; leave it cancelled
                return False
            if task.error_streak > self._limits.quarantine_threshold:
                self._quarantine(task)
            else:
                task.state = TaskState.SCHEDULED
            return False

        task.last_run = self._clock.now()
        task.error_streak = 0
        task.last_error = None
        if task.state is TaskState.RUNNING:
            task.state = TaskState.SCHEDULED
        logger.info(f"Scheduled task completed: {task.key}")
        return True

    def _quarantine(self, task: ScheduledTask) -> None:
        if task.job is not None:
            task.job.stop()
        task.state = TaskState.QUARANTINED
        logger.warning(
            f"Quarantining scheduled task {task.key} after "
            f"{task.error_streak} consecutive failures"
        )
        log_plugin_event(
            "scheduled_task_quarantined",
            level="warning",
            kind=FailureKind.SCHEDULED.value,
            plugin=task.plugin_name,
            task=task.name,
            error_streak=task.error_streak,
        )

    # === Cancellation and recovery ===

    def cancel_plugin_tasks(self, plugin_name: str) -> int:
        """Stop and remove every task of a plugin. Returns how many were cancelled."""
        keys = [k for k, t in self._tasks.items() if t.plugin_name == plugin_name]
        for key in keys:
            task = self._tasks.pop(key)
            self._cancel(task)
        if keys:
            logger.info(f"Cancelled {len(keys)} scheduled tasks for {plugin_name}")
        return len(keys)

    def cancel_all(self) -> int:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            self._cancel(task)
        if tasks:
            logger.info(f"Cleared all {len(tasks)} scheduled tasks")
        return len(tasks)

    def _cancel(self, task: ScheduledTask) -> None:
        try:
            if task.job is not None:
                task.job.stop()
        except Exception as e:
            logger.warning(f"Failed to stop task {task.key}: {e}")
        task.state = TaskState.CANCELLED
        self._pending.discard(task.key)

    def is_stuck(self, task: ScheduledTask, now: Optional[datetime] = None) -> bool:
        """A failing task that has not run successfully within the stuck threshold."""
        if task.error_streak <= 0:
            return False
        now = now or self._clock.now()
        reference = task.last_run or task.registered_at
        elapsed = (now - reference).total_seconds()
        return elapsed > self._limits.stuck_threshold_seconds

    def restart_stuck(self, key: str) -> bool:
        """
        Restart a stuck task's cron loop and clear its error streak.

        Quarantined and running tasks are left alone.

        Returns:
            True if the task was restarted
        """
        task = self._tasks.get(key)
        if task is None or task.state is not TaskState.SCHEDULED:
            return False
        if not self.is_stuck(task):
            return False

        previous_streak = task.error_streak
        try:
            if task.job is not None and self._started:
                task.job.restart()
        except Exception as e:
            logger.error(f"Failed to restart task {key}: {e}")
            return False

        task.error_streak = 0
        logger.warning(f"Restarted stuck scheduled task: {key}")
        log_plugin_event(
            "scheduled_task_restarted",
            level="warning",
            plugin=task.plugin_name,
            task=task.name,
            previous_error_streak=previous_streak,
        )
        return True

    # === Lifecycle ===

    def start(self) -> None:
        """Start cron loops for all registered, non-quarantined tasks."""
        self._started = True
        for task in self._tasks.values():
            if task.state is TaskState.SCHEDULED and task.job is not None:
                task.job.start()
        logger.info(f"Task supervisor started with {len(self._tasks)} tasks")

    def stop(self) -> None:
        """Stop all cron loops without forgetting the tasks."""
        self._started = False
        for task in self._tasks.values():
            if task.job is not None:
                task.job.stop()

    # === Inspection ===

    def get(self, key: str) -> Optional[ScheduledTask]:
        return self._tasks.get(key)

    def tasks(self, plugin_name: Optional[str] = None) -> List[ScheduledTask]:
        tasks = list(self._tasks.values())
        if plugin_name is not None:
            tasks = [t for t in tasks if t.plugin_name == plugin_name]
        return tasks

    def status(self) -> Dict[str, Any]:
        """Summary and per-task rows for operators."""
        now = self._clock.now()
        rows = [t.to_dict() for t in self._tasks.values()]
        tasks = list(self._tasks.values())
        return {
            "total": len(tasks),
            "active": sum(1 for t in tasks if t.active),
            "running": sum(1 for t in tasks if t.state is TaskState.RUNNING),
            "quarantined": sum(1 for t in tasks if t.state is TaskState.QUARANTINED),
            "stuck": sum(1 for t in tasks if self.is_stuck(t, now)),
            "tasks": rows,
        }

    def __len__(self) -> int:
        return len(self._tasks)
