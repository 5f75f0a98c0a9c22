"""
Cron scheduling for plugin tasks.

clock      - wall/monotonic time and sleeping, injectable for tests
cron       - pure five-field cron evaluation (croniter)
cron_job   - an asyncio loop that invokes a callback at each firing instant
supervisor - per-task state, error streaks, quarantine and stuck restarts
"""

from .clock import Clock, SystemClock
from .cron import next_fire_time, validate_cron
from .cron_job import CronJob
from .supervisor import ScheduledTask, TaskState, TaskSupervisor, task_key

__all__ = [
    "Clock",
    "SystemClock",
    "CronJob",
    "ScheduledTask",
    "TaskState",
    "TaskSupervisor",
    "next_fire_time",
    "task_key",
    "validate_cron",
]
