"""
Health Monitor.

Two independent loops:

- every health interval: evaluate plugin error rates, average latency and
  scheduled task streaks into a HealthReport, restarting stuck tasks;
- every cascade interval: if the latest report has too many critical
  issues, force a full reload of all plugins.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional

from ..core.typed_config import HostLimits
from ..domain.errors import FailureKind
from ..scheduling.clock import Clock
from ..scheduling.supervisor import TaskState, TaskSupervisor
from ..utils.logging import log_plugin_event
from ..utils.task_tracker import TaskTracker

if TYPE_CHECKING:
    from ..plugins.metrics import MetricsStore
    from ..plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)


@dataclass
class HealthIssue:
    """One finding of a health check."""

    subject: str
    message: str
    critical: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"subject": self.subject, "message": self.message, "critical": self.critical}


@dataclass
class HealthReport:
    """Result of one health check."""

    issues: List[HealthIssue] = field(default_factory=list)
    scheduled_task_counts: Dict[str, int] = field(default_factory=dict)
    last_check_at: Optional[datetime] = None
    restarted_tasks: List[str] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return not self.issues

    @property
    def critical_issue_count(self) -> int:
        return sum(1 for issue in self.issues if issue.critical)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "healthy": self.healthy,
            "issues": [issue.to_dict() for issue in self.issues],
            "critical_issue_count": self.critical_issue_count,
            "scheduled_task_counts": dict(self.scheduled_task_counts),
            "last_check_at": self.last_check_at.isoformat() if self.last_check_at else None,
            "restarted_tasks": list(self.restarted_tasks),
        }


class HealthMonitor:
    """Evaluates plugin health and triggers recovery actions."""

    def __init__(
        self,
        registry: "PluginRegistry",
        metrics: "MetricsStore",
        supervisor: TaskSupervisor,
        clock: Clock,
        tracker: TaskTracker,
        reload_all: Callable[[], Awaitable[Any]],
        limits: Optional[HostLimits] = None,
    ) -> None:
        self._registry = registry
        self._metrics = metrics
        self._supervisor = supervisor
        self._clock = clock
        self._tracker = tracker
        self._reload_all = reload_all
        self._limits = limits or HostLimits()
        self._loops: List[asyncio.Task] = []
        self.latest_report: Optional[HealthReport] = None
        self.cascade_count = 0

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._loops)

    def run_check(self, restart_stuck: bool = True) -> HealthReport:
        """
        Evaluate current metrics and scheduled tasks.

        The report is kept as `latest_report` for the cascade loop and
        operator queries.

        Args:
            restart_stuck: Restart stuck tasks found by the check
        """
        limits = self._limits
        now = self._clock.now()
        snapshot = self._metrics.snapshot()
        report = HealthReport(last_check_at=now)

        for plugin in self._registry.list():
            stats = snapshot.get(plugin.name)
            if stats is None:
                continue
            if stats.executions > 0 and stats.error_rate > limits.critical_error_rate:
                report.issues.append(
                    HealthIssue(
                        plugin.name,
                        f"High error rate ({round(stats.error_rate * 100)}%)",
                        critical=True,
                    )
                )
            if stats.avg_execution_time_ms > limits.slow_average_ms:
                report.issues.append(
                    HealthIssue(
                        plugin.name,
                        f"Slow execution time ({round(stats.avg_execution_time_ms)}ms avg)",
                    )
                )

        tasks = self._supervisor.tasks()
        stuck = 0
        for task in tasks:
            if task.error_streak > limits.critical_error_streak:
                report.issues.append(
                    HealthIssue(
                        task.key,
                        f"Multiple scheduled task failures ({task.error_streak})",
                        critical=True,
                    )
                )
            if self._supervisor.is_stuck(task, now):
                stuck += 1
                if restart_stuck and self._supervisor.restart_stuck(task.key):
                    report.restarted_tasks.append(task.key)

        report.scheduled_task_counts = {
            "total": len(tasks),
            "active": sum(1 for t in tasks if t.active),
            "running": sum(1 for t in tasks if t.state is TaskState.RUNNING),
            "quarantined": sum(1 for t in tasks if t.state is TaskState.QUARANTINED),
            "stuck": stuck,
        }

        self.latest_report = report
        if report.healthy:
            logger.debug("Plugin health check passed")
        else:
            logger.warning(
                f"Plugin health check found {len(report.issues)} issues "
                f"({report.critical_issue_count} critical)"
            )
        return report

    async def cascade_check(self) -> bool:
        """
        Force a full reload when the latest report has too many critical issues.

        Returns:
            True if a reload was triggered
        """
        report = self.latest_report
        if report is None:
            return False
        critical = report.critical_issue_count
        if critical <= self._limits.cascade_critical_count:
            return False

        logger.warning(f"{critical} critical plugin issues detected, reloading all plugins")
        log_plugin_event(
            "health_cascade_reload",
            level="warning",
            kind=FailureKind.HEALTH_CASCADE.value,
            critical_issues=critical,
        )
        self.cascade_count += 1
        await self._reload_all()
        # Counters were reset by the reload; don't act on the stale report again
        self.run_check()
        return True

    # === Loops ===

    def start(self) -> None:
        if self.running:
            return
        self._loops = [
            self._tracker.create_tracked_task(self._health_loop(), name="health-monitor"),
            self._tracker.create_tracked_task(self._cascade_loop(), name="health-cascade"),
        ]
        logger.info(
            f"Health monitor started (check every {self._limits.health_interval_seconds}s, "
            f"cascade every {self._limits.cascade_interval_seconds}s)"
        )

    def stop(self) -> None:
        loops, self._loops = self._loops, []
        for task in loops:
            if not task.done():
                task.cancel()

    async def _health_loop(self) -> None:
        interval = self._limits.health_interval_seconds
        while True:
            try:
                await self._clock.sleep(interval)
                self.run_check()
            except asyncio.CancelledError:
                logger.info("Health monitor task cancelled")
                raise
            except Exception as e:
                logger.error(f"Health monitor error: {e}", exc_info=True)
                log_plugin_event(
                    "health_check_failed", level="error", kind=FailureKind.FATAL.value
                )

    async def _cascade_loop(self) -> None:
        interval = self._limits.cascade_interval_seconds
        while True:
            try:
                await self._clock.sleep(interval)
                await self.cascade_check()
            except asyncio.CancelledError:
                logger.info("Health cascade task cancelled")
                raise
            except Exception as e:
                logger.error(f"Health cascade error: {e}", exc_info=True)
                log_plugin_event(
                    "health_cascade_failed", level="error", kind=FailureKind.FATAL.value
                )
