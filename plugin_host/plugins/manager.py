"""
Plugin Manager: the lifecycle controller and public API of the host.

Wires the registry, metrics store, loader, dispatcher, task supervisor and
health monitor together and exposes the operations callers use:

1. Loading - load_all, reload, reload_all
2. Control - enable, disable, uninstall, trigger_scheduled_task
3. Events - dispatch, run_command
4. Inspection - list_plugins, plugin_stats, scheduled_task_status, health
5. Shutdown - cancel tasks, unload plugins, grace period for in-flight work
"""

import logging
from typing import Any, Dict, List, Optional

from ..core.config import Settings, get_settings
from ..core.typed_config import HostLimits, load_host_limits
from ..domain.errors import TaskNotFound
from ..health.monitor import HealthMonitor
from ..scheduling.clock import Clock, SystemClock
from ..scheduling.supervisor import TaskSupervisor
from ..utils.logging import log_plugin_event
from ..utils.task_tracker import TaskTracker
from .base import PluginRecord
from .dispatcher import DispatchOutcome, MessageDispatcher
from .loader import LoadSummary, PluginLoader
from .metrics import MetricsStore, PluginMetrics
from .registry import PluginRegistry

logger = logging.getLogger(__name__)


class PluginManager:
    """
    Owns one plugin host instance.

    Every collaborator is an explicit object so tests can inject a manual
    clock or inspect the registry and metrics directly.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        limits: Optional[HostLimits] = None,
        tracker: Optional[TaskTracker] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.limits = limits or load_host_limits()
        self.clock = clock or SystemClock(self.settings.timezone)
        self.tracker = tracker or TaskTracker()

        self.registry = PluginRegistry()
        self.metrics = MetricsStore()
        self.supervisor = TaskSupervisor(
            self.registry, self.metrics, self.clock, self.tracker, self.limits
        )
        self.dispatcher = MessageDispatcher(
            self.registry,
            self.metrics,
            self.clock,
            self.limits,
            load_plugins=self.load_all,
            is_loaded=lambda: self.loader.has_loaded,
        )
        self.loader = PluginLoader(
            self.settings,
            self.registry,
            self.metrics,
            self.supervisor,
            self.dispatcher,
            self.clock,
        )
        self.monitor = HealthMonitor(
            self.registry,
            self.metrics,
            self.supervisor,
            self.clock,
            self.tracker,
            reload_all=self.reload_all,
            limits=self.limits,
        )
        self._started = False
        self._shut_down = False

    @property
    def started(self) -> bool:
        return self._started

    @property
    def closed(self) -> bool:
        """True between shutdown() and the next start(); events are ignored."""
        return self._shut_down

    @property
    def last_load_summary(self) -> Optional[LoadSummary]:
        return self.loader.last_summary

    # === Lifecycle ===

    async def start(self) -> None:
        """Start cron firing and, if enabled, the health monitor loops."""
        if self._started:
            return
        self._shut_down = False
        self.supervisor.start()
        if self.settings.monitors_enabled:
            self.monitor.start()
        self._started = True
        logger.info("Plugin host started")

    async def load_all(self, force: bool = False) -> List[PluginRecord]:
        return await self.loader.load_all(force)

    async def reload(self, name: str) -> bool:
        """Reload one plugin from disk. Its metrics and task streaks start from zero."""
        ok = await self.loader.reload(name)
        log_plugin_event("plugin_reloaded", plugin=name, ok=ok)
        return ok

    async def reload_all(self) -> List[PluginRecord]:
        """Force a full reload: all tasks cancelled, all metrics reset."""
        records = await self.loader.load_all(force=True)
        log_plugin_event("plugins_reloaded", count=len(records))
        return records

    async def enable(self, name: str) -> bool:
        """
        Enable a plugin.

        A plugin that is not loaded is loaded from the plugins directory,
        or moved back from the disabled directory first.
        """
        if self.registry.set_enabled(name, True):
            logger.info(f"Enabled plugin: {name}")
            return True
        ok = await self.loader.promote_from_disabled(name)
        if ok:
            logger.info(f"Enabled plugin: {name}")
        return ok

    async def disable(self, name: str) -> bool:
        """Disable a plugin in memory. The file stays where it is."""
        if not self.registry.set_enabled(name, False):
            logger.warning(f"Cannot disable {name}: plugin not loaded")
            return False
        logger.info(f"Disabled plugin: {name}")
        return True

    async def uninstall(self, name: str) -> bool:
        return await self.loader.uninstall(name)

    async def trigger_scheduled_task(self, task_key: str) -> bool:
        """
        Fire a scheduled task now, outside its cron schedule.

        Disabled plugins and quarantined tasks are still skipped.

        Raises:
            TaskNotFound: If no task has this key
        """
        task = self.supervisor.get(task_key)
        if task is None:
            raise TaskNotFound(task_key)
        if self._shut_down:
            logger.warning(f"Not triggering {task_key}: plugin host is shut down")
            return False
        logger.info(f"Manually triggering scheduled task: {task_key}")
        return await self.tracker.create_tracked_task(
            self.supervisor.fire(task.plugin_name, task.name), name=f"trigger:{task_key}"
        )

    async def shutdown(self) -> None:
        """
        Stop firing, let in-flight work finish, then unload every plugin.

        In-flight dispatches and fires get the grace period before plugin
        cleanup hooks run; whatever is still running after it is cancelled.
        Events arriving after shutdown are ignored. Idempotent.
        """
        if self._shut_down and len(self.registry) == 0 and len(self.supervisor) == 0:
            return
        self._shut_down = True
        self._started = False
        logger.info("Shutting down plugin host...")

        self.monitor.stop()
        self.supervisor.stop()

        grace = self.limits.shutdown_grace_seconds
        if not await self.tracker.wait_for_tasks(timeout=grace):
            await self.tracker.cancel_all_tasks(timeout=grace)

        cancelled = self.supervisor.cancel_all()
        unloaded = await self.loader.unload_all()

        logger.info(
            f"Plugin host stopped ({unloaded} plugins unloaded, "
            f"{cancelled} scheduled tasks cancelled)"
        )

    # === Events ===

    async def dispatch(self, event: Any, transport: Any = None, config: Any = None) -> DispatchOutcome:
        """Fan an event out to enabled plugins. Ignored after shutdown()."""
        if self._shut_down:
            logger.debug("Dropping event: plugin host is shut down")
            return DispatchOutcome()
        return await self.tracker.create_tracked_task(
            self.dispatcher.dispatch(event, transport, config), name="dispatch"
        )

    async def run_command(
        self, command: str, event: Any, transport: Any = None, config: Any = None
    ) -> bool:
        if self._shut_down:
            logger.debug(f"Dropping command {command}: plugin host is shut down")
            return False
        return await self.tracker.create_tracked_task(
            self.dispatcher.run_command(command, event, transport, config),
            name=f"command:{command}",
        )

    # === Inspection ===

    def get_plugin(self, name: str) -> Optional[PluginRecord]:
        return self.registry.get(name)

    def list_plugins(self) -> List[Dict[str, Any]]:
        """Every loaded plugin with its metadata, enable flag and metrics."""
        snapshot = self.metrics.snapshot()
        rows = []
        for record in self.registry.list():
            row = record.to_dict()
            row["metrics"] = snapshot.get(record.name, PluginMetrics()).to_dict()
            rows.append(row)
        return rows

    def plugin_stats(self) -> Dict[str, Any]:
        """Aggregate counters plus one row per plugin."""
        records = self.registry.list()
        snapshot = self.metrics.snapshot()

        rows = []
        for record in records:
            stats = snapshot.get(record.name, PluginMetrics())
            rows.append(
                {
                    "name": record.name,
                    "display_name": record.metadata.name,
                    "enabled": record.enabled,
                    "has_scheduled_tasks": record.has_scheduled_tasks,
                    **stats.to_dict(),
                }
            )

        return {
            "total": len(records),
            "enabled": sum(1 for r in records if r.enabled),
            "disabled": sum(1 for r in records if not r.enabled),
            "with_scheduled_tasks": sum(1 for r in records if r.has_scheduled_tasks),
            "total_executions": sum(row["executions"] for row in rows),
            "total_errors": sum(row["errors"] for row in rows),
            "plugins": rows,
        }

    def scheduled_task_status(self) -> Dict[str, Any]:
        return self.supervisor.status()

    def health(self) -> Dict[str, Any]:
        """Run a read-only health check and return the report."""
        report = self.monitor.run_check(restart_stuck=False)
        return report.to_dict()


# Global instance
_plugin_manager: Optional[PluginManager] = None


def get_plugin_manager() -> PluginManager:
    """Get the global plugin manager instance."""
    global _plugin_manager
    if _plugin_manager is None:
        _plugin_manager = PluginManager()
    return _plugin_manager


def reset_plugin_manager() -> None:
    """Reset the global plugin manager (for testing)."""
    global _plugin_manager
    _plugin_manager = None
