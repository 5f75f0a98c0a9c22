"""
Per-plugin execution metrics.

Counters are only ever incremented; each update to a plugin's record
happens under one lock so a snapshot never sees a half-applied update.
"""

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class PluginMetrics:
    """Execution counters for one plugin."""

    executions: int = 0
    errors: int = 0
    total_execution_time_ms: float = 0.0
    last_execution_at: Optional[datetime] = None
    last_error: Optional[str] = None
    scheduled_task_errors: int = 0

    @property
    def error_rate(self) -> float:
        if self.executions <= 0:
            return 0.0
        return self.errors / self.executions

    @property
    def avg_execution_time_ms(self) -> float:
        if self.executions <= 0:
            return 0.0
        return self.total_execution_time_ms / self.executions

    def to_dict(self) -> Dict[str, Any]:
        return {
            "executions": self.executions,
            "errors": self.errors,
            "scheduled_task_errors": self.scheduled_task_errors,
            "total_execution_time_ms": round(self.total_execution_time_ms, 2),
            "avg_execution_time_ms": round(self.avg_execution_time_ms),
            "error_rate": round(self.error_rate, 4),
            "last_execution_at": (
                self.last_execution_at.isoformat() if self.last_execution_at else None
            ),
            "last_error": self.last_error,
        }


class MetricsStore:
    """Thread-safe in-memory metrics keyed by plugin name."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._metrics: Dict[str, PluginMetrics] = {}

    def reset(self, plugin: str) -> None:
        """Start a plugin's counters from zero (on load and reload)."""
        with self._lock:
            self._metrics[plugin] = PluginMetrics()

    def remove(self, plugin: str) -> None:
        with self._lock:
            self._metrics.pop(plugin, None)

    def clear(self) -> None:
        with self._lock:
            self._metrics.clear()

    def record_dispatch(
        self,
        plugin: str,
        duration_ms: float,
        ok: bool,
        error_summary: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> Optional[PluginMetrics]:
        """
        Record one finished handler invocation.

        Returns a copy of the updated record, or None if the plugin has no
        metrics (it was unloaded while the invocation was in flight).
        """
        with self._lock:
            stats = self._metrics.get(plugin)
            if stats is None:
                logger.debug(f"Dropping metrics for unloaded plugin {plugin}")
                return None
            stats.executions += 1
            stats.total_execution_time_ms += max(duration_ms, 0.0)
            if at is not None:
                stats.last_execution_at = at
            if not ok:
                stats.errors += 1
                stats.last_error = error_summary
            return replace(stats)

    def record_scheduled_error(self, plugin: str) -> None:
        with self._lock:
            stats = self._metrics.get(plugin)
            if stats is not None:
                stats.scheduled_task_errors += 1

    def get(self, plugin: str) -> Optional[PluginMetrics]:
        """Return a copy of one plugin's metrics."""
        with self._lock:
            stats = self._metrics.get(plugin)
            return replace(stats) if stats is not None else None

    def snapshot(self) -> Dict[str, PluginMetrics]:
        """Return a consistent point-in-time copy of all metrics."""
        with self._lock:
            return {name: replace(stats) for name, stats in self._metrics.items()}

    def __contains__(self, plugin: str) -> bool:
        with self._lock:
            return plugin in self._metrics
