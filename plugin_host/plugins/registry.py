"""
In-memory table of loaded plugins.

All access goes through a single lock that is never held while calling
out to plugin code or awaiting.
"""

import logging
import threading
from typing import Callable, Dict, List, Optional

from .base import PluginRecord

logger = logging.getLogger(__name__)


class PluginRegistry:
    """Loaded plugins keyed by name, with enable flags."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._plugins: Dict[str, PluginRecord] = {}

    def insert(self, record: PluginRecord) -> None:
        """Add a plugin. Raises ValueError if the name is already registered."""
        with self._lock:
            if record.name in self._plugins:
                raise ValueError(f"Plugin {record.name} is already registered")
            self._plugins[record.name] = record

    def remove(
        self,
        name: str,
        cancel_tasks: Optional[Callable[[str], object]] = None,
    ) -> Optional[PluginRecord]:
        """
        Remove a plugin.

        1. Mark it disabled so no new dispatches or fires start.
        2. Cancel its scheduled tasks (a failure here is logged, not raised).
        3. Delete the record.

        Returns:
            The removed record, or None if no such plugin
        """
        with self._lock:
            record = self._plugins.get(name)
            if record is None:
                return None
            record.enabled = False

        if cancel_tasks is not None:
            try:
                cancel_tasks(name)
            except Exception as e:
                logger.error(
                    f"Failed to cancel scheduled tasks for {name}: {e}", exc_info=True
                )

        with self._lock:
            # A concurrent insert may have replaced the record; only drop ours
            if self._plugins.get(name) is record:
                del self._plugins[name]
        return record

    def get(self, name: str) -> Optional[PluginRecord]:
        with self._lock:
            return self._plugins.get(name)

    def list(self) -> List[PluginRecord]:
        with self._lock:
            return list(self._plugins.values())

    def enabled(self) -> List[PluginRecord]:
        """Snapshot of the currently enabled plugins."""
        with self._lock:
            return [p for p in self._plugins.values() if p.enabled]

    def names(self) -> List[str]:
        with self._lock:
            return list(self._plugins)

    def set_enabled(self, name: str, enabled: bool) -> bool:
        """Set a plugin's enable flag. Returns False if no such plugin."""
        with self._lock:
            record = self._plugins.get(name)
            if record is None:
                return False
            record.enabled = enabled
            return True

    def is_enabled(self, name: str) -> bool:
        with self._lock:
            record = self._plugins.get(name)
            return record is not None and record.enabled

    def find_by_command(self, command: str) -> Optional[PluginRecord]:
        """First enabled plugin that declares or handles `command`."""
        with self._lock:
            for record in self._plugins.values():
                if record.enabled and record.answers_to(command):
                    return record
        return None

    def __len__(self) -> int:
        with self._lock:
            return len(self._plugins)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._plugins
