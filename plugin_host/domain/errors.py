"""
Typed errors for the plugin host.

Plugin failures never escape dispatch or a scheduled fire; these types
exist so the loader, supervisor and lifecycle operations can report
which failure mode happened and map it to a summary entry or log event.
"""

from enum import Enum
from typing import Optional


class FailureKind(Enum):
    """Failure modes the host distinguishes when reporting and logging."""

    LOAD = "load_failure"
    TASK_REGISTRATION = "task_registration_failure"
    DISPATCH = "dispatch_failure"
    SCHEDULED = "scheduled_failure"
    OVERLAP_SKIP = "overlap_skip"
    HEALTH_CASCADE = "health_critical_cascade"
    FATAL = "fatal_core_failure"


class HostError(Exception):
    """Base class for all plugin host errors."""


class LoadFailure(HostError):
    """A plugin file could not be imported or exposes no default handler."""

    def __init__(self, filename: str, reason: str) -> None:
        self.filename = filename
        self.reason = reason
        super().__init__(f"Failed to load {filename}: {reason}")


class TaskRegistrationFailure(HostError):
    """A scheduled task descriptor is invalid and was not registered."""

    def __init__(self, plugin_name: str, task_name: Optional[str], reason: str) -> None:
        self.plugin_name = plugin_name
        self.task_name = task_name
        self.reason = reason
        super().__init__(
            f"Cannot register task {plugin_name}/{task_name or '?'}: {reason}"
        )


class InvalidCronExpression(TaskRegistrationFailure):
    """The task schedule is not a valid five-field cron expression."""

    def __init__(self, plugin_name: str, task_name: str, expression: str) -> None:
        self.expression = expression
        super().__init__(
            plugin_name, task_name, f"invalid cron expression {expression!r}"
        )


class PluginNotFound(HostError):
    """No plugin with the given name is registered."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Plugin {name} not found")


class TaskNotFound(HostError):
    """No scheduled task with the given key is registered."""

    def __init__(self, task_key: str) -> None:
        self.task_key = task_key
        super().__init__(f"Scheduled task {task_key} not found")
