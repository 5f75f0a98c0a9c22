"""Periodic plugin health evaluation and self-healing."""

from .monitor import HealthIssue, HealthMonitor, HealthReport

__all__ = ["HealthIssue", "HealthMonitor", "HealthReport"]
