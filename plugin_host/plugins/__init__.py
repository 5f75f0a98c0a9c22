"""
Plugin hosting: discovery, loading, dispatch and lifecycle control.

Usage:
    from plugin_host.plugins import get_plugin_manager

    manager = get_plugin_manager()

    # Load plugins from the configured plugins directory
    await manager.load_all()

    # Start cron firing and health monitoring
    await manager.start()

    # Fan an inbound event out to every enabled plugin
    await manager.dispatch(event, transport, config)

See plugin_host/plugins/base.py for the plugin file contract.
"""

from .base import CommandSpec, PluginContext, PluginMetadata, PluginRecord
from .dispatcher import DispatchOutcome, MessageDispatcher
from .loader import LoadSummary, PluginLoader
from .manager import PluginManager, get_plugin_manager, reset_plugin_manager
from .metrics import MetricsStore, PluginMetrics
from .registry import PluginRegistry

__all__ = [
    "CommandSpec",
    "DispatchOutcome",
    "LoadSummary",
    "MessageDispatcher",
    "MetricsStore",
    "PluginContext",
    "PluginLoader",
    "PluginManager",
    "PluginMetadata",
    "PluginMetrics",
    "PluginRecord",
    "PluginRegistry",
    "get_plugin_manager",
    "reset_plugin_manager",
]
