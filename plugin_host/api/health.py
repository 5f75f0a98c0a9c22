"""
Health endpoint for observability.

Returns status, uptime, version and the latest plugin health summary.
Lightweight and requires no authentication.
"""

import logging
import time
from typing import Any, Dict

from fastapi import APIRouter, Request

logger = logging.getLogger(__name__)

# Start time for uptime calculation
_start_time: float = time.monotonic()


def set_start_time() -> None:
    """Reset the start time (called during app startup)."""
    global _start_time
    _start_time = time.monotonic()


def get_uptime_seconds() -> float:
    """Return seconds since the process started."""
    return time.monotonic() - _start_time


def _get_version() -> str:
    """Get the application version string."""
    try:
        from ..version import __version__

        return __version__
    except Exception:
        return "unknown"


def _plugin_summary(request: Request) -> Dict[str, Any]:
    manager = getattr(request.app.state, "plugin_manager", None)
    if manager is None:
        return {"loaded": False}

    summary: Dict[str, Any] = {
        "loaded": manager.loader.has_loaded,
        "plugins": len(manager.registry),
        "enabled": len(manager.registry.enabled()),
        "scheduled_tasks": len(manager.supervisor),
    }
    report = manager.monitor.latest_report
    if report is not None:
        summary["healthy"] = report.healthy
        summary["critical_issues"] = report.critical_issue_count
        summary["last_check_at"] = (
            report.last_check_at.isoformat() if report.last_check_at else None
        )
    return summary


def create_health_router() -> APIRouter:
    """Create and return the health check router.

    This is a factory so the router can be included in the main app
    or used standalone in tests.
    """
    router = APIRouter()

    @router.get("/health")
    async def health_endpoint(request: Request) -> Dict[str, Any]:
        """Lightweight health check endpoint (no auth required)."""
        plugins = _plugin_summary(request)
        if not plugins["loaded"]:
            status = "starting"
        elif plugins.get("healthy", True):
            status = "healthy"
        else:
            status = "degraded"

        return {
            "status": status,
            "service": "plugin-host",
            "version": _get_version(),
            "uptime_seconds": round(get_uptime_seconds(), 2),
            "plugins": plugins,
        }

    return router
