"""
Operator endpoints for the plugin host.

Every route requires the admin API key in the X-Api-Key header.
"""

import hmac
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from ..core.config import get_settings
from ..domain.errors import TaskNotFound
from ..plugins.manager import PluginManager

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


async def verify_admin_key(
    request: Request,
    x_api_key: Optional[str] = Header(
        None, description="Admin API key for authentication"
    ),
) -> bool:
    """Verify the admin API key for operator access."""
    if not x_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key",
        )

    manager = getattr(request.app.state, "plugin_manager", None)
    settings = manager.settings if manager is not None else get_settings()
    expected = settings.admin_api_key
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Auth not configured",
        )

    if not hmac.compare_digest(x_api_key, expected):
        logger.warning("Rejected operator request with invalid API key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )
    return True


def get_manager(request: Request) -> PluginManager:
    manager = getattr(request.app.state, "plugin_manager", None)
    if manager is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Plugin host not initialized",
        )
    return manager


# ---------------------------------------------------------------------------
# Router factory
# ---------------------------------------------------------------------------


def create_plugins_router() -> APIRouter:
    """Create and return the operator router."""
    router = APIRouter(
        prefix="/api/plugins",
        dependencies=[Depends(verify_admin_key)],
    )

    @router.get("")
    async def list_plugins(
        manager: PluginManager = Depends(get_manager),
    ) -> List[Dict[str, Any]]:
        return manager.list_plugins()

    @router.get("/stats")
    async def plugin_stats(
        manager: PluginManager = Depends(get_manager),
    ) -> Dict[str, Any]:
        return manager.plugin_stats()

    @router.get("/health")
    async def plugin_health(
        manager: PluginManager = Depends(get_manager),
    ) -> Dict[str, Any]:
        return manager.health()

    @router.get("/tasks")
    async def scheduled_tasks(
        manager: PluginManager = Depends(get_manager),
    ) -> Dict[str, Any]:
        return manager.scheduled_task_status()

    @router.post("/reload")
    async def reload_all(
        manager: PluginManager = Depends(get_manager),
    ) -> Dict[str, Any]:
        """Force a full reload of every plugin."""
        records = await manager.reload_all()
        summary = manager.last_load_summary
        return {
            "loaded": [r.name for r in records],
            "summary": summary.to_dict() if summary is not None else None,
        }

    @router.post("/tasks/{task_key:path}/trigger")
    async def trigger_task(
        task_key: str,
        manager: PluginManager = Depends(get_manager),
    ) -> Dict[str, Any]:
        try:
            ok = await manager.trigger_scheduled_task(task_key)
        except TaskNotFound as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
        return {"task": task_key, "succeeded": ok}

    @router.post("/{name}/enable")
    async def enable_plugin(
        name: str,
        manager: PluginManager = Depends(get_manager),
    ) -> Dict[str, Any]:
        if not await manager.enable(name):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Plugin {name} not found",
            )
        return {"plugin": name, "enabled": True}

    @router.post("/{name}/disable")
    async def disable_plugin(
        name: str,
        manager: PluginManager = Depends(get_manager),
    ) -> Dict[str, Any]:
        if not await manager.disable(name):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Plugin {name} not found",
            )
        return {"plugin": name, "enabled": False}

    @router.post("/{name}/reload")
    async def reload_plugin(
        name: str,
        manager: PluginManager = Depends(get_manager),
    ) -> Dict[str, Any]:
        ok = await manager.reload(name)
        if not ok:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Reload of plugin {name} failed",
            )
        return {"plugin": name, "reloaded": True}

    return router
