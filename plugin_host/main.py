import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI

# Explicitly load .env files at startup
# Load order (later files override earlier):
# 1. project .env (project defaults)
# 2. project .env.local (local overrides)
project_root = Path(__file__).parent.parent
env_file = project_root / ".env"
env_local = project_root / ".env.local"

if env_file.exists():
    load_dotenv(env_file, override=True)

if env_local.exists():
    load_dotenv(env_local, override=True)

from .api.health import create_health_router  # noqa: E402
from .api.plugins import create_plugins_router  # noqa: E402
from .core.config import get_settings  # noqa: E402
from .lifecycle import build_lifespan  # noqa: E402
from .plugins import PluginManager  # noqa: E402
from .version import __version__  # noqa: E402

logger = logging.getLogger(__name__)


def create_app(manager: Optional[PluginManager] = None) -> FastAPI:
    """Build the FastAPI application around a plugin manager."""
    app = FastAPI(
        title="Plugin Host",
        description="Plugin host and supervisor for event-driven chatbots",
        version=__version__,
        lifespan=build_lifespan(manager),
    )
    app.include_router(create_health_router())
    app.include_router(create_plugins_router())
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    logger.info(f"Starting server on {settings.host}:{settings.port}")
    uvicorn.run(
        "plugin_host.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
