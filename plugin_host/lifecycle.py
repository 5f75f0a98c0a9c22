"""
Application lifespan management.

Handles startup and shutdown of the plugin host:
- Configuration validation
- Logging setup
- Plugin loading
- Cron firing and health monitoring
- Graceful shutdown with a grace period for in-flight work
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .api.health import set_start_time
from .core.config_validator import log_config_summary, validate_config
from .plugins import PluginManager, get_plugin_manager
from .utils.logging import setup_logging

logger = logging.getLogger(__name__)


def build_lifespan(manager: Optional[PluginManager] = None):
    """Create a lifespan bound to a manager (the global one by default)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        plugin_manager = manager or get_plugin_manager()
        settings = plugin_manager.settings

        # Validate configuration before anything else
        config_errors = validate_config(settings)
        if config_errors:
            for err in config_errors:
                logger.error(f"Config validation error: {err}")
            logger.critical(
                "Aborting startup due to %d configuration error(s)", len(config_errors)
            )
            sys.exit(1)

        setup_logging(
            log_level=settings.log_level,
            log_to_file=settings.log_to_file,
            logs_dir=settings.logs_dir,
        )
        log_config_summary(settings)
        set_start_time()
        logger.info("Plugin host starting up...")

        app.state.plugin_manager = plugin_manager

        try:
            records = await plugin_manager.load_all()
            if records:
                logger.info(f"Plugins loaded: {len(records)}")
            else:
                logger.info("No plugins found")
        except Exception as e:
            logger.error(f"Plugin loading failed: {e}", exc_info=True)

        await plugin_manager.start()

        yield

        await plugin_manager.shutdown()
        logger.info("Plugin host shut down")

    return lifespan


lifespan = build_lifespan()
