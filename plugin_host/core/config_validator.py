"""
Startup configuration validation and redacted summary logging.

Called early in the FastAPI lifespan to fail fast on misconfiguration.
"""

import logging
from typing import List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config import Settings

logger = logging.getLogger(__name__)

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def validate_config(settings: Settings) -> List[str]:
    """
    Validate application configuration and return a list of error strings.

    An empty list means the configuration is valid.
    """
    errors: List[str] = []

    # -- TIMEZONE ----------------------------------------------------------
    tz_name = (settings.timezone or "").strip()
    if not tz_name:
        errors.append("TIMEZONE is required but missing or empty")
    else:
        try:
            ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            errors.append(f"TIMEZONE '{tz_name}' is not a known IANA timezone")

    # -- PLUGINS_DIR -------------------------------------------------------
    # A missing directory is created on first load; a file in its place is not.
    plugins_dir = settings.plugins_dir
    if plugins_dir.exists() and not plugins_dir.is_dir():
        errors.append(f"PLUGINS_DIR '{plugins_dir}' exists but is not a directory")

    disabled_name = settings.disabled_dir_name.strip()
    if not disabled_name or "/" in disabled_name or disabled_name.startswith("."):
        errors.append(
            f"DISABLED_DIR_NAME must be a plain directory name, got '{disabled_name}'"
        )

    # -- LOG_LEVEL ---------------------------------------------------------
    if settings.log_level.upper() not in _VALID_LOG_LEVELS:
        errors.append(
            f"LOG_LEVEL must be one of {sorted(_VALID_LOG_LEVELS)}, "
            f"got '{settings.log_level}'"
        )

    # -- Operator API ------------------------------------------------------
    if settings.is_production and not settings.admin_api_key:
        errors.append("ADMIN_API_KEY is required in production")

    return errors


def _redact(value: str) -> str:
    if not value:
        return "<empty>"
    if len(value) <= 8:
        return "***"
    return value[:4] + "***" + value[-2:]


def log_config_summary(settings: Settings) -> None:
    """Log a one-line-per-setting summary with secrets redacted."""
    logger.info("Configuration summary:")
    logger.info("  environment=%s debug=%s", settings.environment, settings.debug)
    logger.info("  plugins_dir=%s", settings.plugins_dir)
    logger.info("  disabled_dir=%s", settings.disabled_dir)
    logger.info("  timezone=%s", settings.timezone)
    logger.info("  monitors_enabled=%s", settings.monitors_enabled)
    logger.info("  admin_api_key=%s", _redact(settings.admin_api_key or ""))
