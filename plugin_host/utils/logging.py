import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Optional

import structlog


def setup_logging(
    log_level: str = "INFO",
    log_to_file: bool = True,
    logs_dir: Optional[Path] = None,
) -> None:
    """Set up logging configuration for the host process.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_to_file: Whether to log to files in addition to console
        logs_dir: Directory for rotating log files (defaults to ./logs)
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    # Configure structlog
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.set_exc_info,
            # JSON formatting for file logs
            (
                structlog.processors.JSONRenderer()
                if log_to_file
                else structlog.dev.ConsoleRenderer()
            ),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()  # Clear any existing handlers
    root_logger.addHandler(console_handler)

    if log_to_file:
        logs_dir = logs_dir or Path("logs")
        logs_dir.mkdir(parents=True, exist_ok=True)

        host_handler = logging.handlers.RotatingFileHandler(
            logs_dir / "host.log", maxBytes=10 * 1024 * 1024, backupCount=5  # 10MB
        )
        host_handler.setLevel(logging.INFO)
        host_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"
            )
        )
        root_logger.addHandler(host_handler)

        # Error-only log file for critical issues
        error_handler = logging.handlers.RotatingFileHandler(
            logs_dir / "errors.log", maxBytes=5 * 1024 * 1024, backupCount=10  # 5MB
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s - %(exc_info)s"
            )
        )
        root_logger.addHandler(error_handler)


def get_event_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """Get a structured logger for plugin lifecycle events.

    Args:
        name: Logger name (defaults to "plugin_host.events")

    Returns:
        Structured logger for auto-disable, quarantine and reload events
    """
    return structlog.get_logger(name or "plugin_host.events")


def log_plugin_event(
    event: str,
    logger: Optional[structlog.BoundLogger] = None,
    level: str = "info",
    **context: Any,
) -> None:
    """Emit a structured lifecycle event.

    Args:
        event: Short event name (e.g. "plugin_auto_disabled")
        logger: Logger to use (creates one if not provided)
        level: Log method name ("info", "warning", "error")
        **context: Key/value context such as plugin=, task=, errors=
    """
    if logger is None:
        logger = get_event_logger()

    getattr(logger, level)(event, **context)
