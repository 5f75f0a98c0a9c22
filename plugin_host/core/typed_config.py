"""
Typed supervision policy.

Replaces raw dict access to the `supervisor:` section of
config/defaults.yaml with a Pydantic-validated, immutable HostLimits.
"""

import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .defaults_loader import get_config_value

logger = logging.getLogger(__name__)


class HostLimits(BaseModel):
    """Thresholds and intervals used by the supervisor, dispatcher and monitor."""

    model_config = ConfigDict(frozen=True)

    # Scheduled tasks
    quarantine_threshold: int = 5
    stuck_threshold_seconds: float = 2 * 60 * 60

    # Dispatch
    slow_handler_ms: float = 2000
    disable_threshold: int = 15

    # Health monitor
    health_interval_seconds: float = 10 * 60
    cascade_interval_seconds: float = 60 * 60
    critical_error_rate: float = 0.20
    slow_average_ms: float = 5000
    critical_error_streak: int = 3
    cascade_critical_count: int = 2

    # Shutdown
    shutdown_grace_seconds: float = 5.0

    @field_validator(
        "quarantine_threshold",
        "disable_threshold",
        "critical_error_streak",
        "cascade_critical_count",
    )
    @classmethod
    def count_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("thresholds must be >= 0")
        return v

    @field_validator(
        "stuck_threshold_seconds",
        "health_interval_seconds",
        "cascade_interval_seconds",
    )
    @classmethod
    def interval_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("intervals must be > 0")
        return v

    @field_validator("critical_error_rate")
    @classmethod
    def rate_in_range(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"critical_error_rate must be within [0, 1], got {v}")
        return v


def load_host_limits(raw: Optional[Dict[str, Any]] = None) -> HostLimits:
    """Build HostLimits from the `supervisor` config section.

    Falls back to built-in defaults when the section is missing or invalid.
    """
    if raw is None:
        raw = get_config_value("supervisor", {}) or {}

    try:
        return HostLimits(**raw)
    except ValidationError as e:
        logger.error(f"Invalid supervisor config, using defaults: {e}")
        return HostLimits()
