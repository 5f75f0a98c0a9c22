"""
Cron expression evaluation.

Pure functions over standard five-field expressions
(minute hour day-of-month month day-of-week), evaluated in a fixed
timezone. Validation and iteration are delegated to croniter.
"""

from datetime import datetime, tzinfo
from typing import Iterator

from croniter import croniter  # type: ignore[import-untyped]

CRON_FIELD_COUNT = 5


def validate_cron(expression: str) -> bool:
    """Return True if expression is a valid five-field cron expression."""
    if not isinstance(expression, str):
        return False
    fields = expression.split()
    if len(fields) != CRON_FIELD_COUNT:
        return False
    return croniter.is_valid(" ".join(fields))


def normalize_cron(expression: str) -> str:
    """Collapse whitespace in a cron expression, raising ValueError if invalid."""
    if not validate_cron(expression):
        raise ValueError(f"Invalid cron expression: {expression!r}")
    return " ".join(expression.split())


def next_fire_time(expression: str, after: datetime, tz: tzinfo) -> datetime:
    """
    Compute the first firing instant strictly after a reference instant.

    Args:
        expression: Five-field cron expression
        after: Timezone-aware reference instant
        tz: Timezone the expression is evaluated in

    Returns:
        Timezone-aware datetime in tz

    Raises:
        ValueError: If the expression is invalid or after is naive
    """
    if after.tzinfo is None:
        raise ValueError("Reference instant must be timezone-aware")

    base = after.astimezone(tz)
    itr = croniter(normalize_cron(expression), base)
    candidate = itr.get_next(datetime)
    # croniter already steps past an exact match, but guard sub-second bases
    while candidate <= base:
        candidate = itr.get_next(datetime)
    return candidate


def iter_fire_times(expression: str, after: datetime, tz: tzinfo) -> Iterator[datetime]:
    """Yield successive firing instants strictly after the reference instant."""
    current = after
    while True:
        current = next_fire_time(expression, current, tz)
        yield current
