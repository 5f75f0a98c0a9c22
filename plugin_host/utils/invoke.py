"""Helpers for reading plugin declarations and calling plugin code."""

import asyncio
import inspect
from typing import Any, Callable, Mapping

Handler = Callable[..., Any]

# Longest error text kept in metrics and status output
ERROR_SUMMARY_LIMIT = 200


def read_field(info: Any, *names: str, default: Any = None) -> Any:
    """Read the first present field from a mapping or an attribute object.

    Accepts several spellings so plugins written against the camelCase
    contract (scheduledTasks, buttonHandlers) keep working.
    """
    if info is None:
        return default
    for name in names:
        if isinstance(info, Mapping):
            if name in info and info[name] is not None:
                return info[name]
        elif getattr(info, name, None) is not None:
            return getattr(info, name)
    return default


def is_async_callable(handler: Any) -> bool:
    """True for coroutine functions and objects with an async __call__."""
    if inspect.iscoroutinefunction(handler):
        return True
    return inspect.iscoroutinefunction(getattr(handler, "__call__", None))


async def call_handler(handler: Handler, *args: Any) -> Any:
    """Invoke a sync or async plugin callable and return its result."""
    if is_async_callable(handler):
        return await handler(*args)

    result = await asyncio.to_thread(handler, *args)
    if inspect.isawaitable(result):
        result = await result
    return result


def summarize_error(exc: BaseException, limit: int = ERROR_SUMMARY_LIMIT) -> str:
    """Short one-line description of an exception for metrics and status."""
    message = str(exc).strip().splitlines()[0] if str(exc).strip() else ""
    text = f"{type(exc).__name__}: {message}" if message else type(exc).__name__
    return text[:limit]
