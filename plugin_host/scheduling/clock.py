"""Time source shared by the scheduler, dispatcher and health monitor."""

import asyncio
import time
from abc import ABC, abstractmethod
from datetime import datetime, tzinfo
from typing import Union
from zoneinfo import ZoneInfo


class Clock(ABC):
    """Wall clock in the process timezone plus a monotonic timer."""

    @property
    @abstractmethod
    def tz(self) -> tzinfo:
        """Timezone used for cron evaluation and timestamps."""

    @abstractmethod
    def now(self) -> datetime:
        """Current timezone-aware instant."""

    @abstractmethod
    def monotonic(self) -> float:
        """Seconds from an arbitrary origin, for measuring durations."""

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task for the given number of seconds."""


class SystemClock(Clock):
    """Real time, backed by datetime.now() and asyncio.sleep()."""

    def __init__(self, timezone: Union[str, tzinfo] = "Africa/Lagos") -> None:
        self._tz = ZoneInfo(timezone) if isinstance(timezone, str) else timezone

    @property
    def tz(self) -> tzinfo:
        return self._tz

    def now(self) -> datetime:
        return datetime.now(self._tz)

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(seconds, 0))

    def __repr__(self) -> str:
        return f"<SystemClock tz={self._tz}>"
