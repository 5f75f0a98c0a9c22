import asyncio
import logging
import os
import textwrap
from datetime import datetime, timedelta, tzinfo
from pathlib import Path
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo

import pytest

# Set test environment variables
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_LEVEL"] = "WARNING"

from plugin_host.core.config import Settings  # noqa: E402
from plugin_host.core.defaults_loader import clear_cache  # noqa: E402
from plugin_host.core.typed_config import HostLimits  # noqa: E402
from plugin_host.plugins.manager import PluginManager  # noqa: E402
from plugin_host.scheduling.clock import Clock  # noqa: E402


class ManualClock(Clock):
    """Virtual time for tests.

    sleep() parks the caller until advance() moves the clock past its
    wake-up instant; wake-ups happen in order, with the event loop settled
    after each one so cron loops can re-arm.
    """

    def __init__(self, start: Optional[datetime] = None, timezone: str = "Africa/Lagos"):
        self._tz = ZoneInfo(timezone)
        self._now = start or datetime(2026, 1, 5, 7, 59, 30, tzinfo=self._tz)
        self._monotonic = 1000.0
        self._sleepers: List[Tuple[datetime, asyncio.Future]] = []

    @property
    def tz(self) -> tzinfo:
        return self._tz

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._monotonic

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        future = asyncio.get_running_loop().create_future()
        self._sleepers.append((self._now + timedelta(seconds=seconds), future))
        await future

    def shift(self, seconds: float) -> None:
        """Move time forward without waking sleepers (simulates slow work)."""
        self._now += timedelta(seconds=seconds)
        self._monotonic += seconds

    @property
    def sleeper_count(self) -> int:
        return sum(1 for _, f in self._sleepers if not f.done())

    async def advance(self, seconds: float) -> None:
        target = self._now + timedelta(seconds=seconds)
        while True:
            due = [w for w, f in self._sleepers if w <= target and not f.done()]
            if not due:
                break
            wake_at = min(due)
            if wake_at > self._now:
                self._monotonic += (wake_at - self._now).total_seconds()
                self._now = wake_at
            ready = [(w, f) for w, f in self._sleepers if w <= self._now]
            self._sleepers = [(w, f) for w, f in self._sleepers if w > self._now]
            for _, future in ready:
                if not future.done():
                    future.set_result(None)
            await settle()

        if target > self._now:
            self._monotonic += (target - self._now).total_seconds()
            self._now = target
        await settle()


async def settle(rounds: int = 20) -> None:
    """Let ready tasks run until the loop is quiet."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def write_plugin(directory: Path, name: str, source: str) -> Path:
    """Write a plugin file and return its path."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{name}.py"
    path.write_text(textwrap.dedent(source), encoding="utf-8")
    return path


RECORDING_PLUGIN = """
async def handle(event, transport, config):
    config["calls"].append("{name}")
"""

FAILING_PLUGIN = """
async def handle(event, transport, config):
    raise RuntimeError("{name} is broken")
"""


@pytest.fixture(autouse=True)
def _strip_file_handlers():
    """Remove file handlers from root logger so tests never write to logs/."""
    root = logging.getLogger()
    saved = [h for h in root.handlers if isinstance(h, logging.FileHandler)]
    for h in saved:
        root.removeHandler(h)
    yield
    for h in list(root.handlers):
        if isinstance(h, logging.FileHandler):
            root.removeHandler(h)
    for h in saved:
        root.addHandler(h)


@pytest.fixture(autouse=True)
def _clear_config_cache():
    clear_cache()
    yield
    clear_cache()


@pytest.fixture
def plugins_dir(tmp_path) -> Path:
    path = tmp_path / "plugins"
    path.mkdir()
    return path


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def settings(plugins_dir) -> Settings:
    return Settings(
        _env_file=None,
        plugins_dir=plugins_dir,
        monitors_enabled=False,
        admin_api_key="test-admin-key",
    )


@pytest.fixture
async def manager(settings, clock):
    """A PluginManager on a manual clock with default limits."""
    m = PluginManager(settings=settings, clock=clock, limits=HostLimits())
    yield m
    await m.shutdown()
