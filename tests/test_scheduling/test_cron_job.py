"""Tests for the CronJob firing loop on a manual clock."""

import pytest

from conftest import ManualClock, settle
from plugin_host.scheduling.cron_job import CronJob
from plugin_host.utils.task_tracker import TaskTracker


@pytest.fixture
def tracker():
    return TaskTracker()


class TestCronJob:
    """Tests for CronJob."""

    async def test_fires_every_minute(self, clock: ManualClock, tracker):
        fired = []
        job = CronJob("t", "* * * * *", lambda: fired.append(clock.now()), clock, tracker)
        job.start()
        await settle()

        await clock.advance(60 * 3)

        assert len(fired) == 3
        assert all(t.second == 0 for t in fired)
        assert job.tick_count == 3
        job.stop()

    async def test_every_minute_fires_in_seventy_second_window(self, clock, tracker):
        fired = []
        job = CronJob("t", "* * * * *", lambda: fired.append(1), clock, tracker)
        job.start()
        await settle()

        await clock.advance(70)

        assert len(fired) >= 1
        job.stop()

    async def test_stop_prevents_further_fires(self, clock, tracker):
        fired = []
        job = CronJob("t", "* * * * *", lambda: fired.append(1), clock, tracker)
        job.start()
        await settle()
        await clock.advance(60)

        job.stop()
        await settle()
        await clock.advance(600)

        assert len(fired) == 1
        assert job.running is False
        assert job.next_fire_at is None

    async def test_callback_error_does_not_stop_loop(self, clock, tracker):
        calls = []

        def callback():
            calls.append(1)
            raise RuntimeError("boom")

        job = CronJob("t", "* * * * *", callback, clock, tracker)
        job.start()
        await settle()
        await clock.advance(120)

        assert len(calls) == 2
        assert job.running is True
        job.stop()

    async def test_start_is_idempotent(self, clock, tracker):
        job = CronJob("t", "* * * * *", lambda: None, clock, tracker)
        job.start()
        job.start()
        await settle()

        assert clock.sleeper_count == 1
        job.stop()

    async def test_restart_rearms(self, clock, tracker):
        fired = []
        job = CronJob("t", "* * * * *", lambda: fired.append(1), clock, tracker)
        job.start()
        await settle()

        job.restart()
        await settle()
        await clock.advance(60)

        assert len(fired) == 1
        assert job.running is True
        job.stop()

    def test_invalid_expression_rejected(self, clock, tracker):
        with pytest.raises(ValueError):
            CronJob("t", "bad", lambda: None, clock, tracker)
