"""
Tests for the health monitor.

Tests cover:
- Critical and non-critical issue detection
- Cascade reload threshold
- Stuck task restart
- Monitor loops on virtual time
"""

from pathlib import Path
from unittest.mock import AsyncMock

from conftest import ManualClock, settle
from plugin_host.core.typed_config import HostLimits
from plugin_host.health.monitor import HealthMonitor
from plugin_host.plugins.base import PluginMetadata, PluginRecord
from plugin_host.plugins.metrics import MetricsStore
from plugin_host.plugins.registry import PluginRegistry
from plugin_host.scheduling.supervisor import TaskState, TaskSupervisor
from plugin_host.utils.task_tracker import TaskTracker


async def _noop(*args):
    return None


def _record(name, clock):
    return PluginRecord(
        name=name,
        path=Path(f"{name}.py"),
        metadata=PluginMetadata(name=name),
        handler=_noop,
        loaded_at=clock.now(),
        module_name=f"_plugin_{name}",
    )


class Host:
    """Monitor plus collaborators, without the loader."""

    def __init__(self, clock=None):
        self.clock = clock or ManualClock()
        self.tracker = TaskTracker()
        self.registry = PluginRegistry()
        self.metrics = MetricsStore()
        self.limits = HostLimits()
        self.supervisor = TaskSupervisor(
            self.registry, self.metrics, self.clock, self.tracker, self.limits
        )
        self.reload_all = AsyncMock()
        self.monitor = HealthMonitor(
            self.registry,
            self.metrics,
            self.supervisor,
            self.clock,
            self.tracker,
            reload_all=self.reload_all,
            limits=self.limits,
        )

    def add_plugin(self, name, executions=0, errors=0, total_ms=0.0):
        self.registry.insert(_record(name, self.clock))
        self.metrics.reset(name)
        for i in range(executions):
            self.metrics.record_dispatch(
                name, total_ms / executions if executions else 0.0, ok=i >= errors
            )


class TestRunCheck:
    """Issue detection."""

    def test_healthy(self):
        host = Host()
        host.add_plugin("a", executions=10, errors=1, total_ms=100)

        report = host.monitor.run_check()

        assert report.healthy
        assert report.critical_issue_count == 0
        assert host.monitor.latest_report is report

    def test_high_error_rate_is_critical(self):
        host = Host()
        host.add_plugin("a", executions=10, errors=3)

        report = host.monitor.run_check()

        assert len(report.issues) == 1
        issue = report.issues[0]
        assert issue.subject == "a"
        assert issue.critical is True
        assert "30%" in issue.message

    def test_error_rate_at_threshold_not_flagged(self):
        host = Host()
        host.add_plugin("a", executions=10, errors=2)

        assert host.monitor.run_check().healthy

    def test_no_executions_not_flagged(self):
        host = Host()
        host.add_plugin("a")

        assert host.monitor.run_check().healthy

    def test_slow_average_is_not_critical(self):
        host = Host()
        host.add_plugin("a", executions=2, total_ms=12000)

        report = host.monitor.run_check()

        assert len(report.issues) == 1
        assert report.issues[0].critical is False
        assert "6000ms" in report.issues[0].message

    async def test_task_error_streak_is_critical(self):
        host = Host()
        host.add_plugin("a")

        def boom():
            raise RuntimeError("boom")

        host.supervisor.register_tasks(
            "a", [{"name": "t", "schedule": "0 * * * *", "handler": boom}]
        )
        for _ in range(4):
            await host.supervisor.fire("a", "t")

        report = host.monitor.run_check(restart_stuck=False)

        assert report.critical_issue_count == 1
        assert report.issues[0].subject == "a/t"
        assert report.scheduled_task_counts["total"] == 1
        assert report.scheduled_task_counts["quarantined"] == 0


class TestCascade:
    """Full reload when too many critical issues pile up."""

    def _host_with_failing_plugins(self, count):
        host = Host()
        for i in range(count):
            host.add_plugin(f"p{i}", executions=4, errors=4)
        return host

    async def test_three_critical_issues_trigger_reload(self):
        host = self._host_with_failing_plugins(3)
        host.monitor.run_check()

        assert await host.monitor.cascade_check() is True

        host.reload_all.assert_awaited_once()
        assert host.monitor.cascade_count == 1

    async def test_two_critical_issues_do_not(self):
        host = self._host_with_failing_plugins(2)
        host.monitor.run_check()

        assert await host.monitor.cascade_check() is False

        host.reload_all.assert_not_awaited()

    async def test_no_report_yet(self):
        host = self._host_with_failing_plugins(3)

        assert await host.monitor.cascade_check() is False

    async def test_reload_clears_stale_report(self):
        host = self._host_with_failing_plugins(3)

        async def reload_all():
            for name in host.registry.names():
                host.metrics.reset(name)

        host.reload_all.side_effect = reload_all
        host.monitor.run_check()

        await host.monitor.cascade_check()

        assert host.monitor.latest_report.healthy
        assert await host.monitor.cascade_check() is False


class TestStuckTasks:
    """Stuck task detection and restart."""

    async def test_stuck_task_restarted(self):
        host = Host()
        host.add_plugin("a")
        should_fail = [True]

        def flaky():
            if should_fail[0]:
                raise RuntimeError("down")

        host.supervisor.register_tasks(
            "a", [{"name": "t", "schedule": "0 * * * *", "handler": flaky}]
        )
        host.supervisor.start()
        await host.supervisor.fire("a", "t")
        task = host.supervisor.get("a/t")
        assert task.error_streak == 1

        host.clock.shift(3 * 60 * 60)
        report = host.monitor.run_check()

        assert report.restarted_tasks == ["a/t"]
        assert report.scheduled_task_counts["stuck"] == 1
        assert task.error_streak == 0
        assert task.state is TaskState.SCHEDULED
        assert task.job.running is True

        should_fail[0] = False
        assert await host.supervisor.fire("a", "t") is True
        host.supervisor.stop()
        await settle()

    async def test_recent_failure_not_stuck(self):
        host = Host()
        host.add_plugin("a")

        def boom():
            raise RuntimeError("down")

        host.supervisor.register_tasks(
            "a", [{"name": "t", "schedule": "0 * * * *", "handler": boom}]
        )
        await host.supervisor.fire("a", "t")
        host.clock.shift(60 * 60)

        report = host.monitor.run_check()

        assert report.restarted_tasks == []
        assert report.scheduled_task_counts["stuck"] == 0


class TestLoops:
    """Monitor loops driven by the clock."""

    async def test_health_loop_runs_on_interval(self):
        host = Host()
        host.add_plugin("a", executions=4, errors=4)
        host.monitor.start()
        await settle()
        assert host.monitor.running

        assert host.monitor.latest_report is None
        await host.clock.advance(600)

        assert host.monitor.latest_report is not None
        assert host.monitor.latest_report.critical_issue_count == 1

        host.monitor.stop()
        await settle()
        assert not host.monitor.running

    async def test_cascade_loop_reloads(self):
        host = Host()
        for i in range(3):
            host.add_plugin(f"p{i}", executions=1, errors=1)
        host.monitor.start()
        await settle()

        await host.clock.advance(3600)

        host.reload_all.assert_awaited_once()
        host.monitor.stop()
        await settle()
