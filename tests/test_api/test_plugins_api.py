"""
Tests for the operator API and the public health endpoint.

Tests cover:
- Admin key authentication
- Listing, stats and scheduled task status
- Enable, disable, reload and manual trigger
- Health endpoint status
"""

import pytest
from fastapi.testclient import TestClient

from conftest import FAILING_PLUGIN, RECORDING_PLUGIN, write_plugin
from plugin_host.core.config import Settings
from plugin_host.main import create_app
from plugin_host.plugins.manager import PluginManager
from plugin_host.scheduling.clock import SystemClock

HEADERS = {"X-Api-Key": "test-admin-key"}

TASK_PLUGIN = """
def tick():
    pass

async def handle(event, transport, config):
    pass

info = {
    "name": "Ticker",
    "scheduled_tasks": [{"name": "tick", "schedule": "0 * * * *", "handler": tick}],
}
"""


@pytest.fixture
def client(settings, plugins_dir):
    write_plugin(plugins_dir, "echo", RECORDING_PLUGIN.format(name="echo"))
    write_plugin(plugins_dir, "ticker", TASK_PLUGIN)
    manager = PluginManager(settings=settings, clock=SystemClock(settings.timezone))
    with TestClient(create_app(manager)) as test_client:
        yield test_client


class TestAuth:
    """Every operator route requires the admin key."""

    def test_missing_key(self, client):
        response = client.get("/api/plugins")
        assert response.status_code == 401
        assert response.json()["detail"] == "Missing API key"

    def test_invalid_key(self, client):
        response = client.get("/api/plugins", headers={"X-Api-Key": "wrong"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid API key"

    def test_auth_not_configured(self, plugins_dir):
        settings = Settings(_env_file=None, plugins_dir=plugins_dir, monitors_enabled=False)
        manager = PluginManager(settings=settings, clock=SystemClock(settings.timezone))
        with TestClient(create_app(manager)) as client:
            response = client.get("/api/plugins", headers=HEADERS)
        assert response.status_code == 401
        assert response.json()["detail"] == "Auth not configured"


class TestInspection:
    """Read-only operator endpoints."""

    def test_list_plugins(self, client):
        response = client.get("/api/plugins", headers=HEADERS)

        assert response.status_code == 200
        names = sorted(row["name"] for row in response.json())
        assert names == ["echo", "ticker"]

    def test_stats(self, client):
        data = client.get("/api/plugins/stats", headers=HEADERS).json()

        assert data["total"] == 2
        assert data["enabled"] == 2
        assert data["with_scheduled_tasks"] == 1

    def test_tasks(self, client):
        data = client.get("/api/plugins/tasks", headers=HEADERS).json()

        assert data["total"] == 1
        assert data["tasks"][0]["key"] == "ticker/tick"

    def test_plugin_health(self, client):
        data = client.get("/api/plugins/health", headers=HEADERS).json()

        assert data["healthy"] is True
        assert data["issues"] == []


class TestControl:
    """Mutating operator endpoints."""

    def test_disable_then_enable(self, client):
        response = client.post("/api/plugins/echo/disable", headers=HEADERS)
        assert response.status_code == 200
        assert response.json() == {"plugin": "echo", "enabled": False}

        stats = client.get("/api/plugins/stats", headers=HEADERS).json()
        assert stats["disabled"] == 1

        response = client.post("/api/plugins/echo/enable", headers=HEADERS)
        assert response.status_code == 200
        assert response.json() == {"plugin": "echo", "enabled": True}

    def test_disable_unknown(self, client):
        response = client.post("/api/plugins/ghost/disable", headers=HEADERS)
        assert response.status_code == 404

    def test_enable_unknown(self, client):
        response = client.post("/api/plugins/ghost/enable", headers=HEADERS)
        assert response.status_code == 404

    def test_trigger_task(self, client):
        response = client.post("/api/plugins/tasks/ticker/tick/trigger", headers=HEADERS)

        assert response.status_code == 200
        assert response.json() == {"task": "ticker/tick", "succeeded": True}

    def test_trigger_unknown_task(self, client):
        response = client.post("/api/plugins/tasks/ghost/tick/trigger", headers=HEADERS)
        assert response.status_code == 404

    def test_reload_plugin(self, client):
        response = client.post("/api/plugins/echo/reload", headers=HEADERS)

        assert response.status_code == 200
        assert response.json() == {"plugin": "echo", "reloaded": True}

    def test_reload_broken_plugin(self, client, plugins_dir):
        write_plugin(plugins_dir, "echo", "def handle(:\n")

        response = client.post("/api/plugins/echo/reload", headers=HEADERS)

        assert response.status_code == 409
        names = [row["name"] for row in client.get("/api/plugins", headers=HEADERS).json()]
        assert names == ["ticker"]

    def test_reload_all(self, client, plugins_dir):
        write_plugin(plugins_dir, "broken", FAILING_PLUGIN.format(name="broken"))

        response = client.post("/api/plugins/reload", headers=HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert sorted(data["loaded"]) == ["broken", "echo", "ticker"]
        assert data["summary"]["failed"] == []


class TestHealthEndpoint:
    """Public /health endpoint."""

    def test_health_no_auth(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "plugin-host"
        assert data["plugins"]["plugins"] == 2
        assert data["plugins"]["scheduled_tasks"] == 1
