"""
Tests for the health and control endpoints.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from dca_keeper.main import app
from dca_keeper.runtime import set_runtime


@pytest.fixture
def runtime():
    runtime = MagicMock()
    runtime.is_running = True
    runtime.client.health_check = AsyncMock(return_value={"status": "healthy", "latest_checkpoint": 42})
    runtime.status.return_value = {"running": True, "paused_reason": None, "cycles": 3}
    runtime.trigger.return_value = True
    set_runtime(runtime)
    yield runtime
    set_runtime(None)


@pytest.fixture
def client(runtime):
    return TestClient(app)


class TestHealthEndpoints:
    """Tests for /health, /status and /trigger."""

    def test_root(self, client):
        body = client.get("/").json()
        assert body["name"] == "DCA Keeper"
        assert body["health"] == "/health"

    def test_healthy(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["providers"]["sui_rpc"]["latest_checkpoint"] == 42

    def test_degraded_when_rpc_down(self, client, runtime):
        runtime.client.health_check.return_value = {"status": "error", "reason": "refused"}
        assert client.get("/health").json()["status"] == "degraded"

    def test_degraded_when_paused(self, client, runtime):
        runtime.status.return_value = {"paused_reason": "cycle timed out after 55.0s"}
        assert client.get("/health").json()["status"] == "degraded"

    def test_degraded_when_stopped(self, client, runtime):
        runtime.is_running = False
        assert client.get("/health").json()["running"] is False
        assert client.get("/health").json()["status"] == "degraded"

    def test_status(self, client):
        assert client.get("/status").json()["cycles"] == 3

    def test_trigger(self, client, runtime):
        assert client.post("/trigger").json() == {"triggered": True}

        runtime.trigger.return_value = False
        assert client.post("/trigger").status_code == 409
