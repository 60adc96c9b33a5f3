"""
Tests for the Supervisor Status API.

============================================================
PURPOSE
============================================================
Endpoints served by aiohttp over a scheduler backed by the
in-memory store (aiohttp.test_utils TestClient).

============================================================
"""

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from monitoring.api import create_status_app
from monitoring.config import SupervisorConfig
from monitoring.models import AlertSeverity, MetricSample, MonitoredComponent
from monitoring.notifications import MultiChannelNotifier
from orchestrator.scheduler import SupervisorScheduler


@pytest_asyncio.fixture
async def scheduler(clock, store, launcher, tmp_path):
    config = SupervisorConfig(
        data_dir=tmp_path,
        components=[MonitoredComponent(name="api", recovery_command=("python", "api.py"))],
        restart_settle_seconds=0,
    ).validate()
    scheduler = SupervisorScheduler.from_config(
        config, store=store, launcher=launcher, notifier=MultiChannelNotifier(), clock=clock
    )
    await scheduler.initialize()
    yield scheduler
    await scheduler.stop(grace_seconds=1)


@pytest_asyncio.fixture
async def client(scheduler):
    client = TestClient(TestServer(create_status_app(scheduler)))
    await client.start_server()
    yield client
    await client.close()


class TestReadEndpoints:

    @pytest.mark.asyncio
    async def test_health(self, client, clock):
        resp = await client.get("/health")

        assert resp.status == 200
        body = await resp.json()
        assert body["status"] == "ok"
        assert body["running"] is False
        assert body["timestamp"] == clock.now().isoformat()

    @pytest.mark.asyncio
    async def test_status(self, client):
        resp = await client.get("/status")

        data = (await resp.json())["data"]
        assert "component_sweep" in data["jobs"]
        assert data["storage_write_failures"] == 0
        assert data["recent_alerts"] == []

    @pytest.mark.asyncio
    async def test_alerts_filters(self, client, scheduler):
        await scheduler.alerts.raise_alert(AlertSeverity.WARNING, "api", "Slow response time: 6000.0ms")
        await scheduler.alerts.raise_alert(AlertSeverity.CRITICAL, "db", "Status changed from HEALTHY to DOWN")

        resp = await client.get("/alerts", params={"severity": "critical"})
        alerts = (await resp.json())["data"]["alerts"]
        assert [a["component"] for a in alerts] == ["db"]

        resp = await client.get("/alerts", params={"component": "api", "resolved": "false"})
        alerts = (await resp.json())["data"]["alerts"]
        assert [a["severity"] for a in alerts] == ["WARNING"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("params", [
        {"severity": "loud"},
        {"resolved": "maybe"},
        {"limit": "0"},
        {"limit": "many"},
    ])
    async def test_alerts_bad_query(self, client, params):
        resp = await client.get("/alerts", params=params)

        assert resp.status == 400
        assert (await resp.json())["status"] == "error"

    @pytest.mark.asyncio
    async def test_metrics_window(self, client, store, clock):
        await store.save_metric_sample(MetricSample("api", "response_time", clock.now(), 42.0, "ms"))

        resp = await client.get("/metrics", params={"component": "api", "minutes": "5"})

        data = (await resp.json())["data"]
        assert [(s["metric"], s["value"]) for s in data] == [("response_time", 42.0)]

    @pytest.mark.asyncio
    async def test_report_formats(self, client):
        resp = await client.get("/report")
        assert (await resp.json())["data"]["report_type"] == "health_monitoring"

        resp = await client.get("/report", params={"format": "markdown"})
        assert resp.status == 200
        assert (await resp.text()).startswith("# System Health Report")

        resp = await client.get("/report", params={"format": "pdf"})
        assert resp.status == 400


class TestManualRecovery:

    @pytest.mark.asyncio
    async def test_restart_known_component(self, client, launcher):
        resp = await client.post("/recovery", json={"component": "api", "action_type": "restart-process"})

        assert resp.status == 200
        data = (await resp.json())["data"]
        assert data["success"] is True
        assert data["attempt"] == 1
        assert launcher.launched == [["python", "api.py"]]

        history = await (await client.get("/recovery", params={"component": "api"})).json()
        assert [a["action_type"] for a in history["data"]] == ["restart-process"]

    @pytest.mark.asyncio
    async def test_unknown_action(self, client):
        resp = await client.post("/recovery", json={"component": "api", "action_type": "reboot"})
        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_unknown_component(self, client):
        resp = await client.post("/recovery", json={"component": "ghost", "action_type": "restart-process"})
        assert resp.status == 404

    @pytest.mark.asyncio
    async def test_missing_fields(self, client):
        resp = await client.post("/recovery", json={"component": "api"})
        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_body_must_be_json(self, client):
        resp = await client.post("/recovery", data="restart please")
        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_system_cache_clear(self, client):
        resp = await client.post(
            "/recovery",
            json={"component": "system", "action_type": "clear_cache", "detail": "memory_cleanup"},
        )

        assert resp.status == 200
        assert (await resp.json())["data"]["success"] is True
