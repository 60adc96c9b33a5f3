"""
Tests for the resource, storage and network sweeps and for
maintenance.

============================================================
PURPOSE
============================================================
- Threshold alerts and the recovery actions they trigger
- Storage directory / database checks
- Network latency recording against a local server
- Maintenance purges and baseline rebuild

============================================================
"""

import os
import socket
import time
from dataclasses import replace
from datetime import timedelta

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer
from sqlalchemy.exc import OperationalError

from monitoring.baseline import BaselineTracker
from monitoring.config import AlertThresholds, RetentionConfig, SupervisorConfig
from monitoring.maintenance import MaintenanceRunner
from monitoring.metrics import MetricRecorder
from monitoring.models import AlertSeverity, MetricSample, RecoveryActionType
from monitoring.network import NetworkMonitor, latency_metric_name
from monitoring.resources import ResourceMonitor, ResourceSnapshot, threshold_severity
from monitoring.storage_health import StorageMonitor


CALM = ResourceSnapshot(
    cpu_percent=20.0,
    memory_percent=40.0,
    disk_percent=50.0,
    bytes_sent=1000.0,
    bytes_received=2000.0,
    packets_sent=10.0,
    packets_received=20.0,
    process_cpu_percent=1.0,
    process_memory_mb=64.0,
)


class FixedSampler:

    def __init__(self, snapshot):
        self.snapshot = snapshot

    def sample(self):
        return self.snapshot


class RecordingExecutor:

    def __init__(self):
        self.calls = []

    async def execute(self, component_name, action_type, detail="", alerts=None):
        self.calls.append((component_name, action_type, detail))


# ============================================================
# RESOURCE SWEEP
# ============================================================

class TestThresholdSeverity:

    def test_levels(self):
        assert threshold_severity(50, 80, 95) is None
        assert threshold_severity(80, 80, 95) is None
        assert threshold_severity(81, 80, 95) == AlertSeverity.WARNING
        assert threshold_severity(96, 80, 95) == AlertSeverity.CRITICAL


class TestResourceMonitor:

    @pytest.mark.asyncio
    async def test_records_every_metric(self, clock, store, sink):
        recorder = MetricRecorder(BaselineTracker(), store, clock=clock)
        monitor = ResourceMonitor(FixedSampler(CALM), recorder, AlertThresholds())

        await monitor.sweep(sink)

        assert sink.alerts == []
        assert await store.recent_metric_values("system", "memory_usage") == [40.0]
        assert await store.recent_metric_values("process", "supervisor_memory") == [64.0]
        assert await store.recent_metric_values("network", "packets_received") == [20.0]

    @pytest.mark.asyncio
    async def test_high_cpu_warns(self, clock, sink):
        recorder = MetricRecorder(BaselineTracker(), clock=clock)
        executor = RecordingExecutor()
        monitor = ResourceMonitor(
            FixedSampler(replace(CALM, cpu_percent=85.0)), recorder, AlertThresholds(), executor
        )

        await monitor.sweep(sink)

        assert [(a.severity, a.message) for a in sink.alerts] == [
            (AlertSeverity.WARNING, "High CPU usage: 85.0%")
        ]
        assert executor.calls == []

    @pytest.mark.asyncio
    async def test_critical_memory_clears_cache(self, clock, sink):
        recorder = MetricRecorder(BaselineTracker(), clock=clock)
        executor = RecordingExecutor()
        monitor = ResourceMonitor(
            FixedSampler(replace(CALM, memory_percent=97.0)), recorder, AlertThresholds(), executor
        )

        await monitor.sweep(sink)

        assert sink.of(AlertSeverity.CRITICAL)[0].message == "Critical memory usage: 97.0%"
        assert executor.calls == [("system", RecoveryActionType.CLEAR_CACHE, "memory_cleanup")]

    @pytest.mark.asyncio
    async def test_critical_disk_cleans_storage(self, clock, sink):
        recorder = MetricRecorder(BaselineTracker(), clock=clock)
        executor = RecordingExecutor()
        monitor = ResourceMonitor(
            FixedSampler(replace(CALM, disk_percent=99.0)), recorder, AlertThresholds(), executor
        )

        await monitor.sweep(sink)

        assert executor.calls == [("system", RecoveryActionType.CLEANUP_STORAGE, "disk_cleanup")]


# ============================================================
# STORAGE SWEEP
# ============================================================

class TestStorageMonitor:

    @pytest.mark.asyncio
    async def test_missing_directories_recreated(self, store, sink, tmp_path):
        (tmp_path / "logs").mkdir()
        config = SupervisorConfig(data_dir=tmp_path, required_directories=["logs", "reports", "temp"])

        result = await StorageMonitor(config, store).sweep(sink)

        assert result["missing"] == ["reports", "temp"]
        assert (tmp_path / "reports").is_dir()
        assert [a.message for a in sink.of(AlertSeverity.WARNING)] == [
            "Missing directory: reports",
            "Missing directory: temp",
        ]

    @pytest.mark.asyncio
    async def test_second_sweep_is_quiet(self, store, sink, tmp_path):
        config = SupervisorConfig(data_dir=tmp_path)
        monitor = StorageMonitor(config, store)
        await monitor.sweep(sink)
        sink.alerts.clear()

        result = await monitor.sweep(sink)

        assert result["missing"] == []
        assert sink.alerts == []

    @pytest.mark.asyncio
    async def test_inaccessible_data_dir(self, store, sink, tmp_path):
        config = SupervisorConfig(data_dir=tmp_path / "absent")

        result = await StorageMonitor(config, store).sweep(sink)

        assert result["accessible"] is False
        assert sink.alerts[0].severity == AlertSeverity.ERROR
        assert not (tmp_path / "absent").exists()

    @pytest.mark.asyncio
    async def test_empty_database_file_is_critical(self, store, sink, tmp_path):
        (tmp_path / "stale.db").touch()
        config = SupervisorConfig(data_dir=tmp_path, required_directories=[])

        result = await StorageMonitor(config, store).sweep(sink)

        assert result["empty_databases"] == ["stale.db"]
        critical = sink.of(AlertSeverity.CRITICAL)
        assert critical[0].component == "database"
        assert critical[0].message == "Empty database file: stale.db"

    @pytest.mark.asyncio
    async def test_unreachable_database(self, store, sink, tmp_path, monkeypatch):
        async def broken_ping():
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

        monkeypatch.setattr(store, "ping", broken_ping)
        config = SupervisorConfig(data_dir=tmp_path, required_directories=[])

        result = await StorageMonitor(config, store).sweep(sink)

        assert result["database_ok"] is False
        assert sink.of(AlertSeverity.ERROR)[0].message.startswith("Database health check failed")


# ============================================================
# NETWORK SWEEP
# ============================================================

async def _head_ok(request):
    return web.Response(text="ok")


@pytest_asyncio.fixture
async def target_server():
    app = web.Application()
    app.router.add_get("/", _head_ok)
    server = TestServer(app, host="127.0.0.1")
    await server.start_server()
    yield server
    await server.close()


def closed_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class TestNetworkMonitor:

    def test_metric_name_uses_host(self):
        assert latency_metric_name("https://github.com/status") == "latency_github.com"

    @pytest.mark.asyncio
    async def test_reachable_target_recorded(self, clock, store, sink, target_server):
        url = f"http://127.0.0.1:{target_server.port}/"
        recorder = MetricRecorder(BaselineTracker(), store, clock=clock)
        monitor = NetworkMonitor([url], recorder, AlertThresholds(), timeout_seconds=2)
        try:
            latencies = await monitor.sweep(sink)
        finally:
            await monitor.close()

        assert latencies[url] is not None
        values = await store.recent_metric_values("network", latency_metric_name(url))
        assert values == [latencies[url]]
        assert sink.of(AlertSeverity.ERROR) == []

    @pytest.mark.asyncio
    async def test_unreachable_target_is_error(self, clock, sink):
        url = f"http://127.0.0.1:{closed_port()}/"
        monitor = NetworkMonitor([url], MetricRecorder(BaselineTracker(), clock=clock), AlertThresholds(), 2)
        try:
            latencies = await monitor.sweep(sink)
        finally:
            await monitor.close()

        assert latencies == {url: None}
        assert sink.alerts[0].severity == AlertSeverity.ERROR
        assert sink.alerts[0].message.startswith(f"Network connectivity failed for {url}")

    @pytest.mark.asyncio
    async def test_no_targets(self, clock, sink):
        monitor = NetworkMonitor([], MetricRecorder(BaselineTracker(), clock=clock), AlertThresholds())
        assert await monitor.sweep(sink) == {}


# ============================================================
# MAINTENANCE
# ============================================================

class TestMaintenanceRunner:

    @pytest.mark.asyncio
    async def test_purges_and_optimizes(self, clock, store, sink, tmp_path):
        config = SupervisorConfig(data_dir=tmp_path)
        config.logs_dir.mkdir()
        config.temp_dir.mkdir()
        old_log = config.logs_dir / "supervisor.log.1"
        old_log.write_text("old")
        ancient = clock.now().timestamp() - 31 * 86400
        os.utime(old_log, (ancient, ancient))
        (config.logs_dir / "supervisor.log").write_text("new")
        os.utime(config.logs_dir / "supervisor.log", (time.time(), time.time()))
        (config.temp_dir / "scratch").write_text("x")

        summary = await MaintenanceRunner(config, store, BaselineTracker(), sink, clock).run()

        assert summary["logs_removed"] == 1
        assert summary["temp_removed"] == 1
        assert summary["optimized"] is True
        assert summary["errors"] == []
        assert sink.alerts == []

    @pytest.mark.asyncio
    async def test_rebuild_baselines(self, clock, store, tmp_path):
        config = SupervisorConfig(
            data_dir=tmp_path,
            retention=RetentionConfig(baseline_rebuild_min_samples=2),
        )
        now = clock.now()
        for i, value in enumerate((10.0, 20.0, 30.0)):
            await store.save_metric_sample(
                MetricSample("api", "latency", now - timedelta(hours=i), value, "ms")
            )
        for value in (1.0, 2.0):
            await store.save_metric_sample(MetricSample("db", "latency", now, value, "ms"))
        tracker = BaselineTracker()

        rebuilt = await MaintenanceRunner(config, store, tracker, clock=clock).rebuild_baselines()

        assert rebuilt == 1
        baseline = tracker.get("api", "latency")
        assert (baseline.mean, baseline.minimum, baseline.maximum, baseline.count) == (20.0, 10.0, 30.0, 3)
        assert tracker.get("db", "latency") is None
        assert [b.key for b in await store.load_baselines()] == [("api", "latency")]

    @pytest.mark.asyncio
    async def test_failed_step_raises_error_alert(self, clock, store, sink, tmp_path, monkeypatch):
        async def broken_optimize():
            raise OperationalError("VACUUM", {}, Exception("database is locked"))

        monkeypatch.setattr(store, "optimize", broken_optimize)
        config = SupervisorConfig(data_dir=tmp_path)

        summary = await MaintenanceRunner(config, store, BaselineTracker(), sink, clock).run()

        assert summary["optimized"] is False
        assert len(summary["errors"]) == 1
        alert = sink.alerts[0]
        assert alert.severity == AlertSeverity.ERROR
        assert alert.component == "maintenance"
