"""
Monitoring - Resource Sweep.

============================================================
RESPONSIBILITY
============================================================
Samples host resources with psutil and feeds them through the
Metric Recorder, then compares them with the alert thresholds.

METRICS (component / metric / unit):
- system / cpu_usage / %
- system / memory_usage / %
- system / disk_usage / %           (filesystem of data_dir)
- network / bytes_sent, bytes_received / bytes
- network / packets_sent, packets_received / packets
- process / supervisor_cpu / %
- process / supervisor_memory / MB

THRESHOLD REACTIONS:
- critical memory -> CRITICAL + clear-cache on "system"
- critical disk   -> CRITICAL + cleanup-storage on "system"

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import psutil

from monitoring.config import AlertThresholds
from monitoring.metrics import MetricRecorder
from monitoring.models import AlertSeverity, RecoveryActionType


logger = logging.getLogger(__name__)


def threshold_severity(value: float, high: float, critical: float) -> Optional[AlertSeverity]:
    """CRITICAL above critical, WARNING above high, else None."""
    if value > critical:
        return AlertSeverity.CRITICAL
    if value > high:
        return AlertSeverity.WARNING
    return None


# ============================================================
# SAMPLING
# ============================================================

@dataclass(frozen=True)
class ResourceSnapshot:
    cpu_percent: float
    memory_percent: float
    disk_percent: float
    bytes_sent: float
    bytes_received: float
    packets_sent: float
    packets_received: float
    process_cpu_percent: float
    process_memory_mb: float


class ResourceSampler:
    """Reads host and own-process figures from psutil."""

    def __init__(self, disk_path: Path) -> None:
        self._disk_path = Path(disk_path)
        self._process = psutil.Process()
        # Prime the cpu_percent counters; the first reading is always 0.0.
        psutil.cpu_percent(interval=None)
        self._process.cpu_percent(interval=None)

    def _existing_disk_path(self) -> str:
        path = self._disk_path.resolve()
        while not path.exists() and path != path.parent:
            path = path.parent
        return str(path)

    def sample(self) -> ResourceSnapshot:
        net = psutil.net_io_counters()
        return ResourceSnapshot(
            cpu_percent=round(psutil.cpu_percent(interval=None), 2),
            memory_percent=round(psutil.virtual_memory().percent, 2),
            disk_percent=round(psutil.disk_usage(self._existing_disk_path()).percent, 2),
            bytes_sent=float(net.bytes_sent),
            bytes_received=float(net.bytes_recv),
            packets_sent=float(net.packets_sent),
            packets_received=float(net.packets_recv),
            process_cpu_percent=round(self._process.cpu_percent(interval=None), 2),
            process_memory_mb=round(self._process.memory_info().rss / 1024 / 1024, 2),
        )


# ============================================================
# SWEEP
# ============================================================

class ResourceMonitor:
    """One resource sweep per call to sweep()."""

    def __init__(
        self,
        sampler: Any,
        recorder: MetricRecorder,
        thresholds: AlertThresholds,
        executor: Any = None,
    ) -> None:
        self._sampler = sampler
        self._recorder = recorder
        self._thresholds = thresholds
        self._executor = executor

    async def sweep(self, alerts: Any) -> ResourceSnapshot:
        snapshot = await asyncio.to_thread(self._sampler.sample)

        record = self._recorder.record
        await record("system", "cpu_usage", snapshot.cpu_percent, "%", alerts=alerts)
        await record("system", "memory_usage", snapshot.memory_percent, "%", alerts=alerts)
        await record("system", "disk_usage", snapshot.disk_percent, "%", alerts=alerts)
        await record("network", "bytes_sent", snapshot.bytes_sent, "bytes", alerts=alerts)
        await record("network", "bytes_received", snapshot.bytes_received, "bytes", alerts=alerts)
        await record("network", "packets_sent", snapshot.packets_sent, "packets", alerts=alerts)
        await record("network", "packets_received", snapshot.packets_received, "packets", alerts=alerts)
        await record("process", "supervisor_cpu", snapshot.process_cpu_percent, "%", alerts=alerts)
        await record("process", "supervisor_memory", snapshot.process_memory_mb, "MB", alerts=alerts)

        await self._check_thresholds(snapshot, alerts)
        return snapshot

    async def _check_thresholds(self, snapshot: ResourceSnapshot, alerts: Any) -> None:
        t = self._thresholds

        cpu = threshold_severity(snapshot.cpu_percent, t.cpu_high, t.cpu_critical)
        if cpu is not None:
            label = "Critical" if cpu == AlertSeverity.CRITICAL else "High"
            await alerts.raise_alert(cpu, "system", f"{label} CPU usage: {snapshot.cpu_percent}%", alert_type="resource")

        memory = threshold_severity(snapshot.memory_percent, t.memory_high, t.memory_critical)
        if memory is not None:
            label = "Critical" if memory == AlertSeverity.CRITICAL else "High"
            await alerts.raise_alert(
                memory, "system", f"{label} memory usage: {snapshot.memory_percent}%", alert_type="resource"
            )
            if memory == AlertSeverity.CRITICAL:
                await self._recover(RecoveryActionType.CLEAR_CACHE, "memory_cleanup", alerts)

        disk = threshold_severity(snapshot.disk_percent, t.disk_high, t.disk_critical)
        if disk is not None:
            label = "Critical" if disk == AlertSeverity.CRITICAL else "High"
            await alerts.raise_alert(disk, "system", f"{label} disk usage: {snapshot.disk_percent}%", alert_type="resource")
            if disk == AlertSeverity.CRITICAL:
                await self._recover(RecoveryActionType.CLEANUP_STORAGE, "disk_cleanup", alerts)

    async def _recover(self, action: RecoveryActionType, detail: str, alerts: Any) -> None:
        if self._executor is None:
            return
        await self._executor.execute("system", action, detail, alerts=alerts)
