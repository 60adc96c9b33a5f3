"""
Monitoring - Network Sweep.

HEADs every configured target concurrently. Latency is recorded
as network/latency_<host> (ms) and compared with the network
thresholds; an unreachable target raises an ERROR alert.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import aiohttp

from monitoring.config import AlertThresholds
from monitoring.metrics import MetricRecorder
from monitoring.models import AlertSeverity
from monitoring.resources import threshold_severity


logger = logging.getLogger(__name__)


def latency_metric_name(url: str) -> str:
    return f"latency_{urlparse(url).netloc or url}"


class NetworkMonitor:
    """One network sweep per call to sweep()."""

    def __init__(
        self,
        targets: List[str],
        recorder: MetricRecorder,
        thresholds: AlertThresholds,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._targets = list(targets)
        self._recorder = recorder
        self._thresholds = thresholds
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def sweep(self, alerts: Any) -> Dict[str, Optional[float]]:
        if not self._targets:
            return {}
        latencies = await asyncio.gather(*(self._probe(url, alerts) for url in self._targets))
        return dict(zip(self._targets, latencies))

    async def _probe(self, url: str, alerts: Any) -> Optional[float]:
        session = await self._get_session()
        start = time.perf_counter()
        try:
            async with session.head(url, allow_redirects=True) as response:
                await response.release()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            reason = str(e) or type(e).__name__
            await alerts.raise_alert(
                AlertSeverity.ERROR, "network", f"Network connectivity failed for {url}: {reason}",
                alert_type="network",
            )
            return None

        latency = round((time.perf_counter() - start) * 1000, 2)
        t = self._thresholds
        severity = threshold_severity(latency, t.network_slow_ms, t.network_critical_ms)
        if severity is not None:
            label = "Critical" if severity == AlertSeverity.CRITICAL else "High"
            await alerts.raise_alert(
                severity, "network", f"{label} network latency to {url}: {latency}ms", alert_type="network"
            )

        await self._recorder.record("network", latency_metric_name(url), latency, "ms", alerts=alerts)
        return latency
