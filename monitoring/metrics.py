"""
Monitoring - Metric Recorder.

============================================================
RESPONSIBILITY
============================================================
Records timestamped metric samples.

- Classifies each value against its baseline (anomaly flag)
- Classifies trend against the last 10 samples of the key
- Persists the sample and the updated baseline
- Raises a WARNING alert for anomalous values

============================================================
TREND
============================================================
- Fewer than 3 prior samples -> STABLE
- value > mean x 1.1         -> INCREASING
- value < mean x 0.9         -> DECREASING
- otherwise                  -> STABLE

============================================================
"""

import logging
from collections import deque
from datetime import datetime
from typing import Any, Deque, Dict, Optional, Sequence, Tuple

from core.clock import ClockFactory, ClockProtocol
from monitoring.baseline import BaselineTracker
from monitoring.models import AlertSeverity, MetricSample, Trend
from storage.store import MonitoringStore


logger = logging.getLogger(__name__)


TREND_WINDOW = 10
TREND_MIN_SAMPLES = 3
TREND_UPPER = 1.1
TREND_LOWER = 0.9


def classify_trend(value: float, previous: Sequence[float]) -> Trend:
    """Compare value to the mean of up to 10 prior samples."""
    recent = list(previous)[:TREND_WINDOW]
    if len(recent) < TREND_MIN_SAMPLES:
        return Trend.STABLE

    mean = sum(recent) / len(recent)
    if value > mean * TREND_UPPER:
        return Trend.INCREASING
    if value < mean * TREND_LOWER:
        return Trend.DECREASING
    return Trend.STABLE


class MetricRecorder:
    """
    The only producer of MetricSamples.

    alerts is any sink with an async raise_alert(severity, component,
    message, alert_type=...) method: the AlertManager or a per-sweep
    AlertCycle.
    """

    def __init__(
        self,
        tracker: BaselineTracker,
        store: Optional[MonitoringStore] = None,
        alerts: Any = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._tracker = tracker
        self._store = store
        self._alerts = alerts
        self._clock = clock
        self._recent: Dict[Tuple[str, str], Deque[float]] = {}

    @property
    def tracker(self) -> BaselineTracker:
        return self._tracker

    def clear_trend_cache(self) -> int:
        """Drop in-memory trend windows; they are warm-started again from the store."""
        dropped = len(self._recent)
        self._recent.clear()
        logger.info(f"Cleared {dropped} trend window(s)")
        return dropped

    async def _recent_values(self, key: Tuple[str, str]) -> Deque[float]:
        """Newest-first window for a key, warm-started from the store."""
        window = self._recent.get(key)
        if window is None:
            persisted = []
            if self._store is not None:
                persisted = await self._store.recent_metric_values(key[0], key[1], TREND_WINDOW)
            window = self._recent[key] = deque(persisted, maxlen=TREND_WINDOW)
        return window

    async def record(
        self,
        component: str,
        metric: str,
        value: float,
        unit: str = "",
        timestamp: Optional[datetime] = None,
        alerts: Any = None,
    ) -> MetricSample:
        """
        Record one value.

        Work on a key is serialised, so samples of the same key are
        written in timestamp order.
        """
        key = (component, metric)
        sink = alerts if alerts is not None else self._alerts

        async with self._tracker.lock_for(key):
            timestamp = timestamp or (self._clock or ClockFactory.get_clock()).now()
            value = float(value)

            baseline, anomalous = self._tracker.observe(component, metric, value, timestamp)

            window = await self._recent_values(key)
            trend = classify_trend(value, window)
            window.appendleft(value)

            sample = MetricSample(
                component=component,
                metric=metric,
                timestamp=timestamp,
                value=value,
                unit=unit,
                trend=trend,
                anomaly=anomalous,
            )

            if self._store is not None:
                await self._store.save_metric_sample(sample)
                await self._store.upsert_baseline(baseline)

        if anomalous and sink is not None:
            await sink.raise_alert(
                AlertSeverity.WARNING,
                component,
                f"Anomaly detected: {metric} = {value:g}{unit} (component: {component})",
                alert_type="anomaly",
            )
        return sample
