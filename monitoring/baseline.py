"""
Monitoring - Baseline Tracker.

============================================================
PURPOSE
============================================================
Maintains a rolling profile (mean, min, max, count) for every
(component, metric) key and decides whether a fresh value is
anomalous against it.

============================================================
RULES
============================================================
- First value for a key creates the baseline and is never
  anomalous (cold start)
- Anomalous when |value - mean| > 0.3 x (max - min)
- Update: mean = (mean x count + value) / (count + 1),
  running min / max, count + 1

============================================================
CONCURRENCY
============================================================
State is partitioned by key. Callers serialise work on a key
with lock_for(key); different keys never contend.

============================================================
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from monitoring.models import Baseline


logger = logging.getLogger(__name__)


ANOMALY_FACTOR = 0.3

Key = Tuple[str, str]


def is_anomalous(baseline: Baseline, value: float, factor: float = ANOMALY_FACTOR) -> bool:
    """Relative-deviation rule against the current baseline."""
    return abs(value - baseline.mean) > factor * baseline.spread


class BaselineTracker:
    """
    Owns every Baseline for a run.

    observe() is pure compute; persistence is the caller's job.
    """

    def __init__(self, anomaly_factor: float = ANOMALY_FACTOR) -> None:
        self._factor = anomaly_factor
        self._baselines: Dict[Key, Baseline] = {}
        self._locks: Dict[Key, asyncio.Lock] = {}

    def lock_for(self, key: Key) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def get(self, component: str, metric: str) -> Optional[Baseline]:
        return self._baselines.get((component, metric))

    def __len__(self) -> int:
        return len(self._baselines)

    def snapshot(self) -> List[Baseline]:
        return [self._baselines[key] for key in sorted(self._baselines)]

    def observe(
        self,
        component: str,
        metric: str,
        value: float,
        timestamp: Optional[datetime] = None,
    ) -> Tuple[Baseline, bool]:
        """
        Classify value against the key's baseline, then fold it in.

        Returns:
            (updated baseline, anomalous)
        """
        key = (component, metric)
        baseline = self._baselines.get(key)

        if baseline is None:
            baseline = Baseline(
                component=component,
                metric=metric,
                mean=value,
                minimum=value,
                maximum=value,
                count=1,
                updated_at=timestamp,
            )
            self._baselines[key] = baseline
            return baseline, False

        anomalous = is_anomalous(baseline, value, self._factor)

        baseline.mean = (baseline.mean * baseline.count + value) / (baseline.count + 1)
        baseline.minimum = min(baseline.minimum, value)
        baseline.maximum = max(baseline.maximum, value)
        baseline.count += 1
        baseline.updated_at = timestamp

        if anomalous:
            logger.debug(f"Anomalous {component}/{metric}={value} vs mean {baseline.mean:.3f}")
        return baseline, anomalous

    def seed(self, baselines: Iterable[Baseline]) -> int:
        """Warm start from persisted baselines. Existing keys win."""
        loaded = 0
        for baseline in baselines:
            if baseline.key not in self._baselines:
                self._baselines[baseline.key] = baseline
                loaded += 1
        logger.info(f"Loaded {loaded} performance baselines")
        return loaded

    def replace(self, baseline: Baseline) -> None:
        """Overwrite a key (used by the maintenance rebuild)."""
        self._baselines[baseline.key] = baseline
