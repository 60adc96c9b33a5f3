"""
Monitoring - Maintenance.

============================================================
RESPONSIBILITY
============================================================
Hourly housekeeping:

- Delete log files older than the retention window
- Empty the temp directory
- Optimise the database (VACUUM / ANALYZE)
- Rebuild baselines for keys with enough recent samples

A failing step is logged and the remaining steps still run; a
summary ERROR alert is raised when any step failed.

============================================================
"""

import asyncio
import logging
import shutil
import time
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from core.clock import ClockFactory, ClockProtocol
from monitoring.baseline import BaselineTracker
from monitoring.config import SupervisorConfig
from monitoring.models import AlertSeverity, Baseline
from storage.store import MonitoringStore


logger = logging.getLogger(__name__)


# ============================================================
# FILESYSTEM HELPERS
# ============================================================

def purge_directory(path: Path) -> int:
    """Remove every entry of path (not path itself). Returns count."""
    path = Path(path)
    if not path.is_dir():
        return 0

    removed = 0
    for entry in path.iterdir():
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()
        removed += 1
    return removed


def purge_older_than(path: Path, max_age_seconds: float, now: Optional[float] = None) -> int:
    """Remove regular files under path whose mtime is older than max_age."""
    path = Path(path)
    if not path.is_dir():
        return 0

    cutoff = (now if now is not None else time.time()) - max_age_seconds
    removed = 0
    for entry in path.iterdir():
        if entry.is_file() and entry.stat().st_mtime < cutoff:
            entry.unlink()
            logger.info(f"Cleaned old log file: {entry.name}")
            removed += 1
    return removed


# ============================================================
# MAINTENANCE
# ============================================================

class MaintenanceRunner:
    """One maintenance pass per call to run()."""

    def __init__(
        self,
        config: SupervisorConfig,
        store: MonitoringStore,
        tracker: BaselineTracker,
        alerts: Any = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._config = config
        self._store = store
        self._tracker = tracker
        self._alerts = alerts
        self._clock = clock

    def _now(self):
        return (self._clock or ClockFactory.get_clock()).now()

    async def run(self) -> Dict[str, Any]:
        retention = self._config.retention
        summary: Dict[str, Any] = {"errors": []}

        try:
            summary["logs_removed"] = await asyncio.to_thread(
                purge_older_than,
                self._config.logs_dir,
                retention.log_days * 86400,
                self._now().timestamp(),
            )
        except OSError as e:
            logger.error(f"Failed to clean old logs: {e}")
            summary["errors"].append(f"logs: {e}")

        try:
            summary["temp_removed"] = await asyncio.to_thread(purge_directory, self._config.temp_dir)
        except OSError as e:
            logger.error(f"Failed to clean temporary files: {e}")
            summary["errors"].append(f"temp: {e}")

        try:
            await self._store.optimize()
            summary["optimized"] = True
        except SQLAlchemyError as e:
            logger.error(f"Database optimization failed: {e}")
            summary["errors"].append(f"optimize: {e}")
            summary["optimized"] = False

        summary["baselines_rebuilt"] = await self.rebuild_baselines()

        if summary["errors"] and self._alerts is not None:
            await self._alerts.raise_alert(
                AlertSeverity.ERROR,
                "maintenance",
                f"Maintenance failed: {'; '.join(summary['errors'])}",
                alert_type="maintenance",
            )
        logger.info(f"Maintenance tasks completed: {summary}")
        return summary

    async def rebuild_baselines(self) -> int:
        """
        Replace baselines with window aggregates.

        Only keys with more than baseline_rebuild_min_samples samples in
        the last baseline_rebuild_days days are rebuilt.
        """
        retention = self._config.retention
        now = self._now()
        since = now - timedelta(days=retention.baseline_rebuild_days)
        summaries = await self._store.metric_summary(
            since, min_samples=retention.baseline_rebuild_min_samples + 1
        )

        for summary in summaries:
            key = (summary.component, summary.metric)
            async with self._tracker.lock_for(key):
                baseline = Baseline(
                    component=summary.component,
                    metric=summary.metric,
                    mean=summary.avg,
                    minimum=summary.minimum,
                    maximum=summary.maximum,
                    count=summary.samples,
                    updated_at=now,
                )
                self._tracker.replace(baseline)
                await self._store.upsert_baseline(baseline)

        if summaries:
            logger.info(f"Rebuilt {len(summaries)} baselines")
        return len(summaries)
