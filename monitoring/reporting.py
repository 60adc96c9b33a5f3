"""
Monitoring - Reporting.

============================================================
RESPONSIBILITY
============================================================
Builds the periodic point-in-time health report.

REPORT SECTIONS:
1. Counts of components by current status
2. Component status (last check, avg response time)
3. Unresolved and recent alerts
4. Performance summary (avg/min/max per component + metric)
5. Recommendations from simple rules

OUTPUT:
- reports/health-report-YYYYMMDD.json
- reports/health-report-YYYYMMDD.md

============================================================
RECOMMENDATION RULES
============================================================
- any DOWN/ERROR component      -> CRITICAL
- degraded > healthy            -> WARNING
- more than 5 CRITICAL alerts   -> HIGH
- none of the above             -> INFO

============================================================
"""

import asyncio
import json
import logging
from datetime import timedelta
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from core.clock import ClockFactory, ClockProtocol
from monitoring.models import AlertEvent, AlertSeverity, HealthReport, HealthStatus
from monitoring.state import ComponentStateTable
from storage.store import MonitoringStore


logger = logging.getLogger(__name__)


RECENT_ALERT_LIMIT = 20
CRITICAL_ALERT_LIMIT = 5


def generate_recommendations(status_counts: Dict[str, int], alerts: List[AlertEvent]) -> List[str]:
    recommendations = []

    down = status_counts.get(HealthStatus.DOWN.value, 0) + status_counts.get(HealthStatus.ERROR.value, 0)
    if down > 0:
        recommendations.append("CRITICAL: Investigate and restore down components immediately")

    if status_counts.get(HealthStatus.DEGRADED.value, 0) > status_counts.get(HealthStatus.HEALTHY.value, 0):
        recommendations.append("WARNING: More components degraded than healthy - investigate system load")

    critical = sum(1 for a in alerts if a.severity == AlertSeverity.CRITICAL)
    if critical > CRITICAL_ALERT_LIMIT:
        recommendations.append("HIGH: Multiple critical alerts - consider system maintenance window")

    if not recommendations:
        recommendations.append("INFO: System operating normally - continue monitoring")
    return recommendations


class ReportBuilder:
    """Reads accumulated state; never mutates it."""

    def __init__(
        self,
        store: MonitoringStore,
        states: ComponentStateTable,
        window_minutes: int = 60,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._store = store
        self._states = states
        self._window = window_minutes
        self._clock = clock

    async def build(self, monitoring_active: bool = True) -> HealthReport:
        now = (self._clock or ClockFactory.get_clock()).now()
        since = now - timedelta(minutes=self._window)

        components = await self._store.health_summary(since)
        status_counts = self._status_counts(components)

        recent = await self._store.list_alerts(since=since, limit=RECENT_ALERT_LIMIT)
        unresolved = await self._store.list_alerts(resolved=False, limit=RECENT_ALERT_LIMIT)
        alerts = _merge_alerts(recent, unresolved)

        performance = await self._store.metric_summary(since)

        return HealthReport(
            generated_at=now,
            window_minutes=self._window,
            status_counts=status_counts,
            components=components,
            alerts=alerts,
            performance=performance,
            recommendations=generate_recommendations(status_counts, recent),
            monitoring_active=monitoring_active,
        )

    def _status_counts(self, components: List[Dict]) -> Dict[str, int]:
        """Live statuses when the scheduler has any, else the persisted ones."""
        counts = self._states.status_counts()
        if sum(counts.values()) > 0:
            return counts

        counts = {status.value: 0 for status in HealthStatus}
        for row in components:
            counts[row["status"]] = counts.get(row["status"], 0) + 1
        return counts


def _merge_alerts(*groups: List[AlertEvent]) -> List[AlertEvent]:
    seen = {}
    for group in groups:
        for alert in group:
            seen.setdefault(alert.alert_id, alert)
    return sorted(seen.values(), key=lambda a: (a.timestamp, a.alert_id), reverse=True)


# ============================================================
# RENDERING
# ============================================================

def render_markdown(report: HealthReport) -> str:
    lines = [
        "# System Health Report",
        "",
        f"Generated: {report.generated_at.isoformat()}",
        f"Window: last {report.window_minutes} minutes",
        f"Monitoring active: {'yes' if report.monitoring_active else 'no'}",
        "",
        "## Overview",
        "",
    ]
    for status, count in report.status_counts.items():
        lines.append(f"- {status}: {count}")

    lines.extend(["", "## Components", ""])
    if report.components:
        lines.append("| Component | Status | Last check | Avg response (ms) |")
        lines.append("|---|---|---|---|")
        for row in report.components:
            lines.append(
                f"| {row['component']} | {row['status']} | {row['last_check']} | {row['avg_response_time_ms']} |"
            )
    else:
        lines.append("No health checks in window.")

    lines.extend(["", "## Alerts", ""])
    if report.alerts:
        for alert in report.alerts:
            flag = "resolved" if alert.resolved else "open"
            lines.append(
                f"- [{alert.severity.value}] {alert.timestamp.isoformat()} {alert.component}: "
                f"{alert.message} ({flag})"
            )
    else:
        lines.append("No recent alerts.")

    lines.extend(["", "## Performance", ""])
    if report.performance:
        lines.append("| Component | Metric | Avg | Min | Max | Samples |")
        lines.append("|---|---|---|---|---|---|")
        for m in report.performance:
            lines.append(
                f"| {m.component} | {m.metric} | {m.avg:.2f} | {m.minimum:g} | {m.maximum:g} | {m.samples} |"
            )
    else:
        lines.append("No metrics in window.")

    lines.extend(["", "## Recommendations", ""])
    lines.extend(f"- {r}" for r in report.recommendations)
    return "\n".join(lines) + "\n"


def write_report(report: HealthReport, reports_dir: Path) -> Tuple[Path, Path]:
    """Write the JSON and markdown files; same-day reports overwrite."""
    reports_dir = Path(reports_dir)
    reports_dir.mkdir(parents=True, exist_ok=True)
    stem = f"health-report-{report.generated_at.strftime('%Y%m%d')}"

    json_path = reports_dir / f"{stem}.json"
    json_path.write_text(json.dumps(report.to_dict(), indent=2), encoding="utf-8")

    md_path = reports_dir / f"{stem}.md"
    md_path.write_text(render_markdown(report), encoding="utf-8")

    logger.info(f"Health report generated: {json_path}")
    return json_path, md_path


async def write_report_async(report: HealthReport, reports_dir: Path) -> Tuple[Path, Path]:
    return await asyncio.to_thread(write_report, report, reports_dir)
