"""
Tests for health reporting.

============================================================
PURPOSE
============================================================
- Recommendation rules
- Report build reads accumulated data without mutating it
- JSON / markdown output files

============================================================
"""

import json
from datetime import timedelta

import pytest

from monitoring.models import (
    AlertEvent,
    AlertSeverity,
    HealthCheckResult,
    HealthStatus,
    MetricSample,
)
from monitoring.reporting import (
    ReportBuilder,
    generate_recommendations,
    render_markdown,
    write_report,
)
from monitoring.state import ComponentStateTable


def counts(**values):
    base = {status.value: 0 for status in HealthStatus}
    base.update({key.upper(): value for key, value in values.items()})
    return base


def critical_alerts(n, now):
    return [AlertEvent(AlertSeverity.CRITICAL, "api", f"down {i}", now) for i in range(n)]


# ============================================================
# RECOMMENDATIONS
# ============================================================

class TestRecommendations:

    def test_all_healthy_is_info(self):
        assert generate_recommendations(counts(healthy=3), []) == [
            "INFO: System operating normally - continue monitoring"
        ]

    def test_down_or_error_is_critical(self):
        for status in ("down", "error"):
            recs = generate_recommendations(counts(healthy=2, **{status: 1}), [])
            assert recs[0].startswith("CRITICAL")

    def test_more_degraded_than_healthy_is_warning(self):
        recs = generate_recommendations(counts(healthy=1, degraded=2), [])
        assert len(recs) == 1
        assert recs[0].startswith("WARNING")

    def test_equal_degraded_and_healthy_is_info(self):
        recs = generate_recommendations(counts(healthy=2, degraded=2), [])
        assert recs[0].startswith("INFO")

    def test_critical_alert_count(self, clock):
        now = clock.now()
        assert generate_recommendations(counts(healthy=1), critical_alerts(5, now))[0].startswith("INFO")

        recs = generate_recommendations(counts(healthy=1), critical_alerts(6, now))
        assert recs == ["HIGH: Multiple critical alerts - consider system maintenance window"]

    def test_rules_combine(self, clock):
        recs = generate_recommendations(
            counts(down=1, degraded=2), critical_alerts(6, clock.now())
        )
        assert [r.split(":")[0] for r in recs] == ["CRITICAL", "WARNING", "HIGH"]


# ============================================================
# REPORT BUILDER
# ============================================================

async def populate(store, clock):
    now = clock.now()
    for offset, status in ((5, HealthStatus.HEALTHY), (1, HealthStatus.DOWN)):
        await store.save_health_check(HealthCheckResult(
            component="api",
            timestamp=now - timedelta(minutes=offset),
            status=status,
            response_time_ms=100.0 * offset,
        ))
    await store.save_health_check(HealthCheckResult(
        component="worker",
        timestamp=now - timedelta(minutes=2),
        status=HealthStatus.HEALTHY,
        response_time_ms=20.0,
    ))
    for value in (10.0, 30.0):
        await store.save_metric_sample(MetricSample("api", "response_time", now, value, "ms"))
    await store.save_alert(AlertEvent(AlertSeverity.CRITICAL, "api", "Status changed", now))
    # older than the window but unresolved
    await store.save_alert(AlertEvent(
        AlertSeverity.WARNING, "worker", "old warning", now - timedelta(hours=5)
    ))


class TestReportBuilder:

    @pytest.mark.asyncio
    async def test_build_from_persisted_data(self, clock, store):
        await populate(store, clock)
        builder = ReportBuilder(store, ComponentStateTable(), window_minutes=60, clock=clock)

        report = await builder.build()

        assert report.status_counts["DOWN"] == 1
        assert report.status_counts["HEALTHY"] == 1
        rows = {row["component"]: row for row in report.components}
        assert rows["api"]["status"] == "DOWN"
        assert rows["api"]["avg_response_time_ms"] == 300.0
        assert {a.message for a in report.alerts} == {"Status changed", "old warning"}
        perf = report.performance[0]
        assert (perf.avg, perf.minimum, perf.maximum, perf.samples) == (20.0, 10.0, 30.0, 2)
        assert report.recommendations[0].startswith("CRITICAL")

    @pytest.mark.asyncio
    async def test_live_states_take_precedence(self, clock, store):
        await populate(store, clock)
        states = ComponentStateTable()
        states.get("api").last_status = HealthStatus.HEALTHY
        builder = ReportBuilder(store, states, clock=clock)

        report = await builder.build()

        assert report.status_counts["HEALTHY"] == 1
        assert report.status_counts["DOWN"] == 0

    @pytest.mark.asyncio
    async def test_build_is_repeatable(self, clock, store):
        await populate(store, clock)
        builder = ReportBuilder(store, ComponentStateTable(), clock=clock)

        first = await builder.build()
        second = await builder.build()

        assert first.summary() == second.summary()
        assert len(await store.list_alerts()) == 2

    @pytest.mark.asyncio
    async def test_empty_store(self, clock, store):
        report = await ReportBuilder(store, ComponentStateTable(), clock=clock).build()

        assert sum(report.status_counts.values()) == 0
        assert report.recommendations == ["INFO: System operating normally - continue monitoring"]


# ============================================================
# OUTPUT
# ============================================================

class TestReportOutput:

    @pytest.mark.asyncio
    async def test_write_report_files(self, clock, store, tmp_path):
        await populate(store, clock)
        report = await ReportBuilder(store, ComponentStateTable(), clock=clock).build()

        json_path, md_path = write_report(report, tmp_path / "reports")

        assert json_path.name == "health-report-20250115.json"
        assert md_path.name == "health-report-20250115.md"
        data = json.loads(json_path.read_text())
        assert data["report_type"] == "health_monitoring"
        assert data["system_overview"]["DOWN"] == 1
        assert data["recommendations"] == report.recommendations

    @pytest.mark.asyncio
    async def test_same_day_report_overwrites(self, clock, store, tmp_path):
        builder = ReportBuilder(store, ComponentStateTable(), clock=clock)
        write_report(await builder.build(), tmp_path)
        clock.advance(seconds=3600)
        write_report(await builder.build(), tmp_path)

        assert sorted(p.name for p in tmp_path.iterdir()) == [
            "health-report-20250115.json",
            "health-report-20250115.md",
        ]

    @pytest.mark.asyncio
    async def test_markdown_sections(self, clock, store):
        await populate(store, clock)
        report = await ReportBuilder(store, ComponentStateTable(), clock=clock).build()

        text = render_markdown(report)

        for heading in ("## Overview", "## Components", "## Alerts", "## Performance", "## Recommendations"):
            assert heading in text
        assert "| api | DOWN |" in text
        assert "[CRITICAL]" in text
