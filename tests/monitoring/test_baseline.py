"""
Tests for the Baseline Tracker and Metric Recorder.

============================================================
PURPOSE
============================================================
- Cold start never flags an anomaly
- Relative-deviation anomaly rule (0.3 x range)
- Cumulative mean / min / max / count update
- Trend classification over the last 10 samples
- Persistence of samples and baselines

============================================================
"""

import asyncio

import pytest

from monitoring.baseline import BaselineTracker, is_anomalous
from monitoring.metrics import MetricRecorder, classify_trend
from monitoring.models import AlertSeverity, Baseline, Trend


def baseline(mean=10.0, minimum=5.0, maximum=15.0, count=3):
    return Baseline("api", "response_time", mean, minimum, maximum, count)


# ============================================================
# BASELINE TRACKER TESTS
# ============================================================

class TestAnomalyRule:

    def test_within_threshold_is_not_anomalous(self):
        # range 10 -> threshold 3
        assert is_anomalous(baseline(), 12.0) is False
        assert is_anomalous(baseline(), 13.0) is False
        assert is_anomalous(baseline(), 7.0) is False

    def test_beyond_threshold_is_anomalous(self):
        assert is_anomalous(baseline(), 17.0) is True
        assert is_anomalous(baseline(), 3.0) is True
        assert is_anomalous(baseline(), 13.5) is True

    def test_zero_range_flags_any_change(self):
        flat = baseline(mean=10.0, minimum=10.0, maximum=10.0)
        assert is_anomalous(flat, 10.0) is False
        assert is_anomalous(flat, 10.5) is True


class TestBaselineTracker:

    def test_cold_start_is_never_anomalous(self):
        tracker = BaselineTracker()

        result, anomalous = tracker.observe("api", "cpu", 1_000_000.0)

        assert anomalous is False
        assert result.mean == result.minimum == result.maximum == 1_000_000.0
        assert result.count == 1

    def test_baseline_update(self):
        tracker = BaselineTracker()

        tracker.observe("api", "latency", 10.0)
        result, _ = tracker.observe("api", "latency", 20.0)

        assert result.mean == 15.0
        assert result.minimum == 10.0
        assert result.maximum == 20.0
        assert result.count == 2

    def test_classification_uses_pre_update_baseline(self):
        tracker = BaselineTracker()
        tracker.seed([baseline()])

        _, anomalous = tracker.observe("api", "response_time", 17.0)

        assert anomalous is True
        updated = tracker.get("api", "response_time")
        assert updated.mean == pytest.approx((10.0 * 3 + 17.0) / 4)
        assert updated.maximum == 17.0
        assert updated.count == 4

    def test_keys_are_independent(self):
        tracker = BaselineTracker()
        tracker.observe("api", "latency", 10.0)

        _, anomalous = tracker.observe("db", "latency", 500.0)

        assert anomalous is False
        assert len(tracker) == 2

    def test_seed_keeps_existing_keys(self):
        tracker = BaselineTracker()
        tracker.observe("api", "response_time", 42.0)

        loaded = tracker.seed([baseline(), Baseline("db", "cpu", 1.0, 1.0, 1.0, 1)])

        assert loaded == 1
        assert tracker.get("api", "response_time").mean == 42.0
        assert tracker.get("db", "cpu") is not None

    def test_lock_is_per_key(self):
        tracker = BaselineTracker()
        assert tracker.lock_for(("api", "a")) is tracker.lock_for(("api", "a"))
        assert tracker.lock_for(("api", "a")) is not tracker.lock_for(("api", "b"))


# ============================================================
# TREND TESTS
# ============================================================

class TestTrend:

    def test_stable_with_fewer_than_three_samples(self):
        assert classify_trend(100.0, []) == Trend.STABLE
        assert classify_trend(100.0, [1.0, 1.0]) == Trend.STABLE

    def test_increasing_and_decreasing(self):
        history = [10.0, 10.0, 10.0]
        assert classify_trend(11.5, history) == Trend.INCREASING
        assert classify_trend(8.5, history) == Trend.DECREASING
        assert classify_trend(10.5, history) == Trend.STABLE

    def test_only_last_ten_samples_count(self):
        # newest first: ten samples of 10 followed by old outliers
        history = [10.0] * 10 + [1000.0] * 5
        assert classify_trend(10.0, history) == Trend.STABLE


# ============================================================
# METRIC RECORDER TESTS
# ============================================================

class TestMetricRecorder:

    @pytest.mark.asyncio
    async def test_first_sample_not_anomalous(self, clock, store, sink):
        recorder = MetricRecorder(BaselineTracker(), store, sink, clock)

        sample = await recorder.record("api", "response_time", 9999.0, "ms")

        assert sample.anomaly is False
        assert sample.trend == Trend.STABLE
        assert sink.alerts == []

    @pytest.mark.asyncio
    async def test_anomaly_raises_warning(self, clock, sink):
        tracker = BaselineTracker()
        tracker.seed([baseline()])
        recorder = MetricRecorder(tracker, alerts=sink, clock=clock)

        normal = await recorder.record("api", "response_time", 12.0, "ms")
        sample = await recorder.record("api", "response_time", 17.0, "ms")

        assert normal.anomaly is False
        assert sample.anomaly is True
        assert len(sink.alerts) == 1
        alert = sink.alerts[0]
        assert alert.severity == AlertSeverity.WARNING
        assert alert.alert_type == "anomaly"
        assert alert.message == "Anomaly detected: response_time = 17ms (component: api)"

    @pytest.mark.asyncio
    async def test_cleared_trend_window_warm_starts_from_store(self, clock, store):
        recorder = MetricRecorder(BaselineTracker(), store, clock=clock)
        for value in (10.0, 10.0, 10.0):
            await recorder.record("api", "response_time", value, "ms")

        assert recorder.clear_trend_cache() == 1
        assert recorder.clear_trend_cache() == 0

        sample = await recorder.record("api", "response_time", 20.0, "ms")
        assert sample.trend == Trend.INCREASING

    @pytest.mark.asyncio
    async def test_samples_and_baseline_persisted(self, clock, store):
        recorder = MetricRecorder(BaselineTracker(), store, clock=clock)

        await recorder.record("api", "latency", 10.0, "ms")
        clock.advance(seconds=1)
        await recorder.record("api", "latency", 20.0, "ms")

        assert await store.recent_metric_values("api", "latency") == [20.0, 10.0]
        persisted = {b.key: b for b in await store.load_baselines()}
        assert persisted[("api", "latency")].mean == 15.0
        assert persisted[("api", "latency")].count == 2

    @pytest.mark.asyncio
    async def test_trend_over_recorded_samples(self, clock):
        recorder = MetricRecorder(BaselineTracker(), clock=clock)
        for _ in range(3):
            await recorder.record("api", "latency", 10.0, "ms")

        rising = await recorder.record("api", "latency", 12.0, "ms")

        assert rising.trend == Trend.INCREASING

    @pytest.mark.asyncio
    async def test_trend_window_warm_starts_from_store(self, clock, store):
        first = MetricRecorder(BaselineTracker(), store, clock=clock)
        for _ in range(3):
            await first.record("api", "latency", 10.0, "ms")

        restarted = MetricRecorder(BaselineTracker(), store, clock=clock)
        sample = await restarted.record("api", "latency", 5.0, "ms")

        assert sample.trend == Trend.DECREASING

    @pytest.mark.asyncio
    async def test_concurrent_records_on_one_key_are_serialised(self, clock):
        tracker = BaselineTracker()
        recorder = MetricRecorder(tracker, clock=clock)

        await asyncio.gather(*(recorder.record("api", "latency", float(v)) for v in range(1, 21)))

        result = tracker.get("api", "latency")
        assert result.count == 20
        assert result.mean == pytest.approx(10.5)
        assert (result.minimum, result.maximum) == (1.0, 20.0)
