"""
Storage - Monitoring Store.

============================================================
RESPONSIBILITY
============================================================
Async facade over the repositories for the supervisor.

- Runs blocking session work in worker threads
- Serialises writes through a single writer lock
- Converts ORM records into monitoring value types
- Converts storage errors into StorageWriteFailure

============================================================
FAILURE POLICY
============================================================
A failed write is logged and counted; it never raises into a
job. Reads that fail are logged and return an empty result.
Connectivity checks (ping) propagate so the storage sweep can
report them.

============================================================
"""

import asyncio
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.clock import ensure_utc
from core.exceptions import StorageWriteFailure
from monitoring.models import (
    AlertEvent,
    AlertSeverity,
    Baseline,
    ComponentKind,
    HealthCheckResult,
    HealthStatus,
    MetricSample,
    MetricSummary,
    RecoveryActionType,
    RecoveryAttempt,
    Trend,
)
from storage.database import Database
from storage.models import (
    AlertEventRecord,
    HealthCheckRecord,
    PerformanceMetricRecord,
    RecoveryActionRecord,
    SystemBaselineRecord,
)
from storage.repositories import (
    AlertRepository,
    BaselineRepository,
    HealthCheckRepository,
    MetricRepository,
    RecoveryRepository,
    RepositoryException,
)

logger = logging.getLogger(__name__)


# =============================================================
# RECORD CONVERSION
# =============================================================


def _health_check_from_record(record: HealthCheckRecord) -> HealthCheckResult:
    return HealthCheckResult(
        component=record.component_name,
        timestamp=ensure_utc(record.checked_at),
        status=HealthStatus(record.status),
        response_time_ms=record.response_time_ms or 0.0,
        component_kind=ComponentKind(record.component_type),
        error_message=record.error_message,
        metrics=record.metrics_json or {},
    )


def _sample_from_record(record: PerformanceMetricRecord) -> MetricSample:
    return MetricSample(
        component=record.component,
        metric=record.metric_name,
        timestamp=ensure_utc(record.recorded_at),
        value=record.value,
        unit=record.unit or "",
        trend=Trend(record.trend),
        anomaly=record.anomaly_detected,
    )


def _alert_from_record(record: AlertEventRecord) -> AlertEvent:
    return AlertEvent(
        severity=AlertSeverity(record.severity),
        component=record.component,
        message=record.message,
        timestamp=ensure_utc(record.raised_at),
        alert_type=record.alert_type,
        resolved=record.resolved,
        resolved_at=ensure_utc(record.resolution_time) if record.resolution_time else None,
        escalated=record.escalated,
        alert_id=record.alert_id,
    )


def _baseline_from_record(record: SystemBaselineRecord) -> Baseline:
    return Baseline(
        component=record.component,
        metric=record.metric_name,
        mean=record.baseline_value,
        minimum=record.min_value,
        maximum=record.max_value,
        count=record.sample_count,
        updated_at=ensure_utc(record.last_updated) if record.last_updated else None,
    )


def _attempt_from_record(record: RecoveryActionRecord) -> RecoveryAttempt:
    return RecoveryAttempt(
        component=record.component,
        timestamp=ensure_utc(record.executed_at),
        action_type=RecoveryActionType(record.action_type),
        action_detail=record.action_details or "",
        success=record.success,
        duration_ms=record.execution_time_ms,
        result_message=record.result_message or "",
        attempt=record.attempt,
    )


# =============================================================
# STORE
# =============================================================


class MonitoringStore:
    """
    Durable store for the supervisor's five tables.

    All public methods are coroutines; the blocking SQLAlchemy work
    runs via ``asyncio.to_thread`` behind one lock.
    """

    def __init__(self, database: Database) -> None:
        self._database = database
        self._lock = threading.Lock()
        self.write_failures = 0
        self.last_failure: Optional[StorageWriteFailure] = None

    @classmethod
    def from_url(cls, url: str) -> "MonitoringStore":
        return cls(Database(url))

    @property
    def database(self) -> Database:
        return self._database

    # =========================================================
    # PLUMBING
    # =========================================================

    def _run(self, fn: Callable[[Session], Any]) -> Any:
        with self._lock:
            with self._database.session_scope() as session:
                return fn(session)

    async def _write(self, table: str, operation: str, fn: Callable[[Session], Any]) -> bool:
        try:
            await asyncio.to_thread(self._run, fn)
            return True
        except (RepositoryException, SQLAlchemyError) as e:
            failure = StorageWriteFailure(table, operation, cause=e)
            self.write_failures += 1
            self.last_failure = failure
            logger.error(f"{failure}", extra={"context": failure.to_dict()})
            return False

    async def _read(self, operation: str, fn: Callable[[Session], Any], default: Any) -> Any:
        try:
            return await asyncio.to_thread(self._run, fn)
        except (RepositoryException, SQLAlchemyError) as e:
            logger.error(f"Storage read failed during {operation}: {e}")
            return default

    async def initialize(self) -> None:
        """Create the schema. Errors propagate (startup is fatal)."""
        await asyncio.to_thread(self._database.create_all_tables)

    async def ping(self) -> bool:
        """``SELECT 1``; raises on failure."""
        return await asyncio.to_thread(self._database.ping)

    async def optimize(self) -> None:
        def work() -> None:
            with self._lock:
                self._database.optimize()

        await asyncio.to_thread(work)

    def close(self) -> None:
        self._database.dispose()

    # =========================================================
    # HEALTH CHECKS
    # =========================================================

    async def save_health_check(self, result: HealthCheckResult) -> bool:
        return await self._write(
            "health_checks",
            "record_health_check",
            lambda s: HealthCheckRepository(s).record_health_check(
                component_name=result.component,
                component_type=result.component_kind.value,
                checked_at=result.timestamp,
                status=result.status.value,
                response_time_ms=result.response_time_ms,
                error_message=result.error_message,
                metrics=result.metrics,
            ),
        )

    async def latest_health_check(self, component: str) -> Optional[HealthCheckResult]:
        def work(session: Session) -> Optional[HealthCheckResult]:
            record = HealthCheckRepository(session).get_latest_health_check(component)
            return _health_check_from_record(record) if record else None

        return await self._read("latest_health_check", work, None)

    async def health_summary(self, since: datetime) -> List[Dict[str, Any]]:
        """Current status, last check and avg latency per component in a window."""
        def work(session: Session) -> List[Dict[str, Any]]:
            repo = HealthCheckRepository(session)
            rows = []
            for name, last_check, avg_ms, checks in repo.summarize_since(since):
                latest = repo.get_latest_health_check(name)
                rows.append({
                    "component": name,
                    "status": latest.status if latest else HealthStatus.UNKNOWN.value,
                    "last_check": ensure_utc(last_check).isoformat(),
                    "avg_response_time_ms": round(avg_ms or 0.0, 3),
                    "checks": checks,
                })
            return rows

        return await self._read("health_summary", work, [])

    # =========================================================
    # METRICS & BASELINES
    # =========================================================

    async def save_metric_sample(self, sample: MetricSample) -> bool:
        return await self._write(
            "performance_metrics",
            "record_sample",
            lambda s: MetricRepository(s).record_sample(
                component=sample.component,
                metric_name=sample.metric,
                recorded_at=sample.timestamp,
                value=sample.value,
                unit=sample.unit,
                trend=sample.trend.value,
                anomaly_detected=sample.anomaly,
            ),
        )

    async def recent_metric_values(self, component: str, metric: str, limit: int = 10) -> List[float]:
        return await self._read(
            "recent_metric_values",
            lambda s: MetricRepository(s).recent_values(component, metric, limit),
            [],
        )

    async def list_metric_samples(
        self,
        since: datetime,
        component: Optional[str] = None,
        metric: Optional[str] = None,
        limit: int = 1000,
    ) -> List[MetricSample]:
        def work(session: Session) -> List[MetricSample]:
            records = MetricRepository(session).list_samples(since, component, metric, limit)
            return [_sample_from_record(r) for r in records]

        return await self._read("list_metric_samples", work, [])

    async def metric_summary(self, since: datetime, min_samples: int = 1) -> List[MetricSummary]:
        def work(session: Session) -> List[MetricSummary]:
            return [
                MetricSummary(component, metric, avg, lo, hi, count)
                for component, metric, avg, lo, hi, count
                in MetricRepository(session).summarize_since(since, min_samples)
            ]

        return await self._read("metric_summary", work, [])

    async def upsert_baseline(self, baseline: Baseline) -> bool:
        return await self._write(
            "system_baselines",
            "upsert_baseline",
            lambda s: BaselineRepository(s).upsert_baseline(
                component=baseline.component,
                metric_name=baseline.metric,
                baseline_value=baseline.mean,
                min_value=baseline.minimum,
                max_value=baseline.maximum,
                sample_count=baseline.count,
                last_updated=baseline.updated_at,
            ),
        )

    async def load_baselines(self) -> List[Baseline]:
        def work(session: Session) -> List[Baseline]:
            return [_baseline_from_record(r) for r in BaselineRepository(session).list_baselines()]

        return await self._read("load_baselines", work, [])

    # =========================================================
    # ALERTS
    # =========================================================

    async def save_alert(self, alert: AlertEvent) -> bool:
        return await self._write(
            "alert_events",
            "record_alert",
            lambda s: AlertRepository(s).record_alert(
                alert_id=alert.alert_id,
                raised_at=alert.timestamp,
                alert_type=alert.alert_type,
                severity=alert.severity.value,
                component=alert.component,
                message=alert.message,
                escalated=alert.escalated,
            ),
        )

    async def mark_alert_resolved(self, alert_id: str, resolved_at: datetime) -> bool:
        return await self._write(
            "alert_events",
            "mark_resolved",
            lambda s: AlertRepository(s).mark_resolved(alert_id, resolved_at),
        )

    async def mark_alert_escalated(self, alert_id: str) -> bool:
        return await self._write(
            "alert_events",
            "mark_escalated",
            lambda s: AlertRepository(s).mark_escalated(alert_id),
        )

    async def list_alerts(
        self,
        severity: Optional[AlertSeverity] = None,
        component: Optional[str] = None,
        resolved: Optional[bool] = None,
        since: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AlertEvent]:
        def work(session: Session) -> List[AlertEvent]:
            records = AlertRepository(session).list_alerts(
                severity=severity.value if severity else None,
                component=component,
                resolved=resolved,
                since=since,
                limit=limit,
            )
            return [_alert_from_record(r) for r in records]

        return await self._read("list_alerts", work, [])

    # =========================================================
    # RECOVERY AUDIT
    # =========================================================

    async def save_recovery_attempt(self, attempt: RecoveryAttempt) -> bool:
        return await self._write(
            "recovery_actions",
            "record_attempt",
            lambda s: RecoveryRepository(s).record_attempt(
                component=attempt.component,
                executed_at=attempt.timestamp,
                action_type=attempt.action_type.value,
                action_details=attempt.action_detail,
                success=attempt.success,
                execution_time_ms=attempt.duration_ms,
                result_message=attempt.result_message,
                attempt=attempt.attempt,
            ),
        )

    async def list_recovery_attempts(
        self,
        component: Optional[str] = None,
        limit: int = 100,
    ) -> List[RecoveryAttempt]:
        def work(session: Session) -> List[RecoveryAttempt]:
            records = RecoveryRepository(session).list_attempts(component, limit)
            return [_attempt_from_record(r) for r in records]

        return await self._read("list_recovery_attempts", work, [])
