"""
Monitoring & Alert Repositories.

============================================================
PURPOSE
============================================================
Repositories for the supervisor's five tables. These handle
health checks, metric samples, baselines, alerts and the
recovery audit trail.

============================================================
DATA LIFECYCLE
============================================================
- Stage: MONITORING
- Mutability: APPEND-ONLY except alert flags and baselines
- Time-series data; retention is an external policy

============================================================
REPOSITORIES
============================================================
- HealthCheckRepository: Health probe results
- MetricRepository: Performance metric samples
- BaselineRepository: Rolling baselines (upsert)
- AlertRepository: Alert events
- RecoveryRepository: Recovery attempts

============================================================
"""

from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import and_, desc, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storage.models.monitoring import (
    AlertEventRecord,
    HealthCheckRecord,
    PerformanceMetricRecord,
    RecoveryActionRecord,
    SystemBaselineRecord,
)
from storage.repositories.base import BaseRepository


class HealthCheckRepository(BaseRepository[HealthCheckRecord]):
    """Repository for health probe results."""

    def __init__(self, session: Session) -> None:
        super().__init__(session, HealthCheckRecord, "HealthCheckRepository")

    def record_health_check(
        self,
        component_name: str,
        component_type: str,
        checked_at: datetime,
        status: str,
        response_time_ms: Optional[float] = None,
        error_message: Optional[str] = None,
        metrics: Optional[dict] = None,
    ) -> HealthCheckRecord:
        """Append one health check result."""
        entity = HealthCheckRecord(
            component_name=component_name,
            component_type=component_type,
            checked_at=checked_at,
            status=status,
            response_time_ms=response_time_ms,
            error_message=error_message,
            metrics_json=metrics or {},
        )
        return self._add(entity)

    def get_latest_health_check(
        self,
        component_name: str
    ) -> Optional[HealthCheckRecord]:
        """Most recent result for a component (its current status)."""
        stmt = (
            select(HealthCheckRecord)
            .where(HealthCheckRecord.component_name == component_name)
            .order_by(desc(HealthCheckRecord.checked_at), desc(HealthCheckRecord.id))
            .limit(1)
        )
        return self._execute_scalar(stmt)

    def summarize_since(self, since: datetime) -> List[Tuple[str, datetime, float, int]]:
        """
        Per-component aggregates over a window.

        Returns:
            Rows of (component_name, last_check, avg_response_time_ms, checks)
        """
        stmt = (
            select(
                HealthCheckRecord.component_name,
                func.max(HealthCheckRecord.checked_at),
                func.avg(HealthCheckRecord.response_time_ms),
                func.count(HealthCheckRecord.id),
            )
            .where(HealthCheckRecord.checked_at >= since)
            .group_by(HealthCheckRecord.component_name)
            .order_by(HealthCheckRecord.component_name)
        )
        return [tuple(row) for row in self._execute_rows(stmt)]


class MetricRepository(BaseRepository[PerformanceMetricRecord]):
    """Repository for performance metric samples."""

    def __init__(self, session: Session) -> None:
        super().__init__(session, PerformanceMetricRecord, "MetricRepository")

    def record_sample(
        self,
        component: str,
        metric_name: str,
        recorded_at: datetime,
        value: float,
        unit: str,
        trend: str,
        anomaly_detected: bool,
    ) -> PerformanceMetricRecord:
        """Append one metric sample."""
        entity = PerformanceMetricRecord(
            component=component,
            metric_name=metric_name,
            recorded_at=recorded_at,
            value=value,
            unit=unit,
            trend=trend,
            anomaly_detected=anomaly_detected,
        )
        return self._add(entity)

    def recent_values(
        self,
        component: str,
        metric_name: str,
        limit: int = 10,
    ) -> List[float]:
        """Newest-first values for one key."""
        stmt = (
            select(PerformanceMetricRecord.value)
            .where(and_(
                PerformanceMetricRecord.component == component,
                PerformanceMetricRecord.metric_name == metric_name,
            ))
            .order_by(desc(PerformanceMetricRecord.recorded_at), desc(PerformanceMetricRecord.id))
            .limit(limit)
        )
        return [row[0] for row in self._execute_rows(stmt)]

    def list_samples(
        self,
        since: datetime,
        component: Optional[str] = None,
        metric_name: Optional[str] = None,
        limit: int = 1000,
    ) -> List[PerformanceMetricRecord]:
        """Newest-first samples in a window, optionally filtered."""
        conditions = [PerformanceMetricRecord.recorded_at >= since]
        if component:
            conditions.append(PerformanceMetricRecord.component == component)
        if metric_name:
            conditions.append(PerformanceMetricRecord.metric_name == metric_name)

        stmt = (
            select(PerformanceMetricRecord)
            .where(and_(*conditions))
            .order_by(desc(PerformanceMetricRecord.recorded_at), desc(PerformanceMetricRecord.id))
            .limit(limit)
        )
        return self._execute_query(stmt)

    def summarize_since(
        self,
        since: datetime,
        min_samples: int = 1,
    ) -> List[Tuple[str, str, float, float, float, int]]:
        """
        Aggregate every key over a window.

        Returns:
            Rows of (component, metric_name, avg, min, max, samples)
        """
        sample_count = func.count(PerformanceMetricRecord.id)
        stmt = (
            select(
                PerformanceMetricRecord.component,
                PerformanceMetricRecord.metric_name,
                func.avg(PerformanceMetricRecord.value),
                func.min(PerformanceMetricRecord.value),
                func.max(PerformanceMetricRecord.value),
                sample_count,
            )
            .where(PerformanceMetricRecord.recorded_at >= since)
            .group_by(PerformanceMetricRecord.component, PerformanceMetricRecord.metric_name)
            .having(sample_count >= min_samples)
            .order_by(PerformanceMetricRecord.component, PerformanceMetricRecord.metric_name)
        )
        return [tuple(row) for row in self._execute_rows(stmt)]


class BaselineRepository(BaseRepository[SystemBaselineRecord]):
    """Repository for rolling baselines (one row per key)."""

    def __init__(self, session: Session) -> None:
        super().__init__(session, SystemBaselineRecord, "BaselineRepository")

    def get_baseline(
        self,
        component: str,
        metric_name: str,
    ) -> Optional[SystemBaselineRecord]:
        stmt = select(SystemBaselineRecord).where(and_(
            SystemBaselineRecord.component == component,
            SystemBaselineRecord.metric_name == metric_name,
        ))
        return self._execute_scalar(stmt)

    def list_baselines(self) -> List[SystemBaselineRecord]:
        stmt = select(SystemBaselineRecord).order_by(
            SystemBaselineRecord.component, SystemBaselineRecord.metric_name
        )
        return self._execute_query(stmt)

    def upsert_baseline(
        self,
        component: str,
        metric_name: str,
        baseline_value: float,
        min_value: float,
        max_value: float,
        sample_count: int,
        last_updated: Optional[datetime],
    ) -> SystemBaselineRecord:
        """Insert the key or overwrite its statistics."""
        existing = self.get_baseline(component, metric_name)
        if existing is None:
            entity = SystemBaselineRecord(
                component=component,
                metric_name=metric_name,
                baseline_value=baseline_value,
                min_value=min_value,
                max_value=max_value,
                sample_count=sample_count,
                last_updated=last_updated,
            )
            return self._add(entity)

        try:
            existing.baseline_value = baseline_value
            existing.min_value = min_value
            existing.max_value = max_value
            existing.sample_count = sample_count
            existing.last_updated = last_updated
            self._session.flush()
            return existing
        except SQLAlchemyError as e:
            self._handle_db_error(e, "upsert_baseline", {"field": "component,metric_name"})
            raise


class AlertRepository(BaseRepository[AlertEventRecord]):
    """Repository for alert events."""

    def __init__(self, session: Session) -> None:
        super().__init__(session, AlertEventRecord, "AlertRepository")

    def record_alert(
        self,
        alert_id: str,
        raised_at: datetime,
        alert_type: str,
        severity: str,
        component: str,
        message: str,
        escalated: bool = False,
    ) -> AlertEventRecord:
        """Append one alert."""
        entity = AlertEventRecord(
            alert_id=alert_id,
            raised_at=raised_at,
            alert_type=alert_type,
            severity=severity,
            component=component,
            message=message,
            resolved=False,
            escalated=escalated,
        )
        return self._add(entity)

    def mark_resolved(self, alert_id: str, resolved_at: datetime) -> int:
        """Flip the resolved flag. Returns affected row count."""
        stmt = (
            update(AlertEventRecord)
            .where(AlertEventRecord.alert_id == alert_id)
            .values(resolved=True, resolution_time=resolved_at)
        )
        try:
            return self._session.execute(stmt).rowcount or 0
        except SQLAlchemyError as e:
            self._handle_db_error(e, "mark_resolved", {"alert_id": alert_id})
            raise

    def mark_escalated(self, alert_id: str) -> int:
        stmt = (
            update(AlertEventRecord)
            .where(AlertEventRecord.alert_id == alert_id)
            .values(escalated=True)
        )
        try:
            return self._session.execute(stmt).rowcount or 0
        except SQLAlchemyError as e:
            self._handle_db_error(e, "mark_escalated", {"alert_id": alert_id})
            raise

    def list_alerts(
        self,
        severity: Optional[str] = None,
        component: Optional[str] = None,
        resolved: Optional[bool] = None,
        since: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AlertEventRecord]:
        """Newest-first alerts with optional filters."""
        conditions = []
        if severity:
            conditions.append(AlertEventRecord.severity == severity)
        if component:
            conditions.append(AlertEventRecord.component == component)
        if resolved is not None:
            conditions.append(AlertEventRecord.resolved.is_(resolved))
        if since is not None:
            conditions.append(AlertEventRecord.raised_at >= since)

        stmt = select(AlertEventRecord)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        stmt = stmt.order_by(
            desc(AlertEventRecord.raised_at), desc(AlertEventRecord.id)
        ).limit(limit)
        return self._execute_query(stmt)


class RecoveryRepository(BaseRepository[RecoveryActionRecord]):
    """Repository for the recovery audit trail."""

    def __init__(self, session: Session) -> None:
        super().__init__(session, RecoveryActionRecord, "RecoveryRepository")

    def record_attempt(
        self,
        component: str,
        executed_at: datetime,
        action_type: str,
        action_details: str,
        success: bool,
        execution_time_ms: float,
        result_message: str,
        attempt: int,
    ) -> RecoveryActionRecord:
        entity = RecoveryActionRecord(
            component=component,
            executed_at=executed_at,
            action_type=action_type,
            action_details=action_details,
            success=success,
            execution_time_ms=execution_time_ms,
            result_message=result_message,
            attempt=attempt,
        )
        return self._add(entity)

    def list_attempts(
        self,
        component: Optional[str] = None,
        limit: int = 100,
    ) -> List[RecoveryActionRecord]:
        stmt = select(RecoveryActionRecord)
        if component:
            stmt = stmt.where(RecoveryActionRecord.component == component)
        stmt = stmt.order_by(
            desc(RecoveryActionRecord.executed_at), desc(RecoveryActionRecord.id)
        ).limit(limit)
        return self._execute_query(stmt)
