"""
Monitoring Domain ORM Models.

============================================================
PURPOSE
============================================================
Tables for the supervisor's persistence boundary: health checks,
performance metrics, alert events, recovery actions and the
baseline upsert table.

============================================================
DATA LIFECYCLE ROLE
============================================================
- health_checks:        APPEND-ONLY
- performance_metrics:  APPEND-ONLY
- alert_events:         APPEND-MOSTLY (resolved / escalated flags flip)
- recovery_actions:     APPEND-ONLY (audit trail)
- system_baselines:     UPSERT, one row per (component, metric)

============================================================
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    Float,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import Base


class HealthCheckRecord(Base):
    """
    One health probe result.

    Immutable once written; the newest row per component is the
    component's current status.
    """

    __tablename__ = "health_checks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    checked_at: Mapped[datetime] = mapped_column(
        nullable=False,
        comment="When the probe completed (UTC)"
    )

    component_type: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        comment="process | external-endpoint"
    )

    component_name: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        comment="Monitored component name"
    )

    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="HEALTHY, DEGRADED, DOWN, ERROR, UNKNOWN"
    )

    response_time_ms: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment="Probe latency in milliseconds"
    )

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    metrics_json: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
        comment="Opaque probe payload"
    )

    __table_args__ = (
        Index("idx_health_checks_timestamp", "checked_at"),
        Index("idx_health_checks_component", "component_name"),
    )


class PerformanceMetricRecord(Base):
    """One recorded metric sample with trend and anomaly flag."""

    __tablename__ = "performance_metrics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    recorded_at: Mapped[datetime] = mapped_column(nullable=False)

    component: Mapped[str] = mapped_column(String(128), nullable=False)

    metric_name: Mapped[str] = mapped_column(String(128), nullable=False)

    value: Mapped[float] = mapped_column(Float, nullable=False)

    unit: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    trend: Mapped[str] = mapped_column(String(16), nullable=False)

    anomaly_detected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("idx_performance_metrics_timestamp", "recorded_at"),
        Index("idx_performance_metrics_key", "component", "metric_name"),
    )


class AlertEventRecord(Base):
    """Alert raised by a detector; never physically deleted."""

    __tablename__ = "alert_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    alert_id: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        unique=True,
        comment="Identifier shared with the in-memory AlertEvent"
    )

    raised_at: Mapped[datetime] = mapped_column(nullable=False)

    alert_type: Mapped[str] = mapped_column(String(32), nullable=False)

    severity: Mapped[str] = mapped_column(String(16), nullable=False)

    component: Mapped[str] = mapped_column(String(128), nullable=False)

    message: Mapped[str] = mapped_column(Text, nullable=False)

    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    resolution_time: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    escalated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("idx_alert_events_timestamp", "raised_at"),
        Index("idx_alert_events_resolved", "resolved"),
        Index("idx_alert_events_component", "component"),
    )


class RecoveryActionRecord(Base):
    """Audit row for one executed recovery attempt."""

    __tablename__ = "recovery_actions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    executed_at: Mapped[datetime] = mapped_column(nullable=False)

    component: Mapped[str] = mapped_column(String(128), nullable=False)

    action_type: Mapped[str] = mapped_column(String(64), nullable=False)

    action_details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    success: Mapped[bool] = mapped_column(Boolean, nullable=False)

    execution_time_ms: Mapped[float] = mapped_column(Float, nullable=False)

    result_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("idx_recovery_actions_component", "component"),
    )


class SystemBaselineRecord(Base):
    """Rolling baseline, upserted on every sample."""

    __tablename__ = "system_baselines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    component: Mapped[str] = mapped_column(String(128), nullable=False)

    metric_name: Mapped[str] = mapped_column(String(128), nullable=False)

    baseline_value: Mapped[float] = mapped_column(Float, nullable=False)

    min_value: Mapped[float] = mapped_column(Float, nullable=False)

    max_value: Mapped[float] = mapped_column(Float, nullable=False)

    sample_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    last_updated: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint("component", "metric_name", name="uq_baseline_key"),
    )
