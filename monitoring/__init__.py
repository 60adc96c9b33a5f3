"""
Monitoring Package.

============================================================
PURPOSE
============================================================
Self-healing health supervision for a set of independently
running service processes.

- Health Checker        probes one component
- Baseline Tracker      rolling mean/min/max/count per metric key
- Metric Recorder       trend + anomaly tagging, persistence
- Alert Manager         recording, escalation, resolution
- Recovery Executor     bounded, named recovery actions

Only the data models are exported here; import the working
modules directly (monitoring.health_checks, monitoring.recovery, ...).

============================================================
"""

from .models import (
    # Enums
    ComponentKind,
    ProbeProtocol,
    HealthStatus,
    AlertSeverity,
    Trend,
    RecoveryActionType,
    RecoveryState,

    # Declarations
    HealthEndpoint,
    MonitoredComponent,

    # Records
    HealthCheckResult,
    MetricSample,
    Baseline,
    AlertEvent,
    RecoveryResult,
    RecoveryAttempt,

    # Reporting
    MetricSummary,
    HealthReport,
)


__all__ = [
    "ComponentKind",
    "ProbeProtocol",
    "HealthStatus",
    "AlertSeverity",
    "Trend",
    "RecoveryActionType",
    "RecoveryState",
    "HealthEndpoint",
    "MonitoredComponent",
    "HealthCheckResult",
    "MetricSample",
    "Baseline",
    "AlertEvent",
    "RecoveryResult",
    "RecoveryAttempt",
    "MetricSummary",
    "HealthReport",
]
