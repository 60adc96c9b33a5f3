"""
Monitoring - Data Models.

============================================================
PURPOSE
============================================================
Value types shared by every part of the supervisor.

- MonitoredComponent: declared at startup, immutable for a run
- HealthCheckResult: one per probe, append-only
- MetricSample: one per recorded metric value, append-only
- Baseline: rolling profile per (component, metric)
- AlertEvent: raised by any detector, resolved later
- RecoveryAttempt: audit row for every recovery attempt

============================================================
IMMUTABILITY
============================================================
Results, samples and attempts are frozen dataclasses.
AlertEvent carries the only mutable flags (resolved, escalated).
Baseline is mutated only by the BaselineTracker.

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4


# ============================================================
# ENUMS
# ============================================================

class ComponentKind(str, Enum):
    """Kind of monitored component."""

    PROCESS = "process"
    EXTERNAL_ENDPOINT = "external-endpoint"


class ProbeProtocol(str, Enum):
    """Protocol-level health check flavour."""

    HTTP = "http"
    TCP = "tcp"


class HealthStatus(str, Enum):
    """Outcome of a single health probe."""

    HEALTHY = "HEALTHY"
    DEGRADED = "DEGRADED"
    DOWN = "DOWN"
    ERROR = "ERROR"
    UNKNOWN = "UNKNOWN"

    @property
    def is_failure(self) -> bool:
        """DOWN and ERROR warrant a recovery attempt."""
        return self in (HealthStatus.DOWN, HealthStatus.ERROR)


class AlertSeverity(str, Enum):
    """Alert severity levels, in ascending order."""

    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def for_status(cls, status: HealthStatus) -> "AlertSeverity":
        """Severity of a status-change alert for the new status."""
        if status == HealthStatus.HEALTHY:
            return cls.INFO
        if status.is_failure:
            return cls.CRITICAL
        return cls.WARNING


_SEVERITY_RANK = {
    AlertSeverity.INFO: 0,
    AlertSeverity.WARNING: 1,
    AlertSeverity.ERROR: 2,
    AlertSeverity.CRITICAL: 3,
}


class Trend(str, Enum):
    """Direction of a metric relative to its recent mean."""

    INCREASING = "INCREASING"
    DECREASING = "DECREASING"
    STABLE = "STABLE"


class RecoveryActionType(str, Enum):
    """Named recovery actions."""

    RESTART_PROCESS = "restart-process"
    CLEAR_CACHE = "clear-cache"
    CLEANUP_STORAGE = "cleanup-storage"
    RESTART_DEPENDENT_SERVICES = "restart-dependent-services"


class RecoveryState(str, Enum):
    """Per-component recovery state machine."""

    OK = "OK"
    RECOVERING = "RECOVERING"
    EXHAUSTED = "EXHAUSTED"


# ============================================================
# COMPONENT DECLARATION
# ============================================================

@dataclass(frozen=True)
class HealthEndpoint:
    """Where and how to probe a component."""

    protocol: ProbeProtocol = ProbeProtocol.HTTP
    host: str = "127.0.0.1"
    port: int = 80
    path: str = "/health"

    @property
    def url(self) -> str:
        if self.protocol == ProbeProtocol.TCP:
            return f"tcp://{self.host}:{self.port}"
        return f"http://{self.host}:{self.port}{self.path}"


@dataclass(frozen=True)
class MonitoredComponent:
    """
    A component the supervisor watches.

    Declared in configuration; never mutated during a run.
    """

    name: str
    kind: ComponentKind = ComponentKind.PROCESS
    health_check: Optional[HealthEndpoint] = None
    recovery_command: Optional[Tuple[str, ...]] = None
    pid_file: Optional[str] = None
    process_match: Optional[str] = None
    dependents: Tuple[str, ...] = ()

    @property
    def is_process(self) -> bool:
        return self.kind == ComponentKind.PROCESS

    @property
    def can_restart(self) -> bool:
        return bool(self.recovery_command)


# ============================================================
# RECORDS
# ============================================================

@dataclass(frozen=True)
class HealthCheckResult:
    """Result of one health probe."""

    component: str
    timestamp: datetime
    status: HealthStatus
    response_time_ms: float
    component_kind: ComponentKind = ComponentKind.PROCESS
    error_message: Optional[str] = None
    metrics: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "component": self.component,
            "timestamp": self.timestamp.isoformat(),
            "status": self.status.value,
            "response_time_ms": round(self.response_time_ms, 3),
            "component_kind": self.component_kind.value,
            "error_message": self.error_message,
            "metrics": self.metrics,
        }


@dataclass(frozen=True)
class MetricSample:
    """One timestamped metric value with its classification."""

    component: str
    metric: str
    timestamp: datetime
    value: float
    unit: str
    trend: Trend = Trend.STABLE
    anomaly: bool = False

    @property
    def key(self) -> Tuple[str, str]:
        return (self.component, self.metric)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "component": self.component,
            "metric": self.metric,
            "timestamp": self.timestamp.isoformat(),
            "value": self.value,
            "unit": self.unit,
            "trend": self.trend.value,
            "anomaly": self.anomaly,
        }


@dataclass
class Baseline:
    """Rolling statistical profile for one (component, metric) key."""

    component: str
    metric: str
    mean: float
    minimum: float
    maximum: float
    count: int = 1
    updated_at: Optional[datetime] = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.component, self.metric)

    @property
    def spread(self) -> float:
        return self.maximum - self.minimum

    def to_dict(self) -> Dict[str, Any]:
        return {
            "component": self.component,
            "metric": self.metric,
            "mean": self.mean,
            "min": self.minimum,
            "max": self.maximum,
            "count": self.count,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class AlertEvent:
    """An alert raised by a detector."""

    severity: AlertSeverity
    component: str
    message: str
    timestamp: datetime
    alert_type: str = "health_check"
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    escalated: bool = False
    alert_id: str = field(default_factory=lambda: uuid4().hex)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "timestamp": self.timestamp.isoformat(),
            "alert_type": self.alert_type,
            "severity": self.severity.value,
            "component": self.component,
            "message": self.message,
            "resolved": self.resolved,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "escalated": self.escalated,
        }


@dataclass(frozen=True)
class RecoveryResult:
    """Outcome returned by RecoveryExecutor.execute."""

    success: bool
    message: str
    duration_ms: float = 0.0
    executed: bool = True
    attempt: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "duration_ms": round(self.duration_ms, 3),
            "executed": self.executed,
            "attempt": self.attempt,
        }


@dataclass(frozen=True)
class RecoveryAttempt:
    """Audit record of a single executed recovery attempt."""

    component: str
    timestamp: datetime
    action_type: RecoveryActionType
    action_detail: str
    success: bool
    duration_ms: float
    result_message: str
    attempt: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "component": self.component,
            "timestamp": self.timestamp.isoformat(),
            "action_type": self.action_type.value,
            "action_detail": self.action_detail,
            "success": self.success,
            "duration_ms": round(self.duration_ms, 3),
            "result_message": self.result_message,
            "attempt": self.attempt,
        }


@dataclass(frozen=True)
class MetricSummary:
    """Aggregate of one metric key over a report window."""

    component: str
    metric: str
    avg: float
    minimum: float
    maximum: float
    samples: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "component": self.component,
            "metric": self.metric,
            "avg": round(self.avg, 4),
            "min": self.minimum,
            "max": self.maximum,
            "samples": self.samples,
        }


@dataclass
class HealthReport:
    """Point-in-time report produced by the reporting job."""

    generated_at: datetime
    window_minutes: int
    status_counts: Dict[str, int]
    components: List[Dict[str, Any]]
    alerts: List[AlertEvent]
    performance: List[MetricSummary]
    recommendations: List[str]
    monitoring_active: bool = True

    def summary(self) -> Dict[str, Any]:
        """The part of the report that depends only on accumulated data."""
        return {
            "status_counts": dict(self.status_counts),
            "alert_count": len(self.alerts),
            "unresolved_alerts": sum(1 for a in self.alerts if not a.resolved),
            "metric_keys": len(self.performance),
            "recommendations": list(self.recommendations),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generated": self.generated_at.isoformat(),
            "report_type": "health_monitoring",
            "window_minutes": self.window_minutes,
            "monitoring_active": self.monitoring_active,
            "system_overview": dict(self.status_counts),
            "component_status": self.components,
            "recent_alerts": [a.to_dict() for a in self.alerts],
            "performance_summary": [m.to_dict() for m in self.performance],
            "recommendations": list(self.recommendations),
        }
