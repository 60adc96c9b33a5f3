"""
Alert Manager.

============================================================
PURPOSE
============================================================
Records alert events, escalates CRITICAL alerts to the
notification sink, and resolves alerts when a component
returns to HEALTHY.

PRINCIPLES:
- Every raise appends an AlertEvent (memory + store)
- CRITICAL alerts are escalated unless the caller suppresses it
- Resolution touches only the outage alerts of the component
  that returned to HEALTHY
- Notification failures never block alert recording

============================================================
DEDUPLICATION
============================================================
The manager itself keeps no dedup state. AlertCycle wraps it
for one sweep so identical (component, message) pairs escalate
at most once per sweep.

============================================================
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from core.clock import ClockFactory, ClockProtocol
from monitoring.models import AlertEvent, AlertSeverity
from storage.store import MonitoringStore


logger = logging.getLogger(__name__)


_LOG_LEVELS = {
    AlertSeverity.INFO: logging.INFO,
    AlertSeverity.WARNING: logging.WARNING,
    AlertSeverity.ERROR: logging.ERROR,
    AlertSeverity.CRITICAL: logging.CRITICAL,
}


# ============================================================
# ALERT HISTORY
# ============================================================

class AlertHistory:
    """
    In-memory alert history for the current run.

    Bounded; oldest alerts are dropped first.
    """

    def __init__(self, max_history: int = 10000):
        self._alerts: List[AlertEvent] = []
        self._max_history = max_history
        self._alerts_by_id: Dict[str, AlertEvent] = {}

    def __len__(self) -> int:
        return len(self._alerts)

    def add(self, alert: AlertEvent) -> None:
        self._alerts.append(alert)
        self._alerts_by_id[alert.alert_id] = alert

        if len(self._alerts) > self._max_history:
            removed = self._alerts[:-self._max_history]
            self._alerts = self._alerts[-self._max_history:]
            for old in removed:
                self._alerts_by_id.pop(old.alert_id, None)

    def get(self, alert_id: str) -> Optional[AlertEvent]:
        return self._alerts_by_id.get(alert_id)

    def get_recent(self, limit: int = 100) -> List[AlertEvent]:
        """Newest first."""
        return self._alerts[-limit:][::-1]

    def get_active(self) -> List[AlertEvent]:
        return [a for a in self._alerts if not a.resolved]

    def get_by_severity(self, severity: AlertSeverity) -> List[AlertEvent]:
        return [a for a in self._alerts if a.severity == severity]

    def unresolved(
        self,
        component: str,
        alert_types: Tuple[str, ...],
        min_severity: AlertSeverity = AlertSeverity.WARNING,
    ) -> List[AlertEvent]:
        """Oldest first."""
        return [
            a for a in self._alerts
            if a.component == component
            and not a.resolved
            and a.alert_type in alert_types
            and a.severity.rank >= min_severity.rank
        ]

    def stats(self, now: datetime) -> Dict[str, Any]:
        last_hour = now - timedelta(hours=1)
        last_day = now - timedelta(days=1)
        return {
            "total_alerts": len(self._alerts),
            "active_alerts": len(self.get_active()),
            "escalated": sum(1 for a in self._alerts if a.escalated),
            "alerts_last_hour": sum(1 for a in self._alerts if a.timestamp >= last_hour),
            "alerts_last_24h": sum(1 for a in self._alerts if a.timestamp >= last_day),
            "by_severity": {
                severity.value: len(self.get_by_severity(severity))
                for severity in AlertSeverity
            },
        }


# ============================================================
# ALERT MANAGER
# ============================================================

# Escalation sink: returns True when at least one channel delivered.
NotificationHandler = Callable[[AlertEvent], Awaitable[bool]]

# Alert types that describe a component outage; resolved on return to HEALTHY.
OUTAGE_ALERT_TYPES = ("health_check", "recovery")


class AlertManager:
    """
    Central alert coordination point.

    Usage:
        manager = AlertManager(store, notification_handlers=[notifier.notify])
        await manager.raise_alert(AlertSeverity.CRITICAL, "api", "Status changed to DOWN")
    """

    def __init__(
        self,
        store: Optional[MonitoringStore] = None,
        notification_handlers: Optional[List[NotificationHandler]] = None,
        clock: Optional[ClockProtocol] = None,
        max_history: int = 10000,
    ):
        self._store = store
        self._handlers = list(notification_handlers or [])
        self._clock = clock
        self._history = AlertHistory(max_history)

    @property
    def history(self) -> AlertHistory:
        return self._history

    def add_handler(self, handler: NotificationHandler) -> None:
        self._handlers.append(handler)

    def _now(self) -> datetime:
        return (self._clock or ClockFactory.get_clock()).now()

    # --------------------------------------------------------
    # RAISE
    # --------------------------------------------------------

    async def raise_alert(
        self,
        severity: AlertSeverity,
        component: str,
        message: str,
        alert_type: str = "health_check",
        escalate: bool = True,
    ) -> AlertEvent:
        """Append an alert; escalate it when CRITICAL and not suppressed."""
        alert = AlertEvent(
            severity=severity,
            component=component,
            message=message,
            timestamp=self._now(),
            alert_type=alert_type,
        )
        self._history.add(alert)
        logger.log(_LOG_LEVELS[severity], f"[{severity.value}] {component}: {message}")

        if self._store is not None:
            await self._store.save_alert(alert)

        if severity == AlertSeverity.CRITICAL and escalate:
            await self._escalate(alert)
        return alert

    async def _escalate(self, alert: AlertEvent) -> None:
        alert.escalated = True
        if self._store is not None:
            await self._store.mark_alert_escalated(alert.alert_id)

        for handler in self._handlers:
            try:
                await handler(alert)
            except Exception as e:
                logger.error(f"Notification handler error: {e}")

    # --------------------------------------------------------
    # RESOLVE
    # --------------------------------------------------------

    async def resolve_outage(
        self,
        component: str,
        resolved_at: Optional[datetime] = None,
    ) -> List[AlertEvent]:
        """
        Resolve the outage alerts of a component that is HEALTHY again.

        Outage alerts are the unresolved WARNING+ status-change and
        recovery alerts of that component. Anomaly, performance and
        resource alerts are left alone. Alerts persisted by an earlier
        run are resolved too.

        Returns the resolved alerts, newest first.
        """
        resolved_at = resolved_at or self._now()
        alerts = self._history.unresolved(component, OUTAGE_ALERT_TYPES)

        if self._store is not None:
            persisted = await self._store.list_alerts(component=component, resolved=False, limit=100)
            alerts.extend(
                a for a in reversed(persisted)
                if self._history.get(a.alert_id) is None
                and a.alert_type in OUTAGE_ALERT_TYPES
                and a.severity.rank >= AlertSeverity.WARNING.rank
            )

        for alert in alerts:
            alert.resolved = True
            alert.resolved_at = resolved_at
            if self._store is not None:
                await self._store.mark_alert_resolved(alert.alert_id, resolved_at)
            logger.info(f"Resolved alert {alert.alert_id} for {component}: {alert.message}")

        alerts.sort(key=lambda a: a.timestamp, reverse=True)
        return alerts

    # --------------------------------------------------------
    # QUERIES
    # --------------------------------------------------------

    def get_alert_summary(self) -> Dict[str, Any]:
        active = self._history.get_active()
        return {
            "active_count": len(active),
            "critical_count": sum(1 for a in active if a.severity == AlertSeverity.CRITICAL),
            "warning_count": sum(1 for a in active if a.severity == AlertSeverity.WARNING),
            "stats": self._history.stats(self._now()),
        }

    def cycle(self) -> "AlertCycle":
        """A coalescing view for one sweep."""
        return AlertCycle(self)


# ============================================================
# PER-SWEEP COALESCING
# ============================================================

class AlertCycle:
    """
    Alert sink for a single sweep.

    Every alert is still recorded. A CRITICAL (component, message)
    pair is escalated only the first time it is raised in the sweep.
    """

    def __init__(self, manager: AlertManager):
        self._manager = manager
        self._escalated: Set[Tuple[str, str]] = set()

    @property
    def manager(self) -> AlertManager:
        return self._manager

    async def raise_alert(
        self,
        severity: AlertSeverity,
        component: str,
        message: str,
        alert_type: str = "health_check",
        escalate: bool = True,
    ) -> AlertEvent:
        key = (component, message)
        first = key not in self._escalated
        if severity == AlertSeverity.CRITICAL and escalate and first:
            self._escalated.add(key)
        return await self._manager.raise_alert(
            severity, component, message, alert_type, escalate=escalate and first
        )

    async def resolve_outage(
        self,
        component: str,
        resolved_at: Optional[datetime] = None,
    ) -> List[AlertEvent]:
        return await self._manager.resolve_outage(component, resolved_at)
