"""
Shared test fixtures.

============================================================
PURPOSE
============================================================
- Deterministic clock (MockClock)
- In-memory SQLite monitoring store
- Recording alert sink and a fake process launcher

============================================================
"""

from datetime import datetime, timezone
from typing import Dict, List

import pytest

from core.clock import ClockFactory
from monitoring.models import AlertEvent, AlertSeverity
from monitoring.recovery import ProcessLauncher
from storage.store import MonitoringStore


START_TIME = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def clock():
    """Mock clock installed as the process-wide clock."""
    with ClockFactory.use_mock(START_TIME) as mock:
        yield mock


@pytest.fixture
def store():
    """Monitoring store on a private in-memory database."""
    store = MonitoringStore.from_url("sqlite://")
    store.database.create_all_tables()
    yield store
    store.close()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def launcher():
    return FakeLauncher()


# ============================================================
# FAKES
# ============================================================

class RecordingSink:
    """Alert sink that keeps everything it is given."""

    def __init__(self):
        self.alerts: List[AlertEvent] = []

    async def raise_alert(
        self,
        severity: AlertSeverity,
        component: str,
        message: str,
        alert_type: str = "health_check",
        escalate: bool = True,
    ) -> AlertEvent:
        alert = AlertEvent(
            severity=severity,
            component=component,
            message=message,
            timestamp=START_TIME,
            alert_type=alert_type,
        )
        self.alerts.append(alert)
        return alert

    def of(self, severity: AlertSeverity) -> List[AlertEvent]:
        return [a for a in self.alerts if a.severity == severity]


class FakeLauncher(ProcessLauncher):
    """Launcher that never touches the OS."""

    def __init__(self, alive_after_launch: bool = True):
        self.alive_after_launch = alive_after_launch
        self.launched: List[List[str]] = []
        self.terminated: List[int] = []
        self._alive: Dict[int, bool] = {}
        self._next_pid = 4000

    def mark_alive(self, pid: int, alive: bool = True) -> None:
        self._alive[pid] = alive

    async def terminate(self, pid: int, timeout: float = 5.0) -> None:
        self.terminated.append(pid)
        self._alive[pid] = False

    async def launch(self, argv: List[str]) -> int:
        self._next_pid += 1
        self.launched.append(list(argv))
        self._alive[self._next_pid] = self.alive_after_launch
        return self._next_pid

    def is_alive(self, pid: int) -> bool:
        return self._alive.get(pid, False)
