"""
Monitoring - Component State.

Per-component mutable state owned by the scheduler and passed
explicitly to the jobs that need it: last known status, recovery
attempt counter and recovery state. Partitioned by component name;
each entry carries its own lock.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from monitoring.models import HealthCheckResult, HealthStatus, RecoveryState


@dataclass
class ComponentState:
    name: str
    last_status: Optional[HealthStatus] = None
    last_result: Optional[HealthCheckResult] = None
    attempts: int = 0
    recovery_state: RecoveryState = RecoveryState.OK
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def reset_recovery(self) -> None:
        self.attempts = 0
        self.recovery_state = RecoveryState.OK

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.last_status.value if self.last_status else HealthStatus.UNKNOWN.value,
            "last_check": self.last_result.timestamp.isoformat() if self.last_result else None,
            "response_time_ms": round(self.last_result.response_time_ms, 3) if self.last_result else None,
            "recovery_attempts": self.attempts,
            "recovery_state": self.recovery_state.value,
        }


class ComponentStateTable:
    """Concurrent map of component name -> ComponentState."""

    def __init__(self) -> None:
        self._states: Dict[str, ComponentState] = {}

    def get(self, name: str) -> ComponentState:
        state = self._states.get(name)
        if state is None:
            state = self._states[name] = ComponentState(name=name)
        return state

    def __contains__(self, name: str) -> bool:
        return name in self._states

    def status_counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in HealthStatus}
        for state in self._states.values():
            if state.last_status is not None:
                counts[state.last_status.value] += 1
        return counts

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {name: self._states[name].to_dict() for name in sorted(self._states)}
