"""
Alerts Package.

Alert recording, escalation and resolution for the supervisor.
"""

from .manager import (
    AlertCycle,
    AlertHistory,
    AlertManager,
    NotificationHandler,
)


__all__ = [
    "AlertCycle",
    "AlertHistory",
    "AlertManager",
    "NotificationHandler",
]
