"""
Storage Package.

This package manages all supervisor persistence.
Every health check, metric sample, alert and recovery attempt
is written here for audit.

Modules:
- database: Engine and session management
- models/: ORM tables
- repositories/: Data access layer
- store: Async facade used by the supervisor
"""

from storage.database import Database
from storage.store import MonitoringStore

__all__ = [
    "Database",
    "MonitoringStore",
]
