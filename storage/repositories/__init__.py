"""
Repository Layer Package.

============================================================
PURPOSE
============================================================
The Repository Layer is the ONLY gateway to persistent storage.
All database access MUST go through repository classes.

============================================================
ARCHITECTURE PRINCIPLES
============================================================
1. Session Injection: Sessions are injected, not created internally
2. Explicit Methods: No generic 'execute', clear method names
3. Append-only history, flags and baselines updated in place
4. Exception Handling: All DB errors wrapped in repository exceptions

============================================================
"""

from storage.repositories.base import BaseRepository
from storage.repositories.exceptions import (
    ConnectionError,
    DuplicateRecordError,
    IntegrityError,
    QueryError,
    RepositoryException,
)
from storage.repositories.monitoring import (
    AlertRepository,
    BaselineRepository,
    HealthCheckRepository,
    MetricRepository,
    RecoveryRepository,
)

__all__ = [
    "BaseRepository",
    "RepositoryException",
    "DuplicateRecordError",
    "IntegrityError",
    "ConnectionError",
    "QueryError",
    "HealthCheckRepository",
    "MetricRepository",
    "BaselineRepository",
    "AlertRepository",
    "RecoveryRepository",
]
