"""
Storage Models Package.

ORM models for the supervisor's persistence boundary.

============================================================
MODEL ORGANIZATION
============================================================

Append-mostly (monitoring.py)
- HealthCheckRecord
- PerformanceMetricRecord
- AlertEventRecord
- RecoveryActionRecord

Upsert (monitoring.py)
- SystemBaselineRecord

============================================================
"""

from storage.models.base import Base
from storage.models.monitoring import (
    AlertEventRecord,
    HealthCheckRecord,
    PerformanceMetricRecord,
    RecoveryActionRecord,
    SystemBaselineRecord,
)

__all__ = [
    "Base",
    "HealthCheckRecord",
    "PerformanceMetricRecord",
    "AlertEventRecord",
    "RecoveryActionRecord",
    "SystemBaselineRecord",
]
