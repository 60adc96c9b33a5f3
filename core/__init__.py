"""
Core Module Package.

This package contains the core infrastructure components
that all other packages depend on.

Components:
- clock: Unified time abstraction
- exceptions: Custom exception hierarchy
"""

from .clock import ClockFactory, ClockProtocol, MockClock, SystemClock
from .exceptions import (
    ConfigurationError,
    ProbeConnectionFailure,
    ProbeError,
    ProbeProtocolError,
    ProbeTimeout,
    RecoveryActionFailure,
    StorageWriteFailure,
    SupervisorError,
    UnknownRecoveryAction,
)


__all__ = [
    "ClockFactory",
    "ClockProtocol",
    "MockClock",
    "SystemClock",
    "ConfigurationError",
    "ProbeConnectionFailure",
    "ProbeError",
    "ProbeProtocolError",
    "ProbeTimeout",
    "RecoveryActionFailure",
    "StorageWriteFailure",
    "SupervisorError",
    "UnknownRecoveryAction",
]
