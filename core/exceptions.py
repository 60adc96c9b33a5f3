"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines all custom exceptions for the supervisor.

- Provides clear exception hierarchy
- Separates per-component failures from fatal startup failures
- Includes context for debugging

============================================================
EXCEPTION HIERARCHY
============================================================
SupervisorError (base)
├── ConfigurationError          (fatal, startup only)
├── ProbeError                  (converted to DOWN / ERROR)
│   ├── ProbeTimeout
│   ├── ProbeConnectionFailure
│   └── ProbeProtocolError
├── RecoveryError
│   ├── RecoveryActionFailure   (recorded, retried up to the cap)
│   └── UnknownRecoveryAction   (fails fast)
└── StorageWriteFailure         (logged, never blocks a tick)

============================================================
PROPAGATION
============================================================
Only ConfigurationError is allowed to escape to the process
entry point. Everything else is caught at the job boundary and
turned into a status, an alert, or a log line.

============================================================
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional


# ============================================================
# BASE EXCEPTION
# ============================================================

class SupervisorError(Exception):
    """
    Base exception for all supervisor errors.

    All exceptions carry:
    - component: the monitored component involved (if any)
    - context: for debugging
    - fatal: whether the process must abort
    - timestamp: when the error occurred
    """

    fatal: bool = False

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.component = component
        self.context = context or {}
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    def __str__(self) -> str:
        if self.component:
            return f"[{self.component}] {self.message}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging/storage."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "component": self.component,
            "fatal": self.fatal,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(SupervisorError):
    """Invalid component or threshold definition. Fatal at startup."""

    fatal = True

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        actual_value: Optional[Any] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if config_key:
            context["config_key"] = config_key
        if actual_value is not None:
            context["actual_value"] = str(actual_value)[:100]

        super().__init__(message, context=context, **kwargs)
        self.config_key = config_key


# ============================================================
# PROBE ERRORS
# ============================================================

class ProbeError(SupervisorError):
    """Base class for health probe failures."""


class ProbeTimeout(ProbeError):
    """Probe did not complete within its timeout."""

    def __init__(self, component: str, timeout_seconds: float, **kwargs):
        super().__init__(
            f"Probe timed out after {timeout_seconds:g}s",
            component=component,
            context={"timeout_seconds": timeout_seconds},
            **kwargs,
        )
        self.timeout_seconds = timeout_seconds


class ProbeConnectionFailure(ProbeError):
    """Probe target refused or dropped the connection."""


class ProbeProtocolError(ProbeError):
    """Probe target answered with something that is not the expected protocol."""


# ============================================================
# RECOVERY ERRORS
# ============================================================

class RecoveryError(SupervisorError):
    """Base class for recovery failures."""


class RecoveryActionFailure(RecoveryError):
    """A recovery action ran and did not succeed."""

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        action_type: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if action_type:
            context["action_type"] = action_type
        super().__init__(message, component=component, context=context, **kwargs)
        self.action_type = action_type


class UnknownRecoveryAction(RecoveryError):
    """Requested recovery action type does not exist."""

    def __init__(self, action_type: str, component: Optional[str] = None):
        super().__init__(
            f"Unknown recovery action: {action_type}",
            component=component,
            context={"action_type": action_type},
        )
        self.action_type = action_type


# ============================================================
# STORAGE ERRORS
# ============================================================

class StorageWriteFailure(SupervisorError):
    """Durable write failed; in-memory state continues."""

    def __init__(self, table: str, operation: str, cause: Optional[Exception] = None):
        super().__init__(
            f"Write to {table} failed during {operation}",
            context={"table": table, "operation": operation},
            cause=cause,
        )
        self.table = table
        self.operation = operation


__all__ = [
    "SupervisorError",
    "ConfigurationError",
    "ProbeError",
    "ProbeTimeout",
    "ProbeConnectionFailure",
    "ProbeProtocolError",
    "RecoveryError",
    "RecoveryActionFailure",
    "UnknownRecoveryAction",
    "StorageWriteFailure",
]
