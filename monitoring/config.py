"""
Monitoring - Configuration.

============================================================
STATIC SUPERVISOR CONFIGURATION
============================================================

Everything the supervisor needs is read once at start:
- Sweep intervals
- Alert thresholds (CPU/memory/disk/latency/error-rate)
- Recovery cap and probe limits
- Monitored components
- Notification channels and the optional status API

Configuration is loaded from:
- Default values
- YAML config file
- Environment variables (after load_dotenv)

No hot reload. Invalid values raise ConfigurationError
before the first sweep.

============================================================
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from core.exceptions import ConfigurationError
from monitoring.models import (
    ComponentKind,
    HealthEndpoint,
    MonitoredComponent,
    ProbeProtocol,
)


logger = logging.getLogger(__name__)


JOB_NAMES = (
    "component_sweep",
    "resource_sweep",
    "storage_sweep",
    "network_sweep",
    "maintenance",
    "reporting",
)


# =============================================================
# INTERVALS
# =============================================================


@dataclass
class JobIntervals:
    """Fixed interval, in seconds, of each periodic job."""
    component_sweep: float = 60.0
    resource_sweep: float = 30.0
    storage_sweep: float = 30.0
    network_sweep: float = 60.0
    maintenance: float = 3600.0
    reporting: float = 1800.0

    def validate(self) -> None:
        for name in JOB_NAMES:
            value = getattr(self, name)
            if value <= 0:
                raise ConfigurationError(
                    f"Interval for {name} must be positive",
                    config_key=f"intervals.{name}",
                    actual_value=value,
                )

    def to_dict(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in JOB_NAMES}


# =============================================================
# ALERT THRESHOLDS
# =============================================================


@dataclass
class AlertThresholds:
    """
    High/critical pairs for every threshold detector.

    - value > high      -> WARNING
    - value > critical  -> CRITICAL
    """
    cpu_high: float = 80.0
    cpu_critical: float = 95.0
    memory_high: float = 85.0
    memory_critical: float = 95.0
    disk_high: float = 90.0
    disk_critical: float = 98.0
    response_slow_ms: float = 5000.0
    response_critical_ms: float = 15000.0
    network_slow_ms: float = 200.0
    network_critical_ms: float = 1000.0
    error_rate_high: float = 5.0
    error_rate_critical: float = 15.0

    _PAIRS = (
        ("cpu_high", "cpu_critical"),
        ("memory_high", "memory_critical"),
        ("disk_high", "disk_critical"),
        ("response_slow_ms", "response_critical_ms"),
        ("network_slow_ms", "network_critical_ms"),
        ("error_rate_high", "error_rate_critical"),
    )

    def validate(self) -> None:
        """Each high must be positive and strictly below its critical."""
        for high_name, critical_name in self._PAIRS:
            high = getattr(self, high_name)
            critical = getattr(self, critical_name)
            if high <= 0:
                raise ConfigurationError(
                    f"{high_name} must be positive",
                    config_key=f"thresholds.{high_name}",
                    actual_value=high,
                )
            if high >= critical:
                raise ConfigurationError(
                    f"{high_name} must be < {critical_name}",
                    config_key=f"thresholds.{high_name}",
                    actual_value=high,
                )
        for name in ("cpu_critical", "memory_critical", "disk_critical"):
            if getattr(self, name) > 100:
                raise ConfigurationError(
                    f"{name} is a percentage (0-100)",
                    config_key=f"thresholds.{name}",
                    actual_value=getattr(self, name),
                )

    def to_dict(self) -> Dict[str, float]:
        return {name: getattr(self, name) for pair in self._PAIRS for name in pair}


# =============================================================
# RETENTION / NOTIFICATIONS / API
# =============================================================


@dataclass
class RetentionConfig:
    """Maintenance and reporting windows."""
    log_days: int = 30
    report_window_minutes: int = 60
    baseline_rebuild_days: int = 7
    baseline_rebuild_min_samples: int = 100


@dataclass
class NotificationConfig:
    """Enabled notification channels for escalated alerts."""
    console: bool = True
    file: bool = True
    syslog: bool = False
    webhook_url: Optional[str] = None
    telegram: bool = False


@dataclass
class ApiConfig:
    """Optional status API. Disabled when port is None."""
    host: str = "127.0.0.1"
    port: Optional[int] = None

    @property
    def enabled(self) -> bool:
        return self.port is not None


# =============================================================
# MAIN CONFIGURATION
# =============================================================


@dataclass
class SupervisorConfig:
    """
    Main supervisor configuration.

    Combines all sub-configurations.
    """
    data_dir: Path = field(default_factory=lambda: Path("./supervisor-data"))
    database_url: Optional[str] = None

    intervals: JobIntervals = field(default_factory=JobIntervals)
    thresholds: AlertThresholds = field(default_factory=AlertThresholds)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    api: ApiConfig = field(default_factory=ApiConfig)

    # Recovery / probing
    max_recovery_attempts: int = 5
    probe_timeout_seconds: float = 10.0
    max_concurrent_probes: int = 8
    shutdown_grace_seconds: float = 10.0
    restart_settle_seconds: float = 2.0

    components: List[MonitoredComponent] = field(default_factory=list)
    network_targets: List[str] = field(default_factory=list)
    required_directories: List[str] = field(
        default_factory=lambda: ["logs", "reports", "temp", "backups"]
    )

    # ---------------------------------------------------------
    # Derived paths
    # ---------------------------------------------------------

    @property
    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite:///{(self.data_dir / 'monitoring.db').as_posix()}"

    @property
    def logs_dir(self) -> Path:
        return self.data_dir / "logs"

    @property
    def reports_dir(self) -> Path:
        return self.data_dir / "reports"

    @property
    def temp_dir(self) -> Path:
        return self.data_dir / "temp"

    @property
    def escalation_log_path(self) -> Path:
        return self.logs_dir / "escalated-alerts.log"

    def component(self, name: str) -> Optional[MonitoredComponent]:
        for component in self.components:
            if component.name == name:
                return component
        return None

    # ---------------------------------------------------------
    # Validation
    # ---------------------------------------------------------

    def validate(self) -> "SupervisorConfig":
        """Raise ConfigurationError on the first invalid value."""
        self.intervals.validate()
        self.thresholds.validate()

        if self.max_recovery_attempts < 1:
            raise ConfigurationError(
                "max_recovery_attempts must be >= 1",
                config_key="max_recovery_attempts",
                actual_value=self.max_recovery_attempts,
            )
        if not 0 < self.probe_timeout_seconds <= 60:
            raise ConfigurationError(
                "probe_timeout_seconds must be in (0, 60]",
                config_key="probe_timeout_seconds",
                actual_value=self.probe_timeout_seconds,
            )
        if self.max_concurrent_probes < 1:
            raise ConfigurationError(
                "max_concurrent_probes must be >= 1",
                config_key="max_concurrent_probes",
                actual_value=self.max_concurrent_probes,
            )
        if self.shutdown_grace_seconds < 0 or self.restart_settle_seconds < 0:
            raise ConfigurationError(
                "shutdown_grace_seconds and restart_settle_seconds must be >= 0",
                config_key="shutdown_grace_seconds",
            )

        seen = set()
        for component in self.components:
            if not component.name or not component.name.strip():
                raise ConfigurationError("Component name must be non-empty", config_key="components")
            if component.name in seen:
                raise ConfigurationError(
                    f"Duplicate component name: {component.name}",
                    config_key="components",
                    actual_value=component.name,
                )
            seen.add(component.name)
            if component.kind == ComponentKind.EXTERNAL_ENDPOINT and component.health_check is None:
                raise ConfigurationError(
                    f"External endpoint {component.name} needs a health_check",
                    config_key=f"components.{component.name}.health_check",
                )

        for component in self.components:
            for dependent in component.dependents:
                if dependent not in seen:
                    raise ConfigurationError(
                        f"{component.name} lists unknown dependent {dependent}",
                        config_key=f"components.{component.name}.dependents",
                        actual_value=dependent,
                    )

        for target in self.network_targets:
            if not target.startswith(("http://", "https://")):
                raise ConfigurationError(
                    "Network targets must be http(s) URLs",
                    config_key="network_targets",
                    actual_value=target,
                )
        return self

    # ---------------------------------------------------------
    # Loading
    # ---------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SupervisorConfig":
        """Build from a parsed YAML mapping. Unknown keys are rejected."""
        data = dict(data or {})
        config = cls()
        try:
            if "data_dir" in data:
                config.data_dir = Path(data.pop("data_dir"))
            if "database_url" in data:
                config.database_url = data.pop("database_url")
            if "intervals" in data:
                config.intervals = JobIntervals(**_floats(data.pop("intervals")))
            if "thresholds" in data:
                config.thresholds = AlertThresholds(**_floats(data.pop("thresholds")))
            if "retention" in data:
                config.retention = RetentionConfig(**data.pop("retention"))
            if "notifications" in data:
                config.notifications = NotificationConfig(**data.pop("notifications"))
            if "api" in data:
                config.api = ApiConfig(**data.pop("api"))
            for key in (
                "max_recovery_attempts",
                "max_concurrent_probes",
            ):
                if key in data:
                    setattr(config, key, int(data.pop(key)))
            for key in (
                "probe_timeout_seconds",
                "shutdown_grace_seconds",
                "restart_settle_seconds",
            ):
                if key in data:
                    setattr(config, key, float(data.pop(key)))
            if "components" in data:
                config.components = [_parse_component(c) for c in data.pop("components") or []]
            if "network_targets" in data:
                config.network_targets = list(data.pop("network_targets") or [])
            if "required_directories" in data:
                config.required_directories = list(data.pop("required_directories") or [])
        except ConfigurationError:
            raise
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigurationError(f"Invalid configuration: {e}", cause=e) from e

        if data:
            raise ConfigurationError(
                f"Unknown configuration keys: {sorted(data)}",
                actual_value=sorted(data),
            )
        return config

    @classmethod
    def from_yaml(cls, path: Path) -> "SupervisorConfig":
        """Load configuration from a YAML file."""
        path = Path(path)
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError as e:
            raise ConfigurationError(f"Config file not found: {path}", cause=e) from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Config file is not valid YAML: {path}", cause=e) from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config root must be a mapping: {path}")
        logger.info(f"Loaded configuration from {path}")
        return cls.from_dict(data)

    def apply_env(self) -> "SupervisorConfig":
        """
        Apply environment overrides.

        Environment variables:
        - SUPERVISOR_DATA_DIR
        - SUPERVISOR_DATABASE_URL
        - SUPERVISOR_MAX_RECOVERY_ATTEMPTS
        - SUPERVISOR_PROBE_TIMEOUT
        - SUPERVISOR_INTERVAL_<JOB> (e.g. SUPERVISOR_INTERVAL_COMPONENT_SWEEP)
        - SUPERVISOR_WEBHOOK_URL
        - SUPERVISOR_API_PORT
        """
        try:
            if os.getenv("SUPERVISOR_DATA_DIR"):
                self.data_dir = Path(os.getenv("SUPERVISOR_DATA_DIR"))
            if os.getenv("SUPERVISOR_DATABASE_URL"):
                self.database_url = os.getenv("SUPERVISOR_DATABASE_URL")
            if os.getenv("SUPERVISOR_MAX_RECOVERY_ATTEMPTS"):
                self.max_recovery_attempts = int(os.getenv("SUPERVISOR_MAX_RECOVERY_ATTEMPTS"))
            if os.getenv("SUPERVISOR_PROBE_TIMEOUT"):
                self.probe_timeout_seconds = float(os.getenv("SUPERVISOR_PROBE_TIMEOUT"))
            for name in JOB_NAMES:
                value = os.getenv(f"SUPERVISOR_INTERVAL_{name.upper()}")
                if value:
                    setattr(self.intervals, name, float(value))
            if os.getenv("SUPERVISOR_WEBHOOK_URL"):
                self.notifications.webhook_url = os.getenv("SUPERVISOR_WEBHOOK_URL")
            if os.getenv("SUPERVISOR_API_PORT"):
                self.api.port = int(os.getenv("SUPERVISOR_API_PORT"))
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment override: {e}", cause=e) from e
        return self

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "SupervisorConfig":
        """Defaults, then YAML (if given), then environment; validated."""
        load_dotenv()
        config = cls.from_yaml(path) if path else cls()
        return config.apply_env().validate()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data_dir": str(self.data_dir),
            "database_url": self.resolved_database_url.split("@")[-1],
            "intervals": self.intervals.to_dict(),
            "thresholds": self.thresholds.to_dict(),
            "max_recovery_attempts": self.max_recovery_attempts,
            "probe_timeout_seconds": self.probe_timeout_seconds,
            "max_concurrent_probes": self.max_concurrent_probes,
            "components": [c.name for c in self.components],
            "network_targets": list(self.network_targets),
        }


# =============================================================
# PARSING HELPERS
# =============================================================


def _floats(section: Dict[str, Any]) -> Dict[str, float]:
    return {key: float(value) for key, value in (section or {}).items()}


def _parse_component(raw: Dict[str, Any]) -> MonitoredComponent:
    if not isinstance(raw, dict) or "name" not in raw:
        raise ConfigurationError("Each component needs a name", config_key="components", actual_value=raw)

    name = str(raw["name"])
    try:
        kind = ComponentKind(raw.get("kind", ComponentKind.PROCESS.value))
    except ValueError as e:
        raise ConfigurationError(
            f"Unknown component kind for {name}",
            config_key=f"components.{name}.kind",
            actual_value=raw.get("kind"),
        ) from e

    endpoint = None
    check = raw.get("health_check")
    if check:
        try:
            protocol = ProbeProtocol(check.get("protocol", ProbeProtocol.HTTP.value))
        except ValueError as e:
            raise ConfigurationError(
                f"Unknown probe protocol for {name}",
                config_key=f"components.{name}.health_check.protocol",
                actual_value=check.get("protocol"),
            ) from e
        port = int(check.get("port", 0))
        if not 0 < port < 65536:
            raise ConfigurationError(
                f"Invalid health check port for {name}",
                config_key=f"components.{name}.health_check.port",
                actual_value=port,
            )
        endpoint = HealthEndpoint(
            protocol=protocol,
            host=str(check.get("host", "127.0.0.1")),
            port=port,
            path=str(check.get("path", "/health")),
        )

    command = raw.get("recovery_command")
    if isinstance(command, str):
        command = command.split()
    if command is not None and (not command or not all(isinstance(a, str) for a in command)):
        raise ConfigurationError(
            f"recovery_command for {name} must be a non-empty argv list",
            config_key=f"components.{name}.recovery_command",
            actual_value=command,
        )

    return MonitoredComponent(
        name=name,
        kind=kind,
        health_check=endpoint,
        recovery_command=tuple(command) if command else None,
        pid_file=raw.get("pid_file"),
        process_match=raw.get("process_match"),
        dependents=tuple(raw.get("dependents") or ()),
    )
