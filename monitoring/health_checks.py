"""
Monitoring - Health Checks.

============================================================
RESPONSIBILITY
============================================================
Performs a single health probe against one monitored component.

- Process liveness (psutil) for `process` components
- Optional protocol check (HTTP status endpoint or TCP connect)
- Returns status plus latency; never persists anything

============================================================
DESIGN PRINCIPLES
============================================================
- One probe, one result; no retries inside the checker
- Every probe carries its own timeout and is cancellable
- Probe errors become statuses, never exceptions to the caller

============================================================
STATUS MAPPING
============================================================
- HEALTHY:  process alive and 2xx structured success / TCP accept
- DEGRADED: any other completed response
- DOWN:     process not running, timeout, connection failure
- ERROR:    protocol violation or unexpected exception
- UNKNOWN:  nothing configured to check

============================================================
"""

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import aiohttp
import psutil

from core.clock import ClockFactory, ClockProtocol
from core.exceptions import (
    ProbeConnectionFailure,
    ProbeProtocolError,
    ProbeTimeout,
)
from monitoring.models import (
    HealthCheckResult,
    HealthEndpoint,
    HealthStatus,
    MonitoredComponent,
    ProbeProtocol,
)


logger = logging.getLogger(__name__)


# Status payload values that count as structured success.
OK_STATUS_VALUES = {"ok", "healthy", "up", "pass", "running"}

USER_AGENT = "SelfHealingSupervisor/1.0"


# ============================================================
# PROCESS TABLE
# ============================================================

class ProcessTable:
    """
    PIDs of processes launched by the supervisor.

    Keyed by component name; written by restart actions, read by
    liveness checks.
    """

    def __init__(self) -> None:
        self._pids: Dict[str, int] = {}

    def register(self, component: str, pid: int) -> None:
        self._pids[component] = pid

    def pid_for(self, component: str) -> Optional[int]:
        return self._pids.get(component)

    def forget(self, component: str) -> None:
        self._pids.pop(component, None)

    def snapshot(self) -> Dict[str, int]:
        return dict(self._pids)


# ============================================================
# LIVENESS
# ============================================================

def pid_alive(pid: int) -> bool:
    """True if pid exists and is not a zombie."""
    try:
        process = psutil.Process(pid)
        return process.is_running() and process.status() != psutil.STATUS_ZOMBIE
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return False


def read_pid_file(path: str) -> Optional[int]:
    try:
        return int(Path(path).read_text().strip())
    except (OSError, ValueError):
        return None


def find_process(pattern: str) -> Optional[int]:
    """First pid whose command line contains pattern."""
    for proc in psutil.process_iter(["pid", "cmdline"]):
        cmdline = " ".join(proc.info.get("cmdline") or [])
        if pattern in cmdline:
            return proc.info["pid"]
    return None


def port_listening(port: int) -> Optional[bool]:
    """True/False if the socket table is readable, None if not permitted."""
    try:
        for conn in psutil.net_connections(kind="inet"):
            if conn.status == psutil.CONN_LISTEN and conn.laddr and conn.laddr.port == port:
                return True
        return False
    except (psutil.AccessDenied, PermissionError):
        return None


def check_liveness(
    component: MonitoredComponent,
    table: ProcessTable,
) -> Tuple[Optional[bool], Optional[int], str]:
    """
    Decide whether a process component is running.

    Order: supervisor-launched pid, pid file, command-line match,
    listening health port.

    Returns:
        (alive, pid, how). alive is None when nothing identifies
        the process.
    """
    pid = table.pid_for(component.name)
    if pid is not None and pid_alive(pid):
        return True, pid, "supervised"

    if component.pid_file:
        pid = read_pid_file(component.pid_file)
        return (pid is not None and pid_alive(pid)), pid, "pid_file"

    if component.process_match:
        pid = find_process(component.process_match)
        return pid is not None, pid, "process_match"

    if component.health_check is not None:
        listening = port_listening(component.health_check.port)
        if listening is not None:
            return listening, None, "port"

    if pid is not None:
        return False, pid, "supervised"

    return None, None, "unidentified"


# ============================================================
# HEALTH CHECKER
# ============================================================

class HealthChecker:
    """
    Probes one component at a time.

    Usage:
        checker = HealthChecker(timeout_seconds=10)
        result = await checker.check(component)
        await checker.close()
    """

    def __init__(
        self,
        timeout_seconds: float = 10.0,
        process_table: Optional[ProcessTable] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._timeout = timeout_seconds
        self._process_table = process_table or ProcessTable()
        self._clock = clock
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    @property
    def process_table(self) -> ProcessTable:
        return self._process_table

    def _now(self):
        return (self._clock or ClockFactory.get_clock()).now()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers={"User-Agent": USER_AGENT})
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    # --------------------------------------------------------
    # PUBLIC
    # --------------------------------------------------------

    async def check(self, component: MonitoredComponent) -> HealthCheckResult:
        """Run one probe. Never raises except on cancellation."""
        start = time.perf_counter()
        error: Optional[str] = None
        metrics: Dict[str, Any] = {}

        try:
            status, error, metrics = await asyncio.wait_for(
                self._probe(component), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            status = HealthStatus.DOWN
            error = str(ProbeTimeout(component.name, self._timeout))
        except ProbeTimeout as e:
            status, error = HealthStatus.DOWN, str(e)
        except ProbeConnectionFailure as e:
            status, error = HealthStatus.DOWN, str(e)
        except ProbeProtocolError as e:
            status, error = HealthStatus.ERROR, str(e)
        except Exception as e:
            logger.exception(f"Unexpected probe failure for {component.name}")
            status, error = HealthStatus.ERROR, f"{type(e).__name__}: {e}"

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.debug(f"Probe {component.name}: {status.value} in {elapsed_ms:.1f}ms")

        return HealthCheckResult(
            component=component.name,
            timestamp=self._now(),
            status=status,
            response_time_ms=elapsed_ms,
            component_kind=component.kind,
            error_message=error,
            metrics=metrics,
        )

    # --------------------------------------------------------
    # PROBES
    # --------------------------------------------------------

    async def _probe(
        self,
        component: MonitoredComponent,
    ) -> Tuple[HealthStatus, Optional[str], Dict[str, Any]]:
        metrics: Dict[str, Any] = {}

        if component.is_process:
            alive, pid, how = await asyncio.to_thread(
                check_liveness, component, self._process_table
            )
            if alive is False:
                where = f"port {component.health_check.port}" if how == "port" else how
                return HealthStatus.DOWN, f"Process not running ({where})", {"pid": pid}
            if pid is not None:
                metrics["pid"] = pid
            if alive is None and component.health_check is None:
                return HealthStatus.UNKNOWN, "No liveness or health check configured", metrics
            if component.health_check is None:
                return HealthStatus.HEALTHY, None, metrics

        endpoint = component.health_check
        if endpoint is None:
            return HealthStatus.UNKNOWN, "No health check configured", metrics

        if endpoint.protocol == ProbeProtocol.TCP:
            await self._probe_tcp(component.name, endpoint)
            return HealthStatus.HEALTHY, None, metrics

        status, error, http_metrics = await self._probe_http(component.name, endpoint)
        metrics.update(http_metrics)
        return status, error, metrics

    async def _probe_tcp(self, name: str, endpoint: HealthEndpoint) -> None:
        try:
            _, writer = await asyncio.open_connection(endpoint.host, endpoint.port)
        except OSError as e:
            raise ProbeConnectionFailure(
                f"TCP connect to {endpoint.host}:{endpoint.port} failed: {e}",
                component=name,
                cause=e,
            ) from e
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass

    async def _probe_http(
        self,
        name: str,
        endpoint: HealthEndpoint,
    ) -> Tuple[HealthStatus, Optional[str], Dict[str, Any]]:
        session = await self._get_session()
        timeout = aiohttp.ClientTimeout(total=self._timeout)

        try:
            async with session.get(endpoint.url, timeout=timeout) as response:
                body = await response.read()
                metrics: Dict[str, Any] = {
                    "status_code": response.status,
                    "response_size": len(body),
                }

                if not 200 <= response.status < 300:
                    return HealthStatus.DEGRADED, f"HTTP {response.status}", metrics

                payload = _parse_status_payload(body)
                if payload is None:
                    return HealthStatus.HEALTHY, None, metrics

                metrics["payload"] = payload
                reported = payload.get("status")
                if reported is not None and str(reported).lower() not in OK_STATUS_VALUES:
                    return HealthStatus.DEGRADED, f"Component reports status {reported}", metrics
                return HealthStatus.HEALTHY, None, metrics

        except asyncio.TimeoutError as e:
            raise ProbeTimeout(name, self._timeout, cause=e) from e
        except aiohttp.ServerDisconnectedError as e:
            raise ProbeProtocolError(
                f"Server disconnected before responding: {e}", component=name, cause=e
            ) from e
        except aiohttp.ClientConnectionError as e:
            raise ProbeConnectionFailure(
                f"HTTP connect to {endpoint.url} failed: {e}", component=name, cause=e
            ) from e
        except aiohttp.ClientPayloadError as e:
            raise ProbeProtocolError(f"Malformed response body: {e}", component=name, cause=e) from e
        except aiohttp.ClientResponseError as e:
            raise ProbeProtocolError(f"Malformed HTTP response: {e}", component=name, cause=e) from e


def _parse_status_payload(body: bytes) -> Optional[Dict[str, Any]]:
    """JSON object body, or None when the body is not a JSON object."""
    try:
        data = json.loads(body.decode("utf-8")) if body else None
    except (UnicodeDecodeError, ValueError):
        return None
    return data if isinstance(data, dict) else None
