"""
Orchestrator - Supervisor Scheduler.

============================================================
RESPONSIBILITY
============================================================
Top-level control loop of the supervisor.

- Owns the component registry and the per-component state
- Runs independent periodic jobs, each on its own interval
- Wires probe results into the Metric Recorder, Alert Manager
  and Recovery Executor

============================================================
JOBS
============================================================
component_sweep   health probe of every monitored component
resource_sweep    host CPU / memory / disk / network counters
storage_sweep     data directory and database checks
network_sweep     HEAD of every configured network target
maintenance       retention cleanup, optimize, baseline rebuild
reporting         health report to reports/

============================================================
COMPONENT SWEEP
============================================================
Probes run concurrently, bounded by max_concurrent_probes.
Per component, in order:
1. persist the HealthCheckResult
2. on a change to HEALTHY: resolve the outage alerts
3. record metric response_time (ms)
4. compare latency with the response thresholds
5. on a status change: raise the status-change alert,
   reset recovery (on HEALTHY)
6. on DOWN / ERROR: ask the Recovery Executor

============================================================
"""

import asyncio
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

from core.clock import ClockFactory, ClockProtocol
from core.exceptions import SupervisorError
from monitoring.alerts import AlertCycle, AlertManager
from monitoring.baseline import BaselineTracker
from monitoring.config import JOB_NAMES, SupervisorConfig
from monitoring.health_checks import HealthChecker
from monitoring.maintenance import MaintenanceRunner
from monitoring.metrics import MetricRecorder
from monitoring.models import (
    AlertSeverity,
    HealthCheckResult,
    HealthReport,
    HealthStatus,
    MonitoredComponent,
    RecoveryActionType,
    RecoveryResult,
)
from monitoring.network import NetworkMonitor
from monitoring.notifications import MultiChannelNotifier, build_notifier
from monitoring.recovery import (
    CleanupStorageAction,
    ClearCacheAction,
    ProcessLauncher,
    RecoveryExecutor,
    RestartDependentServicesAction,
    RestartProcessAction,
)
from monitoring.reporting import ReportBuilder, write_report_async
from monitoring.resources import ResourceMonitor, ResourceSampler, threshold_severity
from monitoring.state import ComponentStateTable
from monitoring.storage_health import StorageMonitor
from storage.store import MonitoringStore


logger = logging.getLogger(__name__)


# ============================================================
# PERIODIC JOB
# ============================================================

class PeriodicJob:
    """
    One independently-timed job.

    Ticks never overlap: the next tick is scheduled interval
    seconds after the previous one started (or immediately if the
    tick overran). A tick that raises is logged; the next tick
    still runs.
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        func: Callable[[], Awaitable[Any]],
        run_immediately: bool = True,
    ) -> None:
        self.name = name
        self.interval_seconds = interval_seconds
        self._func = func
        self._run_immediately = run_immediately
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()
        self._tick_lock = asyncio.Lock()

        self.ticks = 0
        self.failures = 0
        self.last_started: Optional[float] = None
        self.last_duration: Optional[float] = None
        self.last_error: Optional[str] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._loop(), name=f"job:{self.name}")
        logger.info(f"Started job {self.name} (every {self.interval_seconds:g}s)")

    async def stop(self, grace_seconds: float = 10.0) -> None:
        """Let the current tick finish within the grace period, then cancel."""
        if self._task is None:
            return
        self._stopping.set()
        task = self._task
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=grace_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"Job {self.name} did not finish within {grace_seconds:g}s; cancelling")
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info(f"Stopped job {self.name}")

    async def run_once(self) -> bool:
        """Run a single tick. Returns False if the tick raised."""
        async with self._tick_lock:
            self.ticks += 1
            self.last_started = time.time()
            start = time.perf_counter()
            try:
                await self._func()
                self.last_error = None
                return True
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failures += 1
                self.last_error = f"{type(e).__name__}: {e}"
                logger.error(f"Job {self.name} tick failed: {e}", exc_info=True)
                return False
            finally:
                self.last_duration = time.perf_counter() - start
                logger.debug(f"Job {self.name} tick took {self.last_duration:.3f}s")

    async def _loop(self) -> None:
        if not self._run_immediately and await self._wait(self.interval_seconds):
            return
        while not self._stopping.is_set():
            start = time.perf_counter()
            await self.run_once()
            remaining = self.interval_seconds - (time.perf_counter() - start)
            if await self._wait(max(0.0, remaining)):
                return

    async def _wait(self, seconds: float) -> bool:
        """Sleep until the next tick; True when a stop was requested."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "interval_seconds": self.interval_seconds,
            "running": self.running,
            "ticks": self.ticks,
            "failures": self.failures,
            "last_started": (
                datetime.fromtimestamp(self.last_started).astimezone().isoformat()
                if self.last_started else None
            ),
            "last_duration_seconds": round(self.last_duration, 3) if self.last_duration is not None else None,
            "last_error": self.last_error,
        }


def recovery_action_for(component: MonitoredComponent) -> Optional[RecoveryActionType]:
    """Action taken for a DOWN / ERROR component, None if it has no remedy."""
    if component.can_restart:
        return RecoveryActionType.RESTART_PROCESS
    if component.dependents:
        return RecoveryActionType.RESTART_DEPENDENT_SERVICES
    return None


# ============================================================
# SUPERVISOR SCHEDULER
# ============================================================

class SupervisorScheduler:
    """
    Owns the jobs and the state they share.

    Usage:
        scheduler = SupervisorScheduler.from_config(config)
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        config: SupervisorConfig,
        store: MonitoringStore,
        checker: HealthChecker,
        alerts: AlertManager,
        recorder: MetricRecorder,
        executor: RecoveryExecutor,
        states: ComponentStateTable,
        resources: Optional[ResourceMonitor] = None,
        storage: Optional[StorageMonitor] = None,
        network: Optional[NetworkMonitor] = None,
        maintenance: Optional[MaintenanceRunner] = None,
        reports: Optional[ReportBuilder] = None,
        notifier: Optional[MultiChannelNotifier] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._config = config
        self._store = store
        self._checker = checker
        self._alerts = alerts
        self._recorder = recorder
        self._executor = executor
        self._states = states
        self._resources = resources
        self._storage = storage
        self._network = network
        self._maintenance = maintenance
        self._reports = reports or ReportBuilder(
            store, states, config.retention.report_window_minutes, clock
        )
        self._notifier = notifier
        self._clock = clock

        self._components: Dict[str, MonitoredComponent] = {c.name: c for c in config.components}
        self._running = False
        self._initialized = False
        self._jobs: Dict[str, PeriodicJob] = self._build_jobs()
        self.last_report: Optional[HealthReport] = None

    @classmethod
    def from_config(
        cls,
        config: SupervisorConfig,
        store: Optional[MonitoringStore] = None,
        checker: Optional[HealthChecker] = None,
        launcher: Optional[ProcessLauncher] = None,
        notifier: Optional[MultiChannelNotifier] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> "SupervisorScheduler":
        """Wire every collaborator from configuration."""
        store = store or MonitoringStore.from_url(config.resolved_database_url)
        notifier = notifier if notifier is not None else build_notifier(config)
        alerts = AlertManager(store, notification_handlers=[notifier.notify], clock=clock)
        states = ComponentStateTable()
        components = {c.name: c for c in config.components}

        checker = checker or HealthChecker(config.probe_timeout_seconds, clock=clock)
        tracker = BaselineTracker()
        recorder = MetricRecorder(tracker, store, alerts, clock)

        restart = RestartProcessAction(checker.process_table, launcher, config.restart_settle_seconds)
        executor = RecoveryExecutor(
            actions=[
                restart,
                ClearCacheAction([recorder.clear_trend_cache]),
                CleanupStorageAction(config.temp_dir, config.logs_dir, config.retention.log_days),
                RestartDependentServicesAction(restart, components),
            ],
            states=states,
            components=components,
            store=store,
            alerts=alerts,
            max_attempts=config.max_recovery_attempts,
            clock=clock,
        )

        return cls(
            config=config,
            store=store,
            checker=checker,
            alerts=alerts,
            recorder=recorder,
            executor=executor,
            states=states,
            resources=ResourceMonitor(ResourceSampler(config.data_dir), recorder, config.thresholds, executor),
            storage=StorageMonitor(config, store),
            network=NetworkMonitor(
                config.network_targets, recorder, config.thresholds, config.probe_timeout_seconds
            ),
            maintenance=MaintenanceRunner(config, store, tracker, alerts, clock),
            reports=ReportBuilder(store, states, config.retention.report_window_minutes, clock),
            notifier=notifier,
            clock=clock,
        )

    # --------------------------------------------------------
    # PROPERTIES
    # --------------------------------------------------------

    @property
    def config(self) -> SupervisorConfig:
        return self._config

    @property
    def store(self) -> MonitoringStore:
        return self._store

    @property
    def alerts(self) -> AlertManager:
        return self._alerts

    @property
    def executor(self) -> RecoveryExecutor:
        return self._executor

    @property
    def recorder(self) -> MetricRecorder:
        return self._recorder

    @property
    def states(self) -> ComponentStateTable:
        return self._states

    @property
    def components(self) -> Dict[str, MonitoredComponent]:
        return dict(self._components)

    @property
    def jobs(self) -> Dict[str, PeriodicJob]:
        return dict(self._jobs)

    @property
    def is_running(self) -> bool:
        return self._running

    def now(self):
        return (self._clock or ClockFactory.get_clock()).now()

    def _build_jobs(self) -> Dict[str, PeriodicJob]:
        handlers = {
            "component_sweep": self.sweep_components,
            "resource_sweep": self.sweep_resources,
            "storage_sweep": self.sweep_storage,
            "network_sweep": self.sweep_network,
            "maintenance": self.run_maintenance,
            "reporting": self.generate_report,
        }
        intervals = self._config.intervals
        return {
            name: PeriodicJob(
                name,
                getattr(intervals, name),
                handlers[name],
                # Maintenance and reporting wait one interval before their first tick.
                run_immediately=name not in ("maintenance", "reporting"),
            )
            for name in JOB_NAMES
        }

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    async def initialize(self) -> None:
        """Create data directories and tables, warm-start baselines and last statuses from storage."""
        if self._initialized:
            return
        await asyncio.to_thread(self._prepare_directories)
        await self._store.initialize()
        baselines = await self._store.load_baselines()
        self._recorder.tracker.seed(baselines)
        for name in self._components:
            last = await self._store.latest_health_check(name)
            if last is not None:
                self._states.get(name).last_status = last.status
                logger.info(f"Last known status of {name}: {last.status.value}")
        self._initialized = True

    def _prepare_directories(self) -> None:
        data_dir = Path(self._config.data_dir)
        data_dir.mkdir(parents=True, exist_ok=True)
        for name in self._config.required_directories:
            (data_dir / name).mkdir(parents=True, exist_ok=True)
        db_path = self._store.database.database_path
        if db_path:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    async def start(self) -> None:
        if self._running:
            logger.warning("Scheduler already running")
            return
        await self.initialize()
        logger.info(
            f"Starting supervisor: {len(self._components)} components, "
            f"{len(self._config.network_targets)} network targets"
        )
        for job in self._jobs.values():
            job.start()
        self._running = True

    async def stop(self, grace_seconds: Optional[float] = None) -> None:
        """Stop all jobs, wait for issued recovery actions, release resources."""
        grace = self._config.shutdown_grace_seconds if grace_seconds is None else grace_seconds
        if self._running:
            logger.info("Stopping supervisor")
            await asyncio.gather(*(job.stop(grace) for job in self._jobs.values()))
            self._running = False
        await self._executor.drain(grace)
        await self.close()

    async def close(self) -> None:
        await self._checker.close()
        if self._network is not None:
            await self._network.close()
        if self._notifier is not None:
            await self._notifier.close()
        self._store.close()

    async def run_once(self) -> Dict[str, bool]:
        """Run every sweep once, then maintenance and a report."""
        await self.initialize()
        sweeps = ("component_sweep", "resource_sweep", "storage_sweep", "network_sweep")
        outcomes = await asyncio.gather(*(self._jobs[name].run_once() for name in sweeps))
        results = dict(zip(sweeps, outcomes))
        results["maintenance"] = await self._jobs["maintenance"].run_once()
        results["reporting"] = await self._jobs["reporting"].run_once()
        return results

    # --------------------------------------------------------
    # COMPONENT SWEEP
    # --------------------------------------------------------

    async def sweep_components(self) -> List[HealthCheckResult]:
        if not self._components:
            return []

        cycle = self._alerts.cycle()
        semaphore = asyncio.Semaphore(self._config.max_concurrent_probes)

        async def probe(component: MonitoredComponent) -> HealthCheckResult:
            async with semaphore:
                result = await self._checker.check(component)
            await self._handle_result(component, result, cycle)
            return result

        outcomes = await asyncio.gather(
            *(probe(c) for c in self._components.values()),
            return_exceptions=True,
        )

        results = []
        for component, outcome in zip(self._components.values(), outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.error(f"Component sweep failed for {component.name}: {outcome}", exc_info=outcome)
                continue
            results.append(outcome)

        logger.debug(
            "Component sweep: " + ", ".join(f"{r.component}={r.status.value}" for r in results)
        )
        return results

    async def _handle_result(
        self,
        component: MonitoredComponent,
        result: HealthCheckResult,
        cycle: AlertCycle,
    ) -> None:
        name = component.name
        state = self._states.get(name)

        async with state.lock:
            previous = state.last_status
            state.last_status = result.status
            state.last_result = result

            await self._store.save_health_check(result)
            # Outage alerts are resolved before this sweep's metrics can raise new ones.
            if previous != result.status and result.status == HealthStatus.HEALTHY:
                await cycle.resolve_outage(name, result.timestamp)

            await self._recorder.record(
                name, "response_time", round(result.response_time_ms, 3), "ms",
                timestamp=result.timestamp, alerts=cycle,
            )
            if not result.status.is_failure:
                await self._check_response_time(result, cycle)

        if previous != result.status:
            await self._on_transition(name, previous, result, cycle)

        if result.status.is_failure:
            await self._recover(component, cycle)

    async def _check_response_time(self, result: HealthCheckResult, cycle: AlertCycle) -> None:
        t = self._config.thresholds
        latency = round(result.response_time_ms, 1)
        severity = threshold_severity(latency, t.response_slow_ms, t.response_critical_ms)
        if severity is None:
            return
        label = "Critical" if severity == AlertSeverity.CRITICAL else "Slow"
        await cycle.raise_alert(
            severity, result.component, f"{label} response time: {latency}ms", alert_type="performance"
        )

    async def _on_transition(
        self,
        name: str,
        previous: Optional[HealthStatus],
        result: HealthCheckResult,
        cycle: AlertCycle,
    ) -> None:
        current = result.status
        if previous is None:
            if current != HealthStatus.HEALTHY:
                message = f"Initial status: {current.value}"
                if result.error_message:
                    message += f" ({result.error_message})"
                await cycle.raise_alert(AlertSeverity.for_status(current), name, message)
        else:
            message = f"Status changed from {previous.value} to {current.value}"
            if result.error_message:
                message += f": {result.error_message}"
            await cycle.raise_alert(AlertSeverity.for_status(current), name, message)

        if current == HealthStatus.HEALTHY:
            self._executor.reset(name)

    async def _recover(self, component: MonitoredComponent, cycle: AlertCycle) -> Optional[RecoveryResult]:
        action = recovery_action_for(component)
        if action is None:
            logger.debug(f"No recovery action configured for {component.name}")
            return None
        try:
            return await self._executor.execute(component.name, action, alerts=cycle)
        except SupervisorError as e:
            logger.error(f"Recovery for {component.name} could not start: {e}")
            return None

    # --------------------------------------------------------
    # OTHER JOBS
    # --------------------------------------------------------

    async def sweep_resources(self) -> None:
        if self._resources is not None:
            await self._resources.sweep(self._alerts.cycle())

    async def sweep_storage(self) -> None:
        if self._storage is not None:
            await self._storage.sweep(self._alerts.cycle())

    async def sweep_network(self) -> None:
        if self._network is not None:
            await self._network.sweep(self._alerts.cycle())

    async def run_maintenance(self) -> None:
        if self._maintenance is not None:
            await self._maintenance.run()

    async def build_report(self) -> HealthReport:
        return await self._reports.build(monitoring_active=self._running)

    async def generate_report(self) -> HealthReport:
        report = await self.build_report()
        await write_report_async(report, self._config.reports_dir)
        self.last_report = report
        logger.info(f"Health report: {report.summary()}")
        return report

    # --------------------------------------------------------
    # STATUS
    # --------------------------------------------------------

    def status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "timestamp": self.now().isoformat(),
            "components": self._states.snapshot(),
            "status_counts": self._states.status_counts(),
            "jobs": {name: job.to_dict() for name, job in self._jobs.items()},
            "baselines": len(self._recorder.tracker),
            "recoveries_in_flight": self._executor.in_flight,
            "storage_write_failures": self._store.write_failures,
            "alerts": self._alerts.get_alert_summary(),
            "recent_alerts": [a.to_dict() for a in self._alerts.history.get_recent(10)],
        }
