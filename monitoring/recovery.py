"""
Monitoring - Recovery Executor.

============================================================
RESPONSIBILITY
============================================================
Performs bounded, named recovery actions against components
and records every attempt.

- Actions are variants of RecoveryAction (one per action type)
- Process control goes through a pluggable ProcessLauncher
- Attempt counter per component, capped at max_attempts

============================================================
STATE MACHINE (per component)
============================================================
OK -> RECOVERING            failure detected, attempt issued
RECOVERING -> OK            attempt succeeded (counter reset)
RECOVERING -> EXHAUSTED     attempts >= max; further attempts
                            are skipped until an external reset

============================================================
CANCELLATION
============================================================
Once an action has been issued it runs to completion even if
the caller is cancelled (asyncio.shield), together with its audit
row, counter update and alert. In-flight attempts are tracked so
shutdown can wait for them.

============================================================
"""

import asyncio
import gc
import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Union

import psutil

from core.clock import ClockFactory, ClockProtocol
from core.exceptions import RecoveryActionFailure, UnknownRecoveryAction
from monitoring.health_checks import ProcessTable, find_process, pid_alive, read_pid_file
from monitoring.maintenance import purge_directory, purge_older_than
from monitoring.models import (
    AlertSeverity,
    MonitoredComponent,
    RecoveryActionType,
    RecoveryAttempt,
    RecoveryResult,
    RecoveryState,
)
from monitoring.state import ComponentStateTable
from storage.store import MonitoringStore


logger = logging.getLogger(__name__)


# ============================================================
# PROCESS LAUNCHER
# ============================================================

class ProcessLauncher(ABC):
    """How processes are stopped, started and checked."""

    @abstractmethod
    async def terminate(self, pid: int, timeout: float = 5.0) -> None:
        """Stop pid, escalating to kill after timeout."""

    @abstractmethod
    async def launch(self, argv: List[str]) -> int:
        """Start argv detached; return its pid."""

    @abstractmethod
    def is_alive(self, pid: int) -> bool:
        """Liveness of a launched pid."""


class OsProcessLauncher(ProcessLauncher):
    """Real processes via psutil and asyncio subprocesses."""

    def __init__(self) -> None:
        self._children: Dict[int, asyncio.subprocess.Process] = {}

    async def terminate(self, pid: int, timeout: float = 5.0) -> None:
        def stop() -> None:
            try:
                process = psutil.Process(pid)
                process.terminate()
                try:
                    process.wait(timeout=timeout)
                except psutil.TimeoutExpired:
                    process.kill()
                    process.wait(timeout=timeout)
            except psutil.NoSuchProcess:
                pass

        await asyncio.to_thread(stop)
        child = self._children.pop(pid, None)
        if child is not None and child.returncode is None:
            await child.wait()

    async def launch(self, argv: List[str]) -> int:
        try:
            child = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            raise RecoveryActionFailure(f"Could not launch {argv[0]}: {e}", cause=e) from e
        self._children[child.pid] = child
        return child.pid

    def is_alive(self, pid: int) -> bool:
        child = self._children.get(pid)
        if child is not None and child.returncode is not None:
            return False
        return pid_alive(pid)


# ============================================================
# RECOVERY ACTIONS
# ============================================================

class RecoveryAction(ABC):
    """
    One named, idempotent remediation.

    run() returns a result message on success and raises
    RecoveryActionFailure otherwise.
    """

    action_type: RecoveryActionType

    @abstractmethod
    async def run(self, component: MonitoredComponent, detail: str = "") -> str:
        ...


class RestartProcessAction(RecoveryAction):
    """Terminate the running instance and relaunch recovery_command."""

    action_type = RecoveryActionType.RESTART_PROCESS

    def __init__(
        self,
        process_table: ProcessTable,
        launcher: Optional[ProcessLauncher] = None,
        settle_seconds: float = 2.0,
    ) -> None:
        self._table = process_table
        self._launcher = launcher or OsProcessLauncher()
        self._settle = settle_seconds

    def _current_pid(self, component: MonitoredComponent) -> Optional[int]:
        pid = self._table.pid_for(component.name)
        if pid is None and component.pid_file:
            pid = read_pid_file(component.pid_file)
        if pid is None and component.process_match:
            pid = find_process(component.process_match)
        return pid

    async def run(self, component: MonitoredComponent, detail: str = "") -> str:
        if not component.can_restart:
            raise RecoveryActionFailure(
                "No recovery command configured",
                component=component.name,
                action_type=self.action_type.value,
            )

        old_pid = await asyncio.to_thread(self._current_pid, component)
        if old_pid is not None and self._launcher.is_alive(old_pid):
            logger.info(f"Terminating {component.name} (pid {old_pid})")
            await self._launcher.terminate(old_pid)
        self._table.forget(component.name)

        argv = list(component.recovery_command)
        logger.warning(f"Restarting {component.name} with command: {' '.join(argv)}")
        pid = await self._launcher.launch(argv)
        self._table.register(component.name, pid)

        await asyncio.sleep(self._settle)
        if not self._launcher.is_alive(pid):
            self._table.forget(component.name)
            raise RecoveryActionFailure(
                f"Relaunched process {pid} exited within {self._settle:g}s",
                component=component.name,
                action_type=self.action_type.value,
            )
        return f"Process restarted with PID: {pid}"


class ClearCacheAction(RecoveryAction):
    """Run garbage collection and any registered cache-clear hooks."""

    action_type = RecoveryActionType.CLEAR_CACHE

    def __init__(self, hooks: Optional[List[Callable[[], Any]]] = None) -> None:
        self._hooks = list(hooks or [])

    async def run(self, component: MonitoredComponent, detail: str = "") -> str:
        collected = gc.collect()
        for hook in self._hooks:
            try:
                result = hook()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                raise RecoveryActionFailure(
                    f"Cache hook {getattr(hook, '__name__', hook)} failed: {e}",
                    component=component.name,
                    action_type=self.action_type.value,
                    cause=e,
                ) from e
        return f"Cache cleared ({collected} objects collected, {len(self._hooks)} hooks)"


class CleanupStorageAction(RecoveryAction):
    """Empty the temp directory and drop logs past retention."""

    action_type = RecoveryActionType.CLEANUP_STORAGE

    def __init__(self, temp_dir: Path, logs_dir: Path, log_days: int = 30) -> None:
        self._temp_dir = Path(temp_dir)
        self._logs_dir = Path(logs_dir)
        self._log_days = log_days

    async def run(self, component: MonitoredComponent, detail: str = "") -> str:
        try:
            temp = await asyncio.to_thread(purge_directory, self._temp_dir)
            logs = await asyncio.to_thread(purge_older_than, self._logs_dir, self._log_days * 86400)
        except OSError as e:
            raise RecoveryActionFailure(
                f"Storage cleanup failed: {e}",
                component=component.name,
                action_type=self.action_type.value,
                cause=e,
            ) from e
        return f"Storage cleaned ({temp} temp entries, {logs} old logs removed)"


class RestartDependentServicesAction(RecoveryAction):
    """Restart every dependent listed on the component."""

    action_type = RecoveryActionType.RESTART_DEPENDENT_SERVICES

    def __init__(
        self,
        restart: RestartProcessAction,
        components: Dict[str, MonitoredComponent],
    ) -> None:
        self._restart = restart
        self._components = components

    async def run(self, component: MonitoredComponent, detail: str = "") -> str:
        names = list(component.dependents)
        if detail:
            names = [n.strip() for n in detail.split(",") if n.strip()]
        if not names:
            raise RecoveryActionFailure(
                "No dependent services to restart",
                component=component.name,
                action_type=self.action_type.value,
            )

        restarted, failed = [], []
        for name in names:
            dependent = self._components.get(name)
            if dependent is None:
                failed.append(f"{name}: unknown component")
                continue
            try:
                await self._restart.run(dependent)
                restarted.append(name)
            except RecoveryActionFailure as e:
                failed.append(f"{name}: {e.message}")

        if failed:
            raise RecoveryActionFailure(
                f"Failed to restart {', '.join(failed)}",
                component=component.name,
                action_type=self.action_type.value,
            )
        return f"Restarted dependent services: {', '.join(restarted)}"


# ============================================================
# RECOVERY EXECUTOR
# ============================================================

class RecoveryExecutor:
    """
    Runs recovery actions under the per-component attempt cap.

    alerts is any sink with an async raise_alert(...) method.
    """

    def __init__(
        self,
        actions: List[RecoveryAction],
        states: ComponentStateTable,
        components: Dict[str, MonitoredComponent],
        store: Optional[MonitoringStore] = None,
        alerts: Any = None,
        max_attempts: int = 5,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._actions: Dict[RecoveryActionType, RecoveryAction] = {a.action_type: a for a in actions}
        self._states = states
        self._components = components
        self._store = store
        self._alerts = alerts
        self._max_attempts = max_attempts
        self._clock = clock
        self._in_flight: Set[asyncio.Task] = set()

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def _now(self):
        return (self._clock or ClockFactory.get_clock()).now()

    def resolve_action(
        self,
        action_type: Union[str, RecoveryActionType],
        component: Optional[str] = None,
    ) -> RecoveryAction:
        """Look up the action variant; fail fast on unknown types."""
        try:
            kind = RecoveryActionType(
                action_type.replace("_", "-") if isinstance(action_type, str) else action_type
            )
        except ValueError:
            raise UnknownRecoveryAction(str(action_type), component=component)

        action = self._actions.get(kind)
        if action is None:
            raise UnknownRecoveryAction(kind.value, component=component)
        return action

    async def execute(
        self,
        component_name: str,
        action_type: Union[str, RecoveryActionType],
        detail: str = "",
        alerts: Any = None,
    ) -> RecoveryResult:
        """
        Execute(component, actionType, detail) -> RecoveryResult.

        Once an attempt is issued it runs in a shielded task that also
        persists it, updates the counter and raises its alert, so
        cancelling the caller never loses the attempt. The component
        lock is held until that task finishes.

        Raises:
            UnknownRecoveryAction: before any attempt is counted
        """
        action = self.resolve_action(action_type, component_name)
        component = self._components.get(component_name) or MonitoredComponent(name=component_name)
        sink = alerts if alerts is not None else self._alerts
        state = self._states.get(component_name)

        issued = False
        await state.lock.acquire()
        try:
            if state.attempts >= self._max_attempts:
                message = (
                    f"Max recovery attempts ({self._max_attempts}) reached for "
                    f"{component_name}; recovery suspended"
                )
                if state.recovery_state != RecoveryState.EXHAUSTED:
                    state.recovery_state = RecoveryState.EXHAUSTED
                    await self._alert(sink, AlertSeverity.CRITICAL, component_name, message)
                else:
                    logger.debug(f"Skipping recovery for exhausted component {component_name}")
                return RecoveryResult(False, message, 0.0, executed=False, attempt=state.attempts)

            state.recovery_state = RecoveryState.RECOVERING
            attempt = state.attempts + 1
            logger.warning(
                f"Attempting {action.action_type.value} for {component_name} "
                f"(attempt {attempt}/{self._max_attempts})"
            )
            task = asyncio.ensure_future(self._attempt(action, component, detail, attempt, sink))
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)
            issued = True
        finally:
            if not issued:
                state.lock.release()

        return await asyncio.shield(task)

    async def _attempt(
        self,
        action: RecoveryAction,
        component: MonitoredComponent,
        detail: str,
        attempt: int,
        sink: Any,
    ) -> RecoveryResult:
        name = component.name
        state = self._states.get(name)
        try:
            timestamp = self._now()
            start = time.perf_counter()
            success, message = await self._run_action(action, component, detail)
            duration_ms = (time.perf_counter() - start) * 1000

            if self._store is not None:
                await self._store.save_recovery_attempt(RecoveryAttempt(
                    component=name,
                    timestamp=timestamp,
                    action_type=action.action_type,
                    action_detail=detail,
                    success=success,
                    duration_ms=duration_ms,
                    result_message=message,
                    attempt=attempt,
                ))

            if success:
                state.reset_recovery()
                await self._alert(
                    sink, AlertSeverity.INFO, name,
                    f"Successfully recovered {name} ({action.action_type.value}): {message}",
                )
            else:
                state.attempts = attempt
                final = attempt >= self._max_attempts
                await self._alert(
                    sink,
                    AlertSeverity.CRITICAL if final else AlertSeverity.WARNING,
                    name,
                    f"Recovery attempt {attempt}/{self._max_attempts} failed for {name}: {message}",
                )
            return RecoveryResult(success, message, duration_ms, executed=True, attempt=attempt)
        finally:
            state.lock.release()

    async def _run_action(self, action: RecoveryAction, component: MonitoredComponent, detail: str):
        try:
            return True, await action.run(component, detail)
        except RecoveryActionFailure as e:
            return False, e.message
        except Exception as e:
            logger.exception(f"Recovery action {action.action_type.value} crashed for {component.name}")
            return False, f"{type(e).__name__}: {e}"

    async def _alert(self, sink: Any, severity: AlertSeverity, component: str, message: str) -> None:
        if sink is not None:
            await sink.raise_alert(severity, component, message, alert_type="recovery")

    async def drain(self, timeout: float) -> None:
        """Wait for issued actions to finish (shutdown)."""
        if not self._in_flight:
            return
        logger.info(f"Waiting for {len(self._in_flight)} recovery action(s) to finish")
        done, pending = await asyncio.wait(set(self._in_flight), timeout=timeout)
        if pending:
            logger.error(f"{len(pending)} recovery action(s) still running after {timeout:g}s")

    def reset(self, component_name: str) -> None:
        """External reset of the attempt counter (leaves EXHAUSTED)."""
        self._states.get(component_name).reset_recovery()
