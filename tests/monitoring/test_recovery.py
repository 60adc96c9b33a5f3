"""
Tests for the Recovery Executor.

============================================================
PURPOSE
============================================================
- Attempt cap and the EXHAUSTED state
- Success / failure alert severities
- Audit trail persistence
- Action variants against a fake launcher
- Issued actions survive caller cancellation

============================================================
"""

import asyncio
import os
import time

import pytest

from core.exceptions import RecoveryActionFailure, UnknownRecoveryAction
from monitoring.health_checks import ProcessTable
from monitoring.models import (
    AlertSeverity,
    MonitoredComponent,
    RecoveryActionType,
    RecoveryState,
)
from monitoring.recovery import (
    CleanupStorageAction,
    ClearCacheAction,
    RecoveryAction,
    RecoveryExecutor,
    RestartDependentServicesAction,
    RestartProcessAction,
)
from monitoring.state import ComponentStateTable


class ScriptedAction(RecoveryAction):
    """Restart stand-in whose outcome the test controls."""

    action_type = RecoveryActionType.RESTART_PROCESS

    def __init__(self, succeed=False, delay=0.0):
        self.succeed = succeed
        self.delay = delay
        self.calls = 0
        self.finished = 0

    async def run(self, component, detail=""):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        self.finished += 1
        if not self.succeed:
            raise RecoveryActionFailure("process exited immediately", component=component.name)
        return "restarted"


WORKER = MonitoredComponent(name="worker", recovery_command=("python", "worker.py"))


def make_executor(action, store=None, sink=None, max_attempts=3, clock=None):
    states = ComponentStateTable()
    executor = RecoveryExecutor(
        actions=[action],
        states=states,
        components={"worker": WORKER},
        store=store,
        alerts=sink,
        max_attempts=max_attempts,
        clock=clock,
    )
    return executor, states


# ============================================================
# EXECUTOR TESTS
# ============================================================

class TestRecoveryCap:

    @pytest.mark.asyncio
    async def test_four_failures_with_cap_three(self, clock, store, sink):
        action = ScriptedAction(succeed=False)
        executor, states = make_executor(action, store, sink, max_attempts=3, clock=clock)

        results = [
            await executor.execute("worker", RecoveryActionType.RESTART_PROCESS)
            for _ in range(4)
        ]

        assert [r.executed for r in results] == [True, True, True, False]
        assert action.calls == 3
        assert states.get("worker").recovery_state == RecoveryState.EXHAUSTED

        exhausted = [a for a in sink.alerts if "recovery suspended" in a.message]
        assert len(exhausted) == 1
        assert exhausted[0].severity == AlertSeverity.CRITICAL
        assert exhausted[0].message == "Max recovery attempts (3) reached for worker; recovery suspended"

        attempts = await store.list_recovery_attempts("worker")
        assert sorted(a.attempt for a in attempts) == [1, 2, 3]
        assert not any(a.success for a in attempts)

    @pytest.mark.asyncio
    async def test_failure_severities(self, clock, sink):
        executor, _ = make_executor(ScriptedAction(succeed=False), sink=sink, max_attempts=3, clock=clock)

        for _ in range(3):
            await executor.execute("worker", "restart-process")

        severities = [a.severity for a in sink.alerts]
        assert severities == [AlertSeverity.WARNING, AlertSeverity.WARNING, AlertSeverity.CRITICAL]
        assert sink.alerts[0].message == (
            "Recovery attempt 1/3 failed for worker: process exited immediately"
        )

    @pytest.mark.asyncio
    async def test_exhausted_stays_silent(self, clock, sink):
        executor, _ = make_executor(ScriptedAction(succeed=False), sink=sink, max_attempts=1, clock=clock)

        for _ in range(5):
            await executor.execute("worker", "restart-process")

        exhausted = [a for a in sink.alerts if "recovery suspended" in a.message]
        assert len(exhausted) == 1

    @pytest.mark.asyncio
    async def test_success_resets_counter(self, clock, store, sink):
        action = ScriptedAction(succeed=False)
        executor, states = make_executor(action, store, sink, max_attempts=3, clock=clock)
        await executor.execute("worker", "restart-process")
        assert states.get("worker").attempts == 1

        action.succeed = True
        result = await executor.execute("worker", "restart-process")

        assert result.success is True
        assert result.attempt == 2
        assert states.get("worker").attempts == 0
        assert states.get("worker").recovery_state == RecoveryState.OK
        assert sink.alerts[-1].severity == AlertSeverity.INFO
        assert sink.alerts[-1].message.startswith("Successfully recovered worker")

    @pytest.mark.asyncio
    async def test_reset_leaves_exhausted(self, clock, sink):
        action = ScriptedAction(succeed=False)
        executor, states = make_executor(action, sink=sink, max_attempts=1, clock=clock)
        await executor.execute("worker", "restart-process")
        await executor.execute("worker", "restart-process")
        assert states.get("worker").recovery_state == RecoveryState.EXHAUSTED

        executor.reset("worker")
        result = await executor.execute("worker", "restart-process")

        assert result.executed is True
        assert action.calls == 2


class TestActionLookup:

    @pytest.mark.asyncio
    async def test_unknown_action_fails_fast(self, clock, store):
        executor, states = make_executor(ScriptedAction(), store, clock=clock)

        with pytest.raises(UnknownRecoveryAction):
            await executor.execute("worker", "reboot-datacenter")

        assert states.get("worker").attempts == 0
        assert await store.list_recovery_attempts() == []

    @pytest.mark.asyncio
    async def test_unregistered_variant_is_unknown(self, clock):
        executor, _ = make_executor(ScriptedAction(), clock=clock)
        with pytest.raises(UnknownRecoveryAction):
            await executor.execute("worker", RecoveryActionType.CLEAR_CACHE)

    def test_underscore_names_accepted(self, clock):
        executor, _ = make_executor(ScriptedAction(), clock=clock)
        action = executor.resolve_action("restart_process")
        assert action.action_type == RecoveryActionType.RESTART_PROCESS


class TestCancellation:

    @staticmethod
    async def cancel_midway(executor):
        caller = asyncio.create_task(executor.execute("worker", "restart-process"))
        await asyncio.sleep(0.05)
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

    @pytest.mark.asyncio
    async def test_issued_action_survives_caller_cancellation(self, clock, store, sink):
        action = ScriptedAction(succeed=True, delay=0.2)
        executor, states = make_executor(action, store=store, sink=sink, clock=clock)

        await self.cancel_midway(executor)

        assert executor.in_flight == 1
        await executor.drain(timeout=2)
        assert action.finished == 1
        assert executor.in_flight == 0

        attempts = await store.list_recovery_attempts("worker")
        assert [(a.attempt, a.success) for a in attempts] == [(1, True)]
        assert states.get("worker").recovery_state == RecoveryState.OK
        assert [a.message for a in sink.of(AlertSeverity.INFO)] == [
            "Successfully recovered worker (restart-process): restarted"
        ]

    @pytest.mark.asyncio
    async def test_failed_attempt_is_recorded_after_caller_cancellation(self, clock, store, sink):
        action = ScriptedAction(succeed=False, delay=0.2)
        executor, states = make_executor(action, store=store, sink=sink, clock=clock)

        await self.cancel_midway(executor)
        await executor.drain(timeout=2)

        attempts = await store.list_recovery_attempts("worker")
        assert [(a.attempt, a.success) for a in attempts] == [(1, False)]
        assert states.get("worker").attempts == 1
        assert [a.message for a in sink.of(AlertSeverity.WARNING)] == [
            "Recovery attempt 1/3 failed for worker: process exited immediately"
        ]

    @pytest.mark.asyncio
    async def test_component_lock_is_held_until_attempt_finishes(self, clock):
        action = ScriptedAction(succeed=False, delay=0.2)
        executor, states = make_executor(action, clock=clock)

        await self.cancel_midway(executor)

        assert states.get("worker").lock.locked()
        await executor.drain(timeout=2)
        assert not states.get("worker").lock.locked()

        await executor.execute("worker", "restart-process")
        assert action.calls == 2
        assert states.get("worker").attempts == 2


# ============================================================
# ACTION TESTS
# ============================================================

class TestRestartProcessAction:

    @pytest.mark.asyncio
    async def test_terminates_old_and_registers_new(self, launcher):
        table = ProcessTable()
        table.register("worker", 1234)
        launcher.mark_alive(1234)
        action = RestartProcessAction(table, launcher, settle_seconds=0)

        message = await action.run(WORKER)

        assert launcher.terminated == [1234]
        assert launcher.launched == [["python", "worker.py"]]
        assert table.pid_for("worker") == 4001
        assert message == "Process restarted with PID: 4001"

    @pytest.mark.asyncio
    async def test_relaunch_that_dies_fails(self, launcher):
        launcher.alive_after_launch = False
        table = ProcessTable()
        action = RestartProcessAction(table, launcher, settle_seconds=0)

        with pytest.raises(RecoveryActionFailure):
            await action.run(WORKER)
        assert table.pid_for("worker") is None

    @pytest.mark.asyncio
    async def test_without_command_fails(self, launcher):
        action = RestartProcessAction(ProcessTable(), launcher, settle_seconds=0)
        with pytest.raises(RecoveryActionFailure):
            await action.run(MonitoredComponent(name="no-command"))
        assert launcher.launched == []


class TestRestartDependentServicesAction:

    @pytest.mark.asyncio
    async def test_restarts_each_dependent(self, launcher):
        components = {
            "fetcher": MonitoredComponent(name="fetcher", recovery_command=("fetch",)),
            "indexer": MonitoredComponent(name="indexer", recovery_command=("index",)),
        }
        hub = MonitoredComponent(name="hub", dependents=("fetcher", "indexer"))
        restart = RestartProcessAction(ProcessTable(), launcher, settle_seconds=0)
        action = RestartDependentServicesAction(restart, components)

        message = await action.run(hub)

        assert launcher.launched == [["fetch"], ["index"]]
        assert "fetcher, indexer" in message

    @pytest.mark.asyncio
    async def test_unknown_dependent_fails(self, launcher):
        restart = RestartProcessAction(ProcessTable(), launcher, settle_seconds=0)
        action = RestartDependentServicesAction(restart, {})

        with pytest.raises(RecoveryActionFailure):
            await action.run(MonitoredComponent(name="hub"), detail="ghost")


class TestHousekeepingActions:

    @pytest.mark.asyncio
    async def test_clear_cache_runs_hooks(self):
        calls = []

        async def flush():
            calls.append("async")

        action = ClearCacheAction([lambda: calls.append("sync"), flush])
        message = await action.run(MonitoredComponent(name="system"), "memory_cleanup")

        assert calls == ["sync", "async"]
        assert "2 hooks" in message

    @pytest.mark.asyncio
    async def test_clear_cache_hook_failure(self):
        def broken():
            raise RuntimeError("cache locked")

        with pytest.raises(RecoveryActionFailure):
            await ClearCacheAction([broken]).run(MonitoredComponent(name="system"))

    @pytest.mark.asyncio
    async def test_cleanup_storage(self, tmp_path):
        temp_dir = tmp_path / "temp"
        logs_dir = tmp_path / "logs"
        (temp_dir / "nested").mkdir(parents=True)
        (temp_dir / "scratch.bin").write_text("x")
        logs_dir.mkdir()
        old_log = logs_dir / "old.log"
        old_log.write_text("old")
        ancient = time.time() - 40 * 86400
        os.utime(old_log, (ancient, ancient))
        (logs_dir / "today.log").write_text("new")

        action = CleanupStorageAction(temp_dir, logs_dir, log_days=30)
        await action.run(MonitoredComponent(name="system"), "disk_cleanup")

        assert temp_dir.exists()
        assert list(temp_dir.iterdir()) == []
        assert [p.name for p in logs_dir.iterdir()] == ["today.log"]
