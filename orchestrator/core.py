"""
Orchestrator - Core.

============================================================
RESPONSIBILITY
============================================================
Process-level runtime around the Supervisor Scheduler.

- Sets up logging (JSON lines or pipe-separated text)
- Starts the scheduler and the optional status API
- Handles signals (SIGINT, SIGTERM) for graceful shutdown

============================================================
"""

import asyncio
import json
import logging
import signal
import sys
from datetime import datetime, timezone
from typing import Any, Optional

from aiohttp import web

from monitoring.api import start_status_api
from monitoring.config import SupervisorConfig
from orchestrator.scheduler import SupervisorScheduler


# ============================================================
# LOGGING SETUP
# ============================================================

class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = getattr(record, "context", None)
        if context:
            payload["context"] = context
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(level: str = "INFO", log_format: str = "text") -> logging.Logger:
    """
    Set up process-wide logging.

    Args:
        level: Log level name
        log_format: Output format (json or text)

    Returns:
        The supervisor logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s | %(levelname)-8s | %(name)s | %(message)s")

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    # aiohttp logs every API request at INFO
    logging.getLogger("aiohttp.access").setLevel(max(log_level, logging.WARNING))

    return logging.getLogger("supervisor")


# ============================================================
# SUPERVISOR RUNTIME
# ============================================================

class Supervisor:
    """
    Long-lived supervisor process.

    Usage:
        supervisor = Supervisor(config)
        await supervisor.run_forever()
    """

    def __init__(
        self,
        config: SupervisorConfig,
        scheduler: Optional[SupervisorScheduler] = None,
    ):
        self._config = config
        self._scheduler = scheduler or SupervisorScheduler.from_config(config)
        self._logger = logging.getLogger("supervisor")
        self._api_runner: Optional[web.AppRunner] = None
        self._shutdown = asyncio.Event()
        self._signals_installed = False

    @property
    def scheduler(self) -> SupervisorScheduler:
        return self._scheduler

    # --------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------

    async def start(self) -> None:
        self._logger.info("=== SUPERVISOR STARTUP ===")
        self._install_signal_handlers()
        await self._scheduler.start()

        api = self._config.api
        if api.enabled:
            self._api_runner = await start_status_api(self._scheduler, api.host, api.port)
        self._logger.info("=== SUPERVISOR RUNNING ===")

    async def stop(self) -> None:
        self._logger.info("=== SUPERVISOR SHUTDOWN ===")
        if self._api_runner is not None:
            await self._api_runner.cleanup()
            self._api_runner = None
        await self._scheduler.stop()
        self._restore_signal_handlers()
        self._logger.info("=== SUPERVISOR STOPPED ===")

    def request_shutdown(self) -> None:
        self._shutdown.set()

    async def run_forever(self) -> None:
        await self.start()
        try:
            await self._shutdown.wait()
        finally:
            await self.stop()

    # --------------------------------------------------------
    # Signal Handlers
    # --------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        if sys.platform == "win32":
            signal.signal(signal.SIGINT, self._signal_handler)
            return

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._on_signal, sig)
        self._signals_installed = True

    def _restore_signal_handlers(self) -> None:
        if not self._signals_installed:
            return
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        self._signals_installed = False

    def _signal_handler(self, signum: int, frame: Any) -> None:
        """Synchronous signal handler (Windows)."""
        self._logger.info(f"Received signal {signum}")
        asyncio.get_event_loop().call_soon_threadsafe(self.request_shutdown)

    def _on_signal(self, sig: signal.Signals) -> None:
        self._logger.info(f"Received signal {sig.name}")
        self.request_shutdown()
