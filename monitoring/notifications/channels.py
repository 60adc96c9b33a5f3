"""
Notification Channels.

============================================================
PURPOSE
============================================================
Pluggable sinks for escalated (CRITICAL) alerts.

CHANNELS:
- console: stdout line
- file:    append to <data_dir>/logs/escalated-alerts.log
- syslog:  OS event log via logging.handlers.SysLogHandler
- webhook: JSON POST via aiohttp
- telegram (see telegram.py)

MultiChannelNotifier fans an alert out to every channel. A
failing channel is logged and never stops the others.

============================================================
"""

import asyncio
import logging
import logging.handlers
import os
import sys
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

import aiohttp

from monitoring.models import AlertEvent


logger = logging.getLogger(__name__)


def format_escalation(alert: AlertEvent) -> str:
    return (
        f"{alert.timestamp.isoformat()} - {alert.severity.value} ESCALATION - "
        f"{alert.component}: {alert.message}"
    )


# ============================================================
# CHANNEL BASE
# ============================================================

class NotificationChannel(ABC):
    """One delivery mechanism for escalated alerts."""

    name: str = "channel"

    @abstractmethod
    async def send(self, alert: AlertEvent) -> bool:
        """Deliver alert. Returns True on success."""

    async def close(self) -> None:
        return None


class ConsoleChannel(NotificationChannel):
    name = "console"

    def __init__(self, stream=None):
        self._stream = stream

    async def send(self, alert: AlertEvent) -> bool:
        stream = self._stream or sys.stdout
        stream.write(f"🚨 {format_escalation(alert)}\n")
        stream.flush()
        return True


class FileChannel(NotificationChannel):
    name = "file"

    def __init__(self, path: Path):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _append(self, line: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._path, "a", encoding="utf-8") as f:
            f.write(line + "\n")

    async def send(self, alert: AlertEvent) -> bool:
        await asyncio.to_thread(self._append, format_escalation(alert))
        return True


class SyslogChannel(NotificationChannel):
    """Writes to the OS event log."""

    name = "syslog"

    def __init__(self, address: Optional[str] = None, facility: int = logging.handlers.SysLogHandler.LOG_USER):
        self._address = address
        self._facility = facility
        self._handler: Optional[logging.handlers.SysLogHandler] = None
        self._logger = logging.getLogger(f"{__name__}.syslog")
        self._logger.propagate = False

    def _ensure_handler(self) -> None:
        if self._handler is not None:
            return
        address = self._address
        if address is None:
            address = "/dev/log" if os.path.exists("/dev/log") else ("localhost", 514)
        self._handler = logging.handlers.SysLogHandler(address=address, facility=self._facility)
        self._handler.setFormatter(logging.Formatter("supervisor: %(message)s"))
        self._logger.addHandler(self._handler)

    def _emit(self, line: str) -> None:
        self._ensure_handler()
        self._logger.critical(line)

    async def send(self, alert: AlertEvent) -> bool:
        await asyncio.to_thread(self._emit, format_escalation(alert))
        return True

    async def close(self) -> None:
        if self._handler is not None:
            self._logger.removeHandler(self._handler)
            self._handler.close()
            self._handler = None


class WebhookChannel(NotificationChannel):
    name = "webhook"

    def __init__(self, url: str, timeout_seconds: float = 10.0):
        self._url = url
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def send(self, alert: AlertEvent) -> bool:
        session = await self._get_session()
        async with session.post(self._url, json=alert.to_dict()) as response:
            if 200 <= response.status < 300:
                return True
            logger.error(f"Webhook {self._url} answered {response.status}")
            return False

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None


# ============================================================
# FAN-OUT
# ============================================================

class MultiChannelNotifier:
    """
    Escalation sink handed to the AlertManager.

    Usage:
        notifier = MultiChannelNotifier([ConsoleChannel(), FileChannel(path)])
        manager.add_handler(notifier.notify)
    """

    def __init__(self, channels: Optional[List[NotificationChannel]] = None):
        self._channels = list(channels or [])

    @property
    def channels(self) -> List[NotificationChannel]:
        return list(self._channels)

    def add_channel(self, channel: NotificationChannel) -> None:
        self._channels.append(channel)

    async def notify(self, alert: AlertEvent) -> bool:
        delivered = False
        for channel in self._channels:
            try:
                if await channel.send(alert):
                    delivered = True
            except Exception as e:
                logger.error(f"Notification channel {channel.name} failed: {e}")
        return delivered

    async def close(self) -> None:
        for channel in self._channels:
            try:
                await channel.close()
            except Exception as e:
                logger.error(f"Closing notification channel {channel.name} failed: {e}")
