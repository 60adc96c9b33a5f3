"""
Telegram Notification Channel.

============================================================
PURPOSE
============================================================
Send escalated alerts to Telegram chats.

PRINCIPLES:
- Notification-only, NO control commands
- Rate limiting to prevent spam
- Clear, actionable messages

============================================================
"""

import asyncio
import html
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import aiohttp

from monitoring.models import AlertEvent, AlertSeverity
from monitoring.notifications.channels import NotificationChannel


logger = logging.getLogger(__name__)


# ============================================================
# TELEGRAM MESSAGE FORMATTER
# ============================================================

class TelegramFormatter:
    """
    Formats alerts for Telegram.

    Uses HTML formatting for clarity.
    """

    SEVERITY_ICONS = {
        AlertSeverity.INFO: "ℹ️",
        AlertSeverity.WARNING: "⚠️",
        AlertSeverity.ERROR: "❗",
        AlertSeverity.CRITICAL: "🚨",
    }

    @classmethod
    def format_alert(cls, alert: AlertEvent) -> str:
        icon = cls.SEVERITY_ICONS.get(alert.severity, "📌")
        header = f"{icon} <b>{html.escape(alert.component)}</b>"
        badge = f"<code>[{alert.severity.value}]</code>"
        time_str = alert.timestamp.strftime("%Y-%m-%d %H:%M:%S UTC")

        lines = [
            header,
            "",
            html.escape(alert.message),
            "",
            f"🏷 {badge} {html.escape(alert.alert_type)}",
            f"🕐 {time_str}",
        ]
        return "\n".join(lines)


# ============================================================
# RATE LIMITER
# ============================================================

class TelegramRateLimiter:
    """
    Rate limiter for Telegram messages.

    Prevents excessive message sending.
    """

    def __init__(
        self,
        max_per_minute: int = 20,
        max_per_hour: int = 100,
    ):
        self._max_per_minute = max_per_minute
        self._max_per_hour = max_per_hour
        self._minute_window: List[datetime] = []
        self._hour_window: List[datetime] = []
        self._lock = asyncio.Lock()

    async def acquire(self) -> bool:
        """Try to acquire a send slot."""
        async with self._lock:
            now = datetime.now(timezone.utc)
            minute_ago = now - timedelta(minutes=1)
            hour_ago = now - timedelta(hours=1)

            self._minute_window = [t for t in self._minute_window if t > minute_ago]
            self._hour_window = [t for t in self._hour_window if t > hour_ago]

            if len(self._minute_window) >= self._max_per_minute:
                return False
            if len(self._hour_window) >= self._max_per_hour:
                return False

            self._minute_window.append(now)
            self._hour_window.append(now)
            return True

    @property
    def remaining_minute(self) -> int:
        minute_ago = datetime.now(timezone.utc) - timedelta(minutes=1)
        count = sum(1 for t in self._minute_window if t > minute_ago)
        return max(0, self._max_per_minute - count)


# ============================================================
# TELEGRAM CHANNEL
# ============================================================

class TelegramChannel(NotificationChannel):
    """
    Sends escalated alerts to Telegram.

    Reads TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID (comma separated)
    from the environment when not given explicitly.
    """

    name = "telegram"

    BASE_URL = "https://api.telegram.org/bot"

    def __init__(
        self,
        bot_token: Optional[str] = None,
        chat_ids: Optional[List[str]] = None,
        rate_limiter: Optional[TelegramRateLimiter] = None,
        base_url: Optional[str] = None,
    ):
        self._bot_token = bot_token or os.getenv("TELEGRAM_BOT_TOKEN", "")
        if chat_ids:
            self._chat_ids = list(chat_ids)
        else:
            raw = os.getenv("TELEGRAM_CHAT_ID", "")
            self._chat_ids = [c.strip() for c in raw.split(",") if c.strip()]

        self._rate_limiter = rate_limiter or TelegramRateLimiter()
        self._base_url = base_url or self.BASE_URL
        self._session: Optional[aiohttp.ClientSession] = None
        self._enabled = bool(self._bot_token and self._chat_ids)

        if self._enabled:
            logger.info(f"Telegram channel enabled with {len(self._chat_ids)} chat(s)")
        else:
            logger.warning("Telegram channel NOT configured - check TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID")

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def send(self, alert: AlertEvent) -> bool:
        if not self._enabled:
            return False
        return await self._send_to_all(TelegramFormatter.format_alert(alert))

    async def _send_to_all(self, message: str) -> bool:
        if not await self._rate_limiter.acquire():
            logger.warning("Telegram rate limit reached, message not sent")
            return False
        logger.debug(f"Telegram quota: {self._rate_limiter.remaining_minute} message(s) left this minute")

        success = True
        for chat_id in self._chat_ids:
            if not await self._send_message(chat_id, message):
                success = False
        return success

    async def _send_message(self, chat_id: str, message: str) -> bool:
        try:
            session = await self._get_session()
            url = f"{self._base_url}{self._bot_token}/sendMessage"
            payload: Dict[str, Any] = {
                "chat_id": chat_id,
                "text": message,
                "parse_mode": "HTML",
                "disable_web_page_preview": True,
            }
            async with session.post(url, json=payload) as response:
                if response.status == 200:
                    return True
                body = await response.text()
                logger.error(f"Telegram API error: {response.status} - {body}")
                return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Error sending Telegram message: {e}")
            return False
