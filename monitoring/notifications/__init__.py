"""
Notifications Package.

Escalation channels for the supervisor.
"""

import logging

from monitoring.config import SupervisorConfig

from .channels import (
    ConsoleChannel,
    FileChannel,
    MultiChannelNotifier,
    NotificationChannel,
    SyslogChannel,
    WebhookChannel,
    format_escalation,
)
from .telegram import (
    TelegramChannel,
    TelegramFormatter,
    TelegramRateLimiter,
)


logger = logging.getLogger(__name__)


def build_notifier(config: SupervisorConfig) -> MultiChannelNotifier:
    """Channels enabled in configuration, console first."""
    settings = config.notifications
    notifier = MultiChannelNotifier()

    if settings.console:
        notifier.add_channel(ConsoleChannel())
    if settings.file:
        notifier.add_channel(FileChannel(config.escalation_log_path))
    if settings.syslog:
        notifier.add_channel(SyslogChannel())
    if settings.webhook_url:
        notifier.add_channel(WebhookChannel(settings.webhook_url, config.probe_timeout_seconds))
    if settings.telegram:
        telegram = TelegramChannel()
        if telegram.enabled:
            notifier.add_channel(telegram)

    logger.info(f"Notification channels: {[c.name for c in notifier.channels]}")
    return notifier


__all__ = [
    "NotificationChannel",
    "ConsoleChannel",
    "FileChannel",
    "SyslogChannel",
    "WebhookChannel",
    "MultiChannelNotifier",
    "TelegramChannel",
    "TelegramFormatter",
    "TelegramRateLimiter",
    "build_notifier",
    "format_escalation",
]
