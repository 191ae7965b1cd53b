"""Notification delivery for triggered alerts."""

from ratealerts.notifications.base import BaseNotifier
from ratealerts.notifications.console import ConsoleNotifier
from ratealerts.notifications.dispatcher import NotificationDispatcher

__all__ = [
    "BaseNotifier",
    "ConsoleNotifier",
    "NotificationDispatcher",
]
