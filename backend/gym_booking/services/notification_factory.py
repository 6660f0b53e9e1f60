"""
Notification sink factory.
Configures which sink the reservation coordinator hands messages to.
"""

from typing import Optional

from gym_booking.core.config import get_settings
from gym_booking.services.interfaces.notification import NotificationSink
from gym_booking.services.interfaces.null_notification import NullNotificationSink
from gym_booking.services.notification_service import RedisNotificationSink


def build_notifier() -> NotificationSink:
    """
    Build the configured sink.

    Selected by NOTIFICATION_BACKEND:
    - "redis": RedisNotificationSink (default)
    - anything else: NullNotificationSink
    """
    backend = get_settings().NOTIFICATION_BACKEND

    if backend == "redis":
        return RedisNotificationSink()
    return NullNotificationSink()


# Singleton instance
_notifier: Optional[NotificationSink] = None


def get_notifier() -> NotificationSink:
    """Get notification sink singleton."""
    global _notifier
    if _notifier is None:
        _notifier = build_notifier()
    return _notifier


def set_notifier(notifier: Optional[NotificationSink]) -> None:
    """Replace the sink (None rebuilds from settings on next use)."""
    global _notifier
    _notifier = notifier
