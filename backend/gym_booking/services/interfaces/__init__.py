"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .notification import NotificationSink, WAITLIST_SUCCESS, PROMOTION_EXPIRED
from .null_notification import NullNotificationSink

__all__ = ['NotificationSink', 'NullNotificationSink', 'WAITLIST_SUCCESS', 'PROMOTION_EXPIRED']
