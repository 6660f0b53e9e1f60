"""
Null notification sink - drops every message.
"""

from typing import Optional

from gym_booking.services.interfaces.notification import NotificationSink


class NullNotificationSink(NotificationSink):
    """
    Use when:
    - Running locally without Redis
    - Replaying or repairing data where users must not be pinged
    """

    async def notify(
        self,
        user_id: str,
        type: str,
        title: str,
        message: str,
        related_id: Optional[int] = None,
    ) -> None:
        pass
