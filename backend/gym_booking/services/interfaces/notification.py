"""
Notification sink interface.
Delivery is someone else's job: the coordinator hands off a message and moves on.
"""

from abc import ABC, abstractmethod
from typing import Optional

# Notification types understood by the client apps
WAITLIST_SUCCESS = "waitlist_success"
PROMOTION_EXPIRED = "promotion_expired"


class NotificationSink(ABC):
    """
    Interface for fire-and-forget user notifications.

    Implementations:
    - RedisNotificationSink: push onto a per-user Redis list read by the apps
    - NullNotificationSink: drop everything (local development, batch jobs)
    """

    @abstractmethod
    async def notify(
        self,
        user_id: str,
        type: str,
        title: str,
        message: str,
        related_id: Optional[int] = None,
    ) -> None:
        """
        Hand a notification to the sink.

        Must never raise: a failed notification cannot undo a committed
        reservation change.
        """
        pass
