"""
Redis-backed notification sink.

Each notification is a JSON document LPUSHed onto `notifications:{user_id}`;
the client apps read the list as the user's inbox. The list is capped so an
inactive user cannot grow it without bound.

Fail-open: a Redis outage loses the notification, never the reservation
change that triggered it.
"""

import json
from datetime import datetime, timezone
from typing import Optional

from gym_booking.core.logging import get_logger
from gym_booking.core.metrics import notification_failures, redis_connection_errors
from gym_booking.services.cache_service import get_redis
from gym_booking.services.interfaces.notification import NotificationSink

logger = get_logger(__name__)

INBOX_MAX_LENGTH = 200


def _inbox_key(user_id: str) -> str:
    return f"notifications:{user_id}"


class RedisNotificationSink(NotificationSink):

    async def notify(
        self,
        user_id: str,
        type: str,
        title: str,
        message: str,
        related_id: Optional[int] = None,
    ) -> None:
        client = await get_redis()
        if not client:
            notification_failures.inc()
            logger.warning("notification_dropped", user_id=user_id, type=type, reason="redis_unavailable")
            return

        document = {
            "userId": user_id,
            "type": type,
            "title": title,
            "message": message,
            "relatedId": related_id,
            "read": False,
            "createdAt": datetime.now(timezone.utc).isoformat(),
        }
        key = _inbox_key(user_id)
        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.lpush(key, json.dumps(document))
                pipe.ltrim(key, 0, INBOX_MAX_LENGTH - 1)
                await pipe.execute()
            logger.info("notification_sent", user_id=user_id, type=type, related_id=related_id)
        except Exception as e:
            redis_connection_errors.inc()
            notification_failures.inc()
            logger.error("notification_failed", user_id=user_id, type=type, error=str(e))
