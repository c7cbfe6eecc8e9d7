"""NotificationSender implementations.

The core does not deliver email or push itself: it hands a JSON message to
the external dispatcher through a Redis list (LPUSH here, BRPOP there).
LoggingNotificationSender is for local runs without a dispatcher.
"""

import json
import logging
from typing import Any

from config.settings import settings
from src.mp_common.datetime_utils import utc_now
from src.mp_common.redis_client import get_redis

logger = logging.getLogger(__name__)


class RedisQueueNotificationSender:
    def __init__(self, queue: str | None = None) -> None:
        self._queue = queue or settings.NOTIFICATION_QUEUE

    async def send(self, recipient_id: str, subject: str, body: str, data: dict[str, Any]) -> None:
        message = json.dumps(
            {
                "recipient_id": recipient_id,
                "subject": subject,
                "body": body,
                "data": data,
                "queued_at": utc_now().isoformat(),
            },
            default=str,
        )
        redis = await get_redis()
        await redis.lpush(self._queue, message)
        logger.info("Notification queued for %s: %s", recipient_id, subject)


class LoggingNotificationSender:
    async def send(self, recipient_id: str, subject: str, body: str, data: dict[str, Any]) -> None:
        logger.info("Notification for %s: %s | %s | %s", recipient_id, subject, body, data)


def notification_sender_from_settings() -> RedisQueueNotificationSender | LoggingNotificationSender:
    backend = settings.NOTIFICATION_BACKEND.lower()
    if backend == "log":
        return LoggingNotificationSender()
    if backend == "redis":
        return RedisQueueNotificationSender()
    raise ValueError(f"Unknown NOTIFICATION_BACKEND: {settings.NOTIFICATION_BACKEND}")
