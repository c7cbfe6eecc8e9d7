"""Domain events emitted by the core after each committed state change.

UI-facing consumers (live order screens, rider apps, admin queues) subscribe
to the Redis channel; the core only knows the EventPublisher protocol.
Publishing happens after commit and is best-effort: a lost event never rolls
back a settled order, consumers re-read state on reconnect.
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Protocol

from config.settings import settings
from src.mp_common.datetime_utils import utc_now
from src.mp_common.redis_client import get_redis

logger = logging.getLogger(__name__)

ORDER_TRANSITIONED = "order.transitioned"
TOKEN_REDEEMED = "token.redeemed"
DISPUTE_OPENED = "dispute.opened"
DISPUTE_RESOLVED = "dispute.resolved"


@dataclass(frozen=True)
class DomainEvent:
    event_type: str
    order_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: str = field(default_factory=lambda: utc_now().isoformat())

    def to_json(self) -> str:
        return json.dumps(asdict(self), default=str)


class EventPublisher(Protocol):
    async def publish(self, event: DomainEvent) -> None: ...


class RedisEventPublisher:
    """PUBLISH each event as JSON on settings.EVENTS_CHANNEL."""

    def __init__(self, channel: str | None = None) -> None:
        self._channel = channel or settings.EVENTS_CHANNEL

    async def publish(self, event: DomainEvent) -> None:
        try:
            redis = await get_redis()
            await redis.publish(self._channel, event.to_json())
            logger.debug("published %s order=%s", event.event_type, event.order_id)
        except Exception:
            logger.exception("Failed to publish %s for order %s", event.event_type, event.order_id)
