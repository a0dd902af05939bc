"""
Notification dispatch for booking events.

Delivery is fire-and-forget and strictly post-commit:

  1. The unit of work commits the booking change
  2. The caller builds a BookingEvent and hands it to `dispatch`
  3. `dispatch` publishes through the configured NotificationSink

  A failing sink (Redis down, channel misconfigured) is logged and counted,
  and that is all. The booking is already committed and stays committed;
  nothing here ever raises back into the caller.

Redis pub/sub is used rather than a durable queue: subscribers are dashboards
that re-read booking state anyway, so a missed event costs a stale widget,
not a lost booking.
"""

import json

from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.metrics import record_notification_failure
from app.infrastructure.redis_client import get_redis
from app.services.interfaces.notifier import NotificationSink, BookingEvent

logger = get_logger(__name__)
settings = get_settings()


class RedisNotifier(NotificationSink):
    """
    Publishes events as JSON on a Redis channel.

    Use when:
    - A realtime gateway relays booking events to staff devices
    - Several dashboard instances need the same event stream
    """

    def __init__(self, channel: str | None = None):
        self.channel = channel or settings.NOTIFICATION_CHANNEL

    async def publish(self, event: BookingEvent) -> None:
        client = await get_redis()
        if client is None:
            raise RuntimeError("Redis unavailable for notification publish")
        await client.publish(self.channel, json.dumps(event.to_dict(), default=str))


async def dispatch(notifier: NotificationSink, event: BookingEvent) -> bool:
    """Publish one event; returns False (after logging) instead of raising."""
    try:
        await notifier.publish(event)
        return True
    except Exception as e:
        record_notification_failure(event.name)
        logger.warning(
            "notification_dispatch_failed",
            event_name=event.name,
            booking_id=event.booking_id,
            error=str(e),
        )
        return False


async def dispatch_all(notifier: NotificationSink, events: list[BookingEvent]) -> int:
    delivered = 0
    for event in events:
        if await dispatch(notifier, event):
            delivered += 1
    return delivered
