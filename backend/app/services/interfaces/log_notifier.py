"""
Logging notification sink - no external transport.
Events only go to the structured log.
"""

from app.core.logging import get_logger
from app.services.interfaces.notifier import NotificationSink, BookingEvent

logger = get_logger(__name__)


class LoggingNotifier(NotificationSink):
    """
    Use when:
    - Local development and tests
    - No downstream consumer is listening yet
    """

    async def publish(self, event: BookingEvent) -> None:
        logger.info(
            "booking_event",
            event_name=event.name,
            booking_id=event.booking_id,
            status=event.status,
            table_ids=list(event.table_ids),
            details=event.details,
        )
