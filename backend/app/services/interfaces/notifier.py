"""
Notification sink interface.
Allows swapping how booking events leave the engine without touching the
allocation logic.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class BookingEvent:
    """A fact worth telling the outside world about, emitted after commit."""

    name: str  # booking_confirmed, booking_declined, booking_auto_declined, waitlist_promoted
    booking_id: int
    status: str
    at: datetime
    table_ids: tuple[int, ...] = ()
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "event": self.name,
            "booking_id": self.booking_id,
            "status": self.status,
            "at": self.at.isoformat(),
            "table_ids": list(self.table_ids),
            "details": self.details,
        }


class NotificationSink(ABC):
    """
    Interface for notification delivery.

    Implementations:
    - LoggingNotifier: writes events to the structured log
    - RedisNotifier: publishes events on a Redis pub/sub channel
    """

    @abstractmethod
    async def publish(self, event: BookingEvent) -> None:
        """
        Deliver one event.

        May raise; callers go through `dispatch`, which logs failures and
        never lets them reach booking state.
        """
        pass

    async def close(self) -> None:
        pass
