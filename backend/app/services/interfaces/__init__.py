"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .clock import Clock, SystemClock, FrozenClock, ensure_utc
from .notifier import NotificationSink, BookingEvent
from .log_notifier import LoggingNotifier

__all__ = [
    'Clock', 'SystemClock', 'FrozenClock', 'ensure_utc',
    'NotificationSink', 'BookingEvent', 'LoggingNotifier',
]
