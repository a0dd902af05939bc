"""
Notification sink factory.
Configures which delivery strategy booking events use.
"""

from app.services.interfaces.notifier import NotificationSink
from app.services.interfaces.log_notifier import LoggingNotifier
from app.services.notification_service import RedisNotifier
from app.core.config import get_settings


def get_notifier_strategy() -> NotificationSink:
    """
    Get configured notification sink.

    Strategy selection via the NOTIFIER setting:
    - log: LoggingNotifier (development, tests)
    - redis: RedisNotifier (realtime gateway subscribed to the channel)
    """
    strategy = get_settings().NOTIFIER

    if strategy == 'redis':
        return RedisNotifier()
    else:
        return LoggingNotifier()


# Singleton instance
_notifier: NotificationSink | None = None

def get_notifier() -> NotificationSink:
    """Get notification sink singleton."""
    global _notifier
    if _notifier is None:
        _notifier = get_notifier_strategy()
    return _notifier
