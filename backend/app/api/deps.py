"""
Shared FastAPI dependencies.

Authentication is handled upstream; the gateway forwards the acting staff
member (or "guest", "system") in the X-Actor-Id header.
"""

from fastapi import Header
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.errors import ValidationError
from app.db.session import get_session_factory
from app.services.interfaces.clock import Clock, SystemClock
from app.services.interfaces.notifier import NotificationSink
from app.services.strategy_factory import get_notifier as _get_notifier

_clock = SystemClock()


def get_clock() -> Clock:
    return _clock


def get_notifier() -> NotificationSink:
    return _get_notifier()


def get_sessions() -> async_sessionmaker:
    return get_session_factory()


def get_actor(x_actor_id: str | None = Header(default=None)) -> str:
    if not x_actor_id or not x_actor_id.strip():
        raise ValidationError("X-Actor-Id header is required")
    return x_actor_id.strip()
