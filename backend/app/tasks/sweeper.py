"""
Periodic sweep: auto-decline expired requests, expire stale waitlist entries
and retry waitlist promotion.

Runs as an asyncio task started from the application lifespan. Every step
opens its own units of work, so a failure in one pass never leaves a
transaction open across the sleep.
"""

import asyncio
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.config import get_settings
from app.core.logging import get_logger
from app.services.booking_service import auto_decline_expired_requests
from app.services.interfaces.clock import Clock
from app.services.interfaces.notifier import NotificationSink
from app.services.waitlist_service import PromotionReport, promote_waitlist

logger = get_logger(__name__)
settings = get_settings()


@dataclass
class SweepReport:
    auto_declined: list[int] = field(default_factory=list)
    promotion: PromotionReport = field(default_factory=PromotionReport)


async def run_sweep(
    session_factory: async_sessionmaker,
    *,
    clock: Clock,
    notifier: NotificationSink | None = None,
) -> SweepReport:
    report = SweepReport()
    if settings.AUTO_DECLINE_ENABLED:
        report.auto_declined = await auto_decline_expired_requests(
            session_factory, clock=clock, notifier=notifier
        )
    report.promotion = await promote_waitlist(session_factory, clock=clock, notifier=notifier)
    return report


async def run_sweeper(
    session_factory: async_sessionmaker,
    *,
    clock: Clock,
    notifier: NotificationSink | None = None,
    interval_seconds: int | None = None,
) -> None:
    interval = interval_seconds or settings.SWEEPER_INTERVAL_SECONDS
    logger.info("sweeper_started", interval_seconds=interval)

    while True:
        try:
            report = await run_sweep(session_factory, clock=clock, notifier=notifier)
            logger.debug(
                "sweep_completed",
                auto_declined=len(report.auto_declined),
                promoted=len(report.promotion.promoted),
                expired=report.promotion.expired,
            )
        except asyncio.CancelledError:
            logger.info("sweeper_cancelled")
            raise
        except Exception as e:
            # Next pass re-reads everything from the store
            logger.error("sweep_failed", error=str(e), exc_info=True)
        await asyncio.sleep(interval)


def start_sweeper(
    session_factory: async_sessionmaker,
    *,
    clock: Clock,
    notifier: NotificationSink | None = None,
) -> asyncio.Task:
    return asyncio.create_task(
        run_sweeper(session_factory, clock=clock, notifier=notifier),
        name="booking-sweeper",
    )
