"""
Waitlist queue: parties we could not seat, retried when tables free up.

SERVING ORDER
=============

Entries are bucketed by their desired window and served priority-first, then
in creation order (id breaks ties between entries created in the same
instant). Promotion walks the queue once:

  for each waiting entry whose window is still open (and, when a specific
  window was freed, whose window touches it):
      for each candidate start in [window_start, window_end] at SLOT_STEP:
          plan against the current state
          first fit -> create the booking + claim tables, mark entry promoted
      no fit -> entry stays waiting

Each entry is its own unit of work, so one lost race (another host took the
table a moment earlier) leaves that entry queued and does not affect the rest.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from itertools import groupby

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import get_settings
from app.core.errors import AllocationError, ValidationError, NotFoundError, ConcurrencyConflictError
from app.core.logging import get_logger
from app.core.metrics import record_waitlist_promotion
from app.db.session import unit_of_work
from app.models.booking import Booking, BookingSource, BookingStatus
from app.models.waitlist import WaitlistEntry, WaitlistStatus
from app.schemas.waitlist import WaitlistCreate
from app.services.booking_service import create_booking, booking_event, SYSTEM_ACTOR
from app.services.conflict_service import Window
from app.services.interfaces.clock import Clock, ensure_utc
from app.services.interfaces.notifier import NotificationSink
from app.services.notification_service import dispatch_all
from app.services.planner_service import PlanningSnapshot, PlanPreferences

logger = get_logger(__name__)
settings = get_settings()

# Upper bound on start times tried per entry in one promotion pass
MAX_CANDIDATE_STARTS = 32


@dataclass
class WaitlistBucket:
    window_start: datetime
    window_end: datetime
    entries: list[WaitlistEntry] = field(default_factory=list)


@dataclass
class PromotionReport:
    promoted: list[tuple[int, int]] = field(default_factory=list)  # (entry_id, booking_id)
    queued: list[int] = field(default_factory=list)
    expired: int = 0


def serving_key(entry: WaitlistEntry):
    return (not entry.priority, entry.created_at, entry.id)


async def add_entry(db: AsyncSession, entry_data: WaitlistCreate, *, clock: Clock) -> WaitlistEntry:
    window_start = ensure_utc(entry_data.window_start)
    window_end = ensure_utc(entry_data.window_end) if entry_data.window_end else window_start
    if window_end < window_start:
        raise ValidationError(
            "Waitlist window must not end before it starts",
            window_start=window_start.isoformat(),
            window_end=window_end.isoformat(),
        )
    if window_end < clock.now():
        raise ValidationError("Waitlist window is already over", window_end=window_end.isoformat())

    entry = WaitlistEntry(
        guest_name=entry_data.guest_name,
        party_size=entry_data.party_size,
        window_start=window_start,
        window_end=window_end,
        turn_time_minutes=entry_data.turn_time_minutes or settings.DEFAULT_TURN_TIME_MINUTES,
        priority=entry_data.priority,
        table_type=entry_data.table_type,
        section=entry_data.section,
        status=WaitlistStatus.WAITING.value,
        created_at=clock.now(),
    )
    db.add(entry)
    await db.flush()

    logger.info(
        "waitlist_entry_added",
        entry_id=entry.id,
        party_size=entry.party_size,
        window_start=window_start.isoformat(),
        window_end=window_end.isoformat(),
        priority=entry.priority,
    )
    return entry


async def get_entry(db: AsyncSession, entry_id: int) -> WaitlistEntry:
    result = await db.execute(
        select(WaitlistEntry)
        .where(WaitlistEntry.id == entry_id)
        .execution_options(populate_existing=True)
    )
    entry = result.scalar_one_or_none()
    if not entry:
        raise NotFoundError(f"Waitlist entry {entry_id} not found", entry_id=entry_id)
    return entry


async def list_entries(db: AsyncSession, status: str | None = WaitlistStatus.WAITING.value) -> list[WaitlistEntry]:
    query = select(WaitlistEntry)
    if status:
        query = query.where(WaitlistEntry.status == status)
    result = await db.execute(query)
    return sorted(result.scalars().all(), key=serving_key)


def bucket_entries(entries: list[WaitlistEntry]) -> list[WaitlistBucket]:
    """Group by desired window; buckets in window order, entries in serving order."""
    by_window = sorted(entries, key=lambda e: (e.window_start, e.window_end))
    buckets = []
    for (start, end), members in groupby(by_window, key=lambda e: (e.window_start, e.window_end)):
        buckets.append(WaitlistBucket(start, end, sorted(members, key=serving_key)))
    return buckets


async def expire_entries(db: AsyncSession, *, clock: Clock) -> int:
    now = clock.now()
    result = await db.execute(
        update(WaitlistEntry)
        .where(
            WaitlistEntry.status == WaitlistStatus.WAITING.value,
            WaitlistEntry.window_end < now,
        )
        .values(status=WaitlistStatus.EXPIRED.value, resolved_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        record_waitlist_promotion("expired", result.rowcount)
        logger.info("waitlist_entries_expired", count=result.rowcount)
    return result.rowcount


def _entry_span(entry: WaitlistEntry) -> Window:
    return Window(
        entry.window_start,
        entry.window_end + timedelta(minutes=entry.turn_time_minutes),
    )


async def outstanding_entries(
    db: AsyncSession,
    *,
    clock: Clock,
    freed_window: Window | None = None,
) -> list[WaitlistEntry]:
    """Waiting, unexpired entries in serving order; narrowed to a freed window if given."""
    result = await db.execute(
        select(WaitlistEntry).where(
            WaitlistEntry.status == WaitlistStatus.WAITING.value,
            WaitlistEntry.window_end >= clock.now(),
        )
    )
    entries = result.scalars().all()
    if freed_window is not None:
        entries = [e for e in entries if _entry_span(e).overlaps(freed_window)]
    return sorted(entries, key=serving_key)


def candidate_starts(entry: WaitlistEntry, now: datetime) -> list[datetime]:
    """Slot starts on the entry's grid, from the first one not before `now`."""
    step = timedelta(minutes=settings.SLOT_STEP_MINUTES)
    start = entry.window_start
    if now > start:
        start += step * -((start - now) // step)
    starts = []
    while start <= entry.window_end and len(starts) < MAX_CANDIDATE_STARTS:
        starts.append(start)
        start += step
    return starts


async def try_promote(db: AsyncSession, entry_id: int, *, clock: Clock) -> Booking | None:
    """
    Seat one waiting entry at its earliest workable start, or return None.

    The booking is created through the mediator, so its tables are
    conflict-checked and claimed exactly like an accepted request.
    """
    entry = await get_entry(db, entry_id)
    if entry.status != WaitlistStatus.WAITING.value:
        return None

    now = clock.now()
    snapshot = await PlanningSnapshot.load(db, _entry_span(entry))
    prefs = PlanPreferences(table_type=entry.table_type, section=entry.section)

    for start in candidate_starts(entry, now):
        window = Window.from_turn_time(start, entry.turn_time_minutes)
        assignment = snapshot.assignment_at(window, entry.party_size, prefs)
        if assignment is None:
            continue

        promote_confirmed = settings.WAITLIST_PROMOTION_STATUS == BookingStatus.CONFIRMED.value
        booking = await create_booking(
            db,
            party_size=entry.party_size,
            start_time=start,
            turn_time_minutes=entry.turn_time_minutes,
            actor=SYSTEM_ACTOR,
            clock=clock,
            policy="instant" if promote_confirmed else "request",
            table_ids=list(assignment.table_ids) if promote_confirmed else None,
            guest_name=entry.guest_name,
            source=BookingSource.WAITLIST.value,
            now=now,
        )

        result = await db.execute(
            update(WaitlistEntry)
            .where(
                WaitlistEntry.id == entry.id,
                WaitlistEntry.status == WaitlistStatus.WAITING.value,
            )
            .values(
                status=WaitlistStatus.PROMOTED.value,
                resolved_at=now,
                promoted_booking_id=booking.id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ConcurrencyConflictError(
                f"Waitlist entry {entry.id} was resolved concurrently",
                entry_id=entry.id,
            )

        logger.info(
            "waitlist_entry_promoted",
            entry_id=entry.id,
            booking_id=booking.id,
            start=start.isoformat(),
            table_ids=booking.assigned_table_ids,
        )
        return booking

    return None


async def promote_waitlist(
    session_factory: async_sessionmaker,
    *,
    clock: Clock,
    notifier: NotificationSink | None = None,
    freed_window: Window | None = None,
) -> PromotionReport:
    """Expire stale entries, then try every outstanding entry once."""
    report = PromotionReport()

    async with unit_of_work(session_factory) as db:
        report.expired = await expire_entries(db, clock=clock)
        entry_ids = [e.id for e in await outstanding_entries(db, clock=clock, freed_window=freed_window)]

    events = []
    for entry_id in entry_ids:
        try:
            async with unit_of_work(session_factory) as db:
                booking = await try_promote(db, entry_id, clock=clock)
                if booking is not None:
                    events.append(booking_event("waitlist_promoted", booking, clock, entry_id=entry_id))
        except AllocationError as e:
            # Lost a race for the tables; the entry simply stays queued
            logger.info("waitlist_promotion_lost", entry_id=entry_id, kind=e.kind, error=e.message)
            booking = None

        if booking is None:
            record_waitlist_promotion("queued")
            report.queued.append(entry_id)
        else:
            record_waitlist_promotion("promoted")
            report.promoted.append((entry_id, booking.id))

    if notifier is not None:
        await dispatch_all(notifier, events)

    logger.info(
        "waitlist_promotion_pass",
        promoted=len(report.promoted),
        queued=len(report.queued),
        expired=report.expired,
    )
    return report
