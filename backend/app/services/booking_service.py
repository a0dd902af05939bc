"""
Request mediator: creating bookings and answering booking requests.

CONCURRENCY STRATEGY: Check, Claim, Compare-and-Swap
=====================================================

Problem:
  Two hosts accept two different requests for the same table and overlapping
  windows at the same moment. Both run the conflict query, both see the table
  free, both confirm. Result: a double-booked table.

Solution:
  Every accept runs as one unit of work (one AsyncSession transaction):

  1. Conflict check in SQL for the chosen tables and the booking's window
  2. Claim each table:
       UPDATE restaurant_tables SET version = version + 1
       WHERE id = :table_id AND version = :seen_version
  3. Move the booking with a compare-and-swap on its own version:
       UPDATE bookings SET status = 'confirmed', version = version + 1
       WHERE id = :booking_id AND version = :seen_version
  4. Append the status history row, commit

  Whichever transaction claims a table first wins. The second one either sees
  the winner's committed assignment in step 1 (ConflictError) or loses the
  version compare in step 2 or 3 (ConcurrencyConflictError). A second accept
  that starts after the first one committed finds the request already
  accepted and gets ConcurrencyConflictError as well. Either way its unit of
  work rolls back and the booking it was working on is untouched.

  There is no retry loop here: a lost race is reported to the caller, who
  re-plans with fresh state (the host's screen, the waitlist sweep).

Notifications are never sent from inside this module's functions; the caller
dispatches them after commit.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import get_settings
from app.core.errors import (
    AllocationError,
    ValidationError,
    ConflictError,
    ConcurrencyConflictError,
    NoAvailabilityError,
    InvalidTransitionError,
    RequestExpiredError,
)
from app.core.logging import get_logger
from app.db.session import unit_of_work
from app.models.booking import Booking, BookingStatus, BookingSource
from app.services.conflict_service import Window
from app.services.interfaces.clock import Clock
from app.services.interfaces.notifier import BookingEvent, NotificationSink
from app.services.lifecycle_service import (
    load_booking,
    check_version,
    apply_transition,
    assign_tables,
    record_history,
)
from app.services.notification_service import dispatch_all
from app.services.planner_service import (
    Assignment,
    Alternatives,
    PlanPreferences,
    Unavailable,
    plan_assignment,
    suggest_alternatives,
)

logger = get_logger(__name__)
settings = get_settings()

SYSTEM_ACTOR = "system"
AUTO_DECLINE_REASON = "Request expired automatically"

POLICIES = ("request", "instant")


@dataclass
class AcceptOptions:
    suggest_alternatives: bool = False
    skip_table_assignment: bool = False
    expected_version: int | None = None


@dataclass
class AcceptOutcome:
    booking: Booking
    assignment: Assignment | None


@dataclass
class DeclineOutcome:
    booking: Booking
    alternatives: Alternatives | None


def booking_event(name: str, booking: Booking, clock: Clock, **details) -> BookingEvent:
    return BookingEvent(
        name=name,
        booking_id=booking.id,
        status=booking.status,
        at=clock.now(),
        table_ids=tuple(booking.assigned_table_ids),
        details=details,
    )


def _assignment_from_tables(tables) -> Assignment:
    return Assignment(
        table_ids=tuple(table.id for table in tables),
        requires_combination=len(tables) > 1,
        total_capacity=sum(table.max_capacity for table in tables),
    )


def _window_for(start_time, turn_time_minutes: int | None) -> Window:
    if start_time is None:
        raise ValidationError("A start time is required")
    turn_time = turn_time_minutes if turn_time_minutes is not None else settings.DEFAULT_TURN_TIME_MINUTES
    return Window.from_turn_time(start_time, turn_time)


def _check_party_size(party_size: int) -> None:
    if party_size is None or party_size <= 0:
        raise ValidationError("Party size must be positive", party_size=party_size)


async def _plan_or_raise(
    db: AsyncSession,
    party_size: int,
    window: Window,
    prefs: PlanPreferences | None,
    clock: Clock,
    exclude_booking_id: int | None = None,
) -> Assignment:
    plan = await plan_assignment(
        db, party_size, window, prefs, clock=clock, exclude_booking_id=exclude_booking_id
    )
    if isinstance(plan, Unavailable):
        raise NoAvailabilityError(
            f"No table or combination seats a party of {party_size} at {window.start.isoformat()}",
            alternatives=plan.alternatives.to_dict(),
            party_size=party_size,
            start_time=window.start.isoformat(),
        )
    return plan


async def create_booking(
    db: AsyncSession,
    *,
    party_size: int,
    start_time,
    actor: str,
    clock: Clock,
    turn_time_minutes: int | None = None,
    policy: str | None = None,
    table_ids: list[int] | None = None,
    guest_name: str | None = None,
    prefs: PlanPreferences | None = None,
    source: str | None = None,
    now: datetime | None = None,
) -> Booking:
    """
    Create a booking under the request or instant policy.

    `now` is the instant the caller already decided on (walk-ins, waitlist
    promotion); the clock is read only when it is not given.

    request: a pending booking that expires after REQUEST_EXPIRY_HOURS when
             auto-decline is on; tables are chosen when it is accepted.
    instant: tables are planned (or the given ones validated) and the booking
             is created confirmed, all in this unit of work. Nothing fits:
             NoAvailabilityError with alternatives, and nothing is written.
    """
    _check_party_size(party_size)
    window = _window_for(start_time, turn_time_minutes)
    policy = policy or settings.BOOKING_POLICY
    if policy not in POLICIES:
        raise ValidationError(f"Unknown booking policy '{policy}'", policy=policy)

    now = now or clock.now()
    if window.start < now:
        raise ValidationError(
            "Bookings cannot start in the past",
            start_time=window.start.isoformat(),
            now=now.isoformat(),
        )

    status = BookingStatus.PENDING.value if policy == "request" else BookingStatus.CONFIRMED.value
    source = source or (
        BookingSource.REQUEST.value if policy == "request" else BookingSource.INSTANT.value
    )

    booking = Booking(
        guest_name=guest_name,
        party_size=party_size,
        start_time=window.start,
        turn_time_minutes=window.turn_time_minutes,
        end_time=window.end,
        status=status,
        source=source,
        version=1,
        created_at=now,
        updated_at=now,
    )

    metadata = {"action": "created", "source": source, "policy": policy}
    if status == BookingStatus.PENDING.value:
        if settings.AUTO_DECLINE_ENABLED:
            booking.request_expires_at = now + timedelta(hours=settings.REQUEST_EXPIRY_HOURS)
            metadata["expires_at"] = booking.request_expires_at.isoformat()
        if table_ids:
            # Held as a suggestion only; requests never claim tables
            metadata["requested_tables"] = ",".join(str(t) for t in table_ids)
    else:
        if not table_ids:
            assignment = await _plan_or_raise(db, party_size, window, prefs, clock)
            table_ids = list(assignment.table_ids)
        await assign_tables(db, booking, table_ids)
        metadata["table_ids"] = ",".join(str(t) for t in booking.assigned_table_ids)

    record_history(booking, None, status, actor or SYSTEM_ACTOR, metadata, clock)
    db.add(booking)
    await db.flush()

    logger.info(
        "booking_created",
        booking_id=booking.id,
        status=booking.status,
        source=source,
        party_size=party_size,
        start=window.start.isoformat(),
        table_ids=booking.assigned_table_ids,
    )
    return booking


async def create_walk_in(
    db: AsyncSession,
    *,
    party_size: int,
    actor: str,
    clock: Clock,
    turn_time_minutes: int | None = None,
    table_ids: list[int] | None = None,
    guest_name: str | None = None,
) -> Booking:
    """A confirmed booking starting now, with tables attached."""
    now = clock.now()
    return await create_booking(
        db,
        party_size=party_size,
        start_time=now,
        now=now,
        actor=actor,
        clock=clock,
        turn_time_minutes=turn_time_minutes,
        policy="instant",
        table_ids=table_ids,
        guest_name=guest_name,
        source=BookingSource.WALK_IN.value,
    )


def _already_accepted(booking: Booking) -> bool:
    if booking.status != BookingStatus.CONFIRMED.value or not booking.history:
        return False
    last = booking.history[-1].metadata_ or {}
    return last.get("action") == "request_accepted"


def _ensure_pending(booking: Booking, to_status: str) -> None:
    if to_status == BookingStatus.CONFIRMED.value and _already_accepted(booking):
        # Another host accepted first and committed
        raise ConcurrencyConflictError(
            f"Booking {booking.id} was accepted concurrently",
            booking_id=booking.id,
            version=booking.version,
        )
    if booking.status != BookingStatus.PENDING.value:
        raise InvalidTransitionError(
            f"Booking {booking.id} is not a pending request",
            booking_id=booking.id,
            from_status=booking.status,
            to_status=to_status,
        )


def is_expired(booking: Booking, clock: Clock) -> bool:
    return booking.request_expires_at is not None and clock.now() >= booking.request_expires_at


async def accept_request(
    db: AsyncSession,
    booking_id: int,
    actor: str,
    table_ids: list[int] | None = None,
    opts: AcceptOptions | None = None,
    *,
    clock: Clock,
) -> AcceptOutcome:
    """
    pending -> confirmed, with the assignment written in the same unit of work.

    Without table ids the planner chooses; with them they are validated and
    conflict-checked. Any failure leaves the booking exactly as it was.
    """
    opts = opts or AcceptOptions()
    booking = await load_booking(db, booking_id)
    check_version(booking, opts.expected_version)
    _ensure_pending(booking, BookingStatus.CONFIRMED.value)

    if is_expired(booking, clock):
        raise RequestExpiredError(
            f"Booking request {booking.id} expired",
            booking_id=booking.id,
            expired_at=booking.request_expires_at.isoformat(),
        )

    window = Window.of_booking(booking)
    assignment = None
    metadata = {"action": "request_accepted"}

    if table_ids:
        try:
            tables = await assign_tables(db, booking, table_ids)
        except ConflictError as e:
            if opts.suggest_alternatives:
                alternatives = await suggest_alternatives(
                    db, booking.party_size, window, clock=clock, exclude_booking_id=booking.id
                )
                e.context["alternatives"] = alternatives.to_dict()
            raise
        assignment = _assignment_from_tables(tables)
    elif not opts.skip_table_assignment:
        assignment = await _plan_or_raise(
            db, booking.party_size, window, None, clock, exclude_booking_id=booking.id
        )
        await assign_tables(db, booking, list(assignment.table_ids))
    else:
        metadata["skip_table_assignment"] = True

    if assignment is not None:
        metadata["table_ids"] = ",".join(str(t) for t in assignment.table_ids)
        metadata["requires_combination"] = assignment.requires_combination

    await apply_transition(db, booking, BookingStatus.CONFIRMED.value, actor, metadata, clock=clock)

    logger.info(
        "booking_confirmed",
        booking_id=booking.id,
        actor=actor,
        table_ids=booking.assigned_table_ids,
    )
    return AcceptOutcome(booking=booking, assignment=assignment)


async def decline_request(
    db: AsyncSession,
    booking_id: int,
    actor: str,
    reason: str,
    suggest: bool = False,
    *,
    clock: Clock,
) -> DeclineOutcome:
    """
    pending -> declined_by_restaurant.

    Alternatives are computed read-only before the transition; history keeps
    only how many were offered and the first suggested time.
    """
    booking = await load_booking(db, booking_id)
    _ensure_pending(booking, BookingStatus.DECLINED_BY_RESTAURANT.value)
    if not reason or not reason.strip():
        raise ValidationError("A reason is required to decline a request", booking_id=booking.id)

    alternatives = None
    metadata = {
        "action": "request_declined",
        "reason": reason,
        "alternatives_suggested": suggest,
    }
    if suggest:
        alternatives = await suggest_alternatives(
            db, booking.party_size, Window.of_booking(booking), clock=clock, exclude_booking_id=booking.id
        )
        metadata["alternative_slots"] = len(alternatives.slots)
        metadata["alternative_tables"] = alternatives.tables is not None
        if alternatives.slots:
            metadata["suggested_time"] = alternatives.slots[0].start_time.isoformat()

    await apply_transition(
        db, booking, BookingStatus.DECLINED_BY_RESTAURANT.value, actor, metadata, clock=clock
    )

    logger.info("booking_declined", booking_id=booking.id, actor=actor, reason=reason)
    return DeclineOutcome(booking=booking, alternatives=alternatives)


async def expired_request_ids(db: AsyncSession, clock: Clock) -> list[int]:
    result = await db.execute(
        select(Booking.id)
        .where(
            Booking.status == BookingStatus.PENDING.value,
            Booking.request_expires_at.is_not(None),
            Booking.request_expires_at <= clock.now(),
        )
        .order_by(Booking.request_expires_at, Booking.id)
    )
    return list(result.scalars().all())


async def auto_decline_expired_requests(
    session_factory: async_sessionmaker,
    *,
    clock: Clock,
    notifier: NotificationSink | None = None,
) -> list[int]:
    """
    Auto-decline every pending request past its expiry, one unit of work each.

    A request that was accepted or declined in the meantime is skipped.
    Returns the ids actually declined.
    """
    async with unit_of_work(session_factory) as db:
        candidates = await expired_request_ids(db, clock)

    declined = []
    events = []
    for booking_id in candidates:
        try:
            async with unit_of_work(session_factory) as db:
                booking = await load_booking(db, booking_id)
                if booking.status != BookingStatus.PENDING.value or not is_expired(booking, clock):
                    continue
                await apply_transition(
                    db,
                    booking,
                    BookingStatus.AUTO_DECLINED.value,
                    SYSTEM_ACTOR,
                    {"action": "auto_decline", "reason": AUTO_DECLINE_REASON},
                    clock=clock,
                )
                events.append(booking_event("booking_auto_declined", booking, clock, reason=AUTO_DECLINE_REASON))
            declined.append(booking_id)
        except AllocationError as e:
            logger.info("auto_decline_skipped", booking_id=booking_id, kind=e.kind, error=e.message)

    if declined:
        logger.info("requests_auto_declined", count=len(declined), booking_ids=declined)
    if notifier is not None:
        await dispatch_all(notifier, events)
    return declined


async def list_bookings(
    db: AsyncSession,
    status: str | None = None,
    start_from: datetime | None = None,
    start_to: datetime | None = None,
) -> list[Booking]:
    """Bookings ordered by start time; uses ix_bookings_status / ix_bookings_window."""
    query = select(Booking)
    if status:
        query = query.where(Booking.status == status)
    if start_from is not None:
        query = query.where(Booking.start_time >= start_from)
    if start_to is not None:
        query = query.where(Booking.start_time < start_to)
    result = await db.execute(query.order_by(Booking.start_time, Booking.id))
    return list(result.scalars().all())
