"""
Booking lifecycle state machine.

TRANSITIONS
===========

  pending ──> confirmed | declined_by_restaurant | auto_declined

  confirmed ─> arrived ─> seated ─> ordered ─> appetizers ─> main_course
            ─> dessert ─> payment ─> completed          (one stage at a time)

  seated | ordered | appetizers | main_course | dessert ──> completed

  any non-terminal ──> cancelled_by_user | cancelled_by_restaurant | no_show

Anything else raises InvalidTransitionError and leaves the booking untouched.

WRITE PROTOCOL
==============

Every status change is a compare-and-swap on the booking version:

  UPDATE bookings SET status = :to, version = version + 1
  WHERE id = :id AND version = :seen_version

followed by one appended BookingStatusChange row. rowcount 0 means another
writer got there first: ConcurrencyConflictError, and the caller's unit of
work rolls back. Callers that show a booking to a human and act on it later
pass `expected_version` so a stale screen fails before anything is written.
"""

from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from app.core.config import get_settings
from app.core.errors import (
    ValidationError,
    NotFoundError,
    ConflictError,
    NoAvailabilityError,
    InvalidTransitionError,
    ConcurrencyConflictError,
)
from app.core.logging import get_logger
from app.core.metrics import record_transition, record_concurrency_conflict, record_allocation
from app.db.session import is_serialization_failure
from app.models.booking import (
    Booking,
    BookingTable,
    BookingStatus,
    BookingStatusChange,
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
)
from app.services.catalog_service import resolve_tables, claim_tables
from app.services.conflict_service import Window, find_conflicts
from app.services.interfaces.clock import Clock
from app.services.planner_service import plan_assignment, Unavailable

logger = get_logger(__name__)
settings = get_settings()

S = BookingStatus

DINING_PATH = [
    S.CONFIRMED, S.ARRIVED, S.SEATED, S.ORDERED, S.APPETIZERS,
    S.MAIN_COURSE, S.DESSERT, S.PAYMENT, S.COMPLETED,
]

_EXITS = {S.CANCELLED_BY_USER, S.CANCELLED_BY_RESTAURANT, S.NO_SHOW}


def _build_transitions() -> dict[str, frozenset[str]]:
    graph: dict[str, set] = {status.value: set() for status in BookingStatus}
    graph[S.PENDING.value] |= {S.CONFIRMED, S.DECLINED_BY_RESTAURANT, S.AUTO_DECLINED}
    for current, following in zip(DINING_PATH, DINING_PATH[1:]):
        graph[current.value].add(following)
    for status in (S.SEATED, S.ORDERED, S.APPETIZERS, S.MAIN_COURSE, S.DESSERT):
        graph[status.value].add(S.COMPLETED)
    for status, targets in graph.items():
        if status not in TERMINAL_STATUSES:
            targets |= _EXITS
    return {status: frozenset(t.value for t in targets) for status, targets in graph.items()}


TRANSITIONS = _build_transitions()

# Terminal statuses that carry a mandatory reason
REASON_REQUIRED = frozenset(s.value for s in (
    S.CANCELLED_BY_USER,
    S.CANCELLED_BY_RESTAURANT,
    S.DECLINED_BY_RESTAURANT,
    S.AUTO_DECLINED,
))

# Reaching one of these releases the booking's tables for the waitlist
RELEASING_STATUSES = frozenset(s.value for s in (
    S.COMPLETED,
    S.NO_SHOW,
    S.CANCELLED_BY_USER,
    S.CANCELLED_BY_RESTAURANT,
))

DINING_PROGRESS = {
    S.PENDING.value: 0,
    S.CONFIRMED.value: 5,
    S.ARRIVED.value: 10,
    S.SEATED.value: 20,
    S.ORDERED.value: 30,
    S.APPETIZERS.value: 50,
    S.MAIN_COURSE.value: 70,
    S.DESSERT.value: 85,
    S.PAYMENT.value: 95,
    **{status: 100 for status in TERMINAL_STATUSES},
}

Metadata = Optional[dict[str, Any]]

_PRIMITIVES = (str, int, float, bool, type(None))


def allowed_transitions(status: str) -> frozenset[str]:
    return TRANSITIONS.get(status, frozenset())


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in allowed_transitions(from_status)


def dining_progress(status: str) -> int:
    return DINING_PROGRESS.get(status, 0)


def releases_tables(previous_status: str, booking: Booking) -> bool:
    """True when a just-applied change freed tables a waitlist entry could use."""
    return (
        previous_status in ACTIVE_STATUSES
        and booking.status in RELEASING_STATUSES
        and bool(booking.table_links)
    )


def clean_metadata(metadata: Metadata) -> dict[str, Any]:
    """History metadata is a flat map of primitives."""
    if not metadata:
        return {}
    cleaned = {}
    for key, value in metadata.items():
        if not isinstance(key, str):
            raise ValidationError("Metadata keys must be strings", key=repr(key))
        if not isinstance(value, _PRIMITIVES):
            raise ValidationError(
                "Metadata values must be str, int, float, bool or null",
                key=key,
            )
        cleaned[key] = value
    return cleaned


def _require_actor(actor: str) -> None:
    if not actor or not actor.strip():
        raise ValidationError("An actor is required for every booking change")


def _parse_status(value: str) -> str:
    try:
        return BookingStatus(value).value
    except ValueError:
        raise ValidationError(f"Unknown booking status '{value}'", status=value)


async def load_booking(db: AsyncSession, booking_id: int) -> Booking:
    """Read a booking fresh from the store, replacing any cached copy."""
    result = await db.execute(
        select(Booking)
        .where(Booking.id == booking_id)
        .execution_options(populate_existing=True)
    )
    booking = result.scalar_one_or_none()

    if not booking:
        raise NotFoundError(f"Booking {booking_id} not found", booking_id=booking_id)
    return booking


def check_version(booking: Booking, expected_version: int | None) -> None:
    if expected_version is not None and booking.version != expected_version:
        record_concurrency_conflict("booking")
        raise ConcurrencyConflictError(
            f"Booking {booking.id} changed since it was read",
            booking_id=booking.id,
            expected_version=expected_version,
            current_version=booking.version,
        )


def ensure_transition(booking: Booking, to_status: str, metadata: dict) -> None:
    """Raise unless `booking` may move to `to_status` with this metadata."""
    if not can_transition(booking.status, to_status):
        raise InvalidTransitionError(
            f"Cannot move booking {booking.id} from {booking.status} to {to_status}",
            booking_id=booking.id,
            from_status=booking.status,
            to_status=to_status,
            allowed=sorted(allowed_transitions(booking.status)),
        )
    if to_status == S.SEATED.value and not booking.table_links:
        raise InvalidTransitionError(
            f"Booking {booking.id} cannot be seated without an assigned table",
            booking_id=booking.id,
            from_status=booking.status,
            to_status=to_status,
        )
    if to_status in REASON_REQUIRED:
        reason = metadata.get("reason")
        if not isinstance(reason, str) or not reason.strip():
            raise ValidationError(
                f"A reason is required to move a booking to {to_status}",
                booking_id=booking.id,
                to_status=to_status,
            )


def record_history(
    booking: Booking,
    from_status: str | None,
    to_status: str,
    actor: str,
    metadata: dict,
    clock: Clock,
) -> BookingStatusChange:
    change = BookingStatusChange(
        from_status=from_status,
        to_status=to_status,
        at=clock.now(),
        actor=actor,
        metadata_=metadata or None,
    )
    booking.history.append(change)
    return change


async def _bump_version(db: AsyncSession, booking: Booking, **values) -> None:
    seen_version = booking.version
    try:
        result = await db.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.version == seen_version)
            .values(version=seen_version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        matched = result.rowcount
    except DBAPIError as e:
        if not is_serialization_failure(e):
            raise
        matched = 0
    if matched == 0:
        record_concurrency_conflict("booking")
        logger.info("booking_version_conflict", booking_id=booking.id, seen_version=seen_version)
        raise ConcurrencyConflictError(
            f"Booking {booking.id} was modified by a concurrent operation",
            booking_id=booking.id,
            seen_version=seen_version,
        )
    set_committed_value(booking, "version", seen_version + 1)
    for key, value in values.items():
        set_committed_value(booking, key, value)


async def apply_transition(
    db: AsyncSession,
    booking: Booking,
    to_status: str,
    actor: str,
    metadata: Metadata = None,
    *,
    clock: Clock,
) -> BookingStatusChange:
    """Validate, compare-and-swap and append history for one status change."""
    _require_actor(actor)
    to_status = _parse_status(to_status)
    metadata = clean_metadata(metadata)
    ensure_transition(booking, to_status, metadata)

    from_status = booking.status
    await _bump_version(db, booking, status=to_status, updated_at=clock.now())
    change = record_history(booking, from_status, to_status, actor, metadata, clock)
    await db.flush()

    record_transition(to_status)
    logger.info(
        "booking_transitioned",
        booking_id=booking.id,
        from_status=from_status,
        to_status=to_status,
        actor=actor,
        version=booking.version,
    )
    return change


async def transition(
    db: AsyncSession,
    booking_id: int,
    to_status: str,
    actor: str,
    metadata: Metadata = None,
    *,
    clock: Clock,
    expected_version: int | None = None,
) -> Booking:
    booking = await load_booking(db, booking_id)
    check_version(booking, expected_version)
    await apply_transition(db, booking, to_status, actor, metadata, clock=clock)
    return booking


async def assign_tables(
    db: AsyncSession,
    booking: Booking,
    table_ids: list[int],
) -> list:
    """
    Validate, conflict-check and claim `table_ids`, then make them the
    booking's assignment. Returns the claimed tables in the given order.

    Conflicts are checked against the booking's own window, ignoring the
    booking itself, so re-assigning the tables it already holds is allowed.
    """
    tables = await resolve_tables(db, list(table_ids), booking.party_size)
    window = Window(booking.start_time, booking.end_time)

    conflicts = await find_conflicts(db, [t.id for t in tables], window, exclude_booking_id=booking.id)
    if conflicts:
        record_allocation("conflict")
        raise ConflictError(
            "Tables are already booked for an overlapping window",
            booking_id=booking.id,
            conflicts={
                str(table_id): [other.id for other in others]
                for table_id, others in conflicts.items()
            },
        )

    await claim_tables(db, tables)

    # Kept tables keep their link rows; dropped ones are deleted as orphans
    existing = {link.table_id: link for link in booking.table_links}
    links = []
    for position, table in enumerate(tables):
        link = existing.get(table.id) or BookingTable(table_id=table.id)
        link.position = position
        links.append(link)
    booking.table_links = links
    return tables


def _check_not_too_early(booking: Booking, clock: Clock) -> None:
    earliest = booking.start_time - timedelta(minutes=settings.CHECK_IN_EARLY_MINUTES)
    if clock.now() < earliest:
        raise ValidationError(
            f"Check-in opens {settings.CHECK_IN_EARLY_MINUTES} minutes before the booking",
            booking_id=booking.id,
            start_time=booking.start_time.isoformat(),
            earliest_check_in=earliest.isoformat(),
        )


def _table_metadata(table_ids: list[int]) -> str:
    return ",".join(str(table_id) for table_id in table_ids)


async def check_in(
    db: AsyncSession,
    booking_id: int,
    actor: str,
    table_ids: list[int] | None = None,
    *,
    clock: Clock,
    expected_version: int | None = None,
) -> Booking:
    """confirmed -> arrived, optionally attaching tables in the same unit."""
    booking = await load_booking(db, booking_id)
    check_version(booking, expected_version)
    ensure_transition(booking, S.ARRIVED.value, {})
    _check_not_too_early(booking, clock)

    metadata = {"action": "check_in"}
    if table_ids:
        await assign_tables(db, booking, table_ids)
        metadata["table_ids"] = _table_metadata(table_ids)

    await apply_transition(db, booking, S.ARRIVED.value, actor, metadata, clock=clock)
    return booking


async def seat(
    db: AsyncSession,
    booking_id: int,
    actor: str,
    table_ids: list[int] | None = None,
    *,
    clock: Clock,
    expected_version: int | None = None,
) -> Booking:
    """
    Seat a guest: attach the given tables, or plan some if none are held,
    then move to seated. From confirmed the arrival is recorded first.
    """
    booking = await load_booking(db, booking_id)
    check_version(booking, expected_version)

    if booking.status == S.CONFIRMED.value:
        _check_not_too_early(booking, clock)
    elif booking.status != S.ARRIVED.value:
        raise InvalidTransitionError(
            f"Cannot seat booking {booking.id} from {booking.status}",
            booking_id=booking.id,
            from_status=booking.status,
            to_status=S.SEATED.value,
        )

    if table_ids:
        await assign_tables(db, booking, table_ids)
    elif not booking.table_links:
        plan = await plan_assignment(
            db,
            booking.party_size,
            Window(booking.start_time, booking.end_time),
            clock=clock,
            exclude_booking_id=booking.id,
        )
        if isinstance(plan, Unavailable):
            raise NoAvailabilityError(
                f"No table can seat booking {booking.id} now",
                alternatives=plan.alternatives.to_dict(),
                booking_id=booking.id,
            )
        await assign_tables(db, booking, list(plan.table_ids))

    if booking.status == S.CONFIRMED.value:
        await apply_transition(db, booking, S.ARRIVED.value, actor, {"action": "seat"}, clock=clock)
    await apply_transition(
        db,
        booking,
        S.SEATED.value,
        actor,
        {"action": "seat", "table_ids": _table_metadata(booking.assigned_table_ids)},
        clock=clock,
    )
    return booking


async def reassign_tables(
    db: AsyncSession,
    booking_id: int,
    actor: str,
    table_ids: list[int],
    reason: str,
    *,
    clock: Clock,
    expected_version: int | None = None,
) -> Booking:
    """Replace the assignment of a live booking; status is unchanged."""
    _require_actor(actor)
    if not isinstance(reason, str) or not reason.strip():
        raise ValidationError(
            "A reason is required to reassign tables",
            booking_id=booking_id,
        )
    booking = await load_booking(db, booking_id)
    check_version(booking, expected_version)

    if booking.is_terminal:
        raise InvalidTransitionError(
            f"Cannot reassign tables of booking {booking.id} in {booking.status}",
            booking_id=booking.id,
            from_status=booking.status,
        )
    if not table_ids:
        raise ValidationError("At least one table id is required", booking_id=booking.id)

    previous = booking.assigned_table_ids
    await assign_tables(db, booking, table_ids)
    await _bump_version(db, booking, updated_at=clock.now())

    metadata = {
        "action": "table_reassignment",
        "from_tables": _table_metadata(previous),
        "to_tables": _table_metadata(table_ids),
        "reason": reason,
    }
    record_history(booking, booking.status, booking.status, actor, metadata, clock)
    await db.flush()

    logger.info(
        "booking_tables_reassigned",
        booking_id=booking.id,
        from_tables=previous,
        to_tables=list(table_ids),
        actor=actor,
    )
    return booking
