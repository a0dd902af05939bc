"""
Conflict detection for table time windows.

OVERLAP RULE
============

Windows are half-open: [start, start + turn_time).

  A.start < B.end AND A.end > B.start

so a booking ending at 19:00 and one starting at 19:00 on the same table do
not conflict. Only bookings in an active status (confirmed through payment)
hold a table; pending requests and terminal bookings never do.

Two renditions of the same rule live here:
  - `find_conflicts` asks the database, inside the caller's transaction.
    This is the check every write path runs right before claiming tables.
  - `load_occupancy` + `busy_table_ids` load one span of bookings once and
    answer many windows in memory, which is what the planner's slot scan uses.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ValidationError
from app.core.logging import get_logger
from app.models.booking import Booking, BookingTable, ACTIVE_STATUSES
from app.models.table import RestaurantTable
from app.services.interfaces.clock import ensure_utc

logger = get_logger(__name__)


@dataclass(frozen=True)
class Window:
    """A half-open time interval, always in UTC."""

    start: datetime
    end: datetime

    def __post_init__(self):
        start = ensure_utc(self.start)
        end = ensure_utc(self.end)
        if end <= start:
            raise ValidationError(
                "Window must end after it starts",
                start=start.isoformat(),
                end=end.isoformat(),
            )
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "end", end)

    @classmethod
    def from_turn_time(cls, start: datetime, turn_time_minutes: int) -> "Window":
        if turn_time_minutes is None or turn_time_minutes <= 0:
            raise ValidationError(
                "Turn time must be a positive number of minutes",
                turn_time_minutes=turn_time_minutes,
            )
        start = ensure_utc(start)
        return cls(start, start + timedelta(minutes=turn_time_minutes))

    @classmethod
    def of_booking(cls, booking: Booking) -> "Window":
        return cls(booking.start_time, booking.end_time)

    @property
    def turn_time_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def shifted(self, minutes: int) -> "Window":
        delta = timedelta(minutes=minutes)
        return Window(self.start + delta, self.end + delta)

    def overlaps(self, other: "Window") -> bool:
        return windows_overlap(self, other)


def windows_overlap(a: Window, b: Window) -> bool:
    return a.start < b.end and a.end > b.start


@dataclass(frozen=True)
class Occupancy:
    """One active booking holding one table over one window."""

    table_id: int
    booking_id: int
    window: Window


@dataclass
class AvailabilityReport:
    available: bool
    conflicts: dict[int, list[Booking]] = field(default_factory=dict)
    inactive_table_ids: list[int] = field(default_factory=list)


def _overlap_query(window: Window, exclude_booking_id: int | None):
    query = (
        select(BookingTable.table_id, Booking)
        .join(Booking, Booking.id == BookingTable.booking_id)
        .where(
            Booking.status.in_(ACTIVE_STATUSES),
            Booking.start_time < window.end,
            Booking.end_time > window.start,
        )
        .order_by(Booking.start_time, Booking.id, BookingTable.table_id)
    )
    if exclude_booking_id is not None:
        query = query.where(Booking.id != exclude_booking_id)
    return query


async def find_conflicts(
    db: AsyncSession,
    table_ids: list[int],
    window: Window,
    exclude_booking_id: int | None = None,
) -> dict[int, list[Booking]]:
    """
    Active bookings overlapping `window` on any of `table_ids`, per table.

    An empty dict means the tables are free. Read-only.
    """
    if not table_ids:
        return {}

    query = _overlap_query(window, exclude_booking_id).where(
        BookingTable.table_id.in_(list(table_ids))
    )
    result = await db.execute(query)

    conflicts: dict[int, list[Booking]] = {}
    for table_id, booking in result.all():
        conflicts.setdefault(table_id, []).append(booking)

    if conflicts:
        logger.debug(
            "conflicts_found",
            table_ids=sorted(conflicts),
            window_start=window.start.isoformat(),
            window_end=window.end.isoformat(),
        )
    return conflicts


async def check_availability(
    db: AsyncSession,
    table_ids: list[int],
    window: Window,
    exclude_booking_id: int | None = None,
) -> AvailabilityReport:
    """Unknown or inactive tables count as unavailable."""
    if not table_ids:
        raise ValidationError("At least one table id is required")

    requested = list(dict.fromkeys(table_ids))
    result = await db.execute(
        select(RestaurantTable.id).where(
            RestaurantTable.id.in_(requested),
            RestaurantTable.active.is_(True),
        )
    )
    active_ids = set(result.scalars().all())
    inactive = [table_id for table_id in requested if table_id not in active_ids]

    conflicts = await find_conflicts(
        db, [t for t in requested if t in active_ids], window, exclude_booking_id
    )
    return AvailabilityReport(
        available=not conflicts and not inactive,
        conflicts=conflicts,
        inactive_table_ids=inactive,
    )


async def load_occupancy(
    db: AsyncSession,
    span: Window,
    exclude_booking_id: int | None = None,
) -> list[Occupancy]:
    """Every active table hold intersecting `span`, for in-memory slot checks."""
    result = await db.execute(_overlap_query(span, exclude_booking_id))
    return [
        Occupancy(table_id=table_id, booking_id=booking.id, window=Window.of_booking(booking))
        for table_id, booking in result.all()
    ]


def conflicts_in(occupancy: list[Occupancy], table_id: int, window: Window) -> list[Occupancy]:
    return [
        hold for hold in occupancy
        if hold.table_id == table_id and windows_overlap(hold.window, window)
    ]


def busy_table_ids(occupancy: list[Occupancy], window: Window) -> set[int]:
    return {hold.table_id for hold in occupancy if windows_overlap(hold.window, window)}
