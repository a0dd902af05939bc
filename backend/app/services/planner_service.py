"""
Assignment planner: picks the table(s) a party should get.

ALGORITHM
=========

Given a party size and a window:

  1. Candidate tables = active tables with no active booking overlapping the
     window.
  2. Single-table pass: tables with min_capacity <= party <= max_capacity.
     Best = least waste (max_capacity - party). Ties, in order:
       fewer preference misses (table_type, section)
       higher priority_score
       lower table_number
       lower id
  3. Combination pass, only if step 2 found nothing: unordered pairs of
     combinable candidates that accept each other, with max_A + max_B >= party.
     Same ordering on combined waste, summed preference misses, summed
     priority, then the pair's table numbers and ids.
  4. Nothing fits: return Unavailable with alternatives, namely start times
     within +-ALTERNATIVE_HORIZON_MINUTES at SLOT_STEP_MINUTES (nearest first,
     earlier first on ties, never in the past, at most MAX_ALTERNATIVE_SLOTS)
     plus the largest single and combined capacity still free at the
     requested time.

Tables and bookings are read once per planning pass (one query each, covering
the whole horizon) and every candidate slot is then checked in memory, so a
pass costs two queries no matter how many slots it scans.

The planner never writes. Whoever acts on an Assignment re-checks conflicts in
SQL and claims the tables (see catalog_service.claim_tables).
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from itertools import combinations

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.errors import ValidationError
from app.core.logging import get_logger
from app.core.metrics import planner_latency, record_allocation
from app.models.table import RestaurantTable
from app.services.catalog_service import list_tables
from app.services.conflict_service import Window, Occupancy, load_occupancy, busy_table_ids
from app.services.interfaces.clock import Clock

logger = get_logger(__name__)
settings = get_settings()


@dataclass(frozen=True)
class PlanPreferences:
    table_type: str | None = None
    section: str | None = None

    def misses(self, table: RestaurantTable) -> int:
        count = 0
        if self.table_type and table.table_type != self.table_type:
            count += 1
        if self.section and table.section != self.section:
            count += 1
        return count


@dataclass(frozen=True)
class Assignment:
    table_ids: tuple[int, ...]
    requires_combination: bool
    total_capacity: int

    def to_dict(self) -> dict:
        return {
            "table_ids": list(self.table_ids),
            "requires_combination": self.requires_combination,
            "total_capacity": self.total_capacity,
        }


@dataclass(frozen=True)
class AlternativeSlot:
    start_time: datetime
    assignment: Assignment

    def to_dict(self) -> dict:
        return {"start_time": self.start_time.isoformat(), **self.assignment.to_dict()}


@dataclass
class Alternatives:
    # Tables free at the requested time, when some assignment exists there
    tables: Assignment | None = None
    slots: list[AlternativeSlot] = field(default_factory=list)
    largest_single_capacity: int | None = None
    largest_combination_capacity: int | None = None

    def to_dict(self) -> dict:
        return {
            "tables": self.tables.to_dict() if self.tables else None,
            "slots": [slot.to_dict() for slot in self.slots],
            "largest_single_capacity": self.largest_single_capacity,
            "largest_combination_capacity": self.largest_combination_capacity,
        }


@dataclass(frozen=True)
class Unavailable:
    alternatives: Alternatives


def _single_key(table: RestaurantTable, party_size: int, prefs: PlanPreferences):
    return (
        table.max_capacity - party_size,
        prefs.misses(table),
        -table.priority_score,
        table.table_number,
        table.id,
    )


def _pair_key(pair, party_size: int, prefs: PlanPreferences):
    a, b = pair
    return (
        a.max_capacity + b.max_capacity - party_size,
        prefs.misses(a) + prefs.misses(b),
        -(a.priority_score + b.priority_score),
        tuple(sorted((a.table_number, b.table_number))),
        tuple(sorted((a.id, b.id))),
    )


def _can_pair(a: RestaurantTable, b: RestaurantTable) -> bool:
    return a.combinable and b.combinable and a.accepts_partner(b) and b.accepts_partner(a)


def _pairs(tables: list[RestaurantTable], party_size: int):
    """Combinable pairs the party can occupy: it must meet both minimums together."""
    return [
        (a, b) for a, b in combinations(tables, 2)
        if _can_pair(a, b) and a.min_capacity + b.min_capacity <= party_size
    ]


def select_assignment(
    tables: list[RestaurantTable],
    party_size: int,
    prefs: PlanPreferences | None = None,
) -> Assignment | None:
    """Pure selection over already-free tables."""
    prefs = prefs or PlanPreferences()

    singles = [t for t in tables if t.min_capacity <= party_size <= t.max_capacity]
    if singles:
        best = min(singles, key=lambda t: _single_key(t, party_size, prefs))
        return Assignment(
            table_ids=(best.id,),
            requires_combination=False,
            total_capacity=best.max_capacity,
        )

    pairs = [
        pair for pair in _pairs(tables, party_size)
        if pair[0].max_capacity + pair[1].max_capacity >= party_size
    ]
    if not pairs:
        return None

    a, b = min(pairs, key=lambda pair: _pair_key(pair, party_size, prefs))
    ordered = sorted((a, b), key=lambda t: (t.table_number, t.id))
    return Assignment(
        table_ids=tuple(t.id for t in ordered),
        requires_combination=True,
        total_capacity=a.max_capacity + b.max_capacity,
    )


class PlanningSnapshot:
    """Active tables plus the active bookings around a window, loaded once."""

    def __init__(self, tables: list[RestaurantTable], occupancy: list[Occupancy]):
        self.tables = tables
        self.occupancy = occupancy

    @classmethod
    async def load(
        cls,
        db: AsyncSession,
        span: Window,
        exclude_booking_id: int | None = None,
    ) -> "PlanningSnapshot":
        tables = await list_tables(db, active_only=True)
        occupancy = await load_occupancy(db, span, exclude_booking_id)
        return cls(tables, occupancy)

    def free_tables(self, window: Window) -> list[RestaurantTable]:
        busy = busy_table_ids(self.occupancy, window)
        return [table for table in self.tables if table.id not in busy]

    def assignment_at(
        self,
        window: Window,
        party_size: int,
        prefs: PlanPreferences | None = None,
    ) -> Assignment | None:
        return select_assignment(self.free_tables(window), party_size, prefs)

    def largest_capacities(self, window: Window, party_size: int) -> tuple[int | None, int | None]:
        free = self.free_tables(window)
        single = max((t.max_capacity for t in free), default=None)
        combined = max((a.max_capacity + b.max_capacity for a, b in _pairs(free, party_size)), default=None)
        return single, combined

    def alternatives_for(
        self,
        window: Window,
        party_size: int,
        prefs: PlanPreferences | None,
        now: datetime,
    ) -> Alternatives:
        single, combined = self.largest_capacities(window, party_size)
        return Alternatives(
            tables=self.assignment_at(window, party_size, prefs),
            slots=self.nearby_slots(window, party_size, prefs, now),
            largest_single_capacity=single,
            largest_combination_capacity=combined,
        )

    def nearby_slots(
        self,
        window: Window,
        party_size: int,
        prefs: PlanPreferences | None,
        now: datetime,
    ) -> list[AlternativeSlot]:
        slots = []
        for offset in candidate_offsets():
            candidate = window.shifted(offset)
            if candidate.start < now:
                continue
            assignment = self.assignment_at(candidate, party_size, prefs)
            if assignment is None:
                continue
            slots.append(AlternativeSlot(start_time=candidate.start, assignment=assignment))
            if len(slots) >= settings.MAX_ALTERNATIVE_SLOTS:
                break
        return slots


def candidate_offsets() -> list[int]:
    """Minute offsets around a requested start: nearest first, earlier first on ties."""
    step = settings.SLOT_STEP_MINUTES
    offsets = []
    for k in range(1, settings.ALTERNATIVE_HORIZON_MINUTES // step + 1):
        offsets.extend((-k * step, k * step))
    return offsets


def horizon_span(window: Window) -> Window:
    horizon = timedelta(minutes=settings.ALTERNATIVE_HORIZON_MINUTES)
    return Window(window.start - horizon, window.end + horizon)


def _check_party_size(party_size: int) -> None:
    if party_size is None or party_size <= 0:
        raise ValidationError("Party size must be positive", party_size=party_size)


async def plan_assignment(
    db: AsyncSession,
    party_size: int,
    window: Window,
    prefs: PlanPreferences | None = None,
    *,
    clock: Clock,
    exclude_booking_id: int | None = None,
) -> Assignment | Unavailable:
    """
    Best assignment for the party at `window`, or Unavailable with alternatives.

    Deterministic for identical stored state and clock.
    """
    _check_party_size(party_size)

    with planner_latency.time():
        snapshot = await PlanningSnapshot.load(db, horizon_span(window), exclude_booking_id)
        assignment = snapshot.assignment_at(window, party_size, prefs)
        if assignment is None:
            alternatives = snapshot.alternatives_for(window, party_size, prefs, clock.now())

    if assignment is not None:
        record_allocation("assigned")
        logger.info(
            "assignment_planned",
            party_size=party_size,
            start=window.start.isoformat(),
            table_ids=list(assignment.table_ids),
            requires_combination=assignment.requires_combination,
        )
        return assignment

    record_allocation("unavailable")
    logger.info(
        "assignment_unavailable",
        party_size=party_size,
        start=window.start.isoformat(),
        alternative_slots=len(alternatives.slots),
        largest_single_capacity=alternatives.largest_single_capacity,
        largest_combination_capacity=alternatives.largest_combination_capacity,
    )
    return Unavailable(alternatives=alternatives)


async def suggest_alternatives(
    db: AsyncSession,
    party_size: int,
    window: Window,
    prefs: PlanPreferences | None = None,
    *,
    clock: Clock,
    exclude_booking_id: int | None = None,
) -> Alternatives:
    """Tables at the requested time plus nearby slots; read-only."""
    _check_party_size(party_size)
    snapshot = await PlanningSnapshot.load(db, horizon_span(window), exclude_booking_id)
    return snapshot.alternatives_for(window, party_size, prefs, clock.now())
