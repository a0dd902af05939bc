"""
Tests for the assignment planner: single tables, two-table combinations,
tie-breaking and alternatives.
"""

from datetime import timedelta

import pytest

from app.core.errors import ValidationError
from app.services.conflict_service import Window
from app.services.planner_service import (
    Assignment,
    PlanPreferences,
    Unavailable,
    candidate_offsets,
    plan_assignment,
    suggest_alternatives,
)
from tests.conftest import at


def evening(hour=19, minute=0, turn_time=120):
    return Window.from_turn_time(at(hour, minute), turn_time)


@pytest.mark.asyncio
async def test_single_table_fits(db_session, make_table, clock):
    """Party of 4 gets the 2-4 table."""
    table_a = await make_table(1, 2, 4)

    plan = await plan_assignment(db_session, 4, evening(), clock=clock)

    assert plan == Assignment(table_ids=(table_a.id,), requires_combination=False, total_capacity=4)


@pytest.mark.asyncio
async def test_two_table_combination_when_no_single_fits(db_session, make_table, clock):
    """Party of 6: B(2-3) + C(3-4) combine to 7."""
    table_b = await make_table(2, 2, 3, combinable=True)
    table_c = await make_table(3, 3, 4, combinable=True)

    plan = await plan_assignment(db_session, 6, evening(), clock=clock)

    assert isinstance(plan, Assignment)
    assert plan.table_ids == (table_b.id, table_c.id)
    assert plan.requires_combination is True
    assert plan.total_capacity == 7


@pytest.mark.asyncio
async def test_pair_needs_party_to_meet_both_minimums(db_session, make_table, clock):
    """A party of 1 cannot occupy two 2-4 tables, combinable or not."""
    await make_table(1, 2, 4, combinable=True)
    await make_table(2, 2, 4, combinable=True)

    plan = await plan_assignment(db_session, 1, evening(), clock=clock)

    assert isinstance(plan, Unavailable)
    assert plan.alternatives.largest_single_capacity == 4
    assert plan.alternatives.largest_combination_capacity is None

    plan = await plan_assignment(db_session, 5, evening(), clock=clock)
    assert isinstance(plan, Assignment)
    assert plan.requires_combination is True


@pytest.mark.asyncio
async def test_non_combinable_tables_are_never_paired(db_session, make_table, clock):
    await make_table(2, 2, 3, combinable=True)
    await make_table(3, 3, 4, combinable=False)

    plan = await plan_assignment(db_session, 6, evening(), clock=clock)
    assert isinstance(plan, Unavailable)


@pytest.mark.asyncio
async def test_least_waste_wins(db_session, make_table, clock):
    await make_table(1, 2, 8)
    snug = await make_table(2, 2, 4)

    plan = await plan_assignment(db_session, 3, evening(), clock=clock)
    assert plan.table_ids == (snug.id,)


@pytest.mark.asyncio
async def test_party_below_minimum_skips_table(db_session, make_table, clock):
    await make_table(1, 6, 8)
    small = await make_table(2, 1, 2)

    plan = await plan_assignment(db_session, 2, evening(), clock=clock)
    assert plan.table_ids == (small.id,)


@pytest.mark.asyncio
async def test_single_table_preferred_over_tighter_combination(db_session, make_table, clock):
    large = await make_table(1, 4, 10)
    await make_table(2, 2, 3, combinable=True)
    await make_table(3, 2, 3, combinable=True)

    plan = await plan_assignment(db_session, 6, evening(), clock=clock)
    assert plan.table_ids == (large.id,)
    assert plan.requires_combination is False


@pytest.mark.asyncio
async def test_tie_break_preference_then_priority_then_number(db_session, make_table, clock):
    low_number = await make_table(1, 2, 4)
    high_priority = await make_table(2, 2, 4, priority_score=5.0)
    patio = await make_table(3, 2, 4, section="patio")

    plan = await plan_assignment(db_session, 4, evening(), clock=clock)
    assert plan.table_ids == (high_priority.id,)

    plan = await plan_assignment(db_session, 4, evening(), PlanPreferences(section="patio"), clock=clock)
    assert plan.table_ids == (patio.id,)

    # Equal waste and priority: lower table number
    await make_table(4, 2, 4, priority_score=5.0)
    plan = await plan_assignment(db_session, 4, evening(), clock=clock)
    assert plan.table_ids == (high_priority.id,)
    assert low_number.id not in plan.table_ids


@pytest.mark.asyncio
async def test_combination_respects_pairing_lists(db_session, make_table, clock):
    table_d = await make_table(4, 2, 4, combinable=True)
    table_c = await make_table(3, 3, 4, combinable=True, combinable_with=[table_d.id])
    table_b = await make_table(2, 2, 3, combinable=True)

    plan = await plan_assignment(db_session, 6, evening(), clock=clock)

    # B+C would waste as little, but C only pairs with D
    assert plan.table_ids == (table_b.id, table_d.id)
    assert table_c.id not in plan.table_ids


@pytest.mark.asyncio
async def test_busy_and_inactive_tables_are_skipped(db_session, make_table, make_booking, clock):
    busy = await make_table(1, 2, 4)
    await make_table(2, 2, 4, active=False)
    free = await make_table(3, 2, 4)
    await make_booking(party_size=2, start=at(18), table_ids=[busy.id])

    plan = await plan_assignment(db_session, 4, evening(), clock=clock)
    assert plan.table_ids == (free.id,)


@pytest.mark.asyncio
async def test_excluded_booking_releases_its_own_table(db_session, make_table, make_booking, clock):
    table_a = await make_table(1, 2, 4)
    booking = await make_booking(party_size=4, start=at(19), table_ids=[table_a.id])

    plan = await plan_assignment(db_session, 4, evening(), clock=clock, exclude_booking_id=booking.id)
    assert plan.table_ids == (table_a.id,)


@pytest.mark.asyncio
async def test_occupied_table_suggests_later_slots(db_session, make_table, make_booking, clock):
    """Table A held 19:00-21:00; a 20:00 request is offered A from 21:00 onward."""
    table_a = await make_table(1, 2, 4)
    await make_booking(party_size=4, start=at(19), table_ids=[table_a.id])

    plan = await plan_assignment(db_session, 4, evening(20), clock=clock)

    assert isinstance(plan, Unavailable)
    slots = plan.alternatives.slots
    assert [slot.start_time for slot in slots] == [at(21), at(21, 15), at(21, 30), at(21, 45), at(22)]
    assert all(slot.assignment.table_ids == (table_a.id,) for slot in slots)
    assert plan.alternatives.tables is None
    assert plan.alternatives.largest_single_capacity is None


@pytest.mark.asyncio
async def test_other_table_at_requested_time(db_session, make_table, make_booking, clock):
    table_a = await make_table(1, 2, 4)
    table_b = await make_table(2, 2, 4)
    await make_booking(party_size=4, start=at(19), table_ids=[table_a.id])

    alternatives = await suggest_alternatives(db_session, 4, evening(20), clock=clock)

    assert alternatives.tables is not None
    assert alternatives.tables.table_ids == (table_b.id,)


@pytest.mark.asyncio
async def test_alternatives_earlier_first_on_equal_distance(db_session, make_table, make_booking, clock):
    table_a = await make_table(1, 2, 4)
    await make_booking(party_size=2, start=at(19), turn_time_minutes=60, table_ids=[table_a.id])

    plan = await plan_assignment(db_session, 2, evening(19, turn_time=60), clock=clock)

    starts = [slot.start_time for slot in plan.alternatives.slots]
    assert starts[:2] == [at(18), at(20)]


@pytest.mark.asyncio
async def test_alternatives_never_in_the_past_and_capped(db_session, make_table, make_booking, clock):
    table_a = await make_table(1, 2, 4)
    await make_booking(party_size=2, start=at(17), table_ids=[table_a.id])
    clock.set(at(18, 40))

    plan = await plan_assignment(db_session, 2, evening(18, 45), clock=clock)

    starts = [slot.start_time for slot in plan.alternatives.slots]
    assert all(start >= at(18, 40) for start in starts)
    assert starts == [at(19) + timedelta(minutes=15 * k) for k in range(6)]


@pytest.mark.asyncio
async def test_largest_capacities_reported(db_session, make_table, make_booking, clock):
    table_a = await make_table(1, 2, 4)
    await make_table(2, 1, 2, combinable=True)
    await make_table(3, 1, 2, combinable=True)
    await make_booking(party_size=4, start=at(19), table_ids=[table_a.id])

    plan = await plan_assignment(db_session, 6, evening(), clock=clock)

    assert isinstance(plan, Unavailable)
    assert plan.alternatives.largest_single_capacity == 2
    assert plan.alternatives.largest_combination_capacity == 4


@pytest.mark.asyncio
async def test_assignment_capacity_always_covers_party(db_session, make_table, clock):
    await make_table(1, 1, 2, combinable=True)
    await make_table(2, 2, 4, combinable=True)
    await make_table(3, 4, 6, combinable=True)
    await make_table(4, 2, 3)

    for party_size in range(1, 13):
        plan = await plan_assignment(db_session, party_size, evening(), clock=clock)
        if isinstance(plan, Assignment):
            assert plan.total_capacity >= party_size
            assert len(plan.table_ids) in (1, 2)
        else:
            assert party_size > 10


@pytest.mark.asyncio
async def test_non_positive_party_size_rejected(db_session, clock):
    with pytest.raises(ValidationError):
        await plan_assignment(db_session, 0, evening(), clock=clock)


def test_candidate_offsets_nearest_first():
    offsets = candidate_offsets()
    assert offsets[:4] == [-15, 15, -30, 30]
    assert max(offsets) == 120
    assert min(offsets) == -120
