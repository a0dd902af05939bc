"""
Tests for the booking lifecycle state machine and table operations.
"""

import pytest

from app.core.errors import (
    ValidationError,
    ConflictError,
    InvalidTransitionError,
    NoAvailabilityError,
)
from app.models.booking import BookingStatus, TERMINAL_STATUSES
from app.services.lifecycle_service import (
    TRANSITIONS,
    can_transition,
    check_in,
    dining_progress,
    load_booking,
    reassign_tables,
    seat,
    transition,
)
from tests.conftest import at


S = BookingStatus


def test_terminal_states_have_no_exits():
    for status in TERMINAL_STATUSES:
        assert TRANSITIONS[status] == frozenset()


def test_forward_path_is_one_stage_at_a_time():
    assert can_transition("confirmed", "arrived")
    assert can_transition("main_course", "dessert")
    assert can_transition("payment", "completed")
    assert not can_transition("confirmed", "seated")
    assert not can_transition("main_course", "payment")
    assert not can_transition("pending", "arrived")


def test_early_completion_allowed_from_dining_stages():
    for status in ("seated", "ordered", "appetizers", "main_course", "dessert"):
        assert can_transition(status, "completed")
    assert not can_transition("arrived", "completed")


def test_any_live_status_can_be_cancelled_or_no_show():
    for status in TRANSITIONS:
        if status in TERMINAL_STATUSES:
            continue
        for target in ("cancelled_by_user", "cancelled_by_restaurant", "no_show"):
            assert can_transition(status, target)


def test_dining_progress():
    assert dining_progress("pending") == 0
    assert dining_progress("seated") == 20
    assert dining_progress("payment") == 95
    assert dining_progress("no_show") == 100


@pytest.mark.asyncio
async def test_skipping_to_seated_from_pending_is_rejected(db_session, make_booking, clock):
    """pending -> seated raises and the booking stays pending."""
    booking = await make_booking(status="pending")

    with pytest.raises(InvalidTransitionError) as exc_info:
        await transition(db_session, booking.id, "seated", "host-1", clock=clock)
    assert exc_info.value.context["from_status"] == "pending"
    await db_session.rollback()

    reloaded = await load_booking(db_session, booking.id)
    assert reloaded.status == "pending"
    assert reloaded.version == 1
    assert len(reloaded.history) == 1


@pytest.mark.asyncio
async def test_transition_appends_history(db_session, make_table, make_booking, clock):
    table_a = await make_table(1, 2, 4)
    booking = await make_booking(status="confirmed", table_ids=[table_a.id])

    for target in ("arrived", "seated", "ordered"):
        clock.advance(minutes=5)
        await transition(db_session, booking.id, target, "host-1", clock=clock)
    await db_session.commit()

    reloaded = await load_booking(db_session, booking.id)
    assert reloaded.status == "ordered"
    assert reloaded.version == 4
    assert [(c.from_status, c.to_status) for c in reloaded.history] == [
        (None, "confirmed"),
        ("confirmed", "arrived"),
        ("arrived", "seated"),
        ("seated", "ordered"),
    ]
    assert reloaded.history[-1].to_status == reloaded.status
    assert reloaded.history[-1].actor == "host-1"
    assert reloaded.history[-1].at == clock.now()


@pytest.mark.asyncio
async def test_seated_requires_tables(db_session, make_booking, clock):
    booking = await make_booking(status="arrived")

    with pytest.raises(InvalidTransitionError):
        await transition(db_session, booking.id, "seated", "host-1", clock=clock)


@pytest.mark.asyncio
async def test_cancellation_requires_reason(db_session, make_booking, clock):
    booking = await make_booking(status="confirmed")

    with pytest.raises(ValidationError):
        await transition(db_session, booking.id, "cancelled_by_user", "guest", clock=clock)

    await db_session.rollback()
    cancelled = await transition(
        db_session, booking.id, "cancelled_by_user", "guest", {"reason": "plans changed"}, clock=clock
    )
    assert cancelled.status == "cancelled_by_user"
    assert cancelled.history[-1].metadata_ == {"reason": "plans changed"}


@pytest.mark.asyncio
async def test_metadata_must_be_flat_primitives(db_session, make_booking, clock):
    booking = await make_booking(status="confirmed")

    with pytest.raises(ValidationError):
        await transition(
            db_session, booking.id, "arrived", "host-1", {"tables": [1, 2]}, clock=clock
        )


@pytest.mark.asyncio
async def test_unknown_status_rejected(db_session, make_booking, clock):
    booking = await make_booking(status="confirmed")

    with pytest.raises(ValidationError):
        await transition(db_session, booking.id, "teleported", "host-1", clock=clock)


@pytest.mark.asyncio
async def test_terminal_booking_cannot_move(db_session, make_booking, clock):
    booking = await make_booking(status="completed")

    with pytest.raises(InvalidTransitionError):
        await transition(db_session, booking.id, "no_show", "host-1", clock=clock)


@pytest.mark.asyncio
async def test_check_in_attaches_tables(db_session, make_table, make_booking, clock):
    table_a = await make_table(1, 2, 4)
    booking = await make_booking(party_size=3, status="confirmed")
    clock.set(at(18, 45))

    checked_in = await check_in(db_session, booking.id, "host-1", [table_a.id], clock=clock)

    assert checked_in.status == "arrived"
    assert checked_in.assigned_table_ids == [table_a.id]
    assert checked_in.history[-1].metadata_["table_ids"] == str(table_a.id)


@pytest.mark.asyncio
async def test_check_in_too_early_is_refused(db_session, make_booking, clock):
    booking = await make_booking(status="confirmed", start=at(19))
    clock.set(at(18, 15))

    with pytest.raises(ValidationError):
        await check_in(db_session, booking.id, "host-1", clock=clock)


@pytest.mark.asyncio
async def test_seat_from_confirmed_records_arrival_and_plans_tables(
    db_session, make_table, make_booking, clock
):
    table_a = await make_table(1, 2, 4)
    booking = await make_booking(party_size=4, status="confirmed")
    clock.set(at(19))

    seated = await seat(db_session, booking.id, "host-1", clock=clock)

    assert seated.status == "seated"
    assert seated.assigned_table_ids == [table_a.id]
    assert [c.to_status for c in seated.history][-2:] == ["arrived", "seated"]


@pytest.mark.asyncio
async def test_seat_without_any_free_table(db_session, make_table, make_booking, clock):
    table_a = await make_table(1, 2, 4)
    await make_booking(party_size=2, status="seated", table_ids=[table_a.id])
    booking = await make_booking(party_size=2, status="arrived")
    clock.set(at(19))

    with pytest.raises(NoAvailabilityError):
        await seat(db_session, booking.id, "host-1", clock=clock)


@pytest.mark.asyncio
async def test_seat_on_occupied_table_conflicts(db_session, make_table, make_booking, clock):
    table_a = await make_table(1, 2, 4)
    await make_booking(party_size=2, status="seated", table_ids=[table_a.id])
    booking = await make_booking(party_size=2, status="arrived", start=at(20))
    clock.set(at(20))

    with pytest.raises(ConflictError):
        await seat(db_session, booking.id, "host-1", [table_a.id], clock=clock)


@pytest.mark.asyncio
async def test_reassign_tables_records_history(db_session, make_table, make_booking, clock):
    table_a = await make_table(1, 2, 4)
    table_b = await make_table(2, 2, 4)
    booking = await make_booking(party_size=2, status="seated", table_ids=[table_a.id])

    moved = await reassign_tables(
        db_session, booking.id, "host-1", [table_b.id], "guest asked for window", clock=clock
    )
    await db_session.commit()

    assert moved.status == "seated"
    assert moved.assigned_table_ids == [table_b.id]
    assert moved.version == 2
    change = moved.history[-1]
    assert change.from_status == change.to_status == "seated"
    assert change.metadata_["action"] == "table_reassignment"
    assert change.metadata_["from_tables"] == str(table_a.id)
    assert change.metadata_["to_tables"] == str(table_b.id)
    assert change.metadata_["reason"] == "guest asked for window"


@pytest.mark.asyncio
async def test_reassign_requires_reason(db_session, make_table, make_booking, clock):
    table_a = await make_table(1, 2, 4)
    table_b = await make_table(2, 2, 4)
    booking = await make_booking(party_size=2, status="seated", table_ids=[table_a.id])

    with pytest.raises(ValidationError):
        await reassign_tables(db_session, booking.id, "host-1", [table_b.id], "  ", clock=clock)

    reloaded = await load_booking(db_session, booking.id)
    assert reloaded.assigned_table_ids == [table_a.id]
    assert reloaded.version == 1


@pytest.mark.asyncio
async def test_reassign_to_combination_keeps_existing_table(db_session, make_table, make_booking, clock):
    table_a = await make_table(1, 2, 4, combinable=True)
    table_b = await make_table(2, 2, 4, combinable=True)
    booking = await make_booking(party_size=6, status="confirmed", table_ids=[table_a.id])

    moved = await reassign_tables(
        db_session, booking.id, "host-1", [table_a.id, table_b.id], "party grew", clock=clock
    )
    await db_session.commit()

    reloaded = await load_booking(db_session, moved.id)
    assert reloaded.assigned_table_ids == [table_a.id, table_b.id]


@pytest.mark.asyncio
async def test_reassign_rejects_undersized_tables(db_session, make_table, make_booking, clock):
    table_a = await make_table(1, 2, 6)
    small = await make_table(2, 1, 2)
    booking = await make_booking(party_size=5, status="confirmed", table_ids=[table_a.id])

    with pytest.raises(ValidationError):
        await reassign_tables(db_session, booking.id, "host-1", [small.id], "smaller table", clock=clock)


@pytest.mark.asyncio
async def test_reassign_terminal_booking_rejected(db_session, make_table, make_booking, clock):
    table_a = await make_table(1, 2, 4)
    booking = await make_booking(status="completed")

    with pytest.raises(InvalidTransitionError):
        await reassign_tables(db_session, booking.id, "host-1", [table_a.id], "moved", clock=clock)
