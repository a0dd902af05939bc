"""
Tests for the request mediator: creating, accepting, declining and
auto-declining booking requests.
"""

from datetime import timedelta

import pytest

from app.core.errors import (
    ValidationError,
    ConflictError,
    NoAvailabilityError,
    InvalidTransitionError,
    RequestExpiredError,
)
from app.services.booking_service import (
    AcceptOptions,
    accept_request,
    auto_decline_expired_requests,
    create_booking,
    create_walk_in,
    decline_request,
)
from app.services.lifecycle_service import load_booking, transition
from tests.conftest import at


@pytest.mark.asyncio
async def test_request_policy_creates_pending_with_expiry(db_session, clock):
    booking = await create_booking(
        db_session, party_size=4, start_time=at(19), actor="guest", clock=clock, policy="request"
    )
    await db_session.commit()

    assert booking.status == "pending"
    assert booking.source == "request"
    assert booking.assigned_table_ids == []
    assert booking.end_time == at(21)
    assert booking.request_expires_at == clock.now() + timedelta(hours=24)
    assert [(c.from_status, c.to_status) for c in booking.history] == [(None, "pending")]


@pytest.mark.asyncio
async def test_instant_policy_confirms_with_tables(db_session, make_table, clock):
    table_a = await make_table(1, 2, 4)

    booking = await create_booking(
        db_session, party_size=4, start_time=at(19), actor="guest", clock=clock, policy="instant"
    )

    assert booking.status == "confirmed"
    assert booking.assigned_table_ids == [table_a.id]
    assert booking.request_expires_at is None


@pytest.mark.asyncio
async def test_instant_policy_without_room_writes_nothing(db_session, make_table, make_booking, clock):
    table_a = await make_table(1, 2, 4)
    await make_booking(party_size=4, start=at(19), table_ids=[table_a.id])

    with pytest.raises(NoAvailabilityError) as exc_info:
        await create_booking(
            db_session, party_size=4, start_time=at(19), actor="guest", clock=clock, policy="instant"
        )
    await db_session.rollback()

    # Only the slots a full turn before or after the held window are free
    slots = exc_info.value.alternatives["slots"]
    assert [slot["start_time"] for slot in slots] == [at(17).isoformat(), at(21).isoformat()]


@pytest.mark.asyncio
async def test_booking_in_the_past_rejected(db_session, clock):
    with pytest.raises(ValidationError):
        await create_booking(
            db_session, party_size=2, start_time=at(11), actor="guest", clock=clock
        )


@pytest.mark.asyncio
async def test_non_positive_party_rejected(db_session, clock):
    with pytest.raises(ValidationError):
        await create_booking(db_session, party_size=0, start_time=at(19), actor="guest", clock=clock)


@pytest.mark.asyncio
async def test_walk_in_starts_now(db_session, make_table, clock):
    table_a = await make_table(1, 1, 2)

    booking = await create_walk_in(db_session, party_size=2, actor="host-1", clock=clock)

    assert booking.status == "confirmed"
    assert booking.source == "walk_in"
    assert booking.start_time == clock.now()
    assert booking.assigned_table_ids == [table_a.id]


@pytest.mark.asyncio
async def test_walk_in_with_running_clock(db_session, make_table, ticking_clock):
    """The clock keeps moving between reads; a walk-in still starts at the moment it was made."""
    table_a = await make_table(1, 1, 4)

    booking = await create_walk_in(db_session, party_size=2, actor="host-1", clock=ticking_clock)
    await db_session.commit()

    assert booking.status == "confirmed"
    assert booking.source == "walk_in"
    assert at(12) <= booking.start_time < ticking_clock.now()
    assert booking.end_time == booking.start_time + timedelta(minutes=120)
    assert booking.assigned_table_ids == [table_a.id]
    assert [(c.from_status, c.to_status) for c in booking.history] == [(None, "confirmed")]


@pytest.mark.asyncio
async def test_accept_plans_and_confirms(db_session, make_table, make_booking, clock):
    table_a = await make_table(1, 2, 4)
    request = await make_booking(party_size=4, status="pending")

    outcome = await accept_request(db_session, request.id, "host-1", clock=clock)
    await db_session.commit()

    assert outcome.assignment.table_ids == (table_a.id,)
    assert outcome.booking.status == "confirmed"
    assert outcome.booking.version == 2

    reloaded = await load_booking(db_session, request.id)
    assert reloaded.assigned_table_ids == [table_a.id]
    assert reloaded.history[-1].metadata_["table_ids"] == str(table_a.id)


@pytest.mark.asyncio
async def test_accept_with_combination(db_session, make_table, make_booking, clock):
    table_b = await make_table(2, 2, 3, combinable=True)
    table_c = await make_table(3, 3, 4, combinable=True)
    request = await make_booking(party_size=6, status="pending")

    outcome = await accept_request(db_session, request.id, "host-1", clock=clock)

    assert outcome.assignment.requires_combination is True
    assert outcome.booking.assigned_table_ids == [table_b.id, table_c.id]


@pytest.mark.asyncio
async def test_accept_without_room_leaves_booking_pending(db_session, make_table, make_booking, clock):
    table_a = await make_table(1, 2, 4)
    await make_booking(party_size=4, start=at(19), table_ids=[table_a.id])
    request = await make_booking(party_size=4, status="pending", start=at(20))

    with pytest.raises(NoAvailabilityError) as exc_info:
        await accept_request(db_session, request.id, "host-1", clock=clock)
    await db_session.rollback()

    assert exc_info.value.alternatives["slots"]
    reloaded = await load_booking(db_session, request.id)
    assert reloaded.status == "pending"
    assert reloaded.version == 1
    assert reloaded.assigned_table_ids == []


@pytest.mark.asyncio
async def test_accept_explicit_tables_conflict_with_alternatives(
    db_session, make_table, make_booking, clock
):
    table_a = await make_table(1, 2, 4)
    table_b = await make_table(2, 2, 4)
    existing = await make_booking(party_size=4, start=at(19), table_ids=[table_a.id])
    request = await make_booking(party_size=4, status="pending", start=at(20))

    with pytest.raises(ConflictError) as exc_info:
        await accept_request(
            db_session,
            request.id,
            "host-1",
            [table_a.id],
            AcceptOptions(suggest_alternatives=True),
            clock=clock,
        )

    context = exc_info.value.context
    assert context["conflicts"] == {str(table_a.id): [existing.id]}
    assert context["alternatives"]["tables"]["table_ids"] == [table_b.id]


@pytest.mark.asyncio
async def test_accept_skip_table_assignment(db_session, make_booking, clock):
    request = await make_booking(party_size=4, status="pending")

    outcome = await accept_request(
        db_session, request.id, "host-1", opts=AcceptOptions(skip_table_assignment=True), clock=clock
    )

    assert outcome.booking.status == "confirmed"
    assert outcome.assignment is None
    assert outcome.booking.history[-1].metadata_["skip_table_assignment"] is True


@pytest.mark.asyncio
async def test_accept_non_pending_rejected(db_session, make_booking, clock):
    booking = await make_booking(status="confirmed")

    with pytest.raises(InvalidTransitionError):
        await accept_request(db_session, booking.id, "host-1", clock=clock)


@pytest.mark.asyncio
async def test_accept_expired_request(db_session, make_table, make_booking, clock):
    await make_table(1, 2, 4)
    request = await make_booking(
        party_size=2, status="pending", request_expires_at=clock.now() + timedelta(hours=1)
    )
    clock.advance(hours=2)

    with pytest.raises(RequestExpiredError):
        await accept_request(db_session, request.id, "host-1", clock=clock)


@pytest.mark.asyncio
async def test_decline_with_alternatives(db_session, make_table, make_booking, clock):
    table_a = await make_table(1, 2, 4)
    await make_booking(party_size=4, start=at(19), table_ids=[table_a.id])
    request = await make_booking(party_size=4, status="pending", start=at(20))

    outcome = await decline_request(
        db_session, request.id, "host-1", "fully booked", suggest=True, clock=clock
    )

    assert outcome.booking.status == "declined_by_restaurant"
    assert outcome.alternatives.slots[0].start_time == at(21)
    metadata = outcome.booking.history[-1].metadata_
    assert metadata["reason"] == "fully booked"
    assert metadata["alternatives_suggested"] is True
    assert metadata["alternative_slots"] == len(outcome.alternatives.slots)
    assert metadata["suggested_time"] == at(21).isoformat()
    # Declining never touches tables
    assert outcome.booking.assigned_table_ids == []


@pytest.mark.asyncio
async def test_decline_requires_reason(db_session, make_booking, clock):
    request = await make_booking(status="pending")

    with pytest.raises(ValidationError):
        await decline_request(db_session, request.id, "host-1", "  ", clock=clock)


@pytest.mark.asyncio
async def test_decline_then_new_request_keeps_history(db_session, make_table, make_booking, clock):
    """A declined request stays declined with its full history; re-asking is a new booking."""
    await make_table(1, 2, 4)
    request = await make_booking(party_size=2, status="pending")

    await decline_request(db_session, request.id, "host-1", "kitchen closed", clock=clock)
    await db_session.commit()

    with pytest.raises(InvalidTransitionError):
        await transition(db_session, request.id, "confirmed", "host-1", clock=clock)
    await db_session.rollback()

    reloaded = await load_booking(db_session, request.id)
    assert [(c.from_status, c.to_status) for c in reloaded.history] == [
        (None, "pending"),
        ("pending", "declined_by_restaurant"),
    ]


@pytest.mark.asyncio
async def test_auto_decline_expired_requests(session_factory, make_booking, clock, notifier):
    expired = await make_booking(
        status="pending", request_expires_at=clock.now() + timedelta(hours=1)
    )
    fresh = await make_booking(
        status="pending", request_expires_at=clock.now() + timedelta(hours=5)
    )
    clock.advance(hours=2)

    declined = await auto_decline_expired_requests(session_factory, clock=clock, notifier=notifier)

    assert declined == [expired.id]
    assert notifier.names() == ["booking_auto_declined"]
    async with session_factory() as session:
        assert (await load_booking(session, expired.id)).status == "auto_declined"
        still_pending = await load_booking(session, fresh.id)
        assert still_pending.status == "pending"
        last = (await load_booking(session, expired.id)).history[-1]
        assert last.actor == "system"
        assert last.metadata_["reason"]
