"""
Booking endpoints: requests, accept/decline, lifecycle transitions and
table operations.

Every write endpoint is one unit of work. The route commits explicitly and
only then dispatches notifications and schedules waitlist promotion, so a
notification can never announce something that was rolled back.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.deps import get_actor, get_clock, get_notifier, get_sessions
from app.db.session import get_db
from app.models.booking import Booking, BookingStatus
from app.schemas.booking import (
    BookingCreate,
    BookingResponse,
    BookingHistoryResponse,
    TransitionRequest,
    AcceptRequest,
    AcceptResponse,
    DeclineRequest,
    DeclineResponse,
    TableActionRequest,
    ReassignRequest,
)
from app.services.booking_service import (
    AcceptOptions,
    accept_request,
    booking_event,
    create_booking,
    create_walk_in,
    decline_request,
    list_bookings,
)
from app.services.conflict_service import Window
from app.services.interfaces.clock import Clock
from app.services.interfaces.notifier import NotificationSink
from app.services.lifecycle_service import (
    check_in,
    load_booking,
    reassign_tables,
    releases_tables,
    seat,
    transition,
)
from app.services.notification_service import dispatch
from app.services.planner_service import PlanPreferences
from app.services.waitlist_service import promote_waitlist
from app.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/bookings", tags=["Bookings"])


def _event_name(booking: Booking) -> str:
    if booking.status == BookingStatus.CONFIRMED.value:
        return "booking_confirmed"
    if booking.status == BookingStatus.DECLINED_BY_RESTAURANT.value:
        return "booking_declined"
    return "booking_status_changed"


async def _after_commit(
    booking: Booking,
    background_tasks: BackgroundTasks,
    sessions: async_sessionmaker,
    clock: Clock,
    notifier: NotificationSink,
    **details,
) -> None:
    await dispatch(notifier, booking_event(_event_name(booking), booking, clock, **details))

    last_change = booking.history[-1] if booking.history else None
    if last_change is not None and releases_tables(last_change.from_status, booking):
        background_tasks.add_task(
            promote_waitlist,
            sessions,
            clock=clock,
            notifier=notifier,
            freed_window=Window.of_booking(booking),
        )


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking_endpoint(
    booking_data: BookingCreate,
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    notifier: NotificationSink = Depends(get_notifier),
):
    """
    Create a booking request (request policy), an instantly confirmed booking
    (instant policy) or a walk-in starting now.

    Instant bookings and walk-ins get their tables in the same transaction;
    if nothing fits the response is a 409 carrying alternatives.
    """
    if booking_data.walk_in:
        booking = await create_walk_in(
            db,
            party_size=booking_data.party_size,
            actor=actor,
            clock=clock,
            turn_time_minutes=booking_data.turn_time_minutes,
            table_ids=booking_data.table_ids,
            guest_name=booking_data.guest_name,
        )
    else:
        booking = await create_booking(
            db,
            party_size=booking_data.party_size,
            start_time=booking_data.start_time,
            actor=actor,
            clock=clock,
            turn_time_minutes=booking_data.turn_time_minutes,
            policy=booking_data.policy,
            table_ids=booking_data.table_ids,
            guest_name=booking_data.guest_name,
            prefs=PlanPreferences(table_type=booking_data.table_type, section=booking_data.section),
        )
    await db.commit()

    if booking.status == BookingStatus.CONFIRMED.value:
        await dispatch(notifier, booking_event("booking_confirmed", booking, clock))
    return BookingResponse.from_booking(booking)


@router.get("/", response_model=list[BookingResponse])
async def list_bookings_endpoint(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    start_from: Optional[datetime] = Query(None),
    start_to: Optional[datetime] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    bookings = await list_bookings(
        db,
        status=status_filter.value if status_filter else None,
        start_from=start_from,
        start_to=start_to,
    )
    return [BookingResponse.from_booking(booking) for booking in bookings]


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking_endpoint(booking_id: int, db: AsyncSession = Depends(get_db)):
    return BookingResponse.from_booking(await load_booking(db, booking_id))


@router.get("/{booking_id}/history", response_model=BookingHistoryResponse)
async def get_booking_history(booking_id: int, db: AsyncSession = Depends(get_db)):
    """Full ordered status history, oldest first."""
    return BookingHistoryResponse.from_booking(await load_booking(db, booking_id))


@router.post("/{booking_id}/transition", response_model=BookingResponse)
async def transition_endpoint(
    booking_id: int,
    request: TransitionRequest,
    background_tasks: BackgroundTasks,
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    sessions: async_sessionmaker = Depends(get_sessions),
    clock: Clock = Depends(get_clock),
    notifier: NotificationSink = Depends(get_notifier),
):
    booking = await transition(
        db,
        booking_id,
        request.target_status.value,
        actor,
        request.metadata,
        clock=clock,
        expected_version=request.expected_version,
    )
    await db.commit()
    await _after_commit(booking, background_tasks, sessions, clock, notifier)
    return BookingResponse.from_booking(booking)


@router.post("/{booking_id}/accept", response_model=AcceptResponse)
async def accept_endpoint(
    booking_id: int,
    request: AcceptRequest,
    background_tasks: BackgroundTasks,
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    sessions: async_sessionmaker = Depends(get_sessions),
    clock: Clock = Depends(get_clock),
    notifier: NotificationSink = Depends(get_notifier),
):
    outcome = await accept_request(
        db,
        booking_id,
        actor,
        request.table_ids,
        AcceptOptions(
            suggest_alternatives=request.suggest_alternatives,
            skip_table_assignment=request.skip_table_assignment,
            expected_version=request.expected_version,
        ),
        clock=clock,
    )
    await db.commit()
    await _after_commit(outcome.booking, background_tasks, sessions, clock, notifier)
    return AcceptResponse(
        booking=BookingResponse.from_booking(outcome.booking),
        assignment=outcome.assignment.to_dict() if outcome.assignment else None,
    )


@router.post("/{booking_id}/decline", response_model=DeclineResponse)
async def decline_endpoint(
    booking_id: int,
    request: DeclineRequest,
    background_tasks: BackgroundTasks,
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    sessions: async_sessionmaker = Depends(get_sessions),
    clock: Clock = Depends(get_clock),
    notifier: NotificationSink = Depends(get_notifier),
):
    outcome = await decline_request(
        db,
        booking_id,
        actor,
        request.reason,
        request.suggest_alternatives,
        clock=clock,
    )
    await db.commit()
    await _after_commit(
        outcome.booking, background_tasks, sessions, clock, notifier, reason=request.reason
    )
    return DeclineResponse(
        booking=BookingResponse.from_booking(outcome.booking),
        alternatives=outcome.alternatives.to_dict() if outcome.alternatives else None,
    )


@router.post("/{booking_id}/check-in", response_model=BookingResponse)
async def check_in_endpoint(
    booking_id: int,
    request: TableActionRequest,
    background_tasks: BackgroundTasks,
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    sessions: async_sessionmaker = Depends(get_sessions),
    clock: Clock = Depends(get_clock),
    notifier: NotificationSink = Depends(get_notifier),
):
    booking = await check_in(
        db, booking_id, actor, request.table_ids, clock=clock, expected_version=request.expected_version
    )
    await db.commit()
    await _after_commit(booking, background_tasks, sessions, clock, notifier)
    return BookingResponse.from_booking(booking)


@router.post("/{booking_id}/seat", response_model=BookingResponse)
async def seat_endpoint(
    booking_id: int,
    request: TableActionRequest,
    background_tasks: BackgroundTasks,
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    sessions: async_sessionmaker = Depends(get_sessions),
    clock: Clock = Depends(get_clock),
    notifier: NotificationSink = Depends(get_notifier),
):
    booking = await seat(
        db, booking_id, actor, request.table_ids, clock=clock, expected_version=request.expected_version
    )
    await db.commit()
    await _after_commit(booking, background_tasks, sessions, clock, notifier)
    return BookingResponse.from_booking(booking)


@router.post("/{booking_id}/reassign", response_model=BookingResponse)
async def reassign_endpoint(
    booking_id: int,
    request: ReassignRequest,
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    notifier: NotificationSink = Depends(get_notifier),
):
    """Move a booking to different tables; the old tables free up immediately."""
    booking = await reassign_tables(
        db,
        booking_id,
        actor,
        request.table_ids,
        request.reason,
        clock=clock,
        expected_version=request.expected_version,
    )
    await db.commit()
    await dispatch(
        notifier,
        booking_event("booking_tables_reassigned", booking, clock, reason=request.reason),
    )
    return BookingResponse.from_booking(booking)
