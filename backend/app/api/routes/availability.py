"""
Availability endpoints: conflict checks and dry-run assignment planning.

Both are read-only; nothing is claimed until a booking is accepted or created.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_clock
from app.core.config import get_settings
from app.db.session import get_db
from app.schemas.availability import (
    AvailabilityCheckRequest,
    AvailabilityResponse,
    ConflictResponse,
    PlanRequest,
    PlanResponse,
)
from app.services.conflict_service import Window, check_availability
from app.services.interfaces.clock import Clock
from app.services.planner_service import PlanPreferences, Unavailable, plan_assignment

router = APIRouter(prefix="/availability", tags=["Availability"])
settings = get_settings()


@router.post("/check", response_model=AvailabilityResponse)
async def check_availability_endpoint(
    request: AvailabilityCheckRequest,
    db: AsyncSession = Depends(get_db),
):
    window = Window.from_turn_time(
        request.start_time,
        request.turn_time_minutes or settings.DEFAULT_TURN_TIME_MINUTES,
    )
    report = await check_availability(db, request.table_ids, window, request.exclude_booking_id)
    return AvailabilityResponse(
        available=report.available,
        conflicts=[
            ConflictResponse(
                table_id=table_id,
                booking_id=booking.id,
                status=booking.status,
                party_size=booking.party_size,
                start_time=booking.start_time,
                end_time=booking.end_time,
            )
            for table_id, bookings in sorted(report.conflicts.items())
            for booking in bookings
        ],
        inactive_table_ids=report.inactive_table_ids,
    )


@router.post("/plan", response_model=PlanResponse)
async def plan_endpoint(
    request: PlanRequest,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Which table(s) the planner would pick, or alternatives if none fit."""
    window = Window.from_turn_time(
        request.start_time,
        request.turn_time_minutes or settings.DEFAULT_TURN_TIME_MINUTES,
    )
    prefs = PlanPreferences(table_type=request.table_type, section=request.section)
    plan = await plan_assignment(
        db,
        request.party_size,
        window,
        prefs,
        clock=clock,
        exclude_booking_id=request.exclude_booking_id,
    )
    if isinstance(plan, Unavailable):
        return PlanResponse(status="unavailable", alternatives=plan.alternatives.to_dict())
    return PlanResponse(status="assigned", assignment=plan.to_dict())
