"""
Waitlist endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.deps import get_clock, get_notifier, get_sessions
from app.db.session import get_db
from app.models.waitlist import WaitlistStatus
from app.schemas.waitlist import (
    WaitlistCreate,
    WaitlistEntryResponse,
    WaitlistBucketResponse,
    SweepResponse,
)
from app.services.interfaces.clock import Clock
from app.services.interfaces.notifier import NotificationSink
from app.services.waitlist_service import add_entry, bucket_entries, list_entries
from app.tasks.sweeper import run_sweep

router = APIRouter(prefix="/waitlist", tags=["Waitlist"])


@router.post("/", response_model=WaitlistEntryResponse, status_code=status.HTTP_201_CREATED)
async def add_waitlist_entry(
    entry_data: WaitlistCreate,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    return await add_entry(db, entry_data, clock=clock)


@router.get("/", response_model=list[WaitlistBucketResponse])
async def list_waitlist(
    status_filter: Optional[WaitlistStatus] = Query(WaitlistStatus.WAITING, alias="status"),
    db: AsyncSession = Depends(get_db),
):
    """Entries bucketed by desired window, each bucket in serving order."""
    entries = await list_entries(db, status_filter.value if status_filter else None)
    return [
        WaitlistBucketResponse(
            window_start=bucket.window_start,
            window_end=bucket.window_end,
            entries=[WaitlistEntryResponse.model_validate(entry) for entry in bucket.entries],
        )
        for bucket in bucket_entries(entries)
    ]


@router.post("/sweep", response_model=SweepResponse)
async def sweep_waitlist(
    sessions: async_sessionmaker = Depends(get_sessions),
    clock: Clock = Depends(get_clock),
    notifier: NotificationSink = Depends(get_notifier),
):
    """Run the periodic sweep now: auto-decline, expire, promote."""
    report = await run_sweep(sessions, clock=clock, notifier=notifier)
    return SweepResponse(
        auto_declined=report.auto_declined,
        promoted=[
            {"entry_id": entry_id, "booking_id": booking_id}
            for entry_id, booking_id in report.promotion.promoted
        ],
        queued=report.promotion.queued,
        expired=report.promotion.expired,
    )
