"""
Pydantic schemas for the waitlist queue.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class WaitlistCreate(BaseModel):
    party_size: int = Field(..., gt=0, le=100)
    window_start: datetime
    window_end: Optional[datetime] = None
    turn_time_minutes: Optional[int] = Field(None, gt=0, le=24 * 60)
    priority: bool = False
    table_type: Optional[str] = None
    section: Optional[str] = None
    guest_name: Optional[str] = Field(None, max_length=255)


class WaitlistEntryResponse(BaseModel):
    id: int
    guest_name: Optional[str]
    party_size: int
    window_start: datetime
    window_end: datetime
    turn_time_minutes: int
    priority: bool
    table_type: Optional[str]
    section: Optional[str]
    status: str
    created_at: datetime
    resolved_at: Optional[datetime]
    promoted_booking_id: Optional[int]

    model_config = {"from_attributes": True}


class WaitlistBucketResponse(BaseModel):
    window_start: datetime
    window_end: datetime
    entries: list[WaitlistEntryResponse]

    model_config = {"from_attributes": True}


class SweepResponse(BaseModel):
    auto_declined: list[int]
    promoted: list[dict[str, int]]
    queued: list[int]
    expired: int
