"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import datetime
from typing import Literal, Optional, Union
from pydantic import BaseModel, Field, model_validator

from app.models.booking import Booking, BookingStatus
from app.schemas.availability import AssignmentResponse, AlternativesResponse

MetadataValue = Union[str, int, float, bool, None]


class BookingCreate(BaseModel):
    party_size: int = Field(..., gt=0, le=100)
    start_time: Optional[datetime] = None
    turn_time_minutes: Optional[int] = Field(None, gt=0, le=24 * 60)
    policy: Optional[Literal["request", "instant"]] = None
    walk_in: bool = False
    table_ids: Optional[list[int]] = Field(None, min_length=1, max_length=2)
    guest_name: Optional[str] = Field(None, max_length=255)
    table_type: Optional[str] = None
    section: Optional[str] = None

    @model_validator(mode="after")
    def check_start_time(self):
        if not self.walk_in and self.start_time is None:
            raise ValueError("start_time is required unless walk_in is set")
        return self


class StatusChangeResponse(BaseModel):
    from_status: Optional[str]
    to_status: str
    at: datetime
    actor: str
    metadata: Optional[dict[str, MetadataValue]] = None


class BookingResponse(BaseModel):
    id: int
    guest_name: Optional[str]
    party_size: int
    start_time: datetime
    end_time: datetime
    turn_time_minutes: int
    status: str
    source: str
    table_ids: list[int]
    request_expires_at: Optional[datetime]
    version: int
    progress: int
    created_at: datetime

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingResponse":
        from app.services.lifecycle_service import dining_progress

        return cls(
            id=booking.id,
            guest_name=booking.guest_name,
            party_size=booking.party_size,
            start_time=booking.start_time,
            end_time=booking.end_time,
            turn_time_minutes=booking.turn_time_minutes,
            status=booking.status,
            source=booking.source,
            table_ids=booking.assigned_table_ids,
            request_expires_at=booking.request_expires_at,
            version=booking.version,
            progress=dining_progress(booking.status),
            created_at=booking.created_at,
        )


class BookingHistoryResponse(BaseModel):
    booking_id: int
    status: str
    history: list[StatusChangeResponse]

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingHistoryResponse":
        return cls(
            booking_id=booking.id,
            status=booking.status,
            history=[
                StatusChangeResponse(
                    from_status=change.from_status,
                    to_status=change.to_status,
                    at=change.at,
                    actor=change.actor,
                    metadata=change.metadata_,
                )
                for change in booking.history
            ],
        )


class TransitionRequest(BaseModel):
    target_status: BookingStatus
    metadata: Optional[dict[str, MetadataValue]] = None
    expected_version: Optional[int] = None


class AcceptRequest(BaseModel):
    table_ids: Optional[list[int]] = Field(None, min_length=1, max_length=2)
    suggest_alternatives: bool = False
    skip_table_assignment: bool = False
    expected_version: Optional[int] = None


class AcceptResponse(BaseModel):
    booking: BookingResponse
    assignment: Optional[AssignmentResponse] = None


class DeclineRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)
    suggest_alternatives: bool = False


class DeclineResponse(BaseModel):
    booking: BookingResponse
    alternatives: Optional[AlternativesResponse] = None


class TableActionRequest(BaseModel):
    """Body for check-in and seat: optional tables to attach."""

    table_ids: Optional[list[int]] = Field(None, min_length=1, max_length=2)
    expected_version: Optional[int] = None


class ReassignRequest(BaseModel):
    table_ids: list[int] = Field(..., min_length=1, max_length=2)
    reason: str = Field(..., min_length=1, max_length=500)
    expected_version: Optional[int] = None
