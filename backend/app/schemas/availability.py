"""
Pydantic schemas for availability checks and assignment planning.
"""

from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field


class AvailabilityCheckRequest(BaseModel):
    table_ids: list[int] = Field(..., min_length=1)
    start_time: datetime
    turn_time_minutes: Optional[int] = Field(None, gt=0, le=24 * 60)
    exclude_booking_id: Optional[int] = None


class ConflictResponse(BaseModel):
    table_id: int
    booking_id: int
    status: str
    party_size: int
    start_time: datetime
    end_time: datetime


class AvailabilityResponse(BaseModel):
    available: bool
    conflicts: list[ConflictResponse]
    inactive_table_ids: list[int]


class PlanRequest(BaseModel):
    party_size: int = Field(..., gt=0, le=100)
    start_time: datetime
    turn_time_minutes: Optional[int] = Field(None, gt=0, le=24 * 60)
    table_type: Optional[str] = None
    section: Optional[str] = None
    exclude_booking_id: Optional[int] = None


class AssignmentResponse(BaseModel):
    table_ids: list[int]
    requires_combination: bool
    total_capacity: int


class AlternativeSlotResponse(AssignmentResponse):
    start_time: datetime


class AlternativesResponse(BaseModel):
    tables: Optional[AssignmentResponse] = None
    slots: list[AlternativeSlotResponse]
    largest_single_capacity: Optional[int] = None
    largest_combination_capacity: Optional[int] = None


class PlanResponse(BaseModel):
    status: Literal["assigned", "unavailable"]
    assignment: Optional[AssignmentResponse] = None
    alternatives: Optional[AlternativesResponse] = None
