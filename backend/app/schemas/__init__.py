from app.schemas.table import TableCreate, TableUpdate, TableResponse
from app.schemas.availability import (
    AvailabilityCheckRequest, AvailabilityResponse, ConflictResponse,
    PlanRequest, PlanResponse, AssignmentResponse, AlternativesResponse,
)
from app.schemas.booking import (
    BookingCreate, BookingResponse, BookingHistoryResponse, StatusChangeResponse,
    TransitionRequest, AcceptRequest, AcceptResponse, DeclineRequest, DeclineResponse,
    TableActionRequest, ReassignRequest,
)
from app.schemas.waitlist import (
    WaitlistCreate, WaitlistEntryResponse, WaitlistBucketResponse, SweepResponse,
)

__all__ = [
    "TableCreate", "TableUpdate", "TableResponse",
    "AvailabilityCheckRequest", "AvailabilityResponse", "ConflictResponse",
    "PlanRequest", "PlanResponse", "AssignmentResponse", "AlternativesResponse",
    "BookingCreate", "BookingResponse", "BookingHistoryResponse", "StatusChangeResponse",
    "TransitionRequest", "AcceptRequest", "AcceptResponse", "DeclineRequest", "DeclineResponse",
    "TableActionRequest", "ReassignRequest",
    "WaitlistCreate", "WaitlistEntryResponse", "WaitlistBucketResponse", "SweepResponse",
]
