from app.models.table import RestaurantTable
from app.models.booking import (
    Booking,
    BookingTable,
    BookingStatusChange,
    BookingStatus,
    BookingSource,
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
)
from app.models.waitlist import WaitlistEntry, WaitlistStatus

__all__ = [
    "RestaurantTable",
    "Booking", "BookingTable", "BookingStatusChange", "BookingStatus", "BookingSource",
    "ACTIVE_STATUSES", "TERMINAL_STATUSES",
    "WaitlistEntry", "WaitlistStatus",
]
