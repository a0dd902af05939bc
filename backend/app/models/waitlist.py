"""
Waitlist entry: an unmet request parked until a table frees up.

An entry is only ever promoted (turned into a booking) or expired; nothing
else about it changes after creation.
"""

import enum

from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, CheckConstraint, Index

from app.db.base import Base, UTCDateTime


class WaitlistStatus(str, enum.Enum):
    WAITING = "waiting"
    PROMOTED = "promoted"
    EXPIRED = "expired"


class WaitlistEntry(Base):
    __tablename__ = "waitlist_entries"

    id = Column(Integer, primary_key=True, index=True)
    guest_name = Column(String(255), nullable=True)
    party_size = Column(Integer, nullable=False)
    # Acceptable arrival window
    window_start = Column(UTCDateTime(), nullable=False)
    window_end = Column(UTCDateTime(), nullable=False)
    turn_time_minutes = Column(Integer, nullable=False)
    priority = Column(Boolean, nullable=False, default=False)
    table_type = Column(String(30), nullable=True)
    section = Column(String(50), nullable=True)
    status = Column(String(20), nullable=False, default=WaitlistStatus.WAITING.value)
    created_at = Column(UTCDateTime(), nullable=False)
    resolved_at = Column(UTCDateTime(), nullable=True)
    promoted_booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True)

    __table_args__ = (
        CheckConstraint("party_size > 0", name="check_waitlist_party_size_positive"),
        CheckConstraint("window_end >= window_start", name="check_waitlist_window_order"),
        Index("ix_waitlist_status_window", "status", "window_start"),
    )

    def __repr__(self) -> str:
        return f"<WaitlistEntry(id={self.id}, party={self.party_size}, status={self.status})>"
