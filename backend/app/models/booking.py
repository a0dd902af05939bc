"""
Booking model and its status history.

Key design decisions:
- Bookings are never deleted; terminal statuses are kept for audit
- `end_time` is denormalized (start_time + turn_time) so overlap checks are a
  plain indexed range comparison in SQL
- Table assignment lives in `booking_tables` with an explicit position, so the
  assignment is an ordered set of 0-2 tables
- `version` column enables optimistic locking on status changes
- `booking_status_history` is append-only; the last row's to_status always
  equals the booking's status
"""

import enum

from sqlalchemy import (
    Column,
    Integer,
    String,
    ForeignKey,
    JSON,
    CheckConstraint,
    Index,
)
from sqlalchemy.orm import relationship

from app.db.base import Base, TimestampMixin, UTCDateTime


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ARRIVED = "arrived"
    SEATED = "seated"
    ORDERED = "ordered"
    APPETIZERS = "appetizers"
    MAIN_COURSE = "main_course"
    DESSERT = "dessert"
    PAYMENT = "payment"
    COMPLETED = "completed"
    NO_SHOW = "no_show"
    CANCELLED_BY_USER = "cancelled_by_user"
    CANCELLED_BY_RESTAURANT = "cancelled_by_restaurant"
    DECLINED_BY_RESTAURANT = "declined_by_restaurant"
    AUTO_DECLINED = "auto_declined"


# Status sets hold plain column values

# Statuses that occupy (or are about to occupy) a table
ACTIVE_STATUSES = frozenset(s.value for s in (
    BookingStatus.CONFIRMED,
    BookingStatus.ARRIVED,
    BookingStatus.SEATED,
    BookingStatus.ORDERED,
    BookingStatus.APPETIZERS,
    BookingStatus.MAIN_COURSE,
    BookingStatus.DESSERT,
    BookingStatus.PAYMENT,
))

TERMINAL_STATUSES = frozenset(s.value for s in (
    BookingStatus.COMPLETED,
    BookingStatus.NO_SHOW,
    BookingStatus.CANCELLED_BY_USER,
    BookingStatus.CANCELLED_BY_RESTAURANT,
    BookingStatus.DECLINED_BY_RESTAURANT,
    BookingStatus.AUTO_DECLINED,
))

INITIAL_STATUSES = frozenset({BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value})

_STATUS_SQL_LIST = ", ".join(f"'{s.value}'" for s in BookingStatus)


class BookingSource(str, enum.Enum):
    REQUEST = "request"
    INSTANT = "instant"
    WALK_IN = "walk_in"
    WAITLIST = "waitlist"


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    guest_name = Column(String(255), nullable=True)
    party_size = Column(Integer, nullable=False)
    start_time = Column(UTCDateTime(), nullable=False)
    turn_time_minutes = Column(Integer, nullable=False)
    end_time = Column(UTCDateTime(), nullable=False)
    status = Column(String(30), nullable=False, default=BookingStatus.PENDING.value)
    source = Column(String(20), nullable=False, default=BookingSource.REQUEST.value)
    request_expires_at = Column(UTCDateTime(), nullable=True)

    # Optimistic locking version counter
    version = Column(Integer, nullable=False, default=1)

    table_links = relationship(
        "BookingTable",
        back_populates="booking",
        order_by="BookingTable.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    history = relationship(
        "BookingStatusChange",
        back_populates="booking",
        order_by="BookingStatusChange.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("party_size > 0", name="check_booking_party_size_positive"),
        CheckConstraint("turn_time_minutes > 0", name="check_booking_turn_time_positive"),
        CheckConstraint(f"status IN ({_STATUS_SQL_LIST})", name="check_booking_status"),
        # Range index for the overlap query: start < :end AND end > :start
        Index("ix_bookings_window", "start_time", "end_time"),
        Index("ix_bookings_status", "status"),
    )

    @property
    def assigned_table_ids(self) -> list[int]:
        return [link.table_id for link in self.table_links]

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, party={self.party_size}, start={self.start_time}, status={self.status})>"


class BookingTable(Base):
    __tablename__ = "booking_tables"

    booking_id = Column(Integer, ForeignKey("bookings.id"), primary_key=True)
    table_id = Column(Integer, ForeignKey("restaurant_tables.id"), primary_key=True)
    position = Column(Integer, nullable=False, default=0)

    booking = relationship("Booking", back_populates="table_links")

    __table_args__ = (
        Index("ix_booking_tables_table_id", "table_id"),
    )


class BookingStatusChange(Base):
    __tablename__ = "booking_status_history"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    from_status = Column(String(30), nullable=True)
    to_status = Column(String(30), nullable=False)
    at = Column(UTCDateTime(), nullable=False)
    actor = Column(String(100), nullable=False)
    metadata_ = Column("metadata", JSON, nullable=True)

    booking = relationship("Booking", back_populates="history")

    def __repr__(self) -> str:
        return f"<BookingStatusChange(booking={self.booking_id}, {self.from_status}->{self.to_status}, actor={self.actor})>"
