"""Initial schema: restaurant tables, bookings, table links, status history, waitlist.

Revision ID: 001
Revises: None
Create Date: 2026-10-17
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

BOOKING_STATUSES = (
    "pending", "confirmed", "arrived", "seated", "ordered", "appetizers",
    "main_course", "dessert", "payment", "completed", "no_show",
    "cancelled_by_user", "cancelled_by_restaurant", "declined_by_restaurant",
    "auto_declined",
)


def upgrade() -> None:
    # Resource catalog
    op.create_table(
        "restaurant_tables",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("table_number", sa.Integer(), nullable=False),
        sa.Column("min_capacity", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("max_capacity", sa.Integer(), nullable=False),
        sa.Column("table_type", sa.String(30), nullable=False, server_default=sa.text("'standard'")),
        sa.Column("section", sa.String(50), nullable=True),
        sa.Column("combinable", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("combinable_with", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("priority_score", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("table_number", name="uq_restaurant_tables_table_number"),
        sa.CheckConstraint("min_capacity > 0", name="check_table_min_capacity_positive"),
        sa.CheckConstraint("max_capacity >= min_capacity", name="check_table_capacity_range"),
    )
    op.create_index("ix_restaurant_tables_id", "restaurant_tables", ["id"])
    op.create_index("ix_restaurant_tables_active", "restaurant_tables", ["active"])

    # Bookings
    status_list = ", ".join(f"'{status}'" for status in BOOKING_STATUSES)
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("guest_name", sa.String(255), nullable=True),
        sa.Column("party_size", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("turn_time_minutes", sa.Integer(), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(30), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("source", sa.String(20), nullable=False, server_default=sa.text("'request'")),
        sa.Column("request_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("party_size > 0", name="check_booking_party_size_positive"),
        sa.CheckConstraint("turn_time_minutes > 0", name="check_booking_turn_time_positive"),
        sa.CheckConstraint(f"status IN ({status_list})", name="check_booking_status"),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    # Overlap queries are always "start < :end AND end > :start" filtered by
    # status, so the window pair and the status get their own indexes.
    op.create_index("ix_bookings_window", "bookings", ["start_time", "end_time"])
    op.create_index("ix_bookings_status", "bookings", ["status"])

    # Ordered table assignment, 0-2 rows per booking
    op.create_table(
        "booking_tables",
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), primary_key=True),
        sa.Column("table_id", sa.Integer(), sa.ForeignKey("restaurant_tables.id"), primary_key=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default=sa.text("0")),
    )
    op.create_index("ix_booking_tables_table_id", "booking_tables", ["table_id"])

    # Append-only status history
    op.create_table(
        "booking_status_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("from_status", sa.String(30), nullable=True),
        sa.Column("to_status", sa.String(30), nullable=False),
        sa.Column("at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor", sa.String(100), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
    )
    op.create_index("ix_booking_status_history_id", "booking_status_history", ["id"])
    op.create_index("ix_booking_status_history_booking_id", "booking_status_history", ["booking_id"])

    # Waitlist
    op.create_table(
        "waitlist_entries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("guest_name", sa.String(255), nullable=True),
        sa.Column("party_size", sa.Integer(), nullable=False),
        sa.Column("window_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("window_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("turn_time_minutes", sa.Integer(), nullable=False),
        sa.Column("priority", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("table_type", sa.String(30), nullable=True),
        sa.Column("section", sa.String(50), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'waiting'")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("promoted_booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=True),
        sa.CheckConstraint("party_size > 0", name="check_waitlist_party_size_positive"),
        sa.CheckConstraint("window_end >= window_start", name="check_waitlist_window_order"),
    )
    op.create_index("ix_waitlist_entries_id", "waitlist_entries", ["id"])
    op.create_index("ix_waitlist_status_window", "waitlist_entries", ["status", "window_start"])


def downgrade() -> None:
    op.drop_table("waitlist_entries")
    op.drop_table("booking_status_history")
    op.drop_table("booking_tables")
    op.drop_table("bookings")
    op.drop_table("restaurant_tables")
